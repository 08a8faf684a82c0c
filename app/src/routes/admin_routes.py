"""
Admin / maintenance API routes.

All endpoints require a valid ``X-Admin-Key`` header.

Endpoints:
    GET    /api/admin/transcriptions                      — list by status
    POST   /api/admin/transcriptions/{transcription_id}/process — process inline
    POST   /api/admin/transcriptions/{transcription_id}/requeue — enqueue again
    DELETE /api/admin/transcriptions/{transcription_id}   — delete a record
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from commons import limiter
from security import require_admin_key, safe_error_response, validate_transcription_id
from src.routes.transcription_routes import serialize_status
from src.services import Services, get_services
from src.transcription.errors import EnqueueError, TranscriptionNotFoundError
from src.transcription.models import (
    TranscriptionRequestedMessage,
    TranscriptionStatus,
    is_terminal,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/transcriptions")
@limiter.limit("30/minute")
def list_transcriptions(
    request: Request,
    status: Optional[TranscriptionStatus] = None,
    limit: int = Query(default=20, ge=1, le=500),
    services: Services = Depends(get_services),
    _=Depends(require_admin_key),
) -> dict:
    """List transcriptions in a status (oldest first) or the latest ones."""
    if status is not None:
        records = services.repository.find_by_status(status, limit=limit)
    else:
        records = services.repository.find_all(limit=limit)
    logger.debug("Listed %d transcriptions (status=%s)", len(records), status)
    return {
        "transcriptions": [serialize_status(r) for r in records],
        "total": len(records),
    }


@router.post("/transcriptions/{transcription_id}/process")
@limiter.limit("10/minute")
def process_transcription_now(
    request: Request,
    transcription_id: str,
    services: Services = Depends(get_services),
    _=Depends(require_admin_key),
) -> dict:
    """Run a transcription through the queue consumer synchronously."""
    validate_transcription_id(transcription_id)
    record = services.repository.find_by_id(transcription_id)
    if not record:
        raise HTTPException(status_code=404, detail="Transcription not found")
    if record["status"] != TranscriptionStatus.PENDING.value:
        raise HTTPException(
            status_code=409, detail=f"Transcription is already {record['status']}"
        )

    message = TranscriptionRequestedMessage(
        event_type=services.consumer.event_type,
        transcription_id=transcription_id,
    )
    logger.info("Manually processing transcription %s", transcription_id)
    try:
        services.consumer.process_event(message)
    except TranscriptionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except Exception as exc:
        # Failure details are on the record; report them below.
        logger.warning(
            "Manual processing of %s failed: %s", transcription_id, exc
        )

    return serialize_status(services.repository.find_by_id(transcription_id))


@router.post("/transcriptions/{transcription_id}/requeue")
@limiter.limit("10/minute")
def requeue_transcription(
    request: Request,
    transcription_id: str,
    services: Services = Depends(get_services),
    _=Depends(require_admin_key),
) -> dict:
    """Enqueue another event for a transcription that has not finished."""
    validate_transcription_id(transcription_id)
    record = services.repository.find_by_id(transcription_id)
    if not record:
        raise HTTPException(status_code=404, detail="Transcription not found")
    if is_terminal(record["status"]):
        raise HTTPException(
            status_code=409, detail=f"Transcription is already {record['status']}"
        )

    try:
        job_id = services.publisher.enqueue(transcription_id)
    except EnqueueError as exc:
        raise HTTPException(status_code=503, detail=exc.message) from exc
    logger.info("Transcription %s requeued as job %s", transcription_id, job_id)
    return {"transcriptionId": transcription_id, "jobId": job_id}


@router.delete("/transcriptions/{transcription_id}")
@limiter.limit("10/minute")
def delete_transcription(
    request: Request,
    transcription_id: str,
    services: Services = Depends(get_services),
    _=Depends(require_admin_key),
) -> dict:
    """Delete a transcription record."""
    validate_transcription_id(transcription_id)
    if not services.repository.find_by_id(transcription_id):
        raise HTTPException(status_code=404, detail="Transcription not found")
    try:
        if services.repository.delete(transcription_id):
            return {
                "message": f"Transcription {transcription_id} deleted successfully",
                "transcriptionId": transcription_id,
            }
        raise HTTPException(status_code=500, detail="Failed to delete transcription")
    except HTTPException:
        raise
    except Exception as exc:
        safe_error_response(exc, context="delete_transcription")
