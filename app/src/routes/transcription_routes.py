"""
Transcription API routes.

Endpoints:
    POST   /api/uploads                              — presigned upload handle
    POST   /api/transcriptions                       — create job for uploaded audio
    POST   /api/transcriptions/upload                — upload audio & create job
    GET    /api/transcriptions/{transcription_id}    — poll job status
    GET    /api/transcriptions/{transcription_id}/transcript — download text
"""

import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Request,
    UploadFile,
)
from fastapi.responses import PlainTextResponse

from commons import limiter
from configs.config import get_config
from security import (
    get_request_id,
    safe_error_response,
    validate_file_extension,
    validate_transcription_id,
)
from src.services import Services, get_services
from src.storage.object_storage import audio_object_key, guess_audio_content_type
from src.transcription.creation import validate_audio_request
from src.transcription.errors import (
    DomainError,
    FileTooLargeError,
    InfraError,
)
from src.transcription.models import (
    CreateTranscriptionRequest,
    TranscriptionSource,
    TranscriptionStatus,
    UploadRequest,
)

logger = logging.getLogger(__name__)

cfg = get_config()

router = APIRouter(prefix="/api", tags=["transcription"])


def _iso(value):
    return value.isoformat() if isinstance(value, datetime) else value


def serialize_status(record: Dict[str, Any]) -> Dict[str, Any]:
    """Client-facing view of a transcription record."""
    body = {
        "id": record["id"],
        "status": record["status"],
        "progress": record.get("progress", 0),
        "filename": record.get("filename"),
        "source": record.get("source"),
        "createdAt": _iso(record.get("created_at")),
        "startedAt": _iso(record.get("started_at")),
        "completedAt": _iso(record.get("completed_at")),
        "updatedAt": _iso(record.get("updated_at")),
        "preview": record.get("preview"),
    }
    if record["status"] == TranscriptionStatus.COMPLETED.value:
        body["transcriptUrl"] = f"/api/transcriptions/{record['id']}/transcript"
    if record.get("error_detail"):
        body["error"] = {
            "code": record["error_detail"].get("code"),
            "message": record["error_detail"].get("message"),
        }
    return body


def _raise_for_pipeline_error(exc: Exception, context: str) -> None:
    """Translate pipeline errors into HTTP errors."""
    if isinstance(exc, FileTooLargeError):
        raise HTTPException(status_code=413, detail=exc.message) from exc
    if isinstance(exc, DomainError):
        raise HTTPException(status_code=400, detail=exc.message) from exc
    if isinstance(exc, InfraError):
        logger.error("Infrastructure error in %s: %s", context, exc)
        raise HTTPException(
            status_code=503,
            detail="Service temporarily unavailable. Please try again.",
        ) from exc
    safe_error_response(exc, context=context)


# ── Upload handle ────────────────────────────────────────────────────────


@router.post("/uploads")
@limiter.limit("30/minute")
def create_upload_handle(
    request: Request,
    body: UploadRequest,
    services: Services = Depends(get_services),
) -> dict:
    """Issue a presigned URL the client uploads the audio file to."""
    request_id = get_request_id(request)
    try:
        validate_audio_request(body.file_name, body.content_type, body.file_size)
        handle = services.storage.issue_upload_handle(
            body.file_name, body.content_type, cfg.UPLOAD_URL_TTL_SECONDS
        )
    except Exception as exc:
        _raise_for_pipeline_error(exc, context="create_upload_handle")

    logger.info(
        "Upload handle issued for %s -> %s (request %s)",
        body.file_name, handle.object_key, request_id,
    )
    return {
        "uploadUrl": handle.handle,
        "objectKey": handle.object_key,
        "expiresAt": handle.expires_at.isoformat(),
        "requestId": request_id,
    }


# ── Create ───────────────────────────────────────────────────────────────


@router.post("/transcriptions", status_code=201)
@limiter.limit("20/minute")
def create_transcription(
    request: Request,
    body: CreateTranscriptionRequest,
    services: Services = Depends(get_services),
) -> dict:
    """Create a transcription for audio that is already in object storage."""
    request_id = get_request_id(request)
    logger.info(
        "Creating transcription for %s (%s, request %s)",
        body.audio_object_key, body.filename, request_id,
    )
    try:
        transcription_id = services.creator.create(
            audio_object_key=body.audio_object_key,
            filename=body.filename,
            source=body.source,
            user_metadata={**body.user_metadata, "requestId": request_id},
            content_type=body.content_type,
            file_size=body.file_size,
        )
    except Exception as exc:
        _raise_for_pipeline_error(exc, context="create_transcription")

    return {
        "transcriptionId": transcription_id,
        "status": TranscriptionStatus.PENDING.value,
        "requestId": request_id,
    }


@router.post("/transcriptions/upload", status_code=201)
@limiter.limit("5/minute")
async def upload_and_create_transcription(
    request: Request,
    file: UploadFile = File(...),
    source: TranscriptionSource = Form(default=TranscriptionSource.WEB),
    services: Services = Depends(get_services),
) -> dict:
    """Upload an audio file through the API and queue its transcription."""
    validate_file_extension(file.filename)
    request_id = get_request_id(request)

    chunks = []
    total_bytes = 0
    while True:
        chunk = await file.read(1024 * 1024)
        if not chunk:
            break
        total_bytes += len(chunk)
        if total_bytes > cfg.MAX_UPLOAD_SIZE:
            logger.warning(
                "Upload %s rejected: larger than %d bytes",
                file.filename, cfg.MAX_UPLOAD_SIZE,
            )
            raise HTTPException(
                status_code=413,
                detail=(
                    f"File too large. Maximum allowed size is "
                    f"{cfg.MAX_UPLOAD_SIZE // (1024 ** 2)} MB."
                ),
            )
        chunks.append(chunk)
    logger.debug("Received %s (%d bytes)", file.filename, total_bytes)

    content_type = file.content_type
    if not content_type or not content_type.startswith("audio/"):
        content_type = guess_audio_content_type(file.filename)

    object_key = audio_object_key(file.filename)
    try:
        services.storage.put(object_key, b"".join(chunks), content_type)
        transcription_id = services.creator.create(
            audio_object_key=object_key,
            filename=file.filename,
            source=source,
            user_metadata={"requestId": request_id},
            content_type=content_type,
            file_size=total_bytes,
        )
    except Exception as exc:
        _raise_for_pipeline_error(exc, context="upload_transcription")

    return {
        "transcriptionId": transcription_id,
        "status": TranscriptionStatus.PENDING.value,
        "requestId": request_id,
    }


# ── Status ───────────────────────────────────────────────────────────────


@router.get("/transcriptions/{transcription_id}")
@limiter.limit("120/minute")
def get_transcription_status(
    request: Request,
    transcription_id: str,
    services: Services = Depends(get_services),
) -> dict:
    """Return current status and progress of a transcription."""
    validate_transcription_id(transcription_id)
    record = services.repository.find_by_id(transcription_id)
    if not record:
        logger.warning("Transcription %s not found", transcription_id)
        raise HTTPException(status_code=404, detail="Transcription not found")
    return serialize_status(record)


# ── Download ─────────────────────────────────────────────────────────────


@router.get("/transcriptions/{transcription_id}/transcript")
@limiter.limit("30/minute")
def get_transcript(
    request: Request,
    transcription_id: str,
    services: Services = Depends(get_services),
) -> PlainTextResponse:
    """Download the transcript text as an attachment."""
    validate_transcription_id(transcription_id)
    record = services.repository.find_by_id(transcription_id)
    if (
        not record
        or record["status"] != TranscriptionStatus.COMPLETED.value
        or not record.get("transcript_text")
    ):
        raise HTTPException(
            status_code=404, detail="Transcript not ready or transcription not found"
        )

    logger.info("Transcript retrieved for %s", transcription_id)
    return PlainTextResponse(
        record["transcript_text"],
        headers={
            "Content-Disposition": (
                f'attachment; filename="transcript-{transcription_id}.txt"'
            )
        },
    )
