"""
Record store for transcription jobs.

A thin repository over a MongoDB collection.  Every status change is a
single conditional ``find_one_and_update`` so that:

* status only moves forward (see ``ALLOWED_TRANSITIONS``) and a terminal
  record is never overwritten, even by a concurrent consumer;
* progress only grows, via ``$max``.

Records are returned as plain dicts without the Mongo ``_id``.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.collection import Collection

from configs.config import get_config
from src.database.connection import get_collection
from src.transcription.errors import TranscriptionNotFoundError
from src.transcription.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    TranscriptionSource,
    TranscriptionStatus,
)

logger = logging.getLogger(__name__)

cfg = get_config()

_NO_ID = {"_id": 0}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str)


class TranscriptionRepository:
    """Repository for transcription job documents."""

    def __init__(self, collection: Optional[Collection] = None) -> None:
        if collection is None:
            collection = get_collection(cfg.TRANSCRIPTIONS_COLLECTION)
        self._collection = collection

    # ── Create ───────────────────────────────────────────────────────────

    def create(
        self,
        audio_key: str,
        filename: str,
        source: str = TranscriptionSource.WEB,
        user_metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Insert a new pending transcription and return its id."""
        transcription_id = str(uuid.uuid4())
        now = _utcnow()
        document = {
            "id": transcription_id,
            "status": TranscriptionStatus.PENDING.value,
            "progress": 0,
            "source": _value(source),
            "audio_key": audio_key,
            "filename": filename,
            "transcript_text": None,
            "transcript_key": None,
            "preview": None,
            "error_detail": None,
            "user_metadata": dict(user_metadata or {}),
            "created_at": now,
            "started_at": None,
            "completed_at": None,
            "updated_at": now,
        }
        self._collection.insert_one(document)
        logger.info(
            "Transcription %s created (source=%s, audio_key=%s, filename=%s)",
            transcription_id, document["source"], audio_key, filename,
        )
        return transcription_id

    # ── Read ─────────────────────────────────────────────────────────────

    def find_by_id(self, transcription_id: str) -> Optional[Dict[str, Any]]:
        return self._collection.find_one({"id": transcription_id}, _NO_ID)

    def find_by_status(self, status: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Oldest-first list of transcriptions in ``status`` (monitoring)."""
        cursor = (
            self._collection.find({"status": _value(status)}, _NO_ID)
            .sort("created_at", ASCENDING)
            .limit(limit)
        )
        return list(cursor)

    def find_all(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Newest-first list of transcriptions (debugging)."""
        cursor = (
            self._collection.find({}, _NO_ID)
            .sort("created_at", DESCENDING)
            .limit(limit)
        )
        return list(cursor)

    # ── Update ───────────────────────────────────────────────────────────

    def update(self, transcription_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial update; raise if the id does not exist."""
        fields = {
            key: value for key, value in partial.items() if key not in ("id", "_id")
        }
        fields["updated_at"] = _utcnow()
        record = self._collection.find_one_and_update(
            {"id": transcription_id},
            {"$set": fields},
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        if record is None:
            logger.warning("Update of missing transcription %s", transcription_id)
            raise TranscriptionNotFoundError(transcription_id)
        logger.debug(
            "Transcription %s updated: %s", transcription_id, sorted(fields)
        )
        return record

    def _transition(
        self,
        transcription_id: str,
        target: str,
        fields: Dict[str, Any],
        progress_floor: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Move a record to ``target`` if its current status allows it.

        A record that is already past that point (typically terminal) is
        left untouched and returned as stored.
        """
        update: Dict[str, Any] = {
            "$set": {**fields, "status": target, "updated_at": _utcnow()}
        }
        if progress_floor is not None:
            update["$max"] = {"progress": progress_floor}

        record = self._collection.find_one_and_update(
            {
                "id": transcription_id,
                "status": {"$in": list(ALLOWED_TRANSITIONS[target])},
            },
            update,
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        if record is not None:
            logger.info(
                "Transcription %s -> %s (progress=%s)",
                transcription_id, target, record.get("progress"),
            )
            return record

        current = self.find_by_id(transcription_id)
        if current is None:
            raise TranscriptionNotFoundError(transcription_id)
        logger.warning(
            "Transcription %s is %s; ignoring transition to %s",
            transcription_id, current.get("status"), target,
        )
        return current

    def mark_started(self, transcription_id: str, progress: int = 5) -> Dict[str, Any]:
        return self._transition(
            transcription_id,
            TranscriptionStatus.PROCESSING.value,
            {"started_at": _utcnow()},
            progress_floor=progress,
        )

    def mark_completed(
        self,
        transcription_id: str,
        preview: Optional[str],
        transcript_text: str,
        transcript_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._transition(
            transcription_id,
            TranscriptionStatus.COMPLETED.value,
            {
                "progress": 100,
                "preview": preview,
                "transcript_text": transcript_text,
                "transcript_key": transcript_key,
                "error_detail": None,
                "completed_at": _utcnow(),
            },
        )

    def mark_failed(
        self, transcription_id: str, code: str, message: str
    ) -> Dict[str, Any]:
        return self._transition(
            transcription_id,
            TranscriptionStatus.FAILED.value,
            {
                "error_detail": {"code": code, "message": message},
                "transcript_text": None,
                "preview": None,
                "completed_at": _utcnow(),
            },
        )

    def update_progress(self, transcription_id: str, progress: int) -> Dict[str, Any]:
        """Raise progress to ``progress`` (clamped 0-100) while non-terminal."""
        progress = max(0, min(int(progress), 100))
        record = self._collection.find_one_and_update(
            {
                "id": transcription_id,
                "status": {"$nin": list(TERMINAL_STATUSES)},
            },
            {"$max": {"progress": progress}, "$set": {"updated_at": _utcnow()}},
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        if record is not None:
            logger.debug(
                "Transcription %s progress: %d%%",
                transcription_id, record["progress"],
            )
            return record

        current = self.find_by_id(transcription_id)
        if current is None:
            raise TranscriptionNotFoundError(transcription_id)
        logger.warning(
            "Transcription %s is %s; progress update to %d ignored",
            transcription_id, current.get("status"), progress,
        )
        return current

    def claim(self, transcription_id: str, progress: int = 5) -> Optional[Dict[str, Any]]:
        """
        Atomically move a pending record to processing.

        Returns None when the record is not pending, i.e. another consumer
        already claimed it (or it finished).
        """
        now = _utcnow()
        record = self._collection.find_one_and_update(
            {
                "id": transcription_id,
                "status": TranscriptionStatus.PENDING.value,
            },
            {
                "$set": {
                    "status": TranscriptionStatus.PROCESSING.value,
                    "started_at": now,
                    "updated_at": now,
                },
                "$max": {"progress": progress},
            },
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        if record is None:
            logger.info("Transcription %s not claimable", transcription_id)
        return record

    # ── Delete ───────────────────────────────────────────────────────────

    def delete(self, transcription_id: str) -> bool:
        result = self._collection.delete_one({"id": transcription_id})
        if result.deleted_count > 0:
            logger.info("Transcription %s deleted", transcription_id)
            return True
        logger.warning("Transcription %s delete failed: no match", transcription_id)
        return False
