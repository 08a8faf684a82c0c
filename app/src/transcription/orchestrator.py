"""
Transcription orchestrator.

Drives one transcription from ``pending`` to a terminal state:

    load → guard → mark started (5%) → download audio → 20%
         → transcribe → 90% → store transcript → mark completed (100%)
         → delete audio (best-effort)

``process_transcription`` is idempotent: a terminal record is returned
untouched, and a record left in ``processing`` by a crashed attempt is
simply processed again.  Every step re-reads its input from durable
storage, so a repeat run converges on the same result.  This gives
at-least-once, not exactly-once, execution.

The orchestrator knows nothing about queues, retries or notification;
failures are persisted on the record and then re-raised for the caller.
"""

import logging
from typing import Any, Dict, Optional

from configs.config import get_config
from src.storage.object_storage import transcript_object_key
from src.transcription.errors import (
    InvalidTranscriptionStateError,
    NoSpeechDetectedError,
    TranscriptionNotFoundError,
    classify_error,
    error_message,
)
from src.transcription.models import TranscriptionStatus, is_terminal, make_preview

logger = logging.getLogger(__name__)
cfg = get_config()

PROGRESS_STARTED = 5
PROGRESS_DOWNLOADED = 20
PROGRESS_TRANSCRIBED = 90


class TranscriptionOrchestrator:
    """Business workflow for a single transcription job."""

    def __init__(
        self,
        repository,
        storage,
        transcriber,
        strict_claim: Optional[bool] = None,
        preview_length: Optional[int] = None,
    ) -> None:
        self.repository = repository
        self.storage = storage
        self.transcriber = transcriber
        self.strict_claim = cfg.STRICT_CLAIM if strict_claim is None else strict_claim
        self.preview_length = preview_length or cfg.PREVIEW_LENGTH

    def process_transcription(self, transcription_id: str) -> Optional[Dict[str, Any]]:
        """
        Process ``transcription_id`` to completion.

        Returns the final record, the stored record unchanged when the
        job was already terminal, or None when another consumer holds the
        claim (strict-claim mode only).  Raises ``TranscriptionNotFoundError``
        and ``InvalidTranscriptionStateError`` without touching the record;
        any other failure is persisted via ``mark_failed`` and re-raised.
        """
        record = self.repository.find_by_id(transcription_id)
        if record is None:
            logger.error("Transcription %s not found", transcription_id)
            raise TranscriptionNotFoundError(transcription_id)

        status = record.get("status")
        if is_terminal(status):
            logger.info(
                "Transcription %s already %s; skipping duplicate delivery",
                transcription_id, status,
            )
            return record

        if status not in (
            TranscriptionStatus.PENDING.value,
            TranscriptionStatus.PROCESSING.value,
        ):
            raise InvalidTranscriptionStateError(
                f"Transcription {transcription_id} is in invalid state: {status}"
            )

        if self.strict_claim:
            claimed = self.repository.claim(transcription_id, PROGRESS_STARTED)
            if claimed is None:
                logger.info(
                    "Transcription %s already claimed by another consumer",
                    transcription_id,
                )
                return None
        elif status == TranscriptionStatus.PROCESSING.value:
            logger.warning(
                "Transcription %s found in processing; resuming a previous attempt",
                transcription_id,
            )

        audio_key = record["audio_key"]
        try:
            if not self.strict_claim:
                started = self.repository.mark_started(transcription_id, PROGRESS_STARTED)
                if is_terminal(started.get("status")):
                    logger.info(
                        "Transcription %s finished by another consumer (%s); nothing to do",
                        transcription_id, started.get("status"),
                    )
                    return started

            logger.info(
                "Downloading audio for %s from %s", transcription_id, audio_key
            )
            audio = self.storage.get(audio_key)
            self.repository.update_progress(transcription_id, PROGRESS_DOWNLOADED)

            logger.info(
                "Transcribing %s (%d bytes)", transcription_id, len(audio)
            )
            text = self.transcriber.transcribe(audio, filename=record.get("filename"))
            if not text or not text.strip():
                raise NoSpeechDetectedError()
            self.repository.update_progress(transcription_id, PROGRESS_TRANSCRIBED)

            transcript_key = transcript_object_key(transcription_id)
            self.storage.put(
                transcript_key, text, "text/plain; charset=utf-8"
            )
            final = self.repository.mark_completed(
                transcription_id,
                make_preview(text, self.preview_length),
                text,
                transcript_key,
            )
        except Exception as exc:
            self._record_failure(transcription_id, exc)
            self._delete_audio(transcription_id, audio_key)
            raise

        self._delete_audio(transcription_id, audio_key)
        logger.info(
            "Transcription %s completed (%d characters)",
            transcription_id, len(text),
        )
        return final

    def _record_failure(self, transcription_id: str, exc: Exception) -> None:
        classification = classify_error(exc)
        message = error_message(exc)
        logger.error(
            "Transcription %s failed [%s/%s]: %s",
            transcription_id, classification.kind, classification.code, message,
            exc_info=True,
        )
        try:
            self.repository.mark_failed(transcription_id, classification.code, message)
        except Exception as store_exc:
            logger.error(
                "Could not persist failure for %s: %s",
                transcription_id, store_exc, exc_info=True,
            )

    def _delete_audio(self, transcription_id: str, audio_key: str) -> None:
        try:
            self.storage.delete(audio_key)
            logger.info(
                "Cleaned up audio %s for transcription %s", audio_key, transcription_id
            )
        except Exception as exc:
            logger.warning(
                "Failed to clean up audio %s for transcription %s: %s",
                audio_key, transcription_id, exc,
            )
