"""
Queue consumer for transcription events.

Bridges the at-least-once RQ transport to the orchestrator:

1. validate the pointer message,
2. load the record (canonical read) for transport metadata,
3. run the orchestrator,
4. re-load and check the outcome,
5. notify the originating chat when the transport needs it.

Notification is best-effort and never changes the message outcome.
A message whose record is already terminal is a duplicate delivery and
is acknowledged without running or notifying anything.  A local failure
on a record that another delivery has meanwhile completed is reported as
that completion.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError

from configs.config import get_config
from src.notifications.telegram import completion_message, failure_message
from src.transcription.errors import (
    FATAL_ERRORS,
    InvalidMessageError,
    TranscriptionFailedError,
    TranscriptionNotFoundError,
    error_message,
)
from src.transcription.models import (
    TranscriptionRequestedMessage,
    TranscriptionSource,
    TranscriptionStatus,
    is_terminal,
)

logger = logging.getLogger(__name__)
cfg = get_config()


class TranscriptionQueueConsumer:
    def __init__(self, repository, orchestrator, notifier=None, event_type: Optional[str] = None) -> None:
        self.repository = repository
        self.orchestrator = orchestrator
        self.notifier = notifier
        self.event_type = event_type or cfg.QUEUE_EVENT_TYPE

    def parse_message(self, payload: Any) -> TranscriptionRequestedMessage:
        if isinstance(payload, TranscriptionRequestedMessage):
            message = payload
        else:
            try:
                message = TranscriptionRequestedMessage.model_validate(payload)
            except ValidationError as exc:
                raise InvalidMessageError(f"Malformed queue message: {exc}") from exc

        if message.event_type != self.event_type:
            raise InvalidMessageError(
                f"Unsupported event type: {message.event_type}"
            )
        return message

    def process_event(self, payload: Any) -> Optional[Dict[str, Any]]:
        """
        Handle one ``transcription.requested`` message.

        Returns the final record (None when another consumer owns the job).
        Raises ``TranscriptionFailedError`` when the job ended in failure so
        the transport can apply its redelivery policy.
        """
        message = self.parse_message(payload)
        transcription_id = message.transcription_id

        record = self.repository.find_by_id(transcription_id)
        if record is None:
            raise TranscriptionNotFoundError(transcription_id)

        metadata = record.get("user_metadata") or {}
        logger.info(
            "Processing transcription event %s (source=%s, filename=%s, request=%s)",
            transcription_id, record.get("source"), record.get("filename"),
            metadata.get("requestId"),
        )

        if is_terminal(record.get("status")):
            logger.info(
                "Transcription %s already %s; acknowledging duplicate delivery",
                transcription_id, record.get("status"),
            )
            return record

        try:
            result = self.orchestrator.process_transcription(transcription_id)
            if result is None:
                logger.info(
                    "Transcription %s is being processed elsewhere", transcription_id
                )
                return None

            processed = self.repository.find_by_id(transcription_id)
            if processed is None:
                raise TranscriptionNotFoundError(transcription_id)

            status = processed.get("status")
            if status == TranscriptionStatus.FAILED.value:
                detail = processed.get("error_detail") or {}
                raise TranscriptionFailedError(
                    "Transcription failed: "
                    + (detail.get("message") or "failed during processing"),
                    code=detail.get("code"),
                )
            if status != TranscriptionStatus.COMPLETED.value:
                raise TranscriptionFailedError(
                    f"Transcription in unexpected status: {status}"
                )
        except Exception as exc:
            current = self._reload(transcription_id)
            if current is None or current.get("status") != TranscriptionStatus.COMPLETED.value:
                logger.error(
                    "Transcription %s processing failed: %s",
                    transcription_id, exc, exc_info=True,
                )
                self._notify_failure(record, exc)
                raise
            # Another delivery of the same job finished it first
            logger.warning(
                "Transcription %s completed by another consumer; ignoring local failure: %s",
                transcription_id, exc,
            )
            processed = current

        logger.info(
            "Transcription %s completed (%d characters, request=%s)",
            transcription_id, len(processed.get("transcript_text") or ""),
            metadata.get("requestId"),
        )
        self._notify_completion(processed)
        return processed

    def process_batch(self, payloads: Iterable[Any]) -> int:
        """
        Process messages one after another.

        Fatal messages are logged and skipped; any other failure stops the
        batch and propagates.  Earlier successes stay committed.
        """
        processed = 0
        for payload in payloads:
            try:
                self.process_event(payload)
            except FATAL_ERRORS as exc:
                logger.critical("Dropping queue message %r: %s", payload, exc)
                continue
            processed += 1
        return processed

    def _reload(self, transcription_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.repository.find_by_id(transcription_id)
        except Exception as exc:
            logger.error(
                "Could not re-load transcription %s after failure: %s",
                transcription_id, exc,
            )
            return None

    # ── Notification ─────────────────────────────────────────────────────

    def _recipient(self, record: Dict[str, Any]) -> Optional[str]:
        if self.notifier is None:
            return None
        if record.get("source") != TranscriptionSource.TELEGRAM.value:
            return None
        chat_id = (record.get("user_metadata") or {}).get("telegramChatId")
        return str(chat_id) if chat_id else None

    def _notify_completion(self, record: Dict[str, Any]) -> None:
        recipient = self._recipient(record)
        if recipient is None:
            return
        try:
            self.notifier.send(
                recipient,
                completion_message(record.get("filename", ""), record["transcript_text"]),
            )
            logger.info(
                "Transcript for %s sent to chat %s", record["id"], recipient
            )
        except Exception as exc:
            logger.error(
                "Failed to send transcript for %s to chat %s: %s",
                record["id"], recipient, exc,
            )

    def _notify_failure(self, record: Dict[str, Any], exc: Exception) -> None:
        recipient = self._recipient(record)
        if recipient is None:
            return
        try:
            self.notifier.send(
                recipient,
                failure_message(record.get("filename", ""), error_message(exc)),
            )
            logger.info(
                "Failure notice for %s sent to chat %s", record["id"], recipient
            )
        except Exception as notify_exc:
            logger.error(
                "Failed to send failure notice for %s to chat %s: %s (original error: %s)",
                record["id"], recipient, notify_exc, exc,
            )


# ── RQ entrypoints ───────────────────────────────────────────────────────


def handle_message(payload: Dict[str, Any]) -> Optional[str]:
    """
    RQ job function for one queue message.

    Fatal errors are dropped here so RQ does not retry them; everything
    else propagates to RQ's retry policy.  Returns the final status.
    """
    from src.services import get_services

    consumer = get_services().consumer
    try:
        record = consumer.process_event(payload)
    except FATAL_ERRORS as exc:
        logger.critical("Dropping queue message %r: %s", payload, exc)
        return None
    return record.get("status") if record else None


def report_failure(job, connection, exc_type, exc_value, traceback) -> None:
    """RQ failure callback: log each failed attempt and the final drop."""
    retries_left = getattr(job, "retries_left", None)
    if retries_left:
        logger.warning(
            "Queue job %s failed (%s: %s); %d retries left",
            job.id, exc_type.__name__, exc_value, retries_left,
        )
        return
    logger.critical(
        "Queue job %s dropped after exhausting retries (%s: %s); args=%r",
        job.id, exc_type.__name__, exc_value, job.args,
    )
