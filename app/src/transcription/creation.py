"""
Creation API: validate a request, record it, enqueue a pointer.
"""

import logging
from typing import Any, Dict, Optional

from configs.config import get_config
from src.storage.object_storage import has_audio_extension, is_audio_content_type
from src.transcription.errors import (
    EnqueueError,
    FileTooLargeError,
    UnsupportedContentTypeError,
    error_message,
)
from src.transcription.models import TranscriptionSource

logger = logging.getLogger(__name__)
cfg = get_config()


def validate_audio_request(
    filename: str,
    content_type: Optional[str] = None,
    size: Optional[int] = None,
    max_size: Optional[int] = None,
) -> None:
    """
    Reject requests that can never be transcribed.

    The content type and the file extension are alternative proofs of
    audio: a request fails only when neither is acceptable.
    """
    if not filename:
        raise UnsupportedContentTypeError("Filename is required")
    if not is_audio_content_type(content_type) and not has_audio_extension(filename):
        raise UnsupportedContentTypeError(
            f"Unsupported audio file: {filename!r} ({content_type or 'no content type'})"
        )
    limit = max_size or cfg.MAX_UPLOAD_SIZE
    if size is not None and size > limit:
        raise FileTooLargeError(size, limit)


class TranscriptionCreator:
    def __init__(self, repository, publisher, storage=None, max_size: Optional[int] = None) -> None:
        self.repository = repository
        self.publisher = publisher
        self.storage = storage
        self.max_size = max_size or cfg.MAX_UPLOAD_SIZE

    def create(
        self,
        audio_object_key: str,
        filename: str,
        source: str = TranscriptionSource.WEB,
        user_metadata: Optional[Dict[str, Any]] = None,
        content_type: Optional[str] = None,
        file_size: Optional[int] = None,
    ) -> str:
        """
        Record a new transcription and enqueue it; return its id.

        When storage is available the stored object's size is checked as
        well as the declared one.  If the enqueue fails the new record is
        marked failed immediately and ``EnqueueError`` is raised.
        """
        validate_audio_request(filename, content_type, file_size, self.max_size)
        if self.storage is not None:
            stored_size = self.storage.size(audio_object_key)
            if stored_size is not None and stored_size > self.max_size:
                raise FileTooLargeError(stored_size, self.max_size)

        transcription_id = self.repository.create(
            audio_key=audio_object_key,
            filename=filename,
            source=source,
            user_metadata=user_metadata,
        )

        try:
            self.publisher.enqueue(transcription_id)
        except Exception as exc:
            logger.error(
                "Failed to enqueue transcription %s: %s", transcription_id, exc,
                exc_info=True,
            )
            try:
                self.repository.mark_failed(
                    transcription_id,
                    EnqueueError.code,
                    f"Failed to enqueue job for processing: {error_message(exc)}",
                )
            except Exception as store_exc:
                # Record stays pending; the admin requeue endpoint can recover it
                logger.error(
                    "Could not mark transcription %s failed after enqueue error: %s",
                    transcription_id, store_exc, exc_info=True,
                )
            if isinstance(exc, EnqueueError):
                raise
            raise EnqueueError(
                f"Failed to enqueue transcription {transcription_id}"
            ) from exc

        logger.info(
            "Transcription %s created and queued (%s)", transcription_id, filename
        )
        return transcription_id
