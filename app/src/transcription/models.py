"""
Transcription job types: lifecycle enums, queue message schema and the
request/response bodies used by the HTTP routes.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class TranscriptionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TranscriptionSource(str, Enum):
    WEB = "web"
    TELEGRAM = "telegram"


TERMINAL_STATUSES = frozenset({
    TranscriptionStatus.COMPLETED.value,
    TranscriptionStatus.FAILED.value,
})

# Statuses a record may be in when moving to the key status.
ALLOWED_TRANSITIONS = {
    TranscriptionStatus.PROCESSING.value: (
        TranscriptionStatus.PENDING.value,
        TranscriptionStatus.PROCESSING.value,
    ),
    TranscriptionStatus.COMPLETED.value: (
        TranscriptionStatus.PROCESSING.value,
    ),
    TranscriptionStatus.FAILED.value: (
        TranscriptionStatus.PENDING.value,
        TranscriptionStatus.PROCESSING.value,
    ),
}


def is_terminal(status: Optional[str]) -> bool:
    return status in TERMINAL_STATUSES


def make_preview(text: str, length: int = 150) -> str:
    """Truncate ``text`` to ``length`` characters, marking the cut with '...'."""
    if len(text) > length:
        return text[:length] + "..."
    return text


# ── Queue message ────────────────────────────────────────────────────────


class TranscriptionRequestedMessage(BaseModel):
    """Pointer message placed on the queue; never carries job data."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    event_type: str = Field(..., alias="eventType", min_length=1)
    transcription_id: str = Field(..., alias="transcriptionId", min_length=1)

    def to_payload(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True)


# ── HTTP bodies ──────────────────────────────────────────────────────────


class UploadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(..., alias="fileName", min_length=1, max_length=255)
    content_type: str = Field(..., alias="contentType", min_length=1, max_length=100)
    file_size: Optional[int] = Field(default=None, alias="fileSize", ge=0)


class CreateTranscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    audio_object_key: str = Field(
        ..., alias="audioObjectKey", min_length=1, max_length=512
    )
    filename: str = Field(..., min_length=1, max_length=255)
    source: TranscriptionSource = TranscriptionSource.WEB
    user_metadata: Dict[str, Any] = Field(default_factory=dict, alias="userMetadata")
    content_type: Optional[str] = Field(default=None, alias="contentType")
    file_size: Optional[int] = Field(default=None, alias="fileSize", ge=0)
