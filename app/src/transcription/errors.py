"""
Error taxonomy for the transcription pipeline.

* NotFoundError    – a record or blob is missing.
* DomainError      – terminal; the input can never succeed (no speech,
                     file too large, unsupported type).
* InfraError       – transient; a redelivery may succeed.
* Fatal errors     – invalid state or malformed queue message; never retried.

``classify_error`` maps any exception onto an ``ErrorClassification`` so
that the orchestrator can persist a stable error code.
"""

from dataclasses import dataclass

import grpc

DOMAIN = "domain"
INFRA = "infra"


class TranscriptionPipelineError(Exception):
    """Base class for every error raised by the pipeline."""

    code = "TRANSCRIPTION_ERROR"

    def __init__(self, message: str, code: str = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# ── Not found ────────────────────────────────────────────────────────────


class NotFoundError(TranscriptionPipelineError):
    code = "NOT_FOUND"


class TranscriptionNotFoundError(NotFoundError):
    code = "TRANSCRIPTION_NOT_FOUND"

    def __init__(self, transcription_id: str) -> None:
        super().__init__(f"Transcription not found: {transcription_id}")
        self.transcription_id = transcription_id


class ObjectNotFoundError(NotFoundError):
    code = "AUDIO_NOT_FOUND"

    def __init__(self, object_key: str) -> None:
        super().__init__(f"Object not found: {object_key}")
        self.object_key = object_key


# ── Domain (terminal) ────────────────────────────────────────────────────


class DomainError(TranscriptionPipelineError):
    code = "DOMAIN_ERROR"


class NoSpeechDetectedError(DomainError):
    code = "NO_SPEECH_DETECTED"

    def __init__(self, message: str = "No speech detected in audio") -> None:
        super().__init__(message)


class FileTooLargeError(DomainError):
    code = "FILE_TOO_LARGE"

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"File size {size} exceeds maximum of {limit} bytes"
        )
        self.size = size
        self.limit = limit


class UnsupportedContentTypeError(DomainError):
    code = "UNSUPPORTED_CONTENT_TYPE"


# ── Infra (retryable) ────────────────────────────────────────────────────


class InfraError(TranscriptionPipelineError):
    code = "INFRA_ERROR"


class TranscriptionProviderError(InfraError):
    code = "TRANSCRIPTION_API_ERROR"


class StorageUnavailableError(InfraError):
    code = "STORAGE_ERROR"


class EnqueueError(InfraError):
    code = "QUEUE_ERROR"


# ── Fatal ────────────────────────────────────────────────────────────────


class InvalidTranscriptionStateError(TranscriptionPipelineError):
    code = "INVALID_STATE"


class InvalidMessageError(TranscriptionPipelineError):
    code = "INVALID_MESSAGE"


class TranscriptionFailedError(TranscriptionPipelineError):
    """Raised by the queue consumer so the transport can redeliver."""

    code = "TRANSCRIPTION_FAILED"


FATAL_ERRORS = (
    InvalidMessageError,
    TranscriptionNotFoundError,
    InvalidTranscriptionStateError,
)


# ── Classification ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ErrorClassification:
    code: str
    kind: str

    @property
    def retryable(self) -> bool:
        return self.kind == INFRA


_PROVIDER_MARKERS = ("openai", "api", "riva", "whisper", "grpc")
_SIZE_MARKERS = ("too large", "size", "413")


def classify_error(exc: BaseException) -> ErrorClassification:
    """Map an exception raised during processing onto a code and kind."""
    if isinstance(exc, DomainError):
        return ErrorClassification(exc.code, DOMAIN)
    if isinstance(exc, (InfraError, ObjectNotFoundError)):
        return ErrorClassification(exc.code, INFRA)
    if isinstance(exc, grpc.RpcError):
        return ErrorClassification(TranscriptionProviderError.code, INFRA)

    message = str(exc).lower()
    if any(marker in message for marker in _PROVIDER_MARKERS):
        return ErrorClassification(TranscriptionProviderError.code, INFRA)
    if "no speech" in message:
        return ErrorClassification(NoSpeechDetectedError.code, DOMAIN)
    if any(marker in message for marker in _SIZE_MARKERS):
        return ErrorClassification(FileTooLargeError.code, DOMAIN)
    return ErrorClassification(TranscriptionPipelineError.code, INFRA)


def error_message(exc: BaseException) -> str:
    return getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
