"""
Error Classification Tests
"""
import pytest

from src.transcription.errors import (
    DOMAIN,
    INFRA,
    FileTooLargeError,
    NoSpeechDetectedError,
    ObjectNotFoundError,
    StorageUnavailableError,
    classify_error,
    error_message,
)


class TestClassifyError:
    """Test mapping exceptions to codes and kinds"""

    @pytest.mark.parametrize(
        "exc, code, kind",
        [
            (NoSpeechDetectedError(), "NO_SPEECH_DETECTED", DOMAIN),
            (FileTooLargeError(30, 25), "FILE_TOO_LARGE", DOMAIN),
            (StorageUnavailableError("s3 down"), "STORAGE_ERROR", INFRA),
            (ObjectNotFoundError("audio/x.m4a"), "AUDIO_NOT_FOUND", INFRA),
            (RuntimeError("OpenAI request timed out"), "TRANSCRIPTION_API_ERROR", INFRA),
            (RuntimeError("No speech found"), "NO_SPEECH_DETECTED", DOMAIN),
            (RuntimeError("payload too large"), "FILE_TOO_LARGE", DOMAIN),
            (RuntimeError("something odd"), "TRANSCRIPTION_ERROR", INFRA),
        ],
    )
    def test_classification(self, exc, code, kind):
        result = classify_error(exc)
        assert result.code == code
        assert result.kind == kind

    def test_provider_markers_checked_first(self):
        """A provider message wins over the no-speech text"""
        result = classify_error(RuntimeError("whisper api: no speech"))
        assert result.code == "TRANSCRIPTION_API_ERROR"

    def test_retryable(self):
        assert classify_error(RuntimeError("boom")).retryable is True
        assert classify_error(NoSpeechDetectedError()).retryable is False


def test_error_message_falls_back_to_class_name():
    assert error_message(RuntimeError()) == "RuntimeError"
    assert error_message(NoSpeechDetectedError()) == "No speech detected in audio"
