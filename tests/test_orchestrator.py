"""
Orchestrator Tests
"""
import pytest

from conftest import StaleRepository
from src.database.transcription_repository import TranscriptionRepository
from src.transcription.errors import (
    NoSpeechDetectedError,
    ObjectNotFoundError,
    TranscriptionNotFoundError,
    TranscriptionProviderError,
)
from src.transcription.orchestrator import TranscriptionOrchestrator


class TestHappyPath:
    """Test a job running to completion"""

    def test_completes_with_transcript(self, orchestrator, repository, uploaded):
        transcription_id = uploaded()
        assert repository.find_by_id(transcription_id)["status"] == "pending"

        record = orchestrator.process_transcription(transcription_id)

        assert record["status"] == "completed"
        assert record["progress"] == 100
        assert record["transcript_text"] == "hello world"
        assert record["preview"] == "hello world"
        assert record["error_detail"] is None

    def test_transcript_copy_stored(self, orchestrator, storage, uploaded):
        transcription_id = uploaded()
        record = orchestrator.process_transcription(transcription_id)

        assert record["transcript_key"].startswith("transcripts/")
        assert record["transcript_key"].endswith(f"{transcription_id}.txt")
        assert storage.objects[record["transcript_key"]] == b"hello world"

    def test_audio_deleted_after_success(self, orchestrator, repository, storage, uploaded):
        transcription_id = uploaded()
        audio_key = repository.find_by_id(transcription_id)["audio_key"]

        orchestrator.process_transcription(transcription_id)

        assert storage.deleted == [audio_key]
        assert audio_key not in storage.objects

    def test_long_transcript_preview(self, orchestrator, transcriber, uploaded):
        transcriber.text = "word " * 100
        record = orchestrator.process_transcription(uploaded())
        assert record["preview"].endswith("...")
        assert len(record["preview"]) == 153

    def test_delete_failure_is_tolerated(self, orchestrator, storage, uploaded):
        """Cleanup errors never change the outcome"""
        storage.fail_delete = True
        record = orchestrator.process_transcription(uploaded())
        assert record["status"] == "completed"

    def test_resumes_processing_record(self, orchestrator, repository, uploaded):
        """A record left in processing by a crash is processed again"""
        transcription_id = uploaded()
        repository.mark_started(transcription_id)
        record = orchestrator.process_transcription(transcription_id)
        assert record["status"] == "completed"


class TestFailures:
    """Test failures are persisted and re-raised"""

    def test_blank_transcript_is_no_speech(self, orchestrator, repository, transcriber, uploaded):
        transcriber.text = "   "
        transcription_id = uploaded()

        with pytest.raises(NoSpeechDetectedError):
            orchestrator.process_transcription(transcription_id)

        record = repository.find_by_id(transcription_id)
        assert record["status"] == "failed"
        assert record["error_detail"]["code"] == "NO_SPEECH_DETECTED"
        assert record["transcript_text"] is None

    def test_missing_audio_fails_as_infra(self, orchestrator, repository, storage, transcriber):
        transcription_id = repository.create("audio/2024/05/01/gone.m4a", "gone.m4a")

        with pytest.raises(ObjectNotFoundError):
            orchestrator.process_transcription(transcription_id)

        record = repository.find_by_id(transcription_id)
        assert record["status"] == "failed"
        assert record["error_detail"]["code"] == "AUDIO_NOT_FOUND"
        assert transcriber.calls == 0

    def test_provider_error(self, orchestrator, repository, storage, transcriber, uploaded):
        transcriber.error = TranscriptionProviderError("Whisper transcription failed: oom")
        transcription_id = uploaded()
        audio_key = repository.find_by_id(transcription_id)["audio_key"]

        with pytest.raises(TranscriptionProviderError):
            orchestrator.process_transcription(transcription_id)

        record = repository.find_by_id(transcription_id)
        assert record["error_detail"]["code"] == "TRANSCRIPTION_API_ERROR"
        assert storage.deleted == [audio_key]

    def test_unknown_id(self, orchestrator):
        with pytest.raises(TranscriptionNotFoundError):
            orchestrator.process_transcription("does-not-exist")


class TestIdempotency:
    """Test repeated deliveries"""

    def test_completed_job_not_transcribed_twice(self, orchestrator, transcriber, uploaded):
        transcription_id = uploaded()

        first = orchestrator.process_transcription(transcription_id)
        second = orchestrator.process_transcription(transcription_id)

        assert transcriber.calls == 1
        assert second == first

    def test_stale_pending_read_after_completion(self, collection, repository, storage, transcriber, uploaded):
        """A second delivery that loaded the job before it completed does nothing"""
        transcription_id = uploaded()
        snapshot = repository.find_by_id(transcription_id)
        first = TranscriptionOrchestrator(repository, storage, transcriber, strict_claim=False)
        first.process_transcription(transcription_id)

        stale = StaleRepository(collection, snapshot, stale_reads=1)
        second = TranscriptionOrchestrator(stale, storage, transcriber, strict_claim=False)
        record = second.process_transcription(transcription_id)

        assert record["status"] == "completed"
        assert record["transcript_text"] == "hello world"
        assert transcriber.calls == 1
        assert repository.find_by_id(transcription_id)["error_detail"] is None

    def test_failed_job_not_retried(self, orchestrator, repository, transcriber, uploaded):
        transcriber.text = ""
        transcription_id = uploaded()
        with pytest.raises(NoSpeechDetectedError):
            orchestrator.process_transcription(transcription_id)

        record = orchestrator.process_transcription(transcription_id)

        assert record["status"] == "failed"
        assert transcriber.calls == 1


class TestStrictClaim:
    """Test single-claim mode"""

    def test_claims_pending_job(self, repository, storage, transcriber, uploaded):
        orchestrator = TranscriptionOrchestrator(repository, storage, transcriber, strict_claim=True)
        record = orchestrator.process_transcription(uploaded())
        assert record["status"] == "completed"

    def test_skips_job_claimed_elsewhere(self, repository, storage, transcriber, uploaded):
        orchestrator = TranscriptionOrchestrator(repository, storage, transcriber, strict_claim=True)
        transcription_id = uploaded()
        repository.claim(transcription_id)

        assert orchestrator.process_transcription(transcription_id) is None
        assert transcriber.calls == 0
        assert repository.find_by_id(transcription_id)["status"] == "processing"


class ProgressRecordingRepository(TranscriptionRepository):
    """Records the stored progress after every progress-bearing write."""

    def __init__(self, collection):
        super().__init__(collection)
        self.progress = []

    def mark_started(self, transcription_id, progress=5):
        record = super().mark_started(transcription_id, progress)
        self.progress.append(record["progress"])
        return record

    def update_progress(self, transcription_id, progress):
        record = super().update_progress(transcription_id, progress)
        self.progress.append(record["progress"])
        return record

    def mark_completed(self, *args, **kwargs):
        record = super().mark_completed(*args, **kwargs)
        self.progress.append(record["progress"])
        return record


class TestProgress:
    """Test progress reporting"""

    def test_progress_steps_never_decrease(self, collection, storage, transcriber):
        recording = ProgressRecordingRepository(collection)
        storage.put("audio/2024/05/01/memo.m4a", b"audio-bytes", "audio/m4a")
        transcription_id = recording.create("audio/2024/05/01/memo.m4a", "memo.m4a")
        orchestrator = TranscriptionOrchestrator(recording, storage, transcriber, strict_claim=False)

        orchestrator.process_transcription(transcription_id)

        assert recording.progress == [5, 20, 90, 100]
        assert recording.progress == sorted(recording.progress)

    def test_resumed_job_keeps_higher_progress(self, collection, storage, transcriber):
        """Restarting a job that reached 20% does not report 5% again"""
        recording = ProgressRecordingRepository(collection)
        storage.put("audio/2024/05/01/memo.m4a", b"audio-bytes", "audio/m4a")
        transcription_id = recording.create("audio/2024/05/01/memo.m4a", "memo.m4a")
        TranscriptionRepository(collection).mark_started(transcription_id, 20)
        orchestrator = TranscriptionOrchestrator(recording, storage, transcriber, strict_claim=False)

        orchestrator.process_transcription(transcription_id)

        assert recording.progress == [20, 20, 90, 100]
