"""
Queue Consumer Tests
"""
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest

from conftest import StaleRepository
from src.queue import consumer as consumer_module
from src.queue.consumer import TranscriptionQueueConsumer, report_failure
from src.transcription.errors import (
    InvalidMessageError,
    ObjectNotFoundError,
    TranscriptionFailedError,
    TranscriptionNotFoundError,
)
from src.transcription.orchestrator import TranscriptionOrchestrator


def message(transcription_id, event_type="transcription.requested"):
    return {"eventType": event_type, "transcriptionId": transcription_id}


def telegram_upload(uploaded, chat_id=777):
    return uploaded(source="telegram", metadata={"telegramChatId": chat_id})


class TestParseMessage:
    """Test queue message validation"""

    def test_unknown_event_type(self, consumer):
        with pytest.raises(InvalidMessageError):
            consumer.process_event(message("abc", event_type="transcription.deleted"))

    def test_malformed_payload(self, consumer):
        with pytest.raises(InvalidMessageError):
            consumer.process_event({"transcriptionId": "abc"})

    def test_extra_fields_rejected(self, consumer):
        payload = {**message("abc"), "audio": "inline-bytes"}
        with pytest.raises(InvalidMessageError):
            consumer.process_event(payload)

    def test_unknown_record(self, consumer):
        with pytest.raises(TranscriptionNotFoundError):
            consumer.process_event(message("does-not-exist"))


class TestProcessEvent:
    """Test processing and notification"""

    def test_success_notifies_telegram_chat(self, consumer, notifier, uploaded):
        transcription_id = telegram_upload(uploaded)

        record = consumer.process_event(message(transcription_id))

        assert record["status"] == "completed"
        assert len(notifier.sent) == 1
        recipient, text = notifier.sent[0]
        assert recipient == "777"
        assert "hello world" in text

    def test_web_jobs_are_not_notified(self, consumer, notifier, uploaded):
        record = consumer.process_event(message(uploaded()))
        assert record["status"] == "completed"
        assert notifier.sent == []

    def test_missing_chat_id_is_not_an_error(self, consumer, notifier, uploaded):
        transcription_id = uploaded(source="telegram", metadata={})
        record = consumer.process_event(message(transcription_id))
        assert record["status"] == "completed"
        assert notifier.sent == []

    def test_notification_failure_does_not_fail_job(self, repository, orchestrator, uploaded):
        failing_notifier = Mock()
        failing_notifier.send.side_effect = RuntimeError("telegram is down")
        failing = TranscriptionQueueConsumer(repository, orchestrator, failing_notifier)
        transcription_id = telegram_upload(uploaded)

        record = failing.process_event(message(transcription_id))

        assert record["status"] == "completed"

    def test_failure_raises_and_notifies(self, consumer, notifier, transcriber, repository, uploaded):
        transcriber.text = ""
        transcription_id = telegram_upload(uploaded)

        with pytest.raises(Exception):
            consumer.process_event(message(transcription_id))

        assert repository.find_by_id(transcription_id)["status"] == "failed"
        assert len(notifier.sent) == 1
        assert "Transcription Failed" in notifier.sent[0][1]

    def test_duplicate_delivery_is_acknowledged_quietly(self, consumer, notifier, transcriber, uploaded):
        transcription_id = telegram_upload(uploaded)
        consumer.process_event(message(transcription_id))

        record = consumer.process_event(message(transcription_id))

        assert record["status"] == "completed"
        assert transcriber.calls == 1
        assert len(notifier.sent) == 1

    def test_failed_outcome_without_exception(self, repository, notifier, uploaded):
        """An orchestrator that swallows failure still yields an error"""
        transcription_id = uploaded()

        def fail_quietly(tid):
            return repository.mark_failed(tid, "TRANSCRIPTION_ERROR", "gave up")

        orchestrator = Mock()
        orchestrator.process_transcription.side_effect = fail_quietly
        consumer = TranscriptionQueueConsumer(repository, orchestrator, notifier)

        with pytest.raises(TranscriptionFailedError) as excinfo:
            consumer.process_event(message(transcription_id))
        assert excinfo.value.code == "TRANSCRIPTION_ERROR"

    def test_stale_delivery_after_completion_succeeds(self, collection, consumer, storage, transcriber, notifier, uploaded):
        """A redelivery that read the job as pending while it completed is not a failure"""
        transcription_id = telegram_upload(uploaded)
        snapshot = consumer.repository.find_by_id(transcription_id)
        consumer.process_event(message(transcription_id))

        stale = StaleRepository(collection, snapshot, stale_reads=2)
        late = TranscriptionQueueConsumer(
            stale, TranscriptionOrchestrator(stale, storage, transcriber, strict_claim=False), notifier
        )
        record = late.process_event(message(transcription_id))

        assert record["status"] == "completed"
        assert transcriber.calls == 1
        assert all("Transcription Failed" not in text for _, text in notifier.sent)

    def test_local_failure_on_completed_job_is_success(self, repository, notifier, uploaded):
        """The job was completed elsewhere while this attempt lost its audio"""
        transcription_id = telegram_upload(uploaded)

        def lose_race(tid):
            repository.mark_started(tid)
            repository.mark_completed(tid, "done", "done elsewhere")
            raise ObjectNotFoundError("audio/2024/05/01/memo.m4a")

        orchestrator = Mock()
        orchestrator.process_transcription.side_effect = lose_race
        racing = TranscriptionQueueConsumer(repository, orchestrator, notifier)

        record = racing.process_event(message(transcription_id))

        assert record["status"] == "completed"
        assert [text for _, text in notifier.sent if "Transcription Failed" in text] == []
        assert "done elsewhere" in notifier.sent[0][1]

    def test_claimed_elsewhere_is_acknowledged(self, repository, notifier, uploaded):
        orchestrator = Mock()
        orchestrator.process_transcription.return_value = None
        consumer = TranscriptionQueueConsumer(repository, orchestrator, notifier)

        assert consumer.process_event(message(uploaded())) is None
        assert notifier.sent == []


class TestProcessBatch:
    """Test sequential batch handling"""

    def test_fatal_messages_are_skipped(self, consumer, uploaded):
        good = uploaded()
        payloads = [
            message("does-not-exist"),
            message(good, event_type="other.event"),
            message(good),
        ]
        assert consumer.process_batch(payloads) == 1

    def test_retryable_failure_stops_batch(self, consumer, repository, transcriber, uploaded):
        first = uploaded(filename="one.m4a")
        second = uploaded(filename="two.m4a")
        transcriber.error = RuntimeError("riva unavailable")

        with pytest.raises(RuntimeError):
            consumer.process_batch([message(first), message(second)])

        assert repository.find_by_id(first)["status"] == "failed"
        assert repository.find_by_id(second)["status"] == "pending"


class TestRqEntrypoints:
    """Test the functions RQ calls"""

    def test_handle_message_returns_status(self, services, uploaded):
        transcription_id = uploaded()
        with patch("src.services.get_services", return_value=services):
            assert consumer_module.handle_message(message(transcription_id)) == "completed"

    def test_handle_message_drops_fatal(self, services):
        with patch("src.services.get_services", return_value=services):
            assert consumer_module.handle_message(message("does-not-exist")) is None

    def test_handle_message_propagates_retryable(self, services, transcriber, uploaded):
        transcriber.error = RuntimeError("grpc deadline exceeded")
        with patch("src.services.get_services", return_value=services):
            with pytest.raises(RuntimeError):
                consumer_module.handle_message(message(uploaded()))

    def test_report_failure(self, caplog):
        job = SimpleNamespace(id="job-1", retries_left=0, args=({"transcriptionId": "x"},))
        with caplog.at_level("CRITICAL"):
            report_failure(job, None, RuntimeError, RuntimeError("boom"), None)
        assert "exhausting retries" in caplog.text
