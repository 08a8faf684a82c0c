"""
Test Configuration and Fixtures
"""
import os

# Must be set before anything imports configs.config
os.environ["ENVIRONMENT"] = "testing"

from unittest.mock import Mock

import mongomock
import pytest

from src.database.connection import ensure_transcription_indexes
from src.database.transcription_repository import TranscriptionRepository
from src.queue.consumer import TranscriptionQueueConsumer
from src.queue.publisher import TranscriptionQueuePublisher
from src.transcription.errors import ObjectNotFoundError
from src.transcription.orchestrator import TranscriptionOrchestrator
from src.transcription.models import TranscriptionSource

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


class FakeStorage:
    """In-memory object store with the S3ObjectStorage interface."""

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.fail_delete = False

    def put(self, object_key, data, content_type):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.objects[object_key] = data

    def get(self, object_key):
        if object_key not in self.objects:
            raise ObjectNotFoundError(object_key)
        return self.objects[object_key]

    def exists(self, object_key):
        return object_key in self.objects

    def size(self, object_key):
        data = self.objects.get(object_key)
        return None if data is None else len(data)

    def delete(self, object_key):
        if self.fail_delete:
            raise RuntimeError("delete refused")
        self.deleted.append(object_key)
        self.objects.pop(object_key, None)


class FakeTranscriber:
    """Returns a fixed transcript (or raises) and counts calls."""

    def __init__(self, text="hello world", error=None):
        self.text = text
        self.error = error
        self.calls = 0

    def transcribe(self, audio, filename=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


class StaleRepository(TranscriptionRepository):
    """Serves a saved snapshot for the first ``stale_reads`` lookups.

    Reproduces a consumer that loaded a record just before another
    delivery of the same job finished it.
    """

    def __init__(self, collection, snapshot, stale_reads):
        super().__init__(collection)
        self.snapshot = dict(snapshot)
        self.stale_reads = stale_reads

    def find_by_id(self, transcription_id):
        if self.stale_reads > 0:
            self.stale_reads -= 1
            return dict(self.snapshot)
        return super().find_by_id(transcription_id)


class FakeNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, recipient, text):
        if self.fail:
            raise RuntimeError("telegram is down")
        self.sent.append((recipient, text))
        return {"ok": True}


@pytest.fixture(scope="function")
def collection():
    """Fresh mongomock collection with production indexes"""
    coll = mongomock.MongoClient().audio_transcriber.transcriptions
    ensure_transcription_indexes(coll)
    return coll


@pytest.fixture(scope="function")
def repository(collection):
    return TranscriptionRepository(collection)


@pytest.fixture(scope="function")
def storage():
    return FakeStorage()


@pytest.fixture(scope="function")
def transcriber():
    return FakeTranscriber()


@pytest.fixture(scope="function")
def notifier():
    return FakeNotifier()


@pytest.fixture(scope="function")
def publisher():
    pub = Mock(spec=TranscriptionQueuePublisher)
    pub.enqueue.return_value = "job-1"
    return pub


@pytest.fixture(scope="function")
def orchestrator(repository, storage, transcriber):
    return TranscriptionOrchestrator(repository, storage, transcriber, strict_claim=False)


@pytest.fixture(scope="function")
def consumer(repository, orchestrator, notifier):
    return TranscriptionQueueConsumer(repository, orchestrator, notifier)


@pytest.fixture(scope="function")
def uploaded(repository, storage):
    """Create a pending transcription whose audio is already stored"""

    def _create(filename="memo.m4a", source=TranscriptionSource.WEB, metadata=None, data=b"audio-bytes"):
        key = f"audio/2024/05/01/{filename}"
        storage.put(key, data, "audio/m4a")
        return repository.create(
            audio_key=key, filename=filename, source=source, user_metadata=metadata
        )

    return _create


@pytest.fixture(scope="function")
def services(repository, storage, publisher, transcriber, notifier):
    from src.services import build_services

    return build_services(
        repository=repository,
        storage=storage,
        publisher=publisher,
        transcriber=transcriber,
        notifier=notifier,
    )


@pytest.fixture(scope="function")
def client(services):
    """FastAPI test client wired to in-memory services"""
    from fastapi.testclient import TestClient

    from main import app
    from src.services import get_services

    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
