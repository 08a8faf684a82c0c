"""
Service wiring.

Builds the repository, storage, transcriber, notifier, queue publisher,
orchestrator and consumer once per process.  Routes receive the bundle
through ``Depends(get_services)``; the RQ worker calls ``get_services()``
directly.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from configs.config import get_config
from src.database.transcription_repository import TranscriptionRepository
from src.notifications.telegram import TelegramNotifier
from src.queue.consumer import TranscriptionQueueConsumer
from src.queue.publisher import TranscriptionQueuePublisher, get_queue
from src.storage.object_storage import S3ObjectStorage
from src.transcription.creation import TranscriptionCreator
from src.transcription.orchestrator import TranscriptionOrchestrator
from src.transcription.transcribers import build_transcriber

logger = logging.getLogger(__name__)
cfg = get_config()


@dataclass
class Services:
    repository: TranscriptionRepository
    storage: S3ObjectStorage
    publisher: TranscriptionQueuePublisher
    creator: TranscriptionCreator
    orchestrator: TranscriptionOrchestrator
    consumer: TranscriptionQueueConsumer
    notifier: Optional[TelegramNotifier] = None


def build_services(
    repository=None,
    storage=None,
    publisher=None,
    transcriber=None,
    notifier=None,
) -> Services:
    """Assemble the services, creating any collaborator not supplied."""
    repository = repository or TranscriptionRepository()
    storage = storage or S3ObjectStorage()
    publisher = publisher or TranscriptionQueuePublisher(get_queue())
    if notifier is None and cfg.TELEGRAM_BOT_TOKEN:
        notifier = TelegramNotifier(cfg.TELEGRAM_BOT_TOKEN)

    orchestrator = TranscriptionOrchestrator(
        repository, storage, transcriber or build_transcriber()
    )
    return Services(
        repository=repository,
        storage=storage,
        publisher=publisher,
        creator=TranscriptionCreator(repository, publisher, storage),
        orchestrator=orchestrator,
        consumer=TranscriptionQueueConsumer(repository, orchestrator, notifier),
        notifier=notifier,
    )


@lru_cache()
def get_services() -> Services:
    logger.info("Initialising services (backend=%s)", cfg.TRANSCRIPTION_BACKEND)
    return build_services()
