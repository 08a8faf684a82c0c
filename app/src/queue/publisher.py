"""
Queue producer.

Transcription work is delivered through an RQ queue on Redis.  Only a
pointer message is enqueued; the retry/back-off policy is attached to
each RQ job here, outside the orchestrator.
"""

import logging
from typing import Optional, Sequence

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue, Retry

from configs.config import get_config
from src.queue.consumer import report_failure
from src.transcription.errors import EnqueueError
from src.transcription.models import TranscriptionRequestedMessage

logger = logging.getLogger(__name__)
cfg = get_config()

HANDLER_PATH = "src.queue.consumer.handle_message"


def get_redis() -> Redis:
    return Redis.from_url(cfg.REDIS_URL)


def get_queue(connection: Optional[Redis] = None) -> Queue:
    return Queue(cfg.QUEUE_NAME, connection=connection or get_redis())


class TranscriptionQueuePublisher:
    """Enqueue ``transcription.requested`` events."""

    def __init__(
        self,
        queue: Queue,
        retry_max: Optional[int] = None,
        retry_intervals: Optional[Sequence[int]] = None,
    ) -> None:
        self._queue = queue
        self._retry_max = cfg.QUEUE_RETRY_MAX if retry_max is None else retry_max
        self._retry_intervals = list(
            cfg.QUEUE_RETRY_INTERVALS if retry_intervals is None else retry_intervals
        )

    def enqueue(self, transcription_id: str) -> str:
        """Enqueue a pointer to ``transcription_id``; return the queue job id."""
        message = TranscriptionRequestedMessage(
            event_type=cfg.QUEUE_EVENT_TYPE, transcription_id=transcription_id
        )
        try:
            job = self._queue.enqueue(
                HANDLER_PATH,
                message.to_payload(),
                retry=Retry(max=self._retry_max, interval=self._retry_intervals),
                on_failure=report_failure,
                job_timeout=cfg.QUEUE_JOB_TIMEOUT,
                description=f"transcription {transcription_id}",
            )
        except RedisError as exc:
            logger.error(
                "Failed to enqueue transcription %s: %s", transcription_id, exc,
                exc_info=True,
            )
            raise EnqueueError(
                f"Failed to enqueue transcription {transcription_id}"
            ) from exc

        logger.info(
            "Transcription %s enqueued on %s as job %s",
            transcription_id, self._queue.name, job.id,
        )
        return job.id
