"""
Queue worker process.

Runs an RQ worker that executes ``src.queue.consumer.handle_message`` for
every ``transcription.requested`` event.  Several workers may run side by
side; they do not coordinate beyond the durable job status.

    python worker.py            # run until stopped
    python worker.py --burst    # drain the queue and exit
"""

import argparse
import logging

from rq import Worker

from configs.config import get_config
from logging_config import setup_logging
from src.queue.publisher import get_queue, get_redis
from src.services import get_services

cfg = get_config()
logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the transcription queue worker")
    parser.add_argument("--burst", action="store_true", help="Exit once the queue is empty")
    parser.add_argument("--name", default=None, help="Worker name (default: generated)")
    args = parser.parse_args()

    setup_logging("worker")

    # Load the model and open connections before the first job arrives
    get_services()

    connection = get_redis()
    queue = get_queue(connection)
    worker = Worker([queue], connection=connection, name=args.name)
    logger.info(
        "Worker listening on queue '%s' (burst=%s)", cfg.QUEUE_NAME, args.burst
    )
    worker.work(burst=args.burst, logging_level="INFO")


if __name__ == "__main__":
    main()
