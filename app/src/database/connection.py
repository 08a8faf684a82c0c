"""
MongoDB access for the API and worker processes.

One ``MongoClient`` per process, created lazily by ``DatabaseManager`` (the
RQ worker forks per job, so the client must not be created at import time).
Indexes for the transcriptions collection are ensured on first connect.
"""

import logging
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from configs.config import get_config

logger = logging.getLogger(__name__)

cfg = get_config()


def ensure_transcription_indexes(collection: Collection) -> None:
    """Indexes backing id lookups and the monitoring queries."""
    collection.create_index("id", unique=True, name="uniq_id")
    collection.create_index(
        [("status", ASCENDING), ("created_at", ASCENDING)], name="status_created"
    )
    collection.create_index([("created_at", DESCENDING)], name="created_desc")


class DatabaseManager:
    """Lazily connected, process-wide owner of the MongoClient."""

    _instance: Optional["DatabaseManager"] = None

    def __new__(cls) -> "DatabaseManager":
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._client = None
            instance._db = None
            cls._instance = instance
        return cls._instance

    def _connect(self) -> None:
        client = MongoClient(
            cfg.MONGODB_URL,
            serverSelectionTimeoutMS=5000,
            tz_aware=True,
            appname="audio-transcriber",
        )
        try:
            client.admin.command("ping")
        except PyMongoError as exc:
            client.close()
            logger.error("MongoDB at %s unreachable: %s", cfg.MONGODB_URL, exc)
            raise

        self._client = client
        self._db = client[cfg.DATABASE_NAME]
        ensure_transcription_indexes(self._db[cfg.TRANSCRIPTIONS_COLLECTION])
        logger.info(
            "MongoDB ready (database=%s, collection=%s)",
            cfg.DATABASE_NAME, cfg.TRANSCRIPTIONS_COLLECTION,
        )

    @property
    def db(self) -> Database:
        if self._db is None:
            self._connect()
        return self._db

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None
            logger.info("MongoDB connection closed")


def get_db() -> Database:
    return DatabaseManager().db


def get_collection(name: str) -> Collection:
    return get_db()[name]


def close_db() -> None:
    DatabaseManager().close()
