"""
S3-compatible object storage for input audio and transcript text.

Works against AWS S3, Cloudflare R2 or MinIO through ``boto3``; the
endpoint is taken from configuration.  Presigned URL signing is delegated
entirely to botocore.
"""

import logging
import mimetypes
import os
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence, Union

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from configs.config import get_config
from src.transcription.errors import (
    ObjectNotFoundError,
    StorageUnavailableError,
    UnsupportedContentTypeError,
)

logger = logging.getLogger(__name__)

cfg = get_config()

_MISSING_CODES = frozenset({"NoSuchKey", "404", "NotFound"})

_EXTENSION_CONTENT_TYPES = {
    ".m4a": "audio/m4a",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
}


@dataclass(frozen=True)
class UploadHandle:
    handle: str
    object_key: str
    expires_at: datetime


# ── Key helpers ──────────────────────────────────────────────────────────


def sanitize_file_name(file_name: str) -> str:
    """Lower-case and reduce a file name to ``[a-z0-9._-]``."""
    sanitized = re.sub(r"[^a-z0-9.-]", "_", file_name.lower())
    sanitized = re.sub(r"_{2,}", "_", sanitized)
    return sanitized.strip("_")


def _date_prefix(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{now.year:04d}/{now.month:02d}/{now.day:02d}"


def audio_object_key(file_name: str, now: Optional[datetime] = None) -> str:
    """``audio/{yyyy}/{mm}/{dd}/{uuid}-{sanitized_file_name}``"""
    return (
        f"audio/{_date_prefix(now)}/{uuid.uuid4()}-"
        f"{sanitize_file_name(file_name)}"
    )


def transcript_object_key(job_id: str, now: Optional[datetime] = None) -> str:
    """``transcripts/{yyyy}/{mm}/{dd}/{job_id}.txt``"""
    return f"transcripts/{_date_prefix(now)}/{job_id}.txt"


def is_audio_content_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    base_type = content_type.split(";")[0].strip().lower()
    return base_type in cfg.ALLOWED_AUDIO_CONTENT_TYPES


def has_audio_extension(file_name: Optional[str]) -> bool:
    if not file_name:
        return False
    return os.path.splitext(file_name)[1].lower() in cfg.ALLOWED_EXTENSIONS


def guess_audio_content_type(file_name: str) -> str:
    """Infer an audio MIME type from a file name, defaulting to audio/m4a."""
    ext = os.path.splitext(file_name)[1].lower()
    if ext in _EXTENSION_CONTENT_TYPES:
        return _EXTENSION_CONTENT_TYPES[ext]
    guessed, _ = mimetypes.guess_type(file_name)
    if guessed and guessed.startswith("audio/"):
        return guessed
    return "audio/m4a"


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


# ── Storage service ──────────────────────────────────────────────────────


class S3ObjectStorage:
    """Blob storage backed by a single S3 bucket."""

    def __init__(
        self,
        client=None,
        bucket: Optional[str] = None,
        retry_delays: Optional[Sequence[float]] = None,
    ) -> None:
        self._client = client or boto3.client(
            "s3",
            region_name=cfg.S3_REGION,
            endpoint_url=cfg.S3_ENDPOINT_URL,
            aws_access_key_id=cfg.S3_ACCESS_KEY_ID,
            aws_secret_access_key=cfg.S3_SECRET_ACCESS_KEY,
            config=BotoConfig(signature_version="s3v4"),
        )
        self._bucket = bucket or cfg.S3_BUCKET
        self._retry_delays = tuple(
            cfg.DOWNLOAD_RETRY_DELAYS if retry_delays is None else retry_delays
        )

    # ── Presigned handles ────────────────────────────────────────────────

    def issue_upload_handle(
        self,
        file_name: str,
        content_type: str,
        ttl: int = cfg.UPLOAD_URL_TTL_SECONDS,
    ) -> UploadHandle:
        """Return a presigned PUT URL and the object key the client must use."""
        if not is_audio_content_type(content_type):
            logger.warning(
                "Rejected upload handle for %r with content type %r",
                file_name, content_type,
            )
            raise UnsupportedContentTypeError(
                f"Invalid content type: {content_type}"
            )

        object_key = audio_object_key(file_name)
        try:
            url = self._client.generate_presigned_url(
                "put_object",
                Params={
                    "Bucket": self._bucket,
                    "Key": object_key,
                    "ContentType": content_type,
                },
                ExpiresIn=ttl,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error(
                "Failed to presign upload for %s: %s", object_key, exc,
                exc_info=True,
            )
            raise StorageUnavailableError(
                f"Could not issue upload handle: {exc}"
            ) from exc

        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
        logger.info(
            "Issued upload handle for %s (%s), expires %s",
            object_key, content_type, expires_at.isoformat(),
        )
        return UploadHandle(handle=url, object_key=object_key, expires_at=expires_at)

    def issue_download_url(
        self, object_key: str, ttl: int = cfg.UPLOAD_URL_TTL_SECONDS
    ) -> str:
        """Return a presigned GET URL for ``object_key``."""
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self._bucket, "Key": object_key},
                ExpiresIn=ttl,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageUnavailableError(
                f"Could not issue download URL: {exc}"
            ) from exc

    # ── Object operations ────────────────────────────────────────────────

    def put(
        self, object_key: str, data: Union[bytes, str], content_type: str
    ) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=object_key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error(
                "Failed to upload %s: %s", object_key, exc, exc_info=True
            )
            raise StorageUnavailableError(
                f"Failed to upload {object_key}: {exc}"
            ) from exc
        logger.info(
            "Uploaded %s (%s, %d bytes)", object_key, content_type, len(data)
        )

    def get(self, object_key: str) -> bytes:
        """
        Download an object.

        A missing object is retried with short back-off to absorb
        replication lag before ``ObjectNotFoundError`` is raised.
        """
        attempts = len(self._retry_delays) + 1
        for attempt in range(attempts):
            try:
                response = self._client.get_object(
                    Bucket=self._bucket, Key=object_key
                )
                content = response["Body"].read()
                logger.info(
                    "Downloaded %s (%d bytes)", object_key, len(content)
                )
                return content
            except ClientError as exc:
                if _error_code(exc) not in _MISSING_CODES:
                    logger.error(
                        "Failed to download %s: %s", object_key, exc,
                        exc_info=True,
                    )
                    raise StorageUnavailableError(
                        f"Failed to download {object_key}: {exc}"
                    ) from exc
            except BotoCoreError as exc:
                raise StorageUnavailableError(
                    f"Failed to download {object_key}: {exc}"
                ) from exc

            if attempt < len(self._retry_delays):
                logger.debug(
                    "Object %s not visible yet (attempt %d/%d)",
                    object_key, attempt + 1, attempts,
                )
                time.sleep(self._retry_delays[attempt])

        logger.warning(
            "Object %s not found after %d attempts", object_key, attempts
        )
        raise ObjectNotFoundError(object_key)

    def _head(self, object_key: str) -> Optional[dict]:
        try:
            return self._client.head_object(Bucket=self._bucket, Key=object_key)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return None
            raise StorageUnavailableError(
                f"Failed to stat {object_key}: {exc}"
            ) from exc
        except BotoCoreError as exc:
            raise StorageUnavailableError(
                f"Failed to stat {object_key}: {exc}"
            ) from exc

    def exists(self, object_key: str) -> bool:
        return self._head(object_key) is not None

    def size(self, object_key: str) -> Optional[int]:
        """Content length of ``object_key``, or None when it does not exist."""
        head = self._head(object_key)
        if head is None:
            return None
        return int(head.get("ContentLength", 0))

    def delete(self, object_key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=object_key)
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to delete %s: %s", object_key, exc)
            raise StorageUnavailableError(
                f"Failed to delete {object_key}: {exc}"
            ) from exc
        logger.info("Deleted %s", object_key)
