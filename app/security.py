"""
HTTP hardening for the transcription API.

Middlewares that tag and time every request, response headers suited to a
JSON/text API, path and upload validators, and the admin-key dependency.
"""

import hmac
import logging
import os
import re
import time
import uuid

from fastapi import Header, HTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from configs.config import get_config

logger = logging.getLogger(__name__)

cfg = get_config()

REQUEST_ID_HEADER = "X-Request-ID"

# uuid4 as produced by TranscriptionRepository.create
TRANSCRIPTION_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$"
)

# Incoming request ids are echoed back, so keep them short and printable
_CLIENT_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


# --------------- Middlewares ---------------


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Give every request an id (the caller's X-Request-ID when it is sane),
    expose it on ``request.state`` and the response, and log the outcome.
    """

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = incoming if _CLIENT_REQUEST_ID.match(incoming) else str(uuid.uuid4())
        request.state.request_id = request_id

        started = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "%s %s -> %d (%.1f ms, request %s)",
            request.method, request.url.path, response.status_code,
            elapsed_ms, request_id,
        )
        return response


class ApiSecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Headers for responses that are never rendered as HTML."""

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        headers = response.headers
        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-Frame-Options"] = "DENY"
        headers["Referrer-Policy"] = "no-referrer"
        headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        # Status and transcripts change or are private; never cache them
        if request.url.path.startswith("/api/transcriptions"):
            headers["Cache-Control"] = "no-store"
        if request.url.scheme == "https":
            headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        return response


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


# --------------- Validators ---------------


def validate_transcription_id(transcription_id: str) -> str:
    if not TRANSCRIPTION_ID_PATTERN.match(transcription_id):
        logger.warning("Rejected malformed transcription id %r", transcription_id)
        raise HTTPException(status_code=400, detail="Invalid transcription ID format")
    return transcription_id


def validate_file_extension(filename: str) -> str:
    """Reject direct uploads whose name does not end in a known audio extension."""
    if not filename:
        raise HTTPException(status_code=400, detail="Filename is required")
    ext = os.path.splitext(filename)[1].lower()
    if ext not in cfg.ALLOWED_EXTENSIONS:
        logger.warning("Rejected upload %r: extension %r is not audio", filename, ext)
        raise HTTPException(
            status_code=400,
            detail=(
                f"Unsupported audio file type '{ext or filename}'. "
                f"Supported: {', '.join(sorted(cfg.ALLOWED_EXTENSIONS))}"
            ),
        )
    return filename


# --------------- Error Helpers ---------------


def safe_error_response(exc: Exception, context: str = "operation", status_code: int = 500):
    """
    Log ``exc`` with its traceback and raise an HTTPException whose detail
    does not leak internals (outside development).
    """
    logger.error("Unhandled error in %s: %s", context, exc, exc_info=True)
    if cfg.ENVIRONMENT == "development":
        detail = f"[DEV] {context}: {exc.__class__.__name__}: {exc}"
    else:
        detail = f"Unexpected error during {context}. Please try again later."
    raise HTTPException(status_code=status_code, detail=detail)


# --------------- Admin Auth ---------------


def require_admin_key(request: Request, x_admin_key: str = Header(default="")):
    """Dependency for /api/admin routes: 403 unless X-Admin-Key matches."""
    if not x_admin_key or not hmac.compare_digest(
        x_admin_key.encode(), cfg.ADMIN_API_KEY.encode()
    ):
        logger.warning(
            "Rejected admin request to %s from %s",
            request.url.path,
            request.client.host if request.client else "unknown",
        )
        raise HTTPException(status_code=403, detail="Forbidden: invalid admin key")
