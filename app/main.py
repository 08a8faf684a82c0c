import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from commons import limiter
from configs.config import get_config
from logging_config import setup_logging
from security import ApiSecurityHeadersMiddleware, RequestContextMiddleware
from src.database.connection import close_db
from src.routes import admin_routes, transcription_routes

# ── Logging ──────────────────────────────────────────────────────────────────
setup_logging("api")
logger = logging.getLogger(__name__)

cfg = get_config()

# ── App Factory ──────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Audio Transcription API starting (environment=%s)", cfg.ENVIRONMENT)
    yield
    close_db()


app = FastAPI(
    title="Audio Transcription API",
    lifespan=lifespan,
    docs_url="/docs" if cfg.DOCS_ENABLED else None,
    redoc_url="/redoc" if cfg.DOCS_ENABLED else None,
    openapi_url="/openapi.json" if cfg.DOCS_ENABLED else None,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── Middleware Stack (each add_middleware wraps the ones before it) ──────────

# 1. Request id + access log (innermost)
app.add_middleware(RequestContextMiddleware)

# 2. Security response headers
app.add_middleware(ApiSecurityHeadersMiddleware)

# 3. Trusted hosts
app.add_middleware(TrustedHostMiddleware, allowed_hosts=cfg.ALLOWED_HOSTS)

# 4. CORS (outermost) with explicit methods and headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=cfg.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=cfg.CORS_METHODS,
    allow_headers=cfg.CORS_HEADERS,
)

# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(transcription_routes.router)
app.include_router(admin_routes.router)


@app.get("/api/health")
@limiter.limit("60/minute")
def health(request: Request):
    return {
        "status": "ok",
        "environment": cfg.ENVIRONMENT,
        "transcriptionBackend": cfg.TRANSCRIPTION_BACKEND,
    }


# ═══════════════════════════════════════════════════════════════════════════
#  ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="Serve the audio transcription HTTP API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--workers", type=int, default=1, help="Uvicorn worker processes")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    parser.add_argument("--cert-file", help="TLS certificate; serve HTTPS together with --key-file")
    parser.add_argument("--key-file", help="TLS private key for --cert-file")
    args = parser.parse_args()

    if bool(args.cert_file) != bool(args.key_file):
        parser.error("--cert-file and --key-file must be given together")
    if args.reload and args.workers > 1:
        parser.error("--reload cannot be combined with --workers")

    logger.info(
        "Serving on %s://%s:%d with %d worker(s)",
        "https" if args.cert_file else "http", args.host, args.port, args.workers,
    )
    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        workers=args.workers,
        reload=args.reload,
        log_level=cfg.LOG_LEVEL.lower(),
        ssl_certfile=args.cert_file,
        ssl_keyfile=args.key_file,
        limit_concurrency=1000,
    )
