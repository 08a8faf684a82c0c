"""
Centralized configuration loader.

Reads the ENVIRONMENT env-var and merges the correct environment module
(config_prod, config_local or config_testing) into a single settings
namespace.

Usage:
    from configs.config import get_config
    cfg = get_config()
    print(cfg.MONGODB_URL)
"""

import os
import importlib
import logging
from types import SimpleNamespace

logger = logging.getLogger(__name__)

# ── Environment detection ────────────────────────────────────────────────
ENVIRONMENT = os.getenv("ENVIRONMENT", "production")

# ── Shared constants (environment-independent) ───────────────────────────

# Database
MONGODB_URL = os.getenv(
    "MONGODB_URL", "mongodb://127.0.0.1:27017/audio_transcriber"
)
DATABASE_NAME = os.getenv("DATABASE_NAME", "audio_transcriber")
TRANSCRIPTIONS_COLLECTION = "transcriptions"

# Queue (Redis + RQ)
REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0")
QUEUE_NAME = os.getenv("QUEUE_NAME", "transcriptions")
QUEUE_EVENT_TYPE = "transcription.requested"
QUEUE_RETRY_MAX = int(os.getenv("QUEUE_RETRY_MAX", "3"))
QUEUE_RETRY_INTERVALS = [30, 60, 120]
QUEUE_JOB_TIMEOUT = int(os.getenv("QUEUE_JOB_TIMEOUT", "900"))

# Object storage (any S3-compatible endpoint, e.g. R2 or MinIO)
S3_BUCKET = os.getenv("S3_BUCKET", "audio-transcriber")
S3_REGION = os.getenv("S3_REGION", "auto")
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or None
S3_ACCESS_KEY_ID = os.getenv("S3_ACCESS_KEY_ID") or None
S3_SECRET_ACCESS_KEY = os.getenv("S3_SECRET_ACCESS_KEY") or None
UPLOAD_URL_TTL_SECONDS = 3600
DOWNLOAD_RETRY_DELAYS = (0.15, 0.4)

# Uploads
MAX_UPLOAD_SIZE = 25 * 1024 * 1024  # 25 MB
ALLOWED_EXTENSIONS = frozenset({
    ".m4a", ".mp3", ".wav", ".ogg", ".aac", ".webm", ".mp4", ".flac",
})
ALLOWED_AUDIO_CONTENT_TYPES = frozenset({
    "audio/mp4",
    "audio/m4a",
    "audio/x-m4a",
    "audio/mpeg",
    "audio/wav",
    "audio/aac",
    "audio/ogg",
    "audio/webm",
})
PREVIEW_LENGTH = 150

# Orchestration
STRICT_CLAIM = os.getenv("STRICT_CLAIM", "0") == "1"

# Transcription backend: "whisper" (faster-whisper) or "riva"
TRANSCRIPTION_BACKEND = os.getenv("TRANSCRIPTION_BACKEND", "whisper")
WHISPER_MODEL = os.getenv("WHISPER_MODEL", "medium")
WHISPER_ALLOWED_MODELS = frozenset({"tiny", "base", "small", "medium", "large-v3"})
NVIDIA_RIVA_SERVER = os.getenv("NVIDIA_RIVA_SERVER", "grpc.nvcf.nvidia.com:443")
NVIDIA_RIVA_FUNCTION_ID = os.getenv(
    "NVIDIA_RIVA_FUNCTION_ID", "b702f636-f60c-4a3d-a6f4-f3568c13bd7d"
)
NVIDIA_API_KEY = os.getenv("NVIDIA_API_KEY", "")
RIVA_LANGUAGE = os.getenv("RIVA_LANGUAGE", "en-US")

# Notifications
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_API_URL = "https://api.telegram.org"
NOTIFICATION_TIMEOUT_SECONDS = 10.0

# Security
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "change-me-in-production")
RATE_LIMIT_ENABLED = True

CORS_METHODS = ["GET", "POST", "DELETE", "OPTIONS"]
CORS_HEADERS = [
    "Accept",
    "Accept-Language",
    "Authorization",
    "Content-Type",
    "Origin",
    "X-Requested-With",
    "X-Admin-Key",
    "X-Request-ID",
]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "1") == "1"
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_FILE_ERRORS = "errors.log"
LOG_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
LOG_BACKUP_COUNT = 5


# ── Config loader ────────────────────────────────────────────────────────

_ENV_MODULES = {
    "development": "configs.config_local",
    "testing": "configs.config_testing",
}

_config_cache = None


def get_config() -> SimpleNamespace:
    """
    Return a merged configuration namespace.

    Environment-specific values from config_local, config_testing or
    config_prod override the shared defaults defined above.
    """
    global _config_cache
    if _config_cache is not None:
        return _config_cache

    # Start with all module-level constants
    base = {
        key: value
        for key, value in globals().items()
        if key.isupper() and not key.startswith("_")
    }

    # Overlay environment-specific settings
    env_module_name = _ENV_MODULES.get(ENVIRONMENT, "configs.config_prod")
    try:
        env_module = importlib.import_module(env_module_name)
        for key in dir(env_module):
            if key.isupper():
                base[key] = getattr(env_module, key)
        logger.info("Loaded configuration from %s", env_module_name)
    except ImportError:
        logger.warning(
            "Environment config '%s' not found; using shared defaults.",
            env_module_name,
        )

    _config_cache = SimpleNamespace(**base)
    return _config_cache
