"""
Process-wide logging setup for the API and the queue worker.

Each process logs to the console and, unless LOG_TO_FILE is off, to its
own rotating file (``logs/api.log`` / ``logs/worker.log``) plus a shared
``logs/errors.log`` that only receives ERROR and above.
"""

import logging
import logging.config
import os

from configs.config import get_config

cfg = get_config()

# Libraries that flood DEBUG output with per-request chatter
_NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "pymongo", "httpx", "faster_whisper")


def _file_handlers(process_name: str) -> dict:
    os.makedirs(cfg.LOG_DIR, exist_ok=True)
    return {
        "process_file": {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "detailed",
            "filename": os.path.join(cfg.LOG_DIR, f"{process_name}.log"),
            "maxBytes": cfg.LOG_MAX_BYTES,
            "backupCount": cfg.LOG_BACKUP_COUNT,
            "encoding": "utf8",
        },
        "errors_file": {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "ERROR",
            "formatter": "detailed",
            "filename": os.path.join(cfg.LOG_DIR, cfg.LOG_FILE_ERRORS),
            "maxBytes": cfg.LOG_MAX_BYTES,
            "backupCount": cfg.LOG_BACKUP_COUNT,
            "encoding": "utf8",
        },
    }


def setup_logging(process_name: str = "api") -> None:
    """Configure logging once at startup of the ``api`` or ``worker`` process."""
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": cfg.LOG_LEVEL,
            "formatter": "console",
        },
    }
    if cfg.LOG_TO_FILE:
        handlers.update(_file_handlers(process_name))

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "format": f"%(asctime)s [{process_name}] %(levelname)s %(name)s: %(message)s",
            },
            "detailed": {
                "format": (
                    "%(asctime)s - %(process)d - %(name)s - %(levelname)s - "
                    "%(funcName)s:%(lineno)d - %(message)s"
                ),
            },
        },
        "handlers": handlers,
        "loggers": {name: {"level": "WARNING"} for name in _NOISY_LOGGERS},
        "root": {"level": "DEBUG", "handlers": list(handlers)},
    })
    logging.getLogger(__name__).info(
        "Logging configured for %s (environment=%s, files=%s)",
        process_name, cfg.ENVIRONMENT, cfg.LOG_TO_FILE,
    )
