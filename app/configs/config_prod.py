"""
Production overrides (default when ENVIRONMENT is unset).

Hosts and origins come from comma-separated environment variables so the
same image can be deployed behind different domains.
"""

import os


def _csv(name: str, default: str = "") -> list:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


DOCS_ENABLED = False

CORS_ORIGINS = _csv("CORS_ORIGINS")
ALLOWED_HOSTS = _csv("ALLOWED_HOSTS", "localhost,127.0.0.1")
