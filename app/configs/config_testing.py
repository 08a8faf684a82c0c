"""
Test-suite configuration overrides.

Selected with ENVIRONMENT=testing (set by tests/conftest.py).
"""

DOCS_ENABLED = False

CORS_ORIGINS = ["http://localhost:3000"]

# Starlette's TestClient sends Host: testserver
ALLOWED_HOSTS = ["testserver", "localhost", "127.0.0.1"]

RATE_LIMIT_ENABLED = False

ADMIN_API_KEY = "test-admin-key"
TELEGRAM_BOT_TOKEN = "test-bot-token"

# No real waiting between object-store retries in tests
DOWNLOAD_RETRY_DELAYS = (0.0, 0.0)

# Console only; no log files in the checkout
LOG_TO_FILE = False
LOG_LEVEL = "WARNING"
