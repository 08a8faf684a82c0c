"""
Local development overrides (ENVIRONMENT=development).

Assumes the docker-compose style stack on localhost: MongoDB, Redis and a
MinIO server standing in for S3.
"""

import os

DOCS_ENABLED = True

CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]
ALLOWED_HOSTS = ["localhost", "127.0.0.1"]

DATABASE_NAME = "audio_transcriber_dev"

# MinIO defaults
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL", "http://127.0.0.1:9000")
S3_REGION = "us-east-1"
S3_ACCESS_KEY_ID = os.getenv("S3_ACCESS_KEY_ID", "minioadmin")
S3_SECRET_ACCESS_KEY = os.getenv("S3_SECRET_ACCESS_KEY", "minioadmin")

# Fail fast while iterating
QUEUE_RETRY_MAX = 1
QUEUE_RETRY_INTERVALS = [5]

WHISPER_MODEL = os.getenv("WHISPER_MODEL", "base")
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG").upper()
