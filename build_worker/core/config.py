"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.
Every value is read once at import time; there is no hot-reload.

Environment Variables:
    AWS_REGION              — Region for the SQS and S3 clients (default: us-east-1)
    SQS_QUEUE_URL           — Queue the worker long-polls for build jobs (required)
    POLL_WAIT_SECONDS       — Long-poll wait per receive call (default: 20)
    POLL_INTERVAL_SECONDS   — Sleep between empty polls (default: 5)
    VISIBILITY_TIMEOUT      — Seconds a received message stays hidden (default: 900)
    ARTIFACT_BUCKET         — Bucket receiving build artifacts (required)
    S3_ENDPOINT_URL         — Optional S3-compatible endpoint (e.g. MinIO)
    UPLOAD_CONCURRENCY      — Max simultaneous uploads per batch (default: 10)
    BUILDER_IMAGE           — Image the build container runs (default: build-worker:latest)
    CONTAINER_WORKSPACE     — Workspace root inside the container (default: /workspace)
    CONTAINER_MEMORY_LIMIT  — Memory ceiling per build container (default: 2g)
    CONTAINER_CPUS          — CPU ceiling per build container (default: 1.5)
    CONTAINER_NETWORK_MODE  — Docker network mode, unset = daemon default
    PACKAGE_MANAGER         — npm | pnpm | yarn (default: npm)
    DATABASE_URL            — SQLAlchemy URL of the deployment store; unset disables log persistence
    DEPLOYMENT_TABLE        — Table holding deployment rows (default: deployment)
    DEPLOYMENT_ID_COLUMN    — Key column matched against the job id (default: deployment_id)
    DEPLOYMENT_LOG_COLUMN   — Text column receiving the build log (default: build_logs)
    LOG_LEVEL               — Root log level (default: INFO)
    LOG_DIR                 — Directory for the daily log file (default: logs)

Visibility Timeout:
    VISIBILITY_TIMEOUT must exceed the worst-case build duration. A build
    that outlives it may be redelivered to another worker and run twice;
    publishing the same artifact to the same prefix is idempotent.
"""
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

# Queue
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
SQS_QUEUE_URL = os.getenv("SQS_QUEUE_URL", "")
POLL_WAIT_SECONDS = int(os.getenv("POLL_WAIT_SECONDS", 20))
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", 5))
VISIBILITY_TIMEOUT = int(os.getenv("VISIBILITY_TIMEOUT", 900))

# Artifact storage
ARTIFACT_BUCKET = os.getenv("ARTIFACT_BUCKET", "")
S3_ENDPOINT_URL: Optional[str] = os.getenv("S3_ENDPOINT_URL") or None
UPLOAD_CONCURRENCY = int(os.getenv("UPLOAD_CONCURRENCY", 10))

# Build container
BUILDER_IMAGE = os.getenv("BUILDER_IMAGE", "build-worker:latest")
CONTAINER_WORKSPACE = os.getenv("CONTAINER_WORKSPACE", "/workspace")
CONTAINER_MEMORY_LIMIT = os.getenv("CONTAINER_MEMORY_LIMIT", "2g")
CONTAINER_CPUS = float(os.getenv("CONTAINER_CPUS", 1.5))
CONTAINER_NETWORK_MODE: Optional[str] = os.getenv("CONTAINER_NETWORK_MODE") or None
PACKAGE_MANAGER = os.getenv("PACKAGE_MANAGER", "npm")

# Deployment log record
DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL") or None
DEPLOYMENT_TABLE = os.getenv("DEPLOYMENT_TABLE", "deployment")
DEPLOYMENT_ID_COLUMN = os.getenv("DEPLOYMENT_ID_COLUMN", "deployment_id")
DEPLOYMENT_LOG_COLUMN = os.getenv("DEPLOYMENT_LOG_COLUMN", "build_logs")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")


def validate_config() -> list[str]:
    """Return the names of required settings that are missing."""
    missing = []
    if not SQS_QUEUE_URL:
        missing.append("SQS_QUEUE_URL")
    if not ARTIFACT_BUCKET:
        missing.append("ARTIFACT_BUCKET")
    return missing
