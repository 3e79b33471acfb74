"""
Shared Clients
==============
Process-wide handles for the queue, object storage and deployment database.

Each handle is created lazily on first use from configuration and then
reused for every job; none of them carries per-job state. boto3 clients
and SQLAlchemy engines are safe to share across the upload threads.
"""
import logging
from typing import Optional

import boto3
from botocore.config import Config
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from build_worker.core.config import (
    AWS_REGION,
    DATABASE_URL,
    S3_ENDPOINT_URL,
    UPLOAD_CONCURRENCY,
)

logger = logging.getLogger(__name__)

_sqs_client = None
_s3_client = None
_engine: Optional[Engine] = None


def get_sqs_client():
    global _sqs_client
    if _sqs_client is None:
        _sqs_client = boto3.client("sqs", region_name=AWS_REGION)
    return _sqs_client


def get_s3_client():
    global _s3_client
    if _s3_client is None:
        _s3_client = boto3.client(
            "s3",
            region_name=AWS_REGION,
            endpoint_url=S3_ENDPOINT_URL,
            config=Config(
                signature_version="s3v4",
                # one pooled connection per concurrent upload
                max_pool_connections=max(10, UPLOAD_CONCURRENCY),
            ),
        )
    return _s3_client


def get_db_engine() -> Optional[Engine]:
    """Engine for the deployment store, or None when DATABASE_URL is unset."""
    global _engine
    if _engine is None:
        if not DATABASE_URL:
            logger.warning("DATABASE_URL not set, build logs will not be persisted")
            return None
        _engine = create_engine(DATABASE_URL, pool_pre_ping=True)
    return _engine


def reset_clients() -> None:
    """Drop cached handles (disposes the engine pool)."""
    global _sqs_client, _s3_client, _engine
    if _engine is not None:
        _engine.dispose()
    _sqs_client = None
    _s3_client = None
    _engine = None
