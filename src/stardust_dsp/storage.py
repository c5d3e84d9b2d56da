"""S3-compatible object storage settings and the cached MinIO client."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from minio import Minio

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Runtime configuration for S3-compatible object storage."""

    endpoint: str
    access_key: str
    secret_key: str
    bucket: str
    secure: bool
    region: str | None
    public_base_url: str | None


@lru_cache(maxsize=1)
def load_storage_config() -> StorageConfig:
    """Load storage configuration from environment."""

    return StorageConfig(
        endpoint=os.getenv("STARDUST_S3_ENDPOINT", "minio:9000"),
        access_key=os.getenv("STARDUST_S3_ACCESS_KEY", "minioadmin"),
        secret_key=os.getenv("STARDUST_S3_SECRET_KEY", "minioadmin"),
        bucket=os.getenv("STARDUST_S3_BUCKET", "stardust-dsp"),
        secure=os.getenv("STARDUST_S3_SECURE", "false").lower() in _TRUTHY,
        region=os.getenv("STARDUST_S3_REGION"),
        public_base_url=os.getenv("STARDUST_S3_PUBLIC_URL"),
    )


@lru_cache(maxsize=1)
def get_storage_client() -> Minio:
    """Build and cache a MinIO client for object storage."""

    config = load_storage_config()
    logger.debug("storage_client_created", extra={"endpoint": config.endpoint, "bucket": config.bucket})
    return Minio(
        endpoint=config.endpoint,
        access_key=config.access_key,
        secret_key=config.secret_key,
        secure=config.secure,
        region=config.region,
    )
