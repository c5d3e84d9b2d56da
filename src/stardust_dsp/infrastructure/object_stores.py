"""Object store adapters: MinIO/S3 and a local directory tree."""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from io import BytesIO
from pathlib import Path
from typing import Any

from minio.error import S3Error

from stardust_dsp.errors import ObjectStoreError

LOGGER = logging.getLogger(__name__)


class MinioObjectStore:
    """Object store over a MinIO client bound to one bucket."""

    def __init__(
        self,
        client: Any,
        bucket: str,
        endpoint: str,
        public_base_url: str | None = None,
        secure: bool = False,
    ) -> None:
        self.client = client
        self.bucket = bucket
        self.endpoint = endpoint
        self.public_base_url = public_base_url
        self.secure = secure
        self._bucket_checked = False

    def _ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
        self._bucket_checked = True

    def upload(self, key: str, payload: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            self._ensure_bucket()
            self.client.put_object(
                bucket_name=self.bucket,
                object_name=key,
                data=BytesIO(payload),
                length=len(payload),
                content_type=content_type,
            )
        except S3Error as error:
            raise ObjectStoreError(f"upload of {key} failed: {error}") from error
        LOGGER.info("object_uploaded", extra={"bucket": self.bucket, "key": key, "size": len(payload)})
        return key

    def download(self, key: str) -> bytes:
        try:
            response = self.client.get_object(bucket_name=self.bucket, object_name=key)
        except S3Error as error:
            raise ObjectStoreError(f"download of {key} failed: {error}") from error
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def signed_url(self, key: str, expires_seconds: int) -> str:
        try:
            return self.client.presigned_get_object(
                bucket_name=self.bucket,
                object_name=key,
                expires=timedelta(seconds=expires_seconds),
            )
        except S3Error as error:
            raise ObjectStoreError(f"signing {key} failed: {error}") from error

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.endpoint}/{self.bucket}/{key}"


class LocalObjectStore:
    """Object store rooted at ``root/bucket`` on the local filesystem."""

    def __init__(self, root: Path, bucket: str = "stardust-dsp", public_base_url: str | None = None) -> None:
        self.root = Path(root)
        self.bucket = bucket
        self.public_base_url = public_base_url

    def _path(self, key: str) -> Path:
        base = (self.root / self.bucket).resolve()
        path = (base / key).resolve()
        if base not in path.parents:
            raise ObjectStoreError(f"object key escapes the bucket: {key}")
        return path

    def upload(self, key: str, payload: bytes, content_type: str = "application/octet-stream") -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        LOGGER.info(
            "object_uploaded",
            extra={"bucket": self.bucket, "key": key, "size": len(payload), "content_type": content_type},
        )
        return key

    def download(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except OSError as error:
            raise ObjectStoreError(f"download of {key} failed: {error}") from error

    def signed_url(self, key: str, expires_seconds: int) -> str:
        return f"{self.public_url(key)}?expires={int(time.time()) + expires_seconds}"

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        return (self.root / self.bucket / key).resolve().as_uri()
