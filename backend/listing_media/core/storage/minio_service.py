"""
MinIO Storage Backend.

Implements the pipeline's storage backend on the MinIO S3-compatible API.
Each pipeline stage maps to its own bucket; listing ids and stages are
virtual folders (prefixes) inside those buckets.

The MinIO client is synchronous, so every call runs in a worker thread.
Provider errors (``S3Error``, connection failures) are logged and returned
as ``StorageResponse.error`` instead of being raised.
"""

import asyncio
import logging
from datetime import timedelta
from functools import lru_cache
from io import BytesIO
from typing import List, Optional
from urllib.parse import parse_qs, urlparse

from minio import Minio
from minio.commonconfig import CopySource
from minio.deleteobjects import DeleteObject
from minio.error import S3Error

from listing_media.config import Settings, settings

from .backend import SignedUpload, StorageBackend, StorageEntry, StorageResponse

logger = logging.getLogger("listing_media.minio")

MISSING_OBJECT_CODES = {"NoSuchKey", "NoSuchObject", "ResourceNotFound"}


def _error_message(error: Exception) -> str:
    if isinstance(error, S3Error):
        return error.message or error.code or str(error)
    return str(error) or error.__class__.__name__


def _normalize_prefix(prefix: str) -> str:
    prefix = (prefix or "").strip("/")
    return f"{prefix}/" if prefix else ""


class MinIOStorageBackend(StorageBackend):
    """
    MinIO storage backend implementation.

    Provides the operations the media pipeline needs:
    - Non-overwriting uploads
    - Server-side copies between stage buckets
    - Batch deletes
    - Single-level prefix listing
    - Public and presigned URL generation
    """

    def __init__(self, config: Optional[Settings] = None, client: Optional[Minio] = None):
        """
        Args:
            config: Settings to read connection details from (defaults to global settings)
            client: Pre-built MinIO client, mainly for tests
        """
        self.config = config or settings
        self._client = client

    @property
    def client(self) -> Minio:
        """Get or create the MinIO client (lazy initialization)."""
        if self._client is None:
            self._client = Minio(
                endpoint=self.config.minio_endpoint,
                access_key=self.config.minio_access_key,
                secret_key=self.config.minio_secret_key,
                secure=self.config.minio_secure,
                region=self.config.minio_region,
            )
            logger.info(
                f"MinIO client initialized (endpoint={self.config.minio_endpoint}, "
                f"secure={self.config.minio_secure})"
            )
        return self._client

    # =========================================================================
    # BUCKET OPERATIONS
    # =========================================================================

    async def ensure_bucket(self, bucket: str) -> StorageResponse[bool]:
        def _ensure() -> bool:
            if self.client.bucket_exists(bucket_name=bucket):
                logger.debug(f"Bucket already exists: {bucket}")
                return False
            self.client.make_bucket(bucket_name=bucket)
            logger.info(f"Created bucket: {bucket}")
            return True

        try:
            return StorageResponse.success(await asyncio.to_thread(_ensure))
        except Exception as e:
            logger.error(f"Failed to create bucket {bucket}: {e}")
            return StorageResponse.failure(_error_message(e))

    # =========================================================================
    # OBJECT OPERATIONS
    # =========================================================================

    def _object_exists(self, bucket: str, path: str) -> bool:
        try:
            self.client.stat_object(bucket_name=bucket, object_name=path)
            return True
        except S3Error as e:
            if e.code in MISSING_OBJECT_CODES:
                return False
            raise

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = False,
    ) -> StorageResponse[str]:
        def _upload() -> Optional[str]:
            if not upsert and self._object_exists(bucket, path):
                return None
            self.client.put_object(
                bucket_name=bucket,
                object_name=path,
                data=BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
            return path

        try:
            stored = await asyncio.to_thread(_upload)
        except Exception as e:
            logger.error(f"Failed to upload {bucket}/{path}: {e}")
            return StorageResponse.failure(_error_message(e))

        if stored is None:
            logger.warning(f"Refusing to overwrite existing object {bucket}/{path}")
            return StorageResponse.failure("The resource already exists")

        logger.info(f"Uploaded object {bucket}/{path} ({len(data)} bytes)")
        return StorageResponse.success(stored)

    async def copy(
        self,
        source_bucket: str,
        source_path: str,
        dest_bucket: str,
        dest_path: str,
    ) -> StorageResponse[str]:
        try:
            await asyncio.to_thread(
                self.client.copy_object,
                bucket_name=dest_bucket,
                object_name=dest_path,
                source=CopySource(bucket_name=source_bucket, object_name=source_path),
            )
        except Exception as e:
            logger.error(f"Failed to copy {source_bucket}/{source_path} -> {dest_bucket}/{dest_path}: {e}")
            return StorageResponse.failure(_error_message(e))

        logger.info(f"Copied {source_bucket}/{source_path} -> {dest_bucket}/{dest_path}")
        return StorageResponse.success(dest_path)

    async def remove(self, bucket: str, paths: List[str]) -> StorageResponse[List[str]]:
        if not paths:
            return StorageResponse.success([])

        def _remove() -> List[str]:
            # remove_objects is lazy; errors only surface while iterating
            errors = self.client.remove_objects(
                bucket_name=bucket,
                delete_object_list=[DeleteObject(p) for p in paths],
            )
            return [f"{err.name}: {err.message}" for err in errors]

        try:
            failures = await asyncio.to_thread(_remove)
        except Exception as e:
            logger.error(f"Failed to delete {len(paths)} objects from {bucket}: {e}")
            return StorageResponse.failure(_error_message(e))

        if failures:
            logger.error(f"Failed to delete {len(failures)} of {len(paths)} objects from {bucket}")
            return StorageResponse.failure("; ".join(failures))

        logger.info(f"Deleted {len(paths)} objects from {bucket}")
        return StorageResponse.success(list(paths))

    async def list(
        self,
        bucket: str,
        prefix: str = "",
        limit: int = 1000,
    ) -> StorageResponse[List[StorageEntry]]:
        normalized = _normalize_prefix(prefix)

        def _list() -> List[StorageEntry]:
            entries: List[StorageEntry] = []
            for obj in self.client.list_objects(
                bucket_name=bucket,
                prefix=normalized or None,
                recursive=False,
            ):
                if len(entries) >= limit:
                    break
                name = obj.object_name[len(normalized):].rstrip("/")
                if not name:
                    continue
                entries.append(StorageEntry(
                    name=name,
                    size=obj.size or 0,
                    content_type=getattr(obj, "content_type", None),
                    last_modified=obj.last_modified,
                    is_folder=bool(obj.is_dir),
                ))
            return entries

        try:
            return StorageResponse.success(await asyncio.to_thread(_list))
        except Exception as e:
            logger.error(f"Failed to list {bucket}/{normalized}: {e}")
            return StorageResponse.failure(_error_message(e))

    # =========================================================================
    # URL OPERATIONS
    # =========================================================================

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.config.public_origin}/{bucket}/{path}"

    async def create_signed_upload_url(
        self,
        bucket: str,
        path: str,
        expires_in: int = 3600,
    ) -> StorageResponse[SignedUpload]:
        try:
            url = await asyncio.to_thread(
                self.client.presigned_put_object,
                bucket_name=bucket,
                object_name=path,
                expires=timedelta(seconds=expires_in),
            )
        except Exception as e:
            logger.error(f"Failed to sign upload URL for {bucket}/{path}: {e}")
            return StorageResponse.failure(_error_message(e))

        token = parse_qs(urlparse(url).query).get("X-Amz-Signature", [None])[0]
        logger.debug(f"Generated presigned PUT URL for {bucket}/{path}")
        return StorageResponse.success(SignedUpload(signed_url=url, path=path, token=token))

    async def create_signed_url(
        self,
        bucket: str,
        path: str,
        expires_in: int = 3600,
    ) -> StorageResponse[str]:
        try:
            url = await asyncio.to_thread(
                self.client.presigned_get_object,
                bucket_name=bucket,
                object_name=path,
                expires=timedelta(seconds=expires_in),
            )
        except Exception as e:
            logger.error(f"Failed to sign download URL for {bucket}/{path}: {e}")
            return StorageResponse.failure(_error_message(e))

        logger.debug(f"Generated presigned GET URL for {bucket}/{path}")
        return StorageResponse.success(url)


# =============================================================================
# SINGLETON BACKEND
# =============================================================================


@lru_cache()
def get_storage_backend() -> MinIOStorageBackend:
    """Get the process-wide MinIO backend built from settings."""
    return MinIOStorageBackend()
