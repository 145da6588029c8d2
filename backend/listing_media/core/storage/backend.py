"""
Base abstraction for the object storage backend.

The pipeline and cleanup services talk to storage only through this
interface, so tests and alternative providers can be injected.

Every async operation returns a ``StorageResponse``. A non-None ``error``
signals failure, in which case ``data`` must not be trusted. Implementations
must not raise for provider failures; they convert them to ``error``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class StorageResponse(Generic[T]):
    """Result of a storage call: ``data`` on success, ``error`` on failure."""
    data: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: Any = None) -> "StorageResponse":
        return cls(data=data, error=None)

    @classmethod
    def failure(cls, error: str) -> "StorageResponse":
        return cls(data=None, error=error or "Storage operation failed")


@dataclass
class StorageEntry:
    """
    One child of a listed prefix.

    Attributes:
        name: Entry name relative to the listed prefix
        size: Size in bytes (0 for folders)
        content_type: MIME type when the provider reports it
        last_modified: Last modification time when known
        is_folder: True for virtual folders (common prefixes)
    """
    name: str
    size: int = 0
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None
    is_folder: bool = False


@dataclass
class SignedUpload:
    signed_url: str
    path: str
    token: Optional[str] = None


class StorageBackend(ABC):
    """
    Abstract object storage backend.

    Subclasses implement bucket-scoped upload, copy, remove and list
    operations plus public and signed URL generation.
    """

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = False,
    ) -> StorageResponse[str]:
        """Upload bytes to ``bucket/path``; data is the stored path."""

    @abstractmethod
    async def copy(
        self,
        source_bucket: str,
        source_path: str,
        dest_bucket: str,
        dest_path: str,
    ) -> StorageResponse[str]:
        """Server-side copy; data is the destination path."""

    @abstractmethod
    async def remove(self, bucket: str, paths: List[str]) -> StorageResponse[List[str]]:
        """Delete ``paths`` in one batch; data is the list of removed paths."""

    @abstractmethod
    async def list(
        self,
        bucket: str,
        prefix: str = "",
        limit: int = 1000,
    ) -> StorageResponse[List[StorageEntry]]:
        """List direct children of ``prefix`` (non-recursive), at most ``limit``."""

    @abstractmethod
    def get_public_url(self, bucket: str, path: str) -> str:
        """Permanent public URL for an object in a public bucket."""

    @abstractmethod
    async def create_signed_upload_url(
        self,
        bucket: str,
        path: str,
        expires_in: int = 3600,
    ) -> StorageResponse[SignedUpload]:
        """Time-limited URL allowing a client to upload to exactly ``path``."""

    @abstractmethod
    async def create_signed_url(
        self,
        bucket: str,
        path: str,
        expires_in: int = 3600,
    ) -> StorageResponse[str]:
        """Time-limited download URL for a private object."""

    async def ensure_bucket(self, bucket: str) -> StorageResponse[bool]:
        """Create ``bucket`` if missing; data is True when it was created."""
        return StorageResponse.success(False)
