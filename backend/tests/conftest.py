import asyncio
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest

# Keep tests independent from any local .env / MinIO instance.
os.environ.setdefault("MINIO_ENDPOINT", "minio.test:9000")
os.environ.setdefault("CLEANUP_PAGE_SIZE", "1000")

from listing_media.core.storage.backend import (  # noqa: E402
    SignedUpload,
    StorageBackend,
    StorageEntry,
    StorageResponse,
)
from listing_media.core.storage.pipeline_events import PipelineEvent  # noqa: E402

PUBLIC_ORIGIN = "https://media.test"


class FakeStorageBackend(StorageBackend):
    """
    In-memory storage backend with call recording and failure injection.

    Objects are kept per bucket as ``{path: (data, content_type)}``.
    """

    def __init__(self):
        self.buckets: Dict[str, Dict[str, Tuple[bytes, str]]] = {}
        self.calls: List[Tuple[str, tuple]] = []
        self.fail_list_prefixes: Set[Tuple[str, str]] = set()
        self.fail_upload: Optional[str] = None
        self.fail_copy: Optional[str] = None
        self.fail_remove: Optional[str] = None
        self.fail_sign: Optional[str] = None

    # Test helpers -----------------------------------------------------------

    def put(self, bucket: str, path: str, data: bytes = b"x", content_type: str = "image/jpeg"):
        self.buckets.setdefault(bucket, {})[path] = (data, content_type)

    def keys(self, bucket: str) -> List[str]:
        return sorted(self.buckets.get(bucket, {}))

    def calls_named(self, name: str) -> List[tuple]:
        return [args for call, args in self.calls if call == name]

    # StorageBackend ---------------------------------------------------------

    async def upload(self, bucket, path, data, content_type="application/octet-stream", upsert=False):
        self.calls.append(("upload", (bucket, path, content_type, upsert)))
        if self.fail_upload:
            return StorageResponse.failure(self.fail_upload)
        if not upsert and path in self.buckets.get(bucket, {}):
            return StorageResponse.failure("The resource already exists")
        self.put(bucket, path, bytes(data), content_type)
        return StorageResponse.success(path)

    async def copy(self, source_bucket, source_path, dest_bucket, dest_path):
        self.calls.append(("copy", (source_bucket, source_path, dest_bucket, dest_path)))
        if self.fail_copy:
            return StorageResponse.failure(self.fail_copy)
        source = self.buckets.get(source_bucket, {}).get(source_path)
        if source is None:
            return StorageResponse.failure("Object not found")
        self.buckets.setdefault(dest_bucket, {})[dest_path] = source
        return StorageResponse.success(dest_path)

    async def remove(self, bucket, paths):
        self.calls.append(("remove", (bucket, list(paths))))
        if self.fail_remove:
            return StorageResponse.failure(self.fail_remove)
        store = self.buckets.get(bucket, {})
        for path in paths:
            store.pop(path, None)
        return StorageResponse.success(list(paths))

    async def list(self, bucket, prefix="", limit=1000):
        self.calls.append(("list", (bucket, prefix, limit)))
        if (bucket, prefix) in self.fail_list_prefixes:
            return StorageResponse.failure(f"list failed for {prefix}")

        base = f"{prefix.strip('/')}/" if prefix.strip("/") else ""
        entries: Dict[str, StorageEntry] = {}
        for path, (data, content_type) in sorted(self.buckets.get(bucket, {}).items()):
            if not path.startswith(base):
                continue
            rest = path[len(base):]
            if "/" in rest:
                folder = rest.split("/", 1)[0]
                entries.setdefault(folder, StorageEntry(name=folder, is_folder=True))
            else:
                entries[rest] = StorageEntry(
                    name=rest,
                    size=len(data),
                    content_type=content_type,
                    last_modified=datetime(2025, 1, 1, tzinfo=timezone.utc),
                )
        return StorageResponse.success(list(entries.values())[:limit])

    def get_public_url(self, bucket, path):
        return f"{PUBLIC_ORIGIN}/{bucket}/{path}"

    async def create_signed_upload_url(self, bucket, path, expires_in=3600):
        self.calls.append(("create_signed_upload_url", (bucket, path, expires_in)))
        if self.fail_sign:
            return StorageResponse.failure(self.fail_sign)
        return StorageResponse.success(SignedUpload(
            signed_url=f"{PUBLIC_ORIGIN}/{bucket}/{path}?X-Amz-Signature=sig",
            path=path,
            token="sig",
        ))

    async def create_signed_url(self, bucket, path, expires_in=3600):
        self.calls.append(("create_signed_url", (bucket, path, expires_in)))
        if self.fail_sign:
            return StorageResponse.failure(self.fail_sign)
        return StorageResponse.success(f"{PUBLIC_ORIGIN}/{bucket}/{path}?X-Amz-Expires={expires_in}")


class RecordingEventSink:
    def __init__(self):
        self.events: List[PipelineEvent] = []

    async def record(self, event: PipelineEvent) -> None:
        self.events.append(event)


class FailingEventSink:
    async def record(self, event: PipelineEvent) -> None:
        raise RuntimeError("event store unavailable")


class HangingEventSink:
    """record() never completes."""

    async def record(self, event: PipelineEvent) -> None:
        await asyncio.Event().wait()


@pytest.fixture
def fake_backend():
    """In-memory storage backend."""
    return FakeStorageBackend()


@pytest.fixture
def event_sink():
    """Event sink that keeps every recorded event."""
    return RecordingEventSink()


@pytest.fixture
def failing_sink():
    """Event sink whose record() always raises."""
    return FailingEventSink()


@pytest.fixture
def hanging_sink():
    """Event sink whose record() never returns."""
    return HangingEventSink()
