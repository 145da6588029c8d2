# ============================================================================
# Listing Media - Storage Cleanup Service
# ============================================================================
"""
Retention-based cleanup of temporary pipeline stages.

This service handles:
- Expiring raw uploads older than 168 hours (abandoned captures)
- Expiring processing files older than 48 hours (timed-out edit jobs)
- Per-folder error isolation (one bad listing never aborts a sweep)
- Dry-run mode for inspection
- Read-only storage statistics for monitoring

QC and final stages have no retention window and are never swept.

Object age comes only from the millisecond timestamp embedded in the
object name (``{timestamp}-{suffix}.{ext}``). Objects whose name does not
start with ``{digits}-`` are never deleted. An object is expired only when
its age is strictly greater than the retention window.

Listings are scanned one page at a time (``page_size`` entries per list
call); a listing folder holding more objects than one page is only
partially swept per run.

Usage:
    from listing_media.core.storage.cleanup_service import create_cleanup_service

    cleanup = create_cleanup_service()
    summary = await cleanup.run_full_cleanup()
    print(f"Deleted {summary.total_deleted} files, {summary.total_errors} errors")

This service has no scheduling of its own; it is triggered by an external
scheduler (see ``listing_media.core.commands.run_cleanup``).
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple, Union

from listing_media.config import settings

from .backend import StorageBackend, StorageEntry
from .pipeline_paths import parse_timestamp
from .stages import ALL_STAGES, CLEANUP_STAGES, PipelineStage

logger = logging.getLogger("listing_media.cleanup")

MS_PER_HOUR = 3_600_000


def _now_ms() -> int:
    return int(time.time() * 1000)


def is_expired(name: str, retention_hours: Optional[int], now_ms: int) -> bool:
    """
    Decide whether an object is past its retention window.

    Args:
        name: Object name or key; its embedded timestamp is the only age signal
        retention_hours: Stage retention, None for unbounded stages
        now_ms: Current time in epoch milliseconds

    Returns:
        True only if the name carries a timestamp and
        ``(now - timestamp) / 3600000 > retention_hours``
    """
    if retention_hours is None:
        return False
    timestamp = parse_timestamp(name)
    if timestamp is None:
        return False
    # age_ms > retention_ms, i.e. age_hours > retention_hours
    return now_ms - timestamp > retention_hours * MS_PER_HOUR


@dataclass
class CleanupResult:
    """Outcome of sweeping one stage bucket."""
    stage: str
    bucket: str
    deleted_count: int = 0
    scanned_count: int = 0
    errors: List[str] = field(default_factory=list)
    deleted_paths: List[str] = field(default_factory=list)
    dry_run: bool = False


@dataclass
class CleanupSummary:
    started_at: str
    completed_at: str
    results: Dict[str, CleanupResult]
    total_deleted: int = 0
    total_errors: int = 0
    dry_run: bool = False


@dataclass
class StageStats:
    bucket: str
    file_count: int = 0
    total_bytes: int = 0


class StorageCleanupService:
    """
    Scheduled reclamation of expired objects in the raw and processing stages.

    Attributes:
        backend: Storage backend used to list and delete objects
        page_size: Maximum entries returned by each list call
    """

    def __init__(
        self,
        backend: StorageBackend,
        page_size: Optional[int] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Args:
            backend: Storage backend
            page_size: Entries per list call (default from settings)
            clock: Returns the current time in epoch milliseconds
        """
        self.backend = backend
        self.page_size = page_size or settings.cleanup_page_size
        self._clock = clock or _now_ms

    async def _list_files(
        self,
        bucket: str,
        prefix: str,
    ) -> Tuple[List[Tuple[str, StorageEntry]], List[str]]:
        """
        List files under ``prefix`` plus one level of category sub-folders.

        Returns:
            Tuple of ([(full_path, entry)], error messages)
        """
        files: List[Tuple[str, StorageEntry]] = []
        errors: List[str] = []

        response = await self.backend.list(bucket, prefix, limit=self.page_size)
        if response.error or response.data is None:
            errors.append(f"{prefix}: {response.error or 'no data returned'}")
            return files, errors

        for entry in response.data:
            if not entry.is_folder:
                files.append((f"{prefix}/{entry.name}", entry))
                continue

            category_prefix = f"{prefix}/{entry.name}"
            nested = await self.backend.list(bucket, category_prefix, limit=self.page_size)
            if nested.error or nested.data is None:
                errors.append(f"{category_prefix}: {nested.error or 'no data returned'}")
                continue
            for child in nested.data:
                if not child.is_folder:
                    files.append((f"{category_prefix}/{child.name}", child))

        return files, errors

    async def _list_listing_folders(self, bucket: str) -> Tuple[List[str], Optional[str]]:
        response = await self.backend.list(bucket, "", limit=self.page_size)
        if response.error or response.data is None:
            return [], response.error or "no data returned"
        return [entry.name for entry in response.data if entry.is_folder], None

    async def cleanup_bucket(
        self,
        stage: Union[PipelineStage, str],
        dry_run: bool = False,
    ) -> CleanupResult:
        """
        Delete expired objects from one stage bucket.

        Args:
            stage: Stage to sweep; qc and final return immediately
            dry_run: Count expired objects without deleting them

        Returns:
            CleanupResult with deleted count and per-folder errors
        """
        stage = PipelineStage.coerce(stage)
        result = CleanupResult(stage=stage.value, bucket=stage.bucket, dry_run=dry_run)

        retention_hours = stage.retention_hours
        if retention_hours is None:
            logger.debug(f"Stage {stage.value} has no retention window, skipping cleanup")
            return result

        now_ms = self._clock()
        logger.info(
            f"Cleaning {stage.bucket} (retention {retention_hours}h)"
            f"{' [DRY RUN]' if dry_run else ''}"
        )

        try:
            folders, list_error = await self._list_listing_folders(stage.bucket)
        except Exception as e:
            folders, list_error = [], str(e)
        if list_error:
            logger.error(f"Failed to list listing folders in {stage.bucket}: {list_error}")
            result.errors.append(f"{stage.bucket}: {list_error}")
            return result

        for listing_folder in folders:
            prefix = f"{listing_folder}/{stage.value}"
            try:
                files, list_errors = await self._list_files(stage.bucket, prefix)
                for message in list_errors:
                    logger.warning(f"Cleanup listing error in {stage.bucket}: {message}")
                result.errors.extend(list_errors)
                result.scanned_count += len(files)

                expired = [
                    path for path, entry in files
                    if is_expired(entry.name, retention_hours, now_ms)
                ]
                if not expired:
                    continue

                if dry_run:
                    for path in expired:
                        logger.info(f"  [DRY RUN] Would delete: {stage.bucket}/{path}")
                    result.deleted_count += len(expired)
                    result.deleted_paths.extend(expired)
                    continue

                response = await self.backend.remove(stage.bucket, expired)
                if response.error:
                    logger.warning(f"Failed to delete expired files under {prefix}: {response.error}")
                    result.errors.append(f"{prefix}: {response.error}")
                    continue

                result.deleted_count += len(expired)
                result.deleted_paths.extend(expired)

            except Exception as e:
                logger.warning(f"Cleanup of {stage.bucket}/{prefix} failed: {e}")
                result.errors.append(f"{prefix}: {e}")

        logger.info(
            f"Cleaned {stage.bucket}: {result.deleted_count} expired of "
            f"{result.scanned_count} scanned, {len(result.errors)} errors"
        )
        return result

    async def run_full_cleanup(self, dry_run: bool = False) -> CleanupSummary:
        """
        Sweep the raw and processing stages, one after the other.

        Returns:
            CleanupSummary with per-stage results and totals
        """
        started_at = datetime.now(timezone.utc).isoformat()
        results: Dict[str, CleanupResult] = {}

        for stage in CLEANUP_STAGES:
            results[stage.value] = await self.cleanup_bucket(stage, dry_run=dry_run)

        summary = CleanupSummary(
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
            results=results,
            total_deleted=sum(r.deleted_count for r in results.values()),
            total_errors=sum(len(r.errors) for r in results.values()),
            dry_run=dry_run,
        )
        logger.info(
            f"Full cleanup finished: {summary.total_deleted} deleted, "
            f"{summary.total_errors} errors"
        )
        return summary

    async def get_storage_stats(self) -> Dict[str, StageStats]:
        """
        Count objects and bytes per stage across all listing folders.

        Best-effort monitoring: a failing stage keeps whatever was counted
        before the failure and never raises.
        """
        stats: Dict[str, StageStats] = {}

        for stage in ALL_STAGES:
            stage_stats = StageStats(bucket=stage.bucket)
            stats[stage.value] = stage_stats
            try:
                folders, list_error = await self._list_listing_folders(stage.bucket)
                if list_error:
                    logger.debug(f"Storage stats skipped {stage.bucket}: {list_error}")
                    continue
                for listing_folder in folders:
                    files, _ = await self._list_files(stage.bucket, f"{listing_folder}/{stage.value}")
                    stage_stats.file_count += len(files)
                    stage_stats.total_bytes += sum(entry.size or 0 for _, entry in files)
            except Exception as e:
                logger.debug(f"Storage stats failed for {stage.bucket}: {e}")

        return stats


def create_cleanup_service(backend: Optional[StorageBackend] = None) -> StorageCleanupService:
    """Build a cleanup service, defaulting to the MinIO backend from settings."""
    if backend is None:
        from .minio_service import get_storage_backend

        backend = get_storage_backend()
    return StorageCleanupService(backend=backend)
