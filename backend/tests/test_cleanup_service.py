"""
Tests for StorageCleanupService retention sweeps.
"""

import pytest
from unittest.mock import AsyncMock, patch

from listing_media.core.storage.cleanup_service import (
    MS_PER_HOUR,
    StorageCleanupService,
    create_cleanup_service,
    is_expired,
)
from listing_media.core.storage.stages import PipelineStage

NOW_MS = 1760000000000
DAY_MS = 24 * MS_PER_HOUR

RAW = PipelineStage.RAW.bucket
PROCESSING = PipelineStage.PROCESSING.bucket
QC = PipelineStage.QC.bucket
FINAL = PipelineStage.FINAL.bucket


def aged(hours: float, suffix: str = "abcdef", ext: str = "jpg") -> str:
    """Object name whose embedded timestamp is ``hours`` old at NOW_MS."""
    return f"{int(NOW_MS - hours * MS_PER_HOUR)}-{suffix}.{ext}"


@pytest.fixture
def cleanup(fake_backend):
    return StorageCleanupService(backend=fake_backend, page_size=1000, clock=lambda: NOW_MS)


class TestIsExpired:
    """Test the expiry rule."""

    def test_exactly_at_retention_is_kept(self):
        assert is_expired(aged(168), 168, NOW_MS) is False

    def test_one_ms_past_retention_expires(self):
        name = f"{NOW_MS - 168 * MS_PER_HOUR - 1}-abcdef.jpg"
        assert is_expired(name, 168, NOW_MS) is True

    def test_processing_window(self):
        assert is_expired(aged(47), 48, NOW_MS) is False
        assert is_expired(aged(49), 48, NOW_MS) is True

    @pytest.mark.parametrize("name", ["photo.jpg", "abc-123.jpg", ".emptyFolderPlaceholder", "x"])
    def test_names_without_timestamp_never_expire(self, name):
        assert is_expired(name, 1, NOW_MS) is False

    def test_unbounded_retention_never_expires(self):
        assert is_expired("1-abcdef.jpg", None, NOW_MS) is False

    def test_full_key_is_accepted(self):
        assert is_expired(f"L1/raw/{aged(200)}", 168, NOW_MS) is True


class TestCleanupBucket:
    """Test sweeping one stage bucket."""

    @pytest.mark.asyncio
    async def test_deletes_ten_day_old_raw_object(self, cleanup, fake_backend):
        old_path = f"L1/raw/{aged(240)}"
        fake_backend.put(RAW, old_path)

        result = await cleanup.cleanup_bucket("raw")

        assert result.deleted_count == 1
        assert result.deleted_paths == [old_path]
        assert result.errors == []
        assert fake_backend.keys(RAW) == []
        assert fake_backend.calls_named("remove") == [(RAW, [old_path])]

    @pytest.mark.asyncio
    async def test_keeps_fresh_and_malformed_objects(self, cleanup, fake_backend):
        old_path = f"L1/raw/{aged(200, 'oldold')}"
        fresh_path = f"L1/raw/{aged(1, 'newnew')}"
        fake_backend.put(RAW, old_path)
        fake_backend.put(RAW, fresh_path)
        fake_backend.put(RAW, "L1/raw/legacy-photo.jpg")

        result = await cleanup.cleanup_bucket(PipelineStage.RAW)

        assert result.scanned_count == 3
        assert result.deleted_paths == [old_path]
        assert fake_backend.keys(RAW) == sorted([fresh_path, "L1/raw/legacy-photo.jpg"])

    @pytest.mark.asyncio
    async def test_one_delete_call_per_listing_folder(self, cleanup, fake_backend):
        for listing in ("L1", "L2"):
            fake_backend.put(RAW, f"{listing}/raw/{aged(300, 'aaaaaa')}")
            fake_backend.put(RAW, f"{listing}/raw/{aged(400, 'bbbbbb')}")

        result = await cleanup.cleanup_bucket("raw")

        removes = fake_backend.calls_named("remove")
        assert len(removes) == 2
        assert [len(paths) for _, paths in removes] == [2, 2]
        assert result.deleted_count == 4

    @pytest.mark.asyncio
    async def test_descends_into_category_folders(self, cleanup, fake_backend):
        old_path = f"L1/processing/kitchen/{aged(72)}"
        fake_backend.put(PROCESSING, old_path)

        result = await cleanup.cleanup_bucket("processing")

        assert result.deleted_paths == [old_path]
        assert fake_backend.keys(PROCESSING) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stage", ["qc", "final"])
    async def test_unbounded_stages_make_no_storage_calls(self, cleanup, fake_backend, stage):
        fake_backend.put(PipelineStage(stage).bucket, f"L1/{stage}/{aged(10000)}")

        result = await cleanup.cleanup_bucket(stage)

        assert result.deleted_count == 0
        assert result.errors == []
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_dry_run_deletes_nothing(self, cleanup, fake_backend):
        old_path = f"L1/raw/{aged(240)}"
        fake_backend.put(RAW, old_path)

        result = await cleanup.cleanup_bucket("raw", dry_run=True)

        assert result.dry_run is True
        assert result.deleted_count == 1
        assert result.deleted_paths == [old_path]
        assert fake_backend.calls_named("remove") == []
        assert fake_backend.keys(RAW) == [old_path]

    @pytest.mark.asyncio
    async def test_top_level_list_failure(self, cleanup, fake_backend):
        fake_backend.fail_list_prefixes.add((RAW, ""))

        result = await cleanup.cleanup_bucket("raw")

        assert result.deleted_count == 0
        assert len(result.errors) == 1
        assert result.errors[0].startswith(RAW)

    @pytest.mark.asyncio
    async def test_folder_list_failure_does_not_abort_sweep(self, cleanup, fake_backend):
        fake_backend.put(RAW, f"bad/raw/{aged(240, 'aaaaaa')}")
        good_path = f"good/raw/{aged(240, 'bbbbbb')}"
        fake_backend.put(RAW, good_path)
        fake_backend.fail_list_prefixes.add((RAW, "bad/raw"))

        result = await cleanup.cleanup_bucket("raw")

        assert result.deleted_paths == [good_path]
        assert len(result.errors) == 1
        assert "bad/raw" in result.errors[0]

    @pytest.mark.asyncio
    async def test_remove_failure_is_recorded(self, cleanup, fake_backend):
        fake_backend.put(RAW, f"L1/raw/{aged(240)}")
        fake_backend.fail_remove = "access denied"

        result = await cleanup.cleanup_bucket("raw")

        assert result.deleted_count == 0
        assert result.errors == ["L1/raw: access denied"]

    @pytest.mark.asyncio
    async def test_backend_exception_is_isolated_per_folder(self, cleanup, fake_backend):
        fake_backend.put(RAW, f"L1/raw/{aged(240)}")
        fake_backend.remove = AsyncMock(side_effect=ConnectionError("socket closed"))

        result = await cleanup.cleanup_bucket("raw")

        assert result.deleted_count == 0
        assert result.errors == ["L1/raw: socket closed"]

    @pytest.mark.asyncio
    async def test_list_calls_use_page_size(self, fake_backend):
        fake_backend.put(RAW, f"L1/raw/{aged(240)}")
        service = StorageCleanupService(backend=fake_backend, page_size=25, clock=lambda: NOW_MS)

        await service.cleanup_bucket("raw")

        assert {limit for _, _, limit in fake_backend.calls_named("list")} == {25}

    @pytest.mark.asyncio
    async def test_unknown_stage_raises(self, cleanup):
        with pytest.raises(ValueError):
            await cleanup.cleanup_bucket("archive")


class TestRunFullCleanup:
    @pytest.mark.asyncio
    async def test_sweeps_raw_then_processing(self, cleanup, fake_backend):
        fake_backend.put(RAW, f"L1/raw/{aged(240)}")
        fake_backend.put(PROCESSING, f"L1/processing/{aged(72)}")
        fake_backend.put(QC, f"L1/qc/{aged(10000)}")

        summary = await cleanup.run_full_cleanup()

        assert list(summary.results) == ["raw", "processing"]
        assert summary.total_deleted == 2
        assert summary.total_errors == 0
        assert fake_backend.keys(QC) != []
        buckets = [bucket for bucket, _, _ in fake_backend.calls_named("list")]
        assert QC not in buckets and FINAL not in buckets

    @pytest.mark.asyncio
    async def test_raw_failure_still_sweeps_processing(self, cleanup, fake_backend):
        fake_backend.put(RAW, f"L1/raw/{aged(240)}")
        fake_backend.put(PROCESSING, f"L1/processing/{aged(72)}")
        fake_backend.fail_list_prefixes.add((RAW, "L1/raw"))

        summary = await cleanup.run_full_cleanup()

        assert summary.results["raw"].deleted_count == 0
        assert summary.results["processing"].deleted_count == 1
        assert summary.total_errors == 1
        assert summary.total_deleted == 1

    @pytest.mark.asyncio
    async def test_dry_run_summary(self, cleanup, fake_backend):
        fake_backend.put(RAW, f"L1/raw/{aged(240)}")

        summary = await cleanup.run_full_cleanup(dry_run=True)

        assert summary.dry_run is True
        assert summary.total_deleted == 1
        assert fake_backend.calls_named("remove") == []


class TestStorageStats:
    @pytest.mark.asyncio
    async def test_counts_files_and_bytes_per_stage(self, cleanup, fake_backend):
        fake_backend.put(RAW, "L1/raw/1-aaaaaa.jpg", b"12345")
        fake_backend.put(RAW, "L2/raw/exterior/2-bbbbbb.jpg", b"123")
        fake_backend.put(FINAL, "L1/final/3-cccccc.jpg", b"1")

        stats = await cleanup.get_storage_stats()

        assert stats["raw"].file_count == 2
        assert stats["raw"].total_bytes == 8
        assert stats["processing"].file_count == 0
        assert stats["final"].bucket == FINAL
        assert stats["final"].file_count == 1

    @pytest.mark.asyncio
    async def test_stats_never_raise(self, cleanup, fake_backend):
        fake_backend.list = AsyncMock(side_effect=ConnectionError("down"))

        stats = await cleanup.get_storage_stats()

        assert set(stats) == {"raw", "processing", "qc", "final"}
        assert all(s.file_count == 0 for s in stats.values())


class TestFactory:
    def test_create_cleanup_service_default_backend(self, fake_backend):
        with patch(
            "listing_media.core.storage.minio_service.get_storage_backend",
            return_value=fake_backend,
        ):
            service = create_cleanup_service()

        assert service.backend is fake_backend
        assert service.page_size == 1000
