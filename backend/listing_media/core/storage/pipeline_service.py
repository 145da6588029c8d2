"""
Media Pipeline Service.

Orchestrates media flow through the processing stages:

    RAW upload -> AI/HDR edit (processing) -> QC review -> final delivery

Transitions:
    ingest_raw             (none) -> raw
    promote_to_processing  raw -> processing    copy, raw copy untouched
    promote_to_qc          processing -> qc     copy, processing copy untouched
    promote_to_final       qc -> final          copy, qc copy deleted, public URL
    reject_from_qc         qc -> (deleted)      terminal, with reason
    upload_from_url        (remote) -> raw      fetch, then ingest_raw
    migrate_from_aryeo     legacy CDN -> final  fetch, store, public URL

Raw and processing originals are left in place after promotion; the
cleanup service reaps them once their retention window has passed, which
gives an undo window equal to the stage retention.

The service does not check that a supplied source path came from a
previous promotion, and concurrent promotions of the same source are not
deduplicated: both succeed and produce independent copies.

Every public method returns a result object instead of raising for
storage failures or missing arguments.

Usage:
    pipeline = create_media_pipeline()
    result = await pipeline.ingest_raw("listing-1", data, "photo.jpg", "image/jpeg")
    if result.success:
        promoted = await pipeline.promote_to_processing("listing-1", raw_path=result.path)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Union

import httpx

from listing_media.config import settings

from .backend import StorageBackend, StorageEntry
from .media_validation import MediaType, validate_media_file
from .pipeline_events import (
    LoggingEventSink,
    PipelineAction,
    PipelineEvent,
    PipelineEventSink,
    emit_event,
)
from .pipeline_paths import basename, generate_pipeline_path, parse_timestamp, stage_prefix
from .stages import ALL_STAGES, PipelineStage

logger = logging.getLogger("listing_media.pipeline")

DEFAULT_CONTENT_TYPE = "application/octet-stream"


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass
class PipelineResult:
    """
    Outcome of a pipeline operation.

    Attributes:
        success: Whether the operation succeeded
        path: Stored path (ingest / reject)
        new_path: Destination path (promotions)
        public_url: Permanent URL (promotion to final only)
        error: Error message when success is False
        stale_path: qc path left behind when the post-promotion delete failed
    """
    success: bool
    path: Optional[str] = None
    new_path: Optional[str] = None
    public_url: Optional[str] = None
    error: Optional[str] = None
    stale_path: Optional[str] = None


@dataclass
class PresignedResult:
    success: bool
    upload_url: Optional[str] = None
    path: Optional[str] = None
    token: Optional[str] = None
    expires_in: Optional[int] = None
    error: Optional[str] = None


@dataclass
class MigrateResult:
    """
    Outcome of moving a legacy CDN asset into native storage.

    Attributes:
        success: Whether the asset is now stored natively
        new_url: Permanent public URL of the native copy
        path: Key in the final bucket
        metadata: Original metadata plus ``migrated_from``
        error: Error message when success is False
    """
    success: bool
    new_url: Optional[str] = None
    path: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class PipelineFile:
    name: str
    path: str
    size: int
    created_at: str
    content_type: str


@dataclass
class PipelineStatus:
    raw: int = 0
    processing: int = 0
    qc: int = 0
    final: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"raw": self.raw, "processing": self.processing, "qc": self.qc, "final": self.final}


def _category_of(path: str) -> Optional[str]:
    # {listing}/{stage}/{category}/{name}
    parts = path.split("/")
    if len(parts) == 4 and parts[2]:
        return parts[2]
    return None


def _created_at(entry: StorageEntry) -> str:
    if entry.last_modified is not None:
        return entry.last_modified.isoformat()
    timestamp = parse_timestamp(entry.name)
    if timestamp is not None:
        return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).isoformat()
    return datetime.now(timezone.utc).isoformat()


def _media_type_of(response: httpx.Response, default: str) -> str:
    # "image/jpeg; charset=binary" -> "image/jpeg"
    header = response.headers.get("content-type") or default
    return header.split(";")[0].strip() or default


class MediaPipelineService:
    """
    Media Pipeline Service.

    Sole writer of pipeline stage transitions. Talks to storage through an
    injected ``StorageBackend`` and reports transitions to an injected
    ``PipelineEventSink``.
    """

    def __init__(
        self,
        backend: StorageBackend,
        event_sink: Optional[PipelineEventSink] = None,
        page_size: Optional[int] = None,
        upload_expiry: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            backend: Storage backend used for every bucket operation
            event_sink: Receiver of pipeline events (defaults to logging)
            page_size: Max entries per listing call (default from settings)
            upload_expiry: Default signed upload lifetime in seconds
            http_client: Client for fetching remote media (created lazily)
        """
        self.backend = backend
        self.event_sink = event_sink if event_sink is not None else LoggingEventSink()
        self.page_size = page_size or settings.cleanup_page_size
        self.upload_expiry = upload_expiry or settings.presigned_upload_expiry
        self._http_client = http_client
        self.pending_events: Set[asyncio.Task] = set()

    def _emit(self, event: PipelineEvent) -> None:
        emit_event(self.event_sink, event, self.pending_events)

    async def drain_events(self, timeout: Optional[float] = None) -> int:
        """
        Wait for in-flight event recordings, e.g. before shutdown.

        Returns:
            Number of recordings still running when ``timeout`` expired
        """
        if not self.pending_events:
            return 0
        _, still_running = await asyncio.wait(set(self.pending_events), timeout=timeout)
        return len(still_running)

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client used for remote fetches."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=settings.media_fetch_timeout,
                follow_redirects=True,
                verify=True,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    # =========================================================================
    # INGEST
    # =========================================================================

    async def ingest_raw(
        self,
        listing_id: str,
        file: Union[bytes, bytearray, memoryview],
        filename: str,
        content_type: str,
        category: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        media_type: Optional[Union[MediaType, str]] = None,
    ) -> PipelineResult:
        """
        Upload bytes into the raw stage at a freshly generated path.

        Uploads never overwrite: a path collision is reported as a failure.

        Args:
            listing_id: Listing the capture belongs to
            file: File content
            filename: Original filename (only the extension is kept)
            content_type: MIME type stored with the object
            category: Optional category sub-folder, e.g. "interior"
            metadata: Extra data recorded on the ingest event
            media_type: When given, validate size and MIME type first

        Returns:
            PipelineResult with ``path`` on success
        """
        try:
            data = memoryview(file).tobytes()

            if media_type is not None:
                validation = validate_media_file(len(data), content_type, media_type)
                if not validation.valid:
                    return PipelineResult(success=False, error=validation.error)

            stage = PipelineStage.RAW
            path = generate_pipeline_path(listing_id, stage, filename, category)

            response = await self.backend.upload(
                stage.bucket,
                path,
                data,
                content_type=content_type,
                upsert=False,
            )
            if response.error:
                logger.error(f"Ingest failed for listing {listing_id}: {response.error}")
                return PipelineResult(success=False, error=response.error)

            stored_path = response.data or path
            self._emit(PipelineEvent(
                listing_id=listing_id,
                stage=stage,
                action=PipelineAction.INGEST,
                path=stored_path,
                metadata=dict(metadata or {}),
            ))

            logger.info(f"Ingested {filename} for listing {listing_id} -> {stored_path}")
            return PipelineResult(success=True, path=stored_path)

        except Exception as e:
            logger.error(f"Ingest failed for listing {listing_id}: {e}")
            return PipelineResult(success=False, error=str(e) or "Ingest failed")

    # =========================================================================
    # PROMOTIONS
    # =========================================================================

    async def _copy_forward(
        self,
        listing_id: str,
        source_path: str,
        source_stage: PipelineStage,
        target_stage: PipelineStage,
    ) -> PipelineResult:
        new_path = generate_pipeline_path(
            listing_id,
            target_stage,
            basename(source_path),
            _category_of(source_path),
        )

        response = await self.backend.copy(
            source_stage.bucket,
            source_path,
            target_stage.bucket,
            new_path,
        )
        if response.error:
            logger.error(
                f"Promotion {source_stage.value} -> {target_stage.value} failed "
                f"for {source_path}: {response.error}"
            )
            return PipelineResult(success=False, error=response.error)

        return PipelineResult(success=True, new_path=new_path)

    async def promote_to_processing(
        self,
        listing_id: str,
        raw_path: Optional[str] = None,
    ) -> PipelineResult:
        """
        Copy a raw file into the processing stage.

        The raw original is kept; cleanup expires it after its retention.

        Returns:
            PipelineResult with ``new_path`` on success
        """
        if not raw_path:
            return PipelineResult(success=False, error="rawPath (raw_path) is required")

        try:
            result = await self._copy_forward(
                listing_id, raw_path, PipelineStage.RAW, PipelineStage.PROCESSING
            )
            if result.success:
                self._emit(PipelineEvent(
                    listing_id=listing_id,
                    stage=PipelineStage.PROCESSING,
                    action=PipelineAction.PROMOTE,
                    path=result.new_path,
                    previous_path=raw_path,
                ))
            return result
        except Exception as e:
            logger.error(f"Promotion to processing failed for {raw_path}: {e}")
            return PipelineResult(success=False, error=str(e) or "Promotion failed")

    async def promote_to_qc(
        self,
        listing_id: str,
        processing_path: Optional[str] = None,
    ) -> PipelineResult:
        """Copy an edited file from processing into QC staging."""
        if not processing_path:
            return PipelineResult(success=False, error="processingPath (processing_path) is required")

        try:
            result = await self._copy_forward(
                listing_id, processing_path, PipelineStage.PROCESSING, PipelineStage.QC
            )
            if result.success:
                self._emit(PipelineEvent(
                    listing_id=listing_id,
                    stage=PipelineStage.QC,
                    action=PipelineAction.PROMOTE,
                    path=result.new_path,
                    previous_path=processing_path,
                ))
            return result
        except Exception as e:
            logger.error(f"Promotion to QC failed for {processing_path}: {e}")
            return PipelineResult(success=False, error=str(e) or "Promotion failed")

    async def promote_to_final(
        self,
        listing_id: str,
        qc_path: Optional[str] = None,
    ) -> PipelineResult:
        """
        Deliver an approved QC file.

        Copies qc -> final, resolves the permanent public URL, then deletes
        the qc copy. QC has no retention window, so the delete is required
        to avoid keeping the staging copy forever.

        If the copy succeeds but the delete fails, the promotion is still
        reported as successful (the asset is delivered) and the leftover qc
        path is returned in ``stale_path`` and recorded on the event.

        Returns:
            PipelineResult with ``new_path`` and ``public_url`` on success
        """
        if not qc_path:
            return PipelineResult(success=False, error="qcPath (qc_path) is required")

        try:
            result = await self._copy_forward(
                listing_id, qc_path, PipelineStage.QC, PipelineStage.FINAL
            )
            if not result.success:
                return result

            result.public_url = self.backend.get_public_url(
                PipelineStage.FINAL.bucket, result.new_path
            )

            removal = await self.backend.remove(PipelineStage.QC.bucket, [qc_path])
            event_metadata: Dict[str, Any] = {}
            if removal.error:
                logger.warning(
                    f"Delivered {result.new_path} but could not delete qc copy "
                    f"{qc_path}: {removal.error}"
                )
                result.stale_path = qc_path
                event_metadata["stale_qc_path"] = qc_path
                event_metadata["stale_qc_error"] = removal.error

            self._emit(PipelineEvent(
                listing_id=listing_id,
                stage=PipelineStage.FINAL,
                action=PipelineAction.PROMOTE,
                path=result.new_path,
                previous_path=qc_path,
                metadata=event_metadata,
            ))

            logger.info(f"Delivered {qc_path} for listing {listing_id} -> {result.new_path}")
            return result

        except Exception as e:
            logger.error(f"Promotion to final failed for {qc_path}: {e}")
            return PipelineResult(success=False, error=str(e) or "Promotion failed")

    async def reject_from_qc(
        self,
        listing_id: str,
        qc_path: Optional[str],
        reason: str,
    ) -> PipelineResult:
        """Delete a QC file and record the reviewer's reason. Terminal."""
        if not qc_path:
            return PipelineResult(success=False, error="qcPath (qc_path) is required")

        try:
            response = await self.backend.remove(PipelineStage.QC.bucket, [qc_path])
            if response.error:
                logger.error(f"Rejection failed for {qc_path}: {response.error}")
                return PipelineResult(success=False, error=response.error)

            self._emit(PipelineEvent(
                listing_id=listing_id,
                stage=PipelineStage.QC,
                action=PipelineAction.REJECT,
                path=qc_path,
                metadata={"reason": reason},
            ))

            logger.info(f"Rejected {qc_path} for listing {listing_id}: {reason}")
            return PipelineResult(success=True, path=qc_path)

        except Exception as e:
            logger.error(f"Rejection failed for {qc_path}: {e}")
            return PipelineResult(success=False, error=str(e) or "Rejection failed")

    # =========================================================================
    # REMOTE MEDIA
    # =========================================================================

    async def _fetch(self, url: str) -> httpx.Response:
        client = await self._get_http_client()
        return await client.get(url)

    async def upload_from_url(
        self,
        listing_id: str,
        source_url: str,
        filename: str,
        category: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        media_type: Optional[Union[MediaType, str]] = None,
    ) -> PipelineResult:
        """
        Fetch a remote file and ingest it into the raw stage.

        The stored content type comes from the response, falling back to
        ``application/octet-stream``.

        Returns:
            PipelineResult as returned by ``ingest_raw``
        """
        try:
            response = await self._fetch(source_url)
        except Exception as e:
            logger.error(f"Failed to fetch {source_url} for listing {listing_id}: {e}")
            return PipelineResult(success=False, error=str(e) or "Failed to upload from URL")

        if not response.is_success:
            return PipelineResult(
                success=False,
                error=f"Failed to fetch from URL: {response.status_code}",
            )

        content_type = _media_type_of(response, DEFAULT_CONTENT_TYPE)
        return await self.ingest_raw(
            listing_id,
            response.content,
            filename,
            content_type,
            category=category,
            metadata=metadata,
            media_type=media_type,
        )

    async def migrate_from_aryeo(
        self,
        listing_id: str,
        aryeo_url: str,
        category: Optional[str] = None,
        original_metadata: Optional[Dict[str, Any]] = None,
        media_type: Optional[Union[MediaType, str]] = None,
    ) -> MigrateResult:
        """
        Copy a legacy Aryeo CDN asset straight into the final bucket.

        Delivered legacy media skips the review stages. The returned
        ``new_url`` is what the asset row stores as ``media_url`` once its
        migration status is set to ``completed``.

        Args:
            listing_id: Listing the asset belongs to
            aryeo_url: Legacy CDN URL (its filename supplies the extension)
            category: Optional category sub-folder
            original_metadata: Metadata carried over to the result
            media_type: When given, validate size and MIME type first

        Returns:
            MigrateResult with ``new_url`` and ``path`` on success
        """
        original_filename = aryeo_url.split("/")[-1].split("?")[0]

        try:
            response = await self._fetch(aryeo_url)
            if not response.is_success:
                return MigrateResult(
                    success=False,
                    error=f"Failed to fetch from Aryeo: {response.status_code}",
                )

            data = response.content
            content_type = _media_type_of(response, "image/jpeg")

            if media_type is not None:
                validation = validate_media_file(len(data), content_type, media_type)
                if not validation.valid:
                    return MigrateResult(success=False, error=validation.error)

            stage = PipelineStage.FINAL
            path = generate_pipeline_path(listing_id, stage, original_filename, category)
            upload = await self.backend.upload(
                stage.bucket,
                path,
                data,
                content_type=content_type,
                upsert=False,
            )
            if upload.error:
                logger.error(f"Migration upload failed for {aryeo_url}: {upload.error}")
                return MigrateResult(success=False, error=upload.error)

            stored_path = upload.data or path
            self._emit(PipelineEvent(
                listing_id=listing_id,
                stage=stage,
                action=PipelineAction.MIGRATE,
                path=stored_path,
                metadata={"source_url": aryeo_url},
            ))

            logger.info(f"Migrated {aryeo_url} for listing {listing_id} -> {stored_path}")
            return MigrateResult(
                success=True,
                new_url=self.backend.get_public_url(stage.bucket, stored_path),
                path=stored_path,
                metadata={**(original_metadata or {}), "migrated_from": "aryeo"},
            )

        except Exception as e:
            logger.error(f"Migration failed for {aryeo_url}: {e}")
            return MigrateResult(success=False, error=str(e) or "Migration failed")

    # =========================================================================
    # SIGNED URLS
    # =========================================================================

    async def get_presigned_upload_url(
        self,
        listing_id: str,
        filename: str,
        content_type: str,
        category: Optional[str] = None,
        expires_in: Optional[int] = None,
        media_type: Optional[Union[MediaType, str]] = None,
    ) -> PresignedResult:
        """
        Reserve a raw-stage path and sign a direct client upload to it.

        Large captures go straight from the client to storage without
        passing through the application server.
        """
        expires_in = expires_in or self.upload_expiry

        try:
            if media_type is not None:
                validation = validate_media_file(None, content_type, media_type)
                if not validation.valid:
                    return PresignedResult(success=False, error=validation.error)

            path = generate_pipeline_path(listing_id, PipelineStage.RAW, filename, category)
            response = await self.backend.create_signed_upload_url(
                PipelineStage.RAW.bucket, path, expires_in=expires_in
            )
            if response.error or response.data is None:
                return PresignedResult(
                    success=False,
                    error=response.error or "Failed to create upload URL",
                )

            signed = response.data
            return PresignedResult(
                success=True,
                upload_url=signed.signed_url,
                path=signed.path,
                token=signed.token,
                expires_in=expires_in,
            )

        except Exception as e:
            logger.error(f"Failed to get presigned upload URL for listing {listing_id}: {e}")
            return PresignedResult(success=False, error=str(e) or "Failed to get presigned URL")

    async def get_signed_url(
        self,
        stage: Union[PipelineStage, str],
        path: str,
        expires_in: Optional[int] = None,
    ) -> Optional[str]:
        """Time-limited download URL for a private stage object, or None."""
        try:
            stage = PipelineStage.coerce(stage)
            response = await self.backend.create_signed_url(
                stage.bucket,
                path,
                expires_in=expires_in or settings.presigned_download_expiry,
            )
            if response.error or not response.data:
                return None
            return response.data
        except Exception as e:
            logger.warning(f"Failed to sign download URL for {path}: {e}")
            return None

    # =========================================================================
    # READS
    # =========================================================================

    async def get_stage_contents(
        self,
        listing_id: str,
        stage: Union[PipelineStage, str],
        category: Optional[str] = None,
    ) -> List[PipelineFile]:
        """
        List a listing's files in one stage (optionally one category).

        Returns an empty list on any backend error.
        """
        try:
            stage = PipelineStage.coerce(stage)
            prefix = stage_prefix(listing_id, stage, category)

            response = await self.backend.list(stage.bucket, prefix, limit=self.page_size)
            if response.error or response.data is None:
                if response.error:
                    logger.warning(f"Listing {stage.bucket}/{prefix} failed: {response.error}")
                return []

            return [
                PipelineFile(
                    name=entry.name,
                    path=f"{prefix}/{entry.name}",
                    size=entry.size or 0,
                    created_at=_created_at(entry),
                    content_type=entry.content_type or DEFAULT_CONTENT_TYPE,
                )
                for entry in response.data
                if not entry.is_folder
            ]
        except Exception as e:
            logger.warning(f"Listing stage {stage} for {listing_id} failed: {e}")
            return []

    async def get_pipeline_status(self, listing_id: str) -> PipelineStatus:
        """File counts per stage; the four stage queries run concurrently."""
        contents = await asyncio.gather(
            *(self.get_stage_contents(listing_id, stage) for stage in ALL_STAGES)
        )
        status = PipelineStatus()
        for stage, files in zip(ALL_STAGES, contents):
            setattr(status, stage.value, len(files))
        return status


def create_media_pipeline(
    backend: Optional[StorageBackend] = None,
    event_sink: Optional[PipelineEventSink] = None,
) -> MediaPipelineService:
    """Build a pipeline service, defaulting to the MinIO backend from settings."""
    if backend is None:
        from .minio_service import get_storage_backend

        backend = get_storage_backend()
    return MediaPipelineService(backend=backend, event_sink=event_sink)
