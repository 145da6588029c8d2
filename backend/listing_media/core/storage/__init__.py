"""
Media pipeline storage package.

Stage definitions, path generation, URL resolution, the storage backend
abstraction with its MinIO implementation, and the pipeline and cleanup
services built on top of it.
"""

from .backend import SignedUpload, StorageBackend, StorageEntry, StorageResponse
from .cleanup_service import (
    CleanupResult,
    CleanupSummary,
    StageStats,
    StorageCleanupService,
    create_cleanup_service,
    is_expired,
)
from .media_urls import (
    MediaAsset,
    MediaStats,
    MediaUrlSource,
    ResolvedMedia,
    filter_by_source,
    get_media_stats,
    get_media_url_source,
    is_native_media,
    is_native_url,
    resolve_media_url,
    resolve_media_urls,
)
from .media_validation import MediaType, ValidationResult, validate_media_file
from .pipeline_events import LoggingEventSink, PipelineAction, PipelineEvent, PipelineEventSink, emit_event
from .pipeline_paths import generate_pipeline_path, parse_timestamp, sanitize_listing_id
from .pipeline_service import (
    MediaPipelineService,
    MigrateResult,
    PipelineFile,
    PipelineResult,
    PipelineStatus,
    PresignedResult,
    create_media_pipeline,
)
from .stages import (
    ALL_STAGES,
    CLEANUP_STAGES,
    PIPELINE_BUCKETS,
    RETENTION_HOURS,
    PipelineStage,
)

__all__ = [
    "ALL_STAGES",
    "CLEANUP_STAGES",
    "CleanupResult",
    "CleanupSummary",
    "LoggingEventSink",
    "MediaAsset",
    "MediaPipelineService",
    "MediaStats",
    "MediaType",
    "MediaUrlSource",
    "MigrateResult",
    "PIPELINE_BUCKETS",
    "PipelineAction",
    "PipelineEvent",
    "PipelineEventSink",
    "PipelineFile",
    "PipelineResult",
    "PipelineStage",
    "PipelineStatus",
    "PresignedResult",
    "RETENTION_HOURS",
    "ResolvedMedia",
    "SignedUpload",
    "StageStats",
    "StorageBackend",
    "StorageCleanupService",
    "StorageEntry",
    "StorageResponse",
    "ValidationResult",
    "create_cleanup_service",
    "create_media_pipeline",
    "emit_event",
    "filter_by_source",
    "generate_pipeline_path",
    "get_media_stats",
    "get_media_url_source",
    "is_expired",
    "is_native_media",
    "is_native_url",
    "parse_timestamp",
    "resolve_media_url",
    "resolve_media_urls",
    "sanitize_listing_id",
    "validate_media_file",
]
