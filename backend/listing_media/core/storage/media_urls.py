"""
Media URL resolution helpers.

Media asset rows carry several URL-bearing fields from different eras of
the platform. These helpers pick the URL to serve and classify where an
asset's media lives, for gallery/delivery views and migration reporting.

URL precedence (``resolve_media_url``):
    media_url (native storage) > aryeo_url (legacy CDN) > storage_path

Source classification (``get_media_url_source``) uses a different check:
    media_url -> native, approved_storage_path -> approved,
    processed_storage_path -> processed, otherwise missing

The two orders are intentionally independent and must not be merged.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict

from listing_media.config import settings


class MediaUrlSource(str, Enum):
    NATIVE = "native"
    APPROVED = "approved"
    PROCESSED = "processed"
    MISSING = "missing"


class MigrationStatus:
    PENDING = "pending"
    MIGRATING = "migrating"
    COMPLETED = "completed"
    FAILED = "failed"


class MediaAsset(BaseModel):
    """
    Subset of a ``media_assets`` row consumed by the resolver.

    Every field is optional so partial projections can be resolved too.
    """
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    listing_id: Optional[str] = None
    type: Optional[str] = None
    media_url: Optional[str] = None
    aryeo_url: Optional[str] = None
    storage_path: Optional[str] = None
    approved_storage_path: Optional[str] = None
    processed_storage_path: Optional[str] = None
    migration_status: Optional[str] = None


AssetLike = Union[MediaAsset, Mapping[str, Any]]

URL_PRECEDENCE = ("media_url", "aryeo_url", "storage_path")


@dataclass
class ResolvedMedia:
    asset: AssetLike
    url: Optional[str]
    source: MediaUrlSource


@dataclass
class MediaStats:
    total: int = 0
    native: int = 0
    approved: int = 0
    processed: int = 0
    missing: int = 0

    @property
    def native_percent(self) -> float:
        if not self.total:
            return 0.0
        return round(self.native / self.total * 100, 1)


def _field(asset: AssetLike, name: str) -> Optional[str]:
    if isinstance(asset, Mapping):
        value = asset.get(name)
    else:
        value = getattr(asset, name, None)
    return value or None


def resolve_media_url(asset: Optional[AssetLike]) -> Optional[str]:
    """
    Return the best URL to serve for ``asset``.

    Args:
        asset: Full or partial media asset (model or mapping), or None

    Returns:
        The first non-empty of media_url, aryeo_url, storage_path; else None

    Example:
        >>> resolve_media_url({"media_url": "https://a/x.jpg", "aryeo_url": "https://b/x.jpg"})
        'https://a/x.jpg'
    """
    if asset is None:
        return None
    for name in URL_PRECEDENCE:
        value = _field(asset, name)
        if value:
            return value
    return None


def get_media_url_source(asset: AssetLike) -> MediaUrlSource:
    """Classify where the asset's media currently lives."""
    if _field(asset, "media_url"):
        return MediaUrlSource.NATIVE
    if _field(asset, "approved_storage_path"):
        return MediaUrlSource.APPROVED
    if _field(asset, "processed_storage_path"):
        return MediaUrlSource.PROCESSED
    return MediaUrlSource.MISSING


def is_native_media(asset: AssetLike) -> bool:
    """True only when migration completed AND a native URL is present."""
    return (
        _field(asset, "migration_status") == MigrationStatus.COMPLETED
        and _field(asset, "media_url") is not None
    )


def resolve_media_urls(assets: Iterable[AssetLike]) -> List[ResolvedMedia]:
    return [
        ResolvedMedia(asset=asset, url=resolve_media_url(asset), source=get_media_url_source(asset))
        for asset in assets
    ]


def filter_by_source(
    assets: Iterable[AssetLike],
    source: Union[MediaUrlSource, str],
) -> List[AssetLike]:
    source = MediaUrlSource(source)
    return [asset for asset in assets if get_media_url_source(asset) == source]


def get_media_stats(assets: Iterable[AssetLike]) -> MediaStats:
    """Count assets per source for migration-progress reporting."""
    stats = MediaStats()
    for asset in assets:
        stats.total += 1
        source = get_media_url_source(asset)
        setattr(stats, source.value, getattr(stats, source.value) + 1)
    return stats


def is_native_url(url: Optional[str], origin: Optional[str] = None) -> bool:
    """
    True iff ``url`` is served from the configured storage origin.

    Returns False (never raises) when no origin is configured.
    """
    origin = origin if origin is not None else settings.storage_public_url
    if not origin or not url:
        return False
    return url.startswith(origin)
