"""
Upload validation for listing media.

Size limits and allowed MIME types per media type. Used by the pipeline
before bytes (or a signed upload URL) are accepted into the raw stage.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union

MB = 1024 * 1024
GB = 1024 * MB


class MediaType(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"
    FLOOR_PLAN = "floor_plan"
    DOCUMENT = "document"
    VIRTUAL_STAGING = "virtual_staging"
    DRONE = "drone"
    TWILIGHT = "twilight"
    TOUR_3D = "3d_tour"
    MATTERPORT = "matterport"


IMAGE_TYPES = ["image/jpeg", "image/png", "image/webp", "image/heic", "image/tiff"]

SIZE_LIMITS: Dict[MediaType, int] = {
    MediaType.PHOTO: 50 * MB,
    MediaType.VIDEO: 2 * GB,
    MediaType.FLOOR_PLAN: 100 * MB,
    MediaType.DOCUMENT: 50 * MB,
    MediaType.VIRTUAL_STAGING: 50 * MB,
    MediaType.DRONE: 50 * MB,
    MediaType.TWILIGHT: 50 * MB,
    MediaType.TOUR_3D: 500 * MB,
    MediaType.MATTERPORT: 500 * MB,
}

ALLOWED_MIME_TYPES: Dict[MediaType, List[str]] = {
    MediaType.PHOTO: IMAGE_TYPES,
    MediaType.VIDEO: ["video/mp4", "video/quicktime", "video/x-msvideo", "video/webm"],
    MediaType.FLOOR_PLAN: ["application/pdf", "image/png", "image/jpeg", "image/svg+xml"],
    MediaType.DOCUMENT: [
        "application/pdf",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ],
    MediaType.VIRTUAL_STAGING: ["image/jpeg", "image/png", "image/webp"],
    MediaType.DRONE: IMAGE_TYPES,
    MediaType.TWILIGHT: ["image/jpeg", "image/png", "image/webp"],
    MediaType.TOUR_3D: ["application/octet-stream", "model/gltf-binary", "model/gltf+json"],
    MediaType.MATTERPORT: ["application/json", "text/html"],
}


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None


def _format_limit(limit: int) -> str:
    if limit >= GB:
        return f"{limit // GB}GB"
    return f"{limit // MB}MB"


def validate_media_file(
    size: Optional[int],
    content_type: str,
    media_type: Union[MediaType, str],
) -> ValidationResult:
    """
    Check a file against the limits for ``media_type``.

    Args:
        size: Size in bytes, or None when not known yet (signed uploads)
        content_type: MIME type reported by the client
        media_type: Media type the file is uploaded as

    Returns:
        ValidationResult with an error message when invalid
    """
    try:
        media_type = MediaType(media_type)
    except ValueError:
        return ValidationResult(valid=False, error=f"Unknown media type: {media_type}")

    limit = SIZE_LIMITS[media_type]
    if size is not None and size > limit:
        return ValidationResult(
            valid=False,
            error=f"File size exceeds maximum of {_format_limit(limit)}",
        )

    if content_type not in ALLOWED_MIME_TYPES[media_type]:
        return ValidationResult(
            valid=False,
            error=f"File type {content_type} not allowed for {media_type.value}",
        )

    return ValidationResult(valid=True)
