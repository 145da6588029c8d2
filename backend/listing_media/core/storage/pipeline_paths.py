"""
Pipeline Path Service.

Generates canonical, traversal-safe object keys for every stage of the
media pipeline and parses them back for the cleanup sweep.

Storage Structure (per stage bucket):
    {listing_id}/
    └── {stage}/
        ├── {timestamp_ms}-{suffix}.{ext}
        └── {category}/
            └── {timestamp_ms}-{suffix}.{ext}

The millisecond timestamp embedded in the object name is the only source
of truth for object age. Keys whose name does not start with ``{digits}-``
are never treated as expirable.
"""

import random
import re
import string
import time
from typing import Optional, Union

from .stages import PipelineStage


# Placeholder used when a listing id sanitizes to nothing
UNKNOWN_LISTING_ID = "unknown"

# Extension used when the original filename has none
DEFAULT_EXTENSION = "bin"

SUFFIX_LENGTH = 6
SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
TIMESTAMP_PREFIX = re.compile(r"^(\d+)-")


def sanitize_listing_id(listing_id: str) -> str:
    """
    Reduce an untrusted listing id to a single safe path segment.

    Removes ``..`` sequences, keeps only the last ``/`` segment, then strips
    everything outside ``[a-zA-Z0-9_-]``.

    Example:
        >>> sanitize_listing_id("../malicious/path")
        'path'
        >>> sanitize_listing_id("../../")
        'unknown'
    """
    without_traversal = (listing_id or "").replace("..", "")
    last_segment = without_traversal.split("/")[-1]
    clean_id = UNSAFE_ID_CHARS.sub("", last_segment)
    return clean_id or UNKNOWN_LISTING_ID


def sanitize_category(category: str) -> str:
    """Replace every character outside ``[a-zA-Z0-9_-]`` with an underscore."""
    return UNSAFE_ID_CHARS.sub("_", category)


def file_extension(filename: str) -> str:
    """Lower-cased extension of ``filename``, or ``bin`` when there is none."""
    parts = (filename or "").split(".")
    if len(parts) > 1:
        return parts[-1].lower()
    return DEFAULT_EXTENSION


def random_suffix(rng: Optional[random.Random] = None) -> str:
    chooser = rng or random
    return "".join(chooser.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))


def stage_prefix(
    listing_id: str,
    stage: Union[PipelineStage, str],
    category: Optional[str] = None,
) -> str:
    """
    Prefix under which a listing's objects for one stage are stored.

    Args:
        listing_id: Listing identifier (sanitized here)
        stage: Pipeline stage
        category: Optional category sub-folder (sanitized here)

    Returns:
        Prefix like ``{listing_id}/{stage}`` or ``{listing_id}/{stage}/{category}``
    """
    stage = PipelineStage.coerce(stage)
    prefix = f"{sanitize_listing_id(listing_id)}/{stage.value}"
    if category:
        prefix = f"{prefix}/{sanitize_category(category)}"
    return prefix


def generate_pipeline_path(
    listing_id: str,
    stage: Union[PipelineStage, str],
    filename: str,
    category: Optional[str] = None,
    *,
    now_ms: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Generate a storage key for a file entering ``stage``.

    The key combines the epoch millisecond timestamp with a short random
    suffix, so concurrent ingests of identical filenames never collide.

    Args:
        listing_id: Untrusted listing identifier
        stage: Target pipeline stage
        filename: Untrusted original filename (only its extension is kept)
        category: Optional category such as "interior"
        now_ms: Timestamp override (defaults to the current time)
        rng: Random source for the suffix (defaults to the module RNG)

    Returns:
        Key like ``{listing_id}/{stage}/[{category}/]{ms}-{suffix}.{ext}``

    Example:
        >>> generate_pipeline_path("L1", "raw", "photo.JPG")
        'L1/raw/1735689600000-k3j9x2.jpg'
    """
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    name = f"{timestamp}-{random_suffix(rng)}.{file_extension(filename)}"
    return f"{stage_prefix(listing_id, stage, category)}/{name}"


def parse_timestamp(name: str) -> Optional[int]:
    """
    Extract the embedded creation timestamp from an object name.

    Accepts a bare name or a full key (only the last segment is inspected).

    Returns:
        Epoch milliseconds, or None when the name does not match ``^\\d+-``
    """
    object_name = (name or "").rsplit("/", 1)[-1]
    match = TIMESTAMP_PREFIX.match(object_name)
    if not match:
        return None
    return int(match.group(1))


def basename(path: str) -> str:
    """Last path segment of a storage key, or ``file`` for an empty key."""
    return (path or "").rsplit("/", 1)[-1] or "file"
