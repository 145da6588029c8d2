#!/usr/bin/env python3
# backend/listing_media/core/commands/init_storage.py
"""
Object storage initialization command.

Creates the four pipeline stage buckets if they do not exist yet. Safe to
run multiple times; existing buckets are left untouched.

Usage:
    python -m listing_media.core.commands.init_storage

Environment Variables:
    - MINIO_ENDPOINT: MinIO server endpoint (e.g., minio:9000)
    - MINIO_ACCESS_KEY: MinIO access key
    - MINIO_SECRET_KEY: MinIO secret key

Note:
    Expiry of raw and processing objects is handled by the cleanup command,
    not by bucket lifecycle rules, because age is read from object names.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from listing_media.config import settings
from listing_media.core.storage.backend import StorageBackend
from listing_media.core.storage.minio_service import get_storage_backend
from listing_media.core.storage.stages import ALL_STAGES

logger = logging.getLogger(__name__)


async def init_storage(backend: StorageBackend) -> int:
    """
    Ensure every stage bucket exists.

    Returns:
        0 on success, 1 if any bucket could not be created
    """
    logger.info("Initializing pipeline storage...")
    failures = 0

    for stage in ALL_STAGES:
        response = await backend.ensure_bucket(stage.bucket)
        if response.error:
            logger.error(f"ERROR: Failed to create bucket {stage.bucket}: {response.error}")
            failures += 1
        elif response.data:
            logger.info(f"✓ Created bucket: {stage.bucket} ({stage.value})")
        else:
            logger.info(f"✓ Bucket {stage.bucket} already exists ({stage.value})")

    if failures:
        return 1

    logger.info("=" * 70)
    for stage in ALL_STAGES:
        retention = f"{stage.retention_hours}h retention" if stage.is_temporary else "no expiry"
        logger.info(f"  • {stage.value:<11} {stage.bucket} ({retention})")
    logger.info("=" * 70)
    return 0


def main(argv: Optional[List[str]] = None):
    """Main entry point for the command."""
    parser = argparse.ArgumentParser(
        description="Create pipeline stage buckets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(levelname)s: %(message)s",
    )

    try:
        sys.exit(asyncio.run(init_storage(get_storage_backend())))
    except KeyboardInterrupt:
        logger.info("\nInterrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"ERROR: Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
