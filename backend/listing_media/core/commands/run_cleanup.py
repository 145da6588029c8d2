#!/usr/bin/env python3
# backend/listing_media/core/commands/run_cleanup.py
"""
Pipeline storage cleanup command.

Deletes raw and processing objects that are past their retention window.
Intended to be triggered by an external scheduler (daily cron); the
cleanup service itself has no scheduling logic.

Usage:
    # Sweep raw and processing
    python -m listing_media.core.commands.run_cleanup

    # Show what would be deleted
    python -m listing_media.core.commands.run_cleanup --dry-run

    # Sweep a single stage
    python -m listing_media.core.commands.run_cleanup --stage raw

    # Print per-stage object counts and sizes instead of cleaning
    python -m listing_media.core.commands.run_cleanup --stats

Exit codes:
    0 - sweep completed without errors
    1 - sweep completed with errors, or failed to start
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from typing import List, Optional

from listing_media.config import settings
from listing_media.core.storage.cleanup_service import (
    StorageCleanupService,
    create_cleanup_service,
)
from listing_media.core.storage.stages import CLEANUP_STAGES, PipelineStage

logger = logging.getLogger(__name__)


async def run_cleanup(
    service: StorageCleanupService,
    stage: Optional[str] = None,
    dry_run: bool = False,
) -> int:
    """
    Run a cleanup sweep and log the outcome.

    Args:
        service: Cleanup service to use
        stage: Single stage to sweep, or None for raw + processing
        dry_run: Count without deleting

    Returns:
        0 when no errors were recorded, 1 otherwise
    """
    if stage:
        result = await service.cleanup_bucket(PipelineStage.coerce(stage), dry_run=dry_run)
        logger.info(f"{result.bucket}: {result.deleted_count} deleted, {len(result.errors)} errors")
        for error in result.errors:
            logger.error(f"  {error}")
        return 1 if result.errors else 0

    summary = await service.run_full_cleanup(dry_run=dry_run)
    logger.info("=" * 70)
    logger.info(f"Cleanup {'(dry run) ' if summary.dry_run else ''}started {summary.started_at}")
    for stage_name, result in summary.results.items():
        logger.info(f"  • {stage_name:<11} {result.deleted_count} deleted, {len(result.errors)} errors")
        for error in result.errors:
            logger.error(f"      {error}")
    logger.info(f"Total: {summary.total_deleted} deleted, {summary.total_errors} errors")
    logger.info(f"Completed {summary.completed_at}")
    logger.info("=" * 70)
    return 1 if summary.total_errors else 0


async def print_stats(service: StorageCleanupService) -> int:
    stats = await service.get_storage_stats()
    print(json.dumps({stage: asdict(s) for stage, s in stats.items()}, indent=2))
    return 0


def main(argv: Optional[List[str]] = None):
    """Main entry point for the command."""
    parser = argparse.ArgumentParser(
        description="Expire stale raw/processing media from pipeline storage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--stage",
        choices=[stage.value for stage in CLEANUP_STAGES],
        help="Sweep only this stage",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without deleting",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print per-stage storage statistics and exit",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(levelname)s: %(message)s",
    )

    try:
        service = create_cleanup_service()
        if args.stats:
            exit_code = asyncio.run(print_stats(service))
        else:
            exit_code = asyncio.run(run_cleanup(service, stage=args.stage, dry_run=args.dry_run))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("\nInterrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"ERROR: Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
