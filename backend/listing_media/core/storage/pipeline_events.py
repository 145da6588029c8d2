"""
Pipeline event recording.

Every state-changing pipeline operation emits a ``PipelineEvent`` to an
injected sink. Recording is fire-and-forget: ``emit_event`` schedules
``sink.record()`` as a background task and returns immediately, so a slow
or failing sink can never delay or change the outcome of an operation.
Sink failures are logged at debug level and dropped.

Usage:
    sink = LoggingEventSink()
    emit_event(sink, PipelineEvent(
        listing_id="abc",
        stage=PipelineStage.RAW,
        action="ingest",
        path="abc/raw/1735689600000-k3j9x2.jpg",
    ))
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Set

from .stages import PipelineStage

logger = logging.getLogger("listing_media.pipeline_events")

# Strong references to in-flight recordings when the caller keeps none
_background_tasks: Set[asyncio.Task] = set()


class PipelineAction:
    INGEST = "ingest"
    PROMOTE = "promote"
    REJECT = "reject"
    MIGRATE = "migrate"


@dataclass
class PipelineEvent:
    """Audit record of one pipeline transition."""
    listing_id: str
    stage: PipelineStage
    action: str
    path: str
    previous_path: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["stage"] = self.stage.value
        data["created_at"] = self.created_at.isoformat()
        return data


class PipelineEventSink(Protocol):
    async def record(self, event: PipelineEvent) -> None:
        ...


class LoggingEventSink:
    """Default sink: writes each event as a structured log record."""

    def __init__(self, event_logger: Optional[logging.Logger] = None):
        self._logger = event_logger or logging.getLogger("listing_media.pipeline.events")

    async def record(self, event: PipelineEvent) -> None:
        self._logger.info(
            f"[Pipeline] {event.action} {event.stage.value} {event.path}",
            extra={"pipeline_event": event.to_dict()},
        )


def _recording_done(event: PipelineEvent, pending: Set[asyncio.Task], task: asyncio.Task) -> None:
    pending.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Pipeline event sink failed for {event.action} {event.path}: {error}")


def emit_event(
    sink: Optional[PipelineEventSink],
    event: PipelineEvent,
    pending: Optional[Set[asyncio.Task]] = None,
) -> Optional[asyncio.Task]:
    """
    Schedule ``sink.record(event)`` without waiting for it.

    Must be called from a running event loop.

    Args:
        sink: Event sink, or None to drop the event
        event: Event to record
        pending: Set that holds the task until it finishes (module set if omitted)

    Returns:
        The scheduled task, or None when nothing was scheduled
    """
    if sink is None:
        return None
    pending = pending if pending is not None else _background_tasks

    try:
        task = asyncio.ensure_future(sink.record(event))
    except Exception as e:
        logger.debug(f"Pipeline event sink failed for {event.action} {event.path}: {e}")
        return None

    pending.add(task)
    task.add_done_callback(lambda done: _recording_done(event, pending, done))
    return task
