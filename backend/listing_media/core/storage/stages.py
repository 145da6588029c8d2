"""
Pipeline stage definitions.

Media moves through four storage areas, each backed by its own bucket:

    raw  ──►  processing  ──►  qc  ──►  final

Each member carries its bucket name and retention window in its own
definition, so a stage cannot be added without both.

    - raw:         asm-raw-uploads   168h (abandoned uploads expire)
    - processing:  asm-processing     48h (timed-out edit jobs expire)
    - qc:          asm-qc-staging    until approved/rejected
    - final:       asm-media         permanent delivery
"""

from enum import Enum
from typing import Dict, Optional, Tuple, Union


class PipelineStage(str, Enum):
    """Closed set of pipeline stages with their bucket and retention."""

    RAW = ("raw", "asm-raw-uploads", 168)
    PROCESSING = ("processing", "asm-processing", 48)
    QC = ("qc", "asm-qc-staging", None)
    FINAL = ("final", "asm-media", None)

    def __new__(cls, value: str, bucket: str, retention_hours: Optional[int]):
        obj = str.__new__(cls, value)
        obj._value_ = value
        obj.bucket = bucket
        obj.retention_hours = retention_hours
        return obj

    def __str__(self) -> str:
        return self.value

    @property
    def is_temporary(self) -> bool:
        """True for stages the cleanup sweep is allowed to reclaim."""
        return self.retention_hours is not None

    @classmethod
    def coerce(cls, stage: Union["PipelineStage", str]) -> "PipelineStage":
        """
        Accept a member or its string value.

        Raises:
            ValueError: if the value is not one of the four stages
        """
        if isinstance(stage, cls):
            return stage
        try:
            return cls(stage)
        except ValueError:
            raise ValueError(f"Unknown pipeline stage: {stage!r}") from None


ALL_STAGES: Tuple[PipelineStage, ...] = (
    PipelineStage.RAW,
    PipelineStage.PROCESSING,
    PipelineStage.QC,
    PipelineStage.FINAL,
)

# Only the temporary stages are ever swept
CLEANUP_STAGES: Tuple[PipelineStage, ...] = (PipelineStage.RAW, PipelineStage.PROCESSING)

PIPELINE_BUCKETS: Dict[PipelineStage, str] = {stage: stage.bucket for stage in PipelineStage}

RETENTION_HOURS: Dict[PipelineStage, Optional[int]] = {
    stage: stage.retention_hours for stage in PipelineStage
}
