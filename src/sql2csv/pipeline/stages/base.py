"""Types shared by the extract, transform and write stages.

Every stage module exports a run() function that takes the PipelineContext
first and returns a StageResult. Fatal errors propagate as exceptions; the
orchestrator turns them into failed results with StageResult.from_error().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

EXTRACT = "extract"
TRANSFORM = "transform"
WRITE = "write"

STAGE_NAMES = (EXTRACT, TRANSFORM, WRITE)


@dataclass
class StageResult:
    """Outcome of one stage.

    Attributes:
        stage: Stage name (extract, transform or write).
        success: Whether the stage ran to completion.
        records_processed: Rows read, transformed or written by the stage.
        duration_seconds: Frozen stage timer value.
        message: Human-readable status message.
        metadata: Optional additional data about the execution.
    """

    stage: str
    success: bool
    records_processed: int
    duration_seconds: float
    message: str
    metadata: dict[str, Any] | None = field(default=None)

    @classmethod
    def from_error(
        cls, stage: str, error: BaseException, records_processed: int, duration_seconds: float
    ) -> StageResult:
        """Build a failed result for a stage that raised."""
        return cls(
            stage=stage,
            success=False,
            records_processed=records_processed,
            duration_seconds=duration_seconds,
            message=str(error) or type(error).__name__,
            metadata={"error_type": type(error).__name__},
        )

    def __str__(self) -> str:
        """Return human-readable string representation."""
        status = "OK" if self.success else "FAILED"
        return (
            f"{self.stage} {status}: {self.message} "
            f"({self.records_processed:,} rows in {self.duration_seconds:.1f}s)"
        )
