"""Export summary formatting.

Provides functions to render the final counts and timings of a run.
"""

from __future__ import annotations

from sql2csv.pipeline.orchestrator import ExportResult
from sql2csv.pipeline.stages.base import EXTRACT, TRANSFORM, WRITE


def format_duration(seconds: float) -> str:
    """Format seconds as H:MM:SS.mmm."""
    millis = int(round(seconds * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours}:{minutes:02d}:{secs:02d}.{millis:03d}"


def format_summary(result: ExportResult) -> str:
    """Format the counts and timings of a completed export.

    Args:
        result: Export result.

    Returns:
        Formatted summary string.
    """
    durations = result.stage_durations
    lines = [
        f"{result.rows_read:,} read in {format_duration(durations.get(EXTRACT, 0.0))}",
        f"{result.rows_transformed:,} process in {format_duration(durations.get(TRANSFORM, 0.0))}",
        f"{result.rows_written:,} write in {format_duration(durations.get(WRITE, 0.0))}",
    ]

    if result.encoding_errors:
        lines.append(f"{result.encoding_errors:,} fields replaced by placeholder")

    lines.append(f"Done in {format_duration(result.duration_seconds)}")
    return "\n".join(lines)


def format_failure(result: ExportResult) -> str:
    """Format the diagnostic for a failed export.

    Stages that completed before the failure keep their counts; the failed
    stage is reported by its error instead.

    Args:
        result: Export result with an error.

    Returns:
        Formatted diagnostic string.
    """
    lines = [f"ERROR: {result.message}"]
    for name, stage in result.stage_results.items():
        if name == result.failed_stage:
            continue
        state = "completed" if stage.success else "aborted"
        lines.append(
            f"  {name}: {state} after {stage.records_processed:,} rows "
            f"in {format_duration(stage.duration_seconds)}"
        )
    return "\n".join(lines)
