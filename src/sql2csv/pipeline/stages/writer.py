"""Write stage: the sole consumer of the record channel."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Iterator
from pathlib import Path

import structlog

from sql2csv.core.errors import SinkError
from sql2csv.core.types import EncodedRecord
from sql2csv.pipeline.channel import Channel
from sql2csv.pipeline.context import PipelineContext
from sql2csv.pipeline.stages.base import WRITE, StageResult

logger = structlog.get_logger(__name__)

ENCODING = "utf-8"
LINE_TERMINATOR = "\n"


def restore_order(records: Iterable[EncodedRecord], start: int = 0) -> Iterator[EncodedRecord]:
    """Yield records strictly by sequence number.

    Records that arrive ahead of the next expected sequence wait in a buffer
    whose size is bounded by the number of rows in flight between the
    extract and write stages.

    Args:
        records: Records in arrival order.
        start: First expected sequence number.

    Yields:
        Records in source order.
    """
    pending: dict[int, EncodedRecord] = {}
    expected = start

    for record in records:
        if record.sequence != expected:
            pending[record.sequence] = record
            continue
        yield record
        expected += 1
        while expected in pending:
            yield pending.pop(expected)
            expected += 1

    if pending:
        # Only reachable when an upstream stage failed mid-run
        logger.warning("reorder_gap", expected=expected, buffered=len(pending))
        for sequence in sorted(pending):
            yield pending[sequence]


def _open_target(destination: Path, atomic: bool) -> tuple[Path, int | None]:
    """Pick the path to write to; returns (path, fd of temp file or None)."""
    if not atomic:
        return destination, None
    fd, name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".tmp", dir=destination.parent)
    return Path(name), fd


def write_records(
    context: PipelineContext,
    records: Iterable[EncodedRecord],
    destination: Path,
    atomic: bool = False,
) -> int:
    """Write records to the destination, one line each.

    Args:
        context: Shared pipeline context.
        records: Records to write, already in output order.
        destination: Output file path; created or truncated.
        atomic: Write to a temporary sibling and rename it on success.

    Returns:
        Number of lines written.

    Raises:
        SinkError: On any I/O failure.
    """
    written = context.counters.written
    count = 0
    target: Path | None = None

    try:
        target, fd = _open_target(destination, atomic)
        file: Path | int = fd if fd is not None else target
        with open(file, "w", encoding=ENCODING, newline=LINE_TERMINATOR) as handle:
            for record in records:
                handle.write(record.line)
                handle.write(LINE_TERMINATOR)
                count += 1
                written.increment()
        if atomic:
            os.replace(target, destination)
    except OSError as e:
        raise SinkError(f"Cannot write {destination}: {e.strerror or e}", stage=WRITE) from e
    finally:
        if atomic and target is not None and target != destination and target.exists():
            target.unlink()

    return count


def run(
    context: PipelineContext,
    channel: Channel[EncodedRecord],
    destination: Path,
    ordered: bool = True,
    atomic: bool = False,
) -> StageResult:
    """Run the write stage.

    Args:
        context: Shared pipeline context.
        channel: Record channel filled by the transform stage.
        destination: Output file path.
        ordered: Restore source row order before writing.
        atomic: Write through a temporary file renamed on success.

    Returns:
        StageResult with the number of rows written.

    Raises:
        SinkError: On any I/O failure.
        PipelineCancelled: If the run was aborted.
    """
    timer = context.timers.write
    timer.start()
    logger.info("write_started", destination=str(destination), ordered=ordered, atomic=atomic)

    records: Iterable[EncodedRecord] = channel
    if ordered:
        records = restore_order(channel)

    try:
        count = write_records(context, records, Path(destination), atomic=atomic)
    finally:
        timer.stop()

    logger.info("write_completed", rows=count, seconds=round(timer.elapsed, 3))
    return StageResult(
        stage=WRITE,
        success=True,
        records_processed=count,
        duration_seconds=timer.elapsed,
        message=f"Wrote {count:,} rows to {destination}",
        metadata={"destination": str(destination), "ordered": ordered, "atomic": atomic},
    )
