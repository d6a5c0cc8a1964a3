"""Transform stage: sanitize and encode rows into quoted CSV lines.

Encoding rules, applied to each field left to right:

1. Convert the value to text; None becomes the empty string, json/jsonb
   and array values (dict and list) become JSON text.
2. Trim leading and trailing whitespace.
3. For text values only: strip control characters U+0000-U+001F,
   collapse every whitespace run to a single space and trim again.
4. Double embedded double quotes and wrap the cell in double quotes.

Cells are joined with a single comma. Encoding is CPU-light, so the pool is
kept small: ``min(cpu_count // 2, 4)`` workers by default.
"""

from __future__ import annotations

import json
import os
import re
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Any

import structlog

from sql2csv.core.errors import EncodingError
from sql2csv.core.types import EncodedRecord, Row
from sql2csv.pipeline.channel import Channel
from sql2csv.pipeline.context import PipelineContext
from sql2csv.pipeline.stages.base import TRANSFORM, StageResult

logger = structlog.get_logger(__name__)

MAX_DEFAULT_WORKERS = 4
DELIMITER = ","
QUOTE = '"'
ERROR_PLACEHOLDER = "#ERROR"

CONTROL_CHARS = re.compile(r"[\u0000-\u001F]")
WHITESPACE_RUN = re.compile(r"\s+")


def default_pool_size() -> int:
    """Half the available CPUs, capped at MAX_DEFAULT_WORKERS, at least 1."""
    cpus = os.cpu_count() or 1
    return max(1, min(cpus // 2, MAX_DEFAULT_WORKERS))


def resolve_pool_size(requested: int | None) -> int:
    """Return ``requested`` if positive, else the default pool size."""
    if requested and requested > 0:
        return requested
    return default_pool_size()


def to_text(value: Any) -> str:
    """Convert a raw field value to its text representation.

    Args:
        value: Value as returned by the driver.

    Returns:
        Text form. Binary values use PostgreSQL's hex format; dicts and
        lists (json, jsonb and array columns) are rendered as JSON.

    Raises:
        EncodingError: If the value cannot be converted.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes | bytearray | memoryview):
        return "\\x" + bytes(value).hex()
    if isinstance(value, dict | list):
        try:
            return json.dumps(value, ensure_ascii=False, default=str)
        except Exception as e:
            raise EncodingError(
                f"Cannot convert {type(value).__name__}: {e}", stage=TRANSFORM
            ) from e
    try:
        return str(value)
    except Exception as e:
        raise EncodingError(f"Cannot convert {type(value).__name__}: {e}", stage=TRANSFORM) from e


def sanitize_text(text: str) -> str:
    """Strip control characters and collapse whitespace runs.

    The result is trimmed again so that sanitizing twice is a no-op.
    """
    text = CONTROL_CHARS.sub("", text)
    text = WHITESPACE_RUN.sub(" ", text)
    return text.strip()


def quote(text: str) -> str:
    """Wrap a cell in double quotes, doubling embedded quotes."""
    return QUOTE + text.replace(QUOTE, QUOTE * 2) + QUOTE


def encode_field(value: Any) -> str:
    """Encode one field as a quoted cell."""
    text = to_text(value).strip()
    if isinstance(value, str):
        text = sanitize_text(text)
    return quote(text)


def encode_values(values: tuple[Any, ...], context: PipelineContext | None = None) -> str:
    """Encode a tuple of field values into one output line.

    A field that fails to encode becomes the placeholder cell instead of
    failing the row.

    Args:
        values: Raw field values.
        context: Pipeline context whose encoding_errors counter is updated.

    Returns:
        Comma-joined quoted cells.
    """
    cells = []
    for index, value in enumerate(values):
        try:
            cells.append(encode_field(value))
        except EncodingError as e:
            if context is not None:
                context.counters.encoding_errors.increment()
            logger.warning("field_encoding_failed", column=index, error=str(e))
            cells.append(quote(ERROR_PLACEHOLDER))
    return DELIMITER.join(cells)


def encode_row(row: Row, context: PipelineContext | None = None) -> EncodedRecord:
    """Encode a Row, keeping its sequence number."""
    return EncodedRecord(row.sequence, encode_values(row.values, context))


def _work(context: PipelineContext, source: Channel[Row], sink: Channel[EncodedRecord]) -> int:
    """Drain the row channel until end-of-stream; return rows encoded."""
    transformed = context.counters.transformed
    count = 0
    for row in source:
        sink.put(encode_row(row, context))
        transformed.increment()
        count += 1
    return count


def run(
    context: PipelineContext,
    source: Channel[Row],
    sink: Channel[EncodedRecord],
    workers: int | None = None,
) -> StageResult:
    """Run the transform stage with a pool of workers.

    Records reach the sink in completion order; with more than one worker
    that order can differ from source order. The writer restores it when
    ordered output is requested.

    Args:
        context: Shared pipeline context.
        source: Row channel filled by the extract stage.
        sink: Record channel drained by the write stage.
        workers: Pool size; None or 0 selects default_pool_size().

    Returns:
        StageResult with the number of rows transformed.

    Raises:
        PipelineCancelled: If the run was aborted.
        Exception: The first unexpected worker failure.
    """
    pool_size = resolve_pool_size(workers)
    timer = context.timers.transform
    timer.start()
    logger.info("transform_started", workers=pool_size)

    try:
        with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="transform") as pool:
            futures = [pool.submit(_work, context, source, sink) for _ in range(pool_size)]
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            for future in done:
                error = future.exception()
                if error is not None:
                    context.token.cancel(f"transform worker failed: {error}")
                    raise error
            per_worker = [future.result() for future in futures]
    finally:
        sink.close()
        timer.stop()

    total = sum(per_worker)
    errors = context.counters.encoding_errors.value
    logger.info(
        "transform_completed",
        rows=total,
        encoding_errors=errors,
        seconds=round(timer.elapsed, 3),
    )
    return StageResult(
        stage=TRANSFORM,
        success=True,
        records_processed=total,
        duration_seconds=timer.elapsed,
        message=f"Encoded {total:,} rows with {pool_size} workers",
        metadata={"workers": pool_size, "per_worker": per_worker, "encoding_errors": errors},
    )
