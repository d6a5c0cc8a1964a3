"""Extract stage: stream query results into the row channel.

Rows are fetched through a server-side (named) cursor, ``itersize`` rows per
network round trip, so the result set is never materialized client-side.
Each row is tagged with its position in source order before it is queued.
"""

from __future__ import annotations

import psycopg2
import structlog

from sql2csv.core.errors import SourceError
from sql2csv.core.types import Row
from sql2csv.pipeline.channel import Channel
from sql2csv.pipeline.context import PipelineContext
from sql2csv.pipeline.source import ConnectionFactory
from sql2csv.pipeline.stages.base import EXTRACT, StageResult

logger = structlog.get_logger(__name__)

CURSOR_NAME = "sql2csv_export"
DEFAULT_ITERSIZE = 2000


def stream_rows(
    context: PipelineContext,
    connect: ConnectionFactory,
    query: str,
    channel: Channel[Row],
    itersize: int = DEFAULT_ITERSIZE,
) -> int:
    """Execute the query and put every result row on the channel.

    Args:
        context: Shared pipeline context.
        connect: Factory returning an open DB-API connection.
        query: Query text to execute.
        channel: Destination channel for rows.
        itersize: Rows fetched per round trip.

    Returns:
        Number of rows queued.

    Raises:
        SourceError: On connection, query or cursor failure.
    """
    read = context.counters.read
    sequence = 0

    try:
        conn = connect()
        try:
            with conn.cursor(name=CURSOR_NAME) as cur:
                cur.itersize = itersize
                cur.execute(query)
                for values in cur:
                    channel.put(Row(sequence, tuple(values)))
                    sequence += 1
                    read.increment()
        finally:
            conn.close()
    except psycopg2.Error as e:
        message = (getattr(e, "pgerror", None) or str(e)).strip()
        raise SourceError(f"Query failed after {sequence:,} rows: {message}", stage=EXTRACT) from e

    return sequence


def run(
    context: PipelineContext,
    connect: ConnectionFactory,
    query: str,
    channel: Channel[Row],
    itersize: int = DEFAULT_ITERSIZE,
) -> StageResult:
    """Run the extract stage.

    The row channel is closed on every exit path so the transform workers
    always observe end-of-stream, even when the source fails.

    Args:
        context: Shared pipeline context.
        connect: Factory returning an open DB-API connection.
        query: Query text to execute.
        channel: Destination channel for rows.
        itersize: Rows fetched per round trip.

    Returns:
        StageResult with the number of rows read.

    Raises:
        SourceError: On connection, query or cursor failure.
        PipelineCancelled: If the run was aborted while the channel was full.
    """
    timer = context.timers.extract
    timer.start()
    logger.info("extract_started", itersize=itersize)

    try:
        rows = stream_rows(context, connect, query, channel, itersize=itersize)
    finally:
        channel.close()
        timer.stop()

    logger.info("extract_completed", rows=rows, seconds=round(timer.elapsed, 3))
    return StageResult(
        stage=EXTRACT,
        success=True,
        records_processed=rows,
        duration_seconds=timer.elapsed,
        message=f"Read {rows:,} rows",
    )
