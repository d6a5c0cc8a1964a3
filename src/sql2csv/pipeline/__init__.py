"""Export pipeline.

Three stages connected by two channels:
1. Extract: stream query results from PostgreSQL
2. Transform: sanitize and encode rows with a worker pool
3. Write: append encoded lines to the destination file
"""

from __future__ import annotations

from sql2csv.pipeline.channel import Channel
from sql2csv.pipeline.context import PipelineContext
from sql2csv.pipeline.orchestrator import (
    ExportOptions,
    ExportOrchestrator,
    ExportResult,
)
from sql2csv.pipeline.source import check_connection
from sql2csv.pipeline.stages.base import StageResult
from sql2csv.pipeline.status import format_failure, format_summary

__all__ = [
    "Channel",
    "ExportOptions",
    "ExportOrchestrator",
    "ExportResult",
    "PipelineContext",
    "StageResult",
    "check_connection",
    "format_failure",
    "format_summary",
]
