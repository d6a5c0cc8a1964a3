"""Pipeline orchestrator.

Starts the extract, transform and write stages concurrently, aborts the
run on the first fatal stage error, waits for every stage and collects the
final counts and timings.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from sql2csv.core.config import ExportConfig
from sql2csv.core.errors import ConfigurationError, PipelineCancelled
from sql2csv.core.types import EncodedRecord, Row
from sql2csv.pipeline.channel import Channel
from sql2csv.pipeline.context import PipelineContext, StageTimer
from sql2csv.pipeline.progress import DEFAULT_INTERVAL, ProgressReporter
from sql2csv.pipeline.source import ConnectionFactory, connection_factory
from sql2csv.pipeline.stages import extractor, transformer, writer
from sql2csv.pipeline.stages.base import EXTRACT, STAGE_NAMES, TRANSFORM, WRITE, StageResult

logger = structlog.get_logger(__name__)

DEFAULT_QUEUE_SIZE = 10_000


@dataclass
class ExportOptions:
    """Options for running the export."""

    workers: int | None = None
    ordered: bool = True
    queue_size: int = DEFAULT_QUEUE_SIZE
    itersize: int = extractor.DEFAULT_ITERSIZE
    atomic: bool = False
    progress: bool | None = None
    progress_interval: float = DEFAULT_INTERVAL


@dataclass
class ExportResult:
    """Result of running the export."""

    success: bool
    rows_read: int = 0
    rows_transformed: int = 0
    rows_written: int = 0
    encoding_errors: int = 0
    stage_results: dict[str, StageResult] = field(default_factory=dict)
    duration_seconds: float = 0.0
    failed_stage: str | None = None
    error: str | None = None

    @property
    def stage_durations(self) -> dict[str, float]:
        """Frozen timer value per stage."""
        return {name: result.duration_seconds for name, result in self.stage_results.items()}

    @property
    def message(self) -> str:
        """Generate summary message."""
        if self.error:
            return f"Export failed in {self.failed_stage or 'pipeline'} stage: {self.error}"
        return f"Exported {self.rows_written:,} rows in {self.duration_seconds:.1f}s"


StageCallback = Callable[[str, str, StageResult | None], None]


class ExportOrchestrator:
    """Coordinates one export run."""

    def __init__(
        self,
        config: ExportConfig,
        options: ExportOptions | None = None,
        connect: ConnectionFactory | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Export configuration.
            options: Export options.
            connect: Data-source handle; defaults to a psycopg2 connection
                built from ``config.dsn``. Nothing connects before run().
        """
        self.config = config
        self.options = options or ExportOptions()
        self._connect = connect
        self._callbacks: list[StageCallback] = []
        self.context: PipelineContext | None = None

    def add_callback(self, callback: StageCallback) -> None:
        """Add a callback for stage events.

        Args:
            callback: Function called with (stage_name, event, result).
                     event is 'start', 'complete' or 'fail'.
        """
        self._callbacks.append(callback)

    def _notify(self, stage: str, event: str, result: StageResult | None) -> None:
        """Notify callbacks of a stage event."""
        for callback in self._callbacks:
            callback(stage, event, result)

    def validate(self) -> list[str]:
        """Validate configuration before running.

        Never connects to the data source.

        Returns:
            List of missing setting names (empty if valid).
        """
        errors = self.config.validate()
        if self.options.queue_size < 0:
            errors.append("queue_size")
        if self.options.workers is not None and self.options.workers < 0:
            errors.append("workers")
        return errors

    def run(self) -> ExportResult:
        """Run the export.

        Returns:
            ExportResult with counts, per-stage results and the first error.

        Raises:
            ConfigurationError: If validation fails; no stage is started.
        """
        missing = self.validate()
        if missing:
            raise ConfigurationError(missing)

        try:
            query = self.config.resolve_query()
        except OSError as e:
            raise ConfigurationError(["input"]) from e
        destination = Path(self.config.output)  # type: ignore[arg-type]
        connect = self._connect or connection_factory(self.config)

        context = PipelineContext()
        self.context = context
        context.timers.total.start()

        rows: Channel[Row] = Channel("rows", self.options.queue_size, context.token)
        records: Channel[EncodedRecord] = Channel("records", self.options.queue_size, context.token)

        reporter = ProgressReporter(
            context,
            interval=self.options.progress_interval,
            enabled=self.options.progress,
        )
        reporter.start()

        workers = transformer.resolve_pool_size(self.options.workers)
        logger.info(
            "export_started",
            destination=str(destination),
            source=self.config.redacted_dsn,
            workers=workers,
            ordered=self.options.ordered,
        )

        stages: dict[str, tuple[Callable[..., StageResult], tuple[Any, ...], dict[str, Any]]] = {
            EXTRACT: (
                extractor.run,
                (context, connect, query, rows),
                {"itersize": self.options.itersize},
            ),
            TRANSFORM: (transformer.run, (context, rows, records), {"workers": workers}),
            WRITE: (
                writer.run,
                (context, records, destination),
                {"ordered": self.options.ordered, "atomic": self.options.atomic},
            ),
        }

        results: dict[str, StageResult] = {}
        errors: dict[str, BaseException] = {}

        with ThreadPoolExecutor(max_workers=len(stages), thread_name_prefix="stage") as executor:
            futures: dict[Future[StageResult], str] = {}
            for name, (runner, args, kwargs) in stages.items():
                self._notify(name, "start", None)
                futures[executor.submit(runner, *args, **kwargs)] = name

            for future in as_completed(futures):
                name = futures[future]
                try:
                    stage_result = future.result()
                except Exception as e:
                    errors[name] = e
                    context.token.cancel(f"{name} stage failed")
                    stage_result = StageResult.from_error(
                        name,
                        e,
                        records_processed=self._stage_count(context, name),
                        duration_seconds=self._stage_timer(context, name).elapsed,
                    )
                    logger.error(
                        "stage_failed", stage=name, error=str(e), error_type=type(e).__name__
                    )
                    self._notify(name, "fail", stage_result)
                else:
                    self._notify(name, "complete", stage_result)
                results[name] = stage_result

        # Advisory end-of-run signal; stops the progress reporter
        context.token.cancel("run finished")
        reporter.join()
        context.timers.total.stop()

        counters = context.counters
        result = ExportResult(
            success=not errors,
            rows_read=counters.read.value,
            rows_transformed=counters.transformed.value,
            rows_written=counters.written.value,
            encoding_errors=counters.encoding_errors.value,
            stage_results={name: results[name] for name in STAGE_NAMES if name in results},
            duration_seconds=context.timers.total.elapsed,
        )

        if errors:
            failed_stage, root_error = self._root_cause(errors)
            result.failed_stage = failed_stage
            result.error = str(root_error) or type(root_error).__name__
            logger.error("export_failed", stage=failed_stage, error=result.error)
        else:
            logger.info(
                "export_completed",
                rows=result.rows_written,
                seconds=round(result.duration_seconds, 3),
            )

        return result

    @staticmethod
    def _root_cause(errors: dict[str, BaseException]) -> tuple[str, BaseException]:
        """Pick the error that caused the abort over the cancellations it triggered."""
        for name in STAGE_NAMES:
            error = errors.get(name)
            if error is not None and not isinstance(error, PipelineCancelled):
                return name, error
        name = next(iter(errors))
        return name, errors[name]

    @staticmethod
    def _stage_count(context: PipelineContext, name: str) -> int:
        counters = {
            EXTRACT: context.counters.read,
            TRANSFORM: context.counters.transformed,
            WRITE: context.counters.written,
        }
        return counters[name].value

    @staticmethod
    def _stage_timer(context: PipelineContext, name: str) -> StageTimer:
        timers = {
            EXTRACT: context.timers.extract,
            TRANSFORM: context.timers.transform,
            WRITE: context.timers.write,
        }
        return timers[name]
