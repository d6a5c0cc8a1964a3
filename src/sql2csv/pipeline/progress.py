"""Live status line for interactive terminals.

The reporter only reads the shared counters and never affects exported
data. On a non-interactive stream it does nothing.
"""

from __future__ import annotations

import sys
import threading
from typing import TextIO

import structlog
from tqdm import tqdm

from sql2csv.pipeline.context import PipelineContext

logger = structlog.get_logger(__name__)

DEFAULT_INTERVAL = 0.2
HEADER = "Read -> Process -> Write"


def render(context: PipelineContext) -> str:
    """Format the three row counters as one status string."""
    read, transformed, written = context.counters.snapshot()
    return f"{read:,} -> {transformed:,} -> {written:,}"


class ProgressReporter:
    """Periodically render counters until the cancellation token fires.

    Example:
        reporter = ProgressReporter(context)
        reporter.start()
        ...  # run the pipeline
        context.token.cancel()
        reporter.join()
    """

    def __init__(
        self,
        context: PipelineContext,
        interval: float = DEFAULT_INTERVAL,
        stream: TextIO | None = None,
        enabled: bool | None = None,
    ) -> None:
        """Initialize the reporter.

        Args:
            context: Shared pipeline context.
            interval: Seconds between refreshes.
            stream: Output stream, stderr by default.
            enabled: Force on or off; None means "only if stream is a TTY".
        """
        self.context = context
        self.interval = interval
        self.stream = stream or sys.stderr
        if enabled is None:
            isatty = getattr(self.stream, "isatty", None)
            enabled = bool(isatty and isatty())
        self.enabled = enabled
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background thread; no-op when disabled."""
        if not self.enabled or self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name="progress", daemon=True)
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        """Wait for the thread to exit after the token is cancelled."""
        if self._thread is not None:
            self._thread.join(timeout)

    def _loop(self) -> None:
        try:
            tqdm.write(HEADER, file=self.stream)
            with tqdm(
                file=self.stream,
                bar_format="{desc} in {elapsed}",
                dynamic_ncols=True,
                leave=True,
            ) as bar:
                bar.set_description_str(render(self.context), refresh=True)
                while not self.context.token.wait(self.interval):
                    bar.set_description_str(render(self.context), refresh=True)
                bar.set_description_str(render(self.context), refresh=True)
        except Exception as e:  # pragma: no cover
            logger.debug("progress_render_failed", error=str(e))
