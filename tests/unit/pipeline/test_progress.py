"""Tests for sql2csv.pipeline.progress."""

from __future__ import annotations

import io

from sql2csv.pipeline.context import PipelineContext
from sql2csv.pipeline.progress import HEADER, ProgressReporter, render


class TestRender:
    """Tests for render."""

    def test_formats_counters(self) -> None:
        """Test the three counters are shown with thousands separators."""
        context = PipelineContext()
        context.counters.read.increment(12345)
        context.counters.transformed.increment(1200)
        context.counters.written.increment(7)

        assert render(context) == "12,345 -> 1,200 -> 7"

    def test_zero(self) -> None:
        """Test a fresh context renders zeros."""
        assert render(PipelineContext()) == "0 -> 0 -> 0"


class TestProgressReporter:
    """Tests for ProgressReporter."""

    def test_disabled_for_non_tty(self) -> None:
        """Test the reporter stays off for a non-interactive stream."""
        stream = io.StringIO()
        reporter = ProgressReporter(PipelineContext(), stream=stream)

        reporter.start()

        assert reporter.enabled is False
        assert reporter.running is False
        assert stream.getvalue() == ""

    def test_forced_off(self) -> None:
        """Test enabled=False wins."""
        reporter = ProgressReporter(PipelineContext(), stream=io.StringIO(), enabled=False)
        reporter.start()
        reporter.join()
        assert reporter.running is False

    def test_renders_until_cancelled(self) -> None:
        """Test an enabled reporter writes the header and final counts, then exits."""
        context = PipelineContext()
        stream = io.StringIO()
        reporter = ProgressReporter(context, interval=0.01, stream=stream, enabled=True)

        reporter.start()
        context.counters.read.increment(3)
        context.counters.transformed.increment(2)
        context.counters.written.increment(1)
        context.token.cancel("done")
        reporter.join(timeout=5)

        output = stream.getvalue()
        assert reporter.running is False
        assert HEADER in output
        assert "3 -> 2 -> 1" in output

    def test_does_not_touch_counters(self) -> None:
        """Test reporting only reads the counters."""
        context = PipelineContext()
        context.counters.read.increment(5)
        reporter = ProgressReporter(context, interval=0.01, stream=io.StringIO(), enabled=True)

        reporter.start()
        context.token.cancel()
        reporter.join(timeout=5)

        assert context.counters.snapshot() == (5, 0, 0)
