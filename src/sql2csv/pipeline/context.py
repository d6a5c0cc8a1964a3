"""Shared run state handed to every pipeline stage.

The context replaces process-wide globals: each stage receives the same
PipelineContext at construction time and updates only its own counter and
timer. Counters are the only state mutated by more than one thread.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field


class Counter:
    """Monotonically increasing integer with atomic increments.

    Reads go through ``value`` without taking the lock, so observers such as
    the progress reporter never contend with the data path.
    """

    __slots__ = ("_lock", "_value")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def increment(self, amount: int = 1) -> int:
        """Add ``amount`` and return the new value."""
        with self._lock:
            self._value += amount
            return self._value

    @property
    def value(self) -> int:
        return self._value

    def __repr__(self) -> str:
        return f"Counter({self._value})"


class StageTimer:
    """Elapsed time of one stage, frozen once the stage's work is exhausted."""

    def __init__(self) -> None:
        self._started: float | None = None
        self._stopped: float | None = None

    def start(self) -> None:
        if self._started is None:
            self._started = time.perf_counter()

    def stop(self) -> None:
        if self._started is not None and self._stopped is None:
            self._stopped = time.perf_counter()

    @property
    def running(self) -> bool:
        return self._started is not None and self._stopped is None

    @property
    def elapsed(self) -> float:
        """Seconds since start; 0.0 if never started."""
        if self._started is None:
            return 0.0
        end = self._stopped if self._stopped is not None else time.perf_counter()
        return end - self._started


class CancellationToken:
    """One-way cancellation signal shared by all stages."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        """Fire the token. Only the first reason is kept."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses.

        Returns:
            True if the token was cancelled.
        """
        return self._event.wait(timeout)


@dataclass
class PipelineCounters:
    """Row counters, one per stage plus contained encoding failures."""

    read: Counter = field(default_factory=Counter)
    transformed: Counter = field(default_factory=Counter)
    written: Counter = field(default_factory=Counter)
    encoding_errors: Counter = field(default_factory=Counter)

    def snapshot(self) -> tuple[int, int, int]:
        """Return (read, transformed, written) without locking."""
        return self.read.value, self.transformed.value, self.written.value


@dataclass
class PipelineTimers:
    """Per-stage timers plus the overall run timer."""

    extract: StageTimer = field(default_factory=StageTimer)
    transform: StageTimer = field(default_factory=StageTimer)
    write: StageTimer = field(default_factory=StageTimer)
    total: StageTimer = field(default_factory=StageTimer)


@dataclass
class PipelineContext:
    """Counters, timers and the cancellation token for one run."""

    counters: PipelineCounters = field(default_factory=PipelineCounters)
    timers: PipelineTimers = field(default_factory=PipelineTimers)
    token: CancellationToken = field(default_factory=CancellationToken)
