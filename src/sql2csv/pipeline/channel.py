"""Thread-safe FIFO hand-off between pipeline stages.

A Channel wraps ``queue.Queue`` with a one-way close transition. Closing
enqueues a sentinel behind every item already queued, so consumers drain
the remaining items in FIFO order before they observe end-of-stream. Each
consumer that takes the sentinel puts it back, which lets any number of
consumers share one channel.

Blocking operations poll the cancellation token so a fatal error in one
stage cannot leave another stage blocked forever on a full or empty queue.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Iterator
from typing import Generic, TypeVar

from sql2csv.core.errors import ChannelClosedError, EndOfStream, PipelineCancelled
from sql2csv.pipeline.context import CancellationToken

T = TypeVar("T")

POLL_INTERVAL = 0.1


class Channel(Generic[T]):
    """FIFO queue with close-and-drain end-of-stream semantics.

    Example:
        rows: Channel[Row] = Channel("rows", maxsize=10_000, token=context.token)

        # producer
        for row in source:
            rows.put(row)
        rows.close()

        # consumers
        for row in rows:
            handle(row)
    """

    # Sentinel value to signal end of data
    _CLOSED = object()

    def __init__(
        self,
        name: str,
        maxsize: int = 0,
        token: CancellationToken | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            name: Channel name used in error messages.
            maxsize: Maximum buffered items; 0 means unbounded.
            token: Cancellation token observed while blocked.
        """
        self.name = name
        self.maxsize = maxsize
        self._queue: queue.Queue[object] = queue.Queue(maxsize=maxsize)
        self._token = token or CancellationToken()
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        """Approximate number of buffered items, sentinel included."""
        return self._queue.qsize()

    def put(self, item: T) -> None:
        """Enqueue an item, blocking while the channel is full.

        Raises:
            ChannelClosedError: If the channel was already closed.
            PipelineCancelled: If the token fires while waiting for space.
        """
        while True:
            self._check_cancelled()
            # The closed check and the enqueue share the lock, so an item
            # accepted here is always ahead of the end-of-stream sentinel
            with self._lock:
                if self._closed:
                    raise ChannelClosedError(f"Channel '{self.name}' is closed")
                try:
                    self._queue.put(item, timeout=POLL_INTERVAL)
                    return
                except queue.Full:
                    pass

    def get(self) -> T:
        """Take the next item.

        Returns:
            The oldest buffered item.

        Raises:
            EndOfStream: If the channel is closed and drained.
            PipelineCancelled: If the token has fired.
        """
        while True:
            self._check_cancelled()
            try:
                item = self._queue.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue

            if item is self._CLOSED:
                # Hand the sentinel on to the next consumer
                self._queue.put(item)
                raise EndOfStream(self.name)

            return item  # type: ignore[return-value]

    def close(self) -> None:
        """Mark the channel closed; idempotent.

        Must be called by the producing side after its last put. A put
        that races with close either raises ChannelClosedError or lands
        ahead of the end-of-stream marker.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._put(self._CLOSED)
        except PipelineCancelled:
            # Consumers stop on the token themselves
            pass

    def __iter__(self) -> Iterator[T]:
        """Yield items until the channel is closed and drained."""
        while True:
            try:
                yield self.get()
            except EndOfStream:
                return

    def _check_cancelled(self) -> None:
        if self._token.is_cancelled:
            raise PipelineCancelled(f"Channel '{self.name}' cancelled: {self._token.reason}")

    def _put(self, item: object) -> None:
        while True:
            self._check_cancelled()
            try:
                self._queue.put(item, timeout=POLL_INTERVAL)
                return
            except queue.Full:
                continue
