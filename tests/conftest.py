"""Shared fixtures: an in-memory stand-in for a psycopg2 connection."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest


class FakeCursor:
    """Named-cursor double that yields preset rows."""

    def __init__(
        self,
        rows: list[tuple[Any, ...]],
        execute_error: Exception | None = None,
        fail_after: int | None = None,
        iter_error: Exception | None = None,
    ) -> None:
        self.rows = rows
        self.execute_error = execute_error
        self.fail_after = fail_after
        self.iter_error = iter_error
        self.itersize = 2000
        self.executed: list[str] = []
        self.closed = False

    def execute(self, query: str) -> None:
        self.executed.append(query)
        if self.execute_error is not None:
            raise self.execute_error

    def __iter__(self) -> Iterator[tuple[Any, ...]]:
        for index, row in enumerate(self.rows):
            if self.fail_after is not None and index == self.fail_after:
                assert self.iter_error is not None
                raise self.iter_error
            yield row

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> FakeCursor:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class FakeConnection:
    """Connection double that hands out one FakeCursor."""

    def __init__(self, cursor: FakeCursor) -> None:
        self._cursor = cursor
        self.cursor_names: list[str | None] = []
        self.closed = False

    def cursor(self, name: str | None = None) -> FakeCursor:
        self.cursor_names.append(name)
        return self._cursor

    def close(self) -> None:
        self.closed = True


SourceFactory = Callable[..., tuple[Callable[[], FakeConnection], FakeConnection]]


@pytest.fixture
def fake_source() -> SourceFactory:
    """Build (connect, connection) pairs around preset rows."""

    def make(rows: list[tuple[Any, ...]], **cursor_kwargs: Any) -> tuple[Any, FakeConnection]:
        connection = FakeConnection(FakeCursor(rows, **cursor_kwargs))
        return (lambda: connection), connection

    return make
