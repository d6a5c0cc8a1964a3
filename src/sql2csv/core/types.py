"""Shared type definitions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class Row:
    """One result tuple as returned by the data source.

    Attributes:
        sequence: Zero-based position of the row in source delivery order.
        values: Raw field values, one per result column.
    """

    sequence: int
    values: tuple[Any, ...]

    def __len__(self) -> int:
        """Return the number of fields."""
        return len(self.values)


@dataclass(frozen=True, slots=True)
class EncodedRecord:
    """A fully sanitized, quoted, comma-joined output line.

    Attributes:
        sequence: Sequence number of the row this record was encoded from.
        line: Encoded text without a line terminator.
    """

    sequence: int
    line: str
