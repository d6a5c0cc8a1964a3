"""Exception hierarchy for the export pipeline."""

from __future__ import annotations


class ExportError(Exception):
    """Base exception for export errors."""

    def __init__(self, message: str, stage: str | None = None) -> None:
        """Initialize export error.

        Args:
            message: Error description.
            stage: Pipeline stage that raised the error.
        """
        super().__init__(message)
        self.stage = stage


class ConfigurationError(ExportError):
    """Required inputs are missing; raised before any stage starts."""

    def __init__(self, missing: list[str]) -> None:
        """Initialize configuration error.

        Args:
            missing: Names of the missing or unusable settings.
        """
        super().__init__(f"Missing configuration: {', '.join(missing)}")
        self.missing = missing


class SourceError(ExportError):
    """Connection, query or cursor failure while extracting rows."""


class EncodingError(ExportError):
    """A field could not be converted to its text representation."""


class SinkError(ExportError):
    """I/O failure while writing the destination file."""


class PipelineCancelled(ExportError):
    """A channel operation was interrupted by the cancellation token."""


class ChannelClosedError(ExportError):
    """An item was put on a channel after it was closed."""


class EndOfStream(Exception):
    """A channel is closed and fully drained."""
