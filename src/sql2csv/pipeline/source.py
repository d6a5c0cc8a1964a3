"""PostgreSQL data-source helpers."""

from __future__ import annotations

from collections.abc import Callable
from functools import partial
from typing import Any

import psycopg2
import structlog

from sql2csv.core.config import ExportConfig
from sql2csv.core.errors import SourceError

logger = structlog.get_logger(__name__)

# Zero-argument callable returning an open DB-API connection
ConnectionFactory = Callable[[], Any]

APPLICATION_NAME = "sql2csv"


def connect(dsn: str) -> psycopg2.extensions.connection:
    """Open a connection for a single export.

    Args:
        dsn: libpq connection string or URL.

    Returns:
        Open psycopg2 connection.

    Raises:
        SourceError: If the server cannot be reached or rejects the login.
    """
    try:
        return psycopg2.connect(dsn, application_name=APPLICATION_NAME)
    except psycopg2.Error as e:
        raise SourceError(f"Cannot connect to PostgreSQL: {e}".strip(), stage="extract") from e


def connection_factory(config: ExportConfig) -> ConnectionFactory:
    """Bind the config's DSN without connecting yet."""
    return partial(connect, config.dsn)


def check_connection(config: ExportConfig) -> bool:
    """Check if PostgreSQL is accessible.

    Args:
        config: Export configuration.

    Returns:
        True if connection succeeds.
    """
    try:
        conn = connect(config.dsn)
    except SourceError as e:
        logger.warning("connection_check_failed", target=config.redacted_dsn, error=str(e))
        return False
    conn.close()
    logger.info("connection_check_succeeded", target=config.redacted_dsn)
    return True
