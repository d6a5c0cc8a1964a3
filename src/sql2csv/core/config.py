"""Configuration management."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from psycopg2.extensions import make_dsn

DEFAULT_SERVER = "localhost"
ENV_PREFIX = "SQL2CSV_"


@dataclass
class ExportConfig:
    """Settings for one export run.

    The pipeline needs three things from this object: the query text, the
    destination path and a connection descriptor (``dsn``).
    """

    query: str | None = None
    input_path: Path | None = None
    output: Path | None = None
    server: str = DEFAULT_SERVER
    port: int | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = None
    # Full libpq URL/DSN; takes precedence over the individual fields
    database_url: str | None = None

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> ExportConfig:
        """Load configuration from environment and .env file.

        Variables are ``DATABASE_URL`` and ``SQL2CSV_<FIELD>`` for every
        other field (``SQL2CSV_QUERY``, ``SQL2CSV_OUTPUT``, ...), with
        ``SQL2CSV_INPUT`` naming the query file.

        Args:
            env_file: Path to .env file. Ignored if it does not exist.

        Returns:
            ExportConfig instance with loaded values. Nothing is required at
            this point; see validate().
        """
        config: dict[str, Any] = {}
        if env_file and env_file.exists():
            config = dict(dotenv_values(env_file))

        def lookup(name: str) -> str | None:
            # Environment variables override .env file
            return os.environ.get(name) or config.get(name) or None

        input_str = lookup(f"{ENV_PREFIX}INPUT")
        output_str = lookup(f"{ENV_PREFIX}OUTPUT")
        port_str = lookup(f"{ENV_PREFIX}PORT")

        return cls(
            query=lookup(f"{ENV_PREFIX}QUERY"),
            input_path=Path(input_str) if input_str else None,
            output=Path(output_str) if output_str else None,
            server=lookup(f"{ENV_PREFIX}SERVER") or DEFAULT_SERVER,
            port=int(port_str) if port_str else None,
            database=lookup(f"{ENV_PREFIX}DATABASE"),
            username=lookup(f"{ENV_PREFIX}USERNAME"),
            password=lookup(f"{ENV_PREFIX}PASSWORD"),
            database_url=lookup("DATABASE_URL"),
        )

    def with_overrides(self, **overrides: Any) -> ExportConfig:
        """Create a new config with the given non-empty values applied.

        ``None`` and empty strings are ignored so unset CLI options keep the
        environment value.

        Args:
            **overrides: Field values keyed by field name.

        Returns:
            New ExportConfig instance.

        Raises:
            TypeError: If an override names an unknown field.
        """
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown config fields: {', '.join(sorted(unknown))}")

        applied = {key: value for key, value in overrides.items() if value not in (None, "")}
        return replace(self, **applied)

    @property
    def has_query(self) -> bool:
        """Check if query text is given inline or via a readable file."""
        if self.query:
            return True
        return bool(self.input_path and Path(self.input_path).is_file())

    @property
    def uses_integrated_auth(self) -> bool:
        """Check if credentials are left to libpq (peer, GSSAPI, .pgpass)."""
        return not self.username and not self.password

    def validate(self) -> list[str]:
        """Validate configuration.

        Returns:
            List of missing required field names.
        """
        missing = []
        if not self.has_query:
            missing.append("query")
        if not self.output:
            missing.append("output")
        if not self.database_url and not self.server:
            missing.append("server")
        return missing

    def resolve_query(self) -> str:
        """Return the query text, reading the input file if needed.

        Returns:
            Query text.

        Raises:
            ValueError: If neither a query nor an input file is configured.
        """
        if self.query:
            return self.query
        if self.input_path:
            # utf-8-sig drops a leading byte-order mark
            return Path(self.input_path).read_text(encoding="utf-8-sig")
        raise ValueError("Either query or input_path is required")

    @property
    def dsn(self) -> str:
        """Assemble the libpq connection string."""
        if self.database_url:
            return self.database_url

        params: dict[str, Any] = {"host": self.server}
        if self.port:
            params["port"] = self.port
        if self.database:
            params["dbname"] = self.database
        if self.username:
            params["user"] = self.username
        if self.password:
            params["password"] = self.password
        return make_dsn(**params)

    @property
    def redacted_dsn(self) -> str:
        """Connection string safe for logs."""
        if self.database_url:
            return "<DATABASE_URL>"
        target = self.server if not self.port else f"{self.server}:{self.port}"
        auth = "integrated" if self.uses_integrated_auth else f"user={self.username or ''}"
        return f"{target}/{self.database or ''} ({auth})"
