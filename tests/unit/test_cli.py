"""Tests for sql2csv.cli."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import structlog

from sql2csv import cli
from sql2csv.core.config import ExportConfig
from sql2csv.core.errors import ConfigurationError
from sql2csv.pipeline import ExportResult, StageResult


@pytest.fixture(autouse=True)
def isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Run each test in an empty directory with no configuration variables."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    for name in ("QUERY", "INPUT", "OUTPUT", "SERVER", "PORT", "DATABASE", "USERNAME", "PASSWORD"):
        monkeypatch.delenv(f"SQL2CSV_{name}", raising=False)
    yield
    structlog.reset_defaults()


def successful_result() -> ExportResult:
    return ExportResult(
        success=True,
        rows_read=3,
        rows_transformed=3,
        rows_written=3,
        stage_results={
            "extract": StageResult("extract", True, 3, 0.1, "Read 3 rows"),
            "transform": StageResult("transform", True, 3, 0.1, "Encoded 3 rows"),
            "write": StageResult("write", True, 3, 0.1, "Wrote 3 rows"),
        },
        duration_seconds=0.2,
    )


class TestParseArgs:
    """Tests for parse_args function."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test default argument values."""
        monkeypatch.setattr(sys, "argv", ["sql2csv"])
        args = cli.parse_args()

        assert args.query is None
        assert args.input is None
        assert args.output is None
        assert args.workers is None
        assert args.unordered is False
        assert args.atomic is False
        assert args.no_progress is False
        assert args.check is False
        assert args.env_file is None
        assert args.log_level == "WARNING"

    def test_required_style_arguments(self) -> None:
        """Test --query, --input and --output."""
        args = cli.parse_args(["--query=select 1", "--input", "q.sql", "--output=city.csv"])

        assert args.query == "select 1"
        assert args.input == Path("q.sql")
        assert args.output == Path("city.csv")

    def test_connection_arguments(self) -> None:
        """Test connection options."""
        args = cli.parse_args(
            [
                "--server=db",
                "--port=6432",
                "--database=geo",
                "--username=reporter",
                "--password=secret",
                "--database-url=postgresql://h/db",
            ]
        )

        assert args.server == "db"
        assert args.port == 6432
        assert args.database == "geo"
        assert args.username == "reporter"
        assert args.password == "secret"
        assert args.database_url == "postgresql://h/db"

    def test_pipeline_flags(self) -> None:
        """Test pipeline tuning flags."""
        args = cli.parse_args(
            ["--workers", "2", "--unordered", "--queue-size", "64", "--atomic", "--no-progress"]
        )

        assert args.workers == 2
        assert args.unordered is True
        assert args.queue_size == 64
        assert args.atomic is True
        assert args.no_progress is True


class TestBuildConfig:
    """Tests for build_config."""

    def test_arguments_override_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test command line values win over environment values."""
        monkeypatch.setenv("SQL2CSV_DATABASE", "fromenv")
        monkeypatch.setenv("SQL2CSV_SERVER", "envhost")
        args = cli.parse_args(["--database=fromcli"])

        config = cli.build_config(args)

        assert config.database == "fromcli"
        assert config.server == "envhost"

    def test_reads_dotenv_in_cwd(self, tmp_path: Path) -> None:
        """Test .env in the working directory is picked up."""
        (tmp_path / ".env").write_text("SQL2CSV_QUERY=select 42\n")

        config = cli.build_config(cli.parse_args([]))

        assert config.query == "select 42"

    def test_explicit_env_file(self, tmp_path: Path) -> None:
        """Test --env-file selects another file."""
        env_file = tmp_path / "export.env"
        env_file.write_text("SQL2CSV_OUTPUT=fromfile.csv\n")

        config = cli.build_config(cli.parse_args(["--env-file", str(env_file)]))

        assert config.output == Path("fromfile.csv")


class TestCli:
    """Tests for CLI main function."""

    @patch("sql2csv.cli.ExportOrchestrator.run")
    def test_no_arguments_prints_usage(
        self,
        mock_run: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test missing query and output print usage and exit 1 without running."""
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])

        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "Required arguments" in captured.out
        assert "missing query, output" in captured.err
        mock_run.assert_not_called()

    @patch("sql2csv.cli.ExportOrchestrator.run")
    def test_missing_output(
        self,
        mock_run: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test a query without an output is rejected."""
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--query=select 1"])

        assert exc_info.value.code == 1
        assert "missing output" in capsys.readouterr().err
        mock_run.assert_not_called()

    @patch("sql2csv.cli.ExportOrchestrator.run")
    def test_missing_input_file(
        self,
        mock_run: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test an input file that does not exist counts as no query."""
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--input=missing.sql", "--output=out.csv"])

        assert exc_info.value.code == 1
        assert "missing query" in capsys.readouterr().err
        mock_run.assert_not_called()

    def test_invalid_port_env(
        self,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test configuration error handling."""
        monkeypatch.setenv("SQL2CSV_PORT", "not-a-port")

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--query=select 1", "--output=out.csv"])

        assert exc_info.value.code == 1
        assert "Configuration error" in capsys.readouterr().err

    @patch("sql2csv.cli.ExportOrchestrator")
    def test_successful_run(
        self,
        mock_orchestrator_cls: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test a successful export prints the summary and exits 0."""
        mock_orchestrator = MagicMock()
        mock_orchestrator.validate.return_value = []
        mock_orchestrator.run.return_value = successful_result()
        mock_orchestrator_cls.return_value = mock_orchestrator

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--query=select 1", "--output=out.csv"])

        assert exc_info.value.code == 0
        captured = capsys.readouterr()
        assert "3 read in 0:00:00.100" in captured.out
        assert "Done in 0:00:00.200" in captured.out

    @patch("sql2csv.cli.ExportOrchestrator")
    def test_failed_run(
        self,
        mock_orchestrator_cls: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test a failed export prints a diagnostic and exits 1."""
        mock_orchestrator = MagicMock()
        mock_orchestrator.validate.return_value = []
        mock_orchestrator.run.return_value = ExportResult(
            success=False,
            failed_stage="extract",
            error='Query failed after 0 rows: relation "city" does not exist',
        )
        mock_orchestrator_cls.return_value = mock_orchestrator

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--query=select 1", "--output=out.csv"])

        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "ERROR: Export failed in extract stage" in captured.err
        assert 'relation "city"' in captured.err

    @patch("sql2csv.cli.ExportOrchestrator")
    def test_run_configuration_error(
        self,
        mock_orchestrator_cls: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test a ConfigurationError from run prints usage and exits 1."""
        mock_orchestrator = MagicMock()
        mock_orchestrator.validate.return_value = []
        mock_orchestrator.run.side_effect = ConfigurationError(["input"])
        mock_orchestrator_cls.return_value = mock_orchestrator

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--query=select 1", "--output=out.csv"])

        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "Missing configuration: input" in captured.err
        assert "Required arguments" in captured.out

    @patch("sql2csv.cli.ExportOrchestrator")
    def test_passes_options(self, mock_orchestrator_cls: MagicMock) -> None:
        """Test command line flags reach ExportOptions."""
        mock_orchestrator = MagicMock()
        mock_orchestrator.validate.return_value = []
        mock_orchestrator.run.return_value = successful_result()
        mock_orchestrator_cls.return_value = mock_orchestrator

        with pytest.raises(SystemExit):
            cli.main(
                [
                    "--query=select 1",
                    "--output=out.csv",
                    "--workers=3",
                    "--unordered",
                    "--atomic",
                    "--no-progress",
                    "--queue-size=100",
                ]
            )

        config, options = mock_orchestrator_cls.call_args.args
        assert isinstance(config, ExportConfig)
        assert config.query == "select 1"
        assert options.workers == 3
        assert options.ordered is False
        assert options.atomic is True
        assert options.progress is False
        assert options.queue_size == 100

    @patch("sql2csv.cli.check_connection")
    def test_check_ok(
        self,
        mock_check: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test --check reports a working connection."""
        mock_check.return_value = True

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--check", "--server=db", "--database=geo"])

        assert exc_info.value.code == 0
        assert "Connection OK: db/geo (integrated)" in capsys.readouterr().out

    @patch("sql2csv.cli.check_connection")
    def test_check_failed(
        self,
        mock_check: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test --check exits 1 when the server is unreachable."""
        mock_check.return_value = False

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--check", "--server=db", "--password=secret", "--username=u"])

        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert "Cannot connect" in err
        assert "secret" not in err


class TestEndToEnd:
    """Tests running the real pipeline behind the CLI."""

    def test_export_with_fake_connection(
        self,
        fake_source: Any,
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Test the CLI writes the file through the real orchestrator."""
        connect, _ = fake_source([(1, "Zürich"), (2, 'say "hi"')])
        query_file = tmp_path / "query.sql"
        query_file.write_text("select id, name from city")

        with patch("sql2csv.pipeline.orchestrator.connection_factory", return_value=connect):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["--input", str(query_file), "--output", "city.csv", "--no-progress"])

        assert exc_info.value.code == 0
        assert (tmp_path / "city.csv").read_text(encoding="utf-8") == (
            '"1","Zürich"\n"2","say ""hi"""\n'
        )
        assert "2 write in" in capsys.readouterr().out


class TestCliModuleExecution:
    """Tests for CLI module __main__ execution."""

    def test_module_name_main(self) -> None:
        """Test that module can be executed directly."""
        import ast

        cli_file = cli.__file__
        assert cli_file is not None

        with open(cli_file) as f:
            tree = ast.parse(f.read())

        main_block_found = any(
            isinstance(node, ast.If)
            and isinstance(node.test, ast.Compare)
            and isinstance(node.test.left, ast.Name)
            and node.test.left.id == "__name__"
            for node in ast.walk(tree)
        )

        assert main_block_found, "Module should have if __name__ == '__main__' block"
