"""Tests for the runwatch CLI."""

import json
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

from runwatch.cli import cli
from runwatch.errors import RunwatchError
from runwatch.models import RunStatus
from runwatch.store import RunStore


class TestRegister:
    """Tests for `runwatch register`."""

    def test_register_creates_test_case(self, tmp_path: Path) -> None:
        db = tmp_path / "runwatch.db"
        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "--db", str(db),
                "register", "TEST-001",
                "--script", "guide_popup.py",
                "--step", "Go to target URL",
                "--step", "Close the popup",
                "--url", "https://example.com/",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "2 steps" in result.output

        run = RunStore(db).get_test_case("TEST-001")
        assert run.status == RunStatus.PENDING
        assert run.name == "TEST-001"
        assert run.script_path == "guide_popup.py"
        assert run.template_steps == ["Go to target URL", "Close the popup"]
        assert [s.name for s in run.steps] == run.template_steps


class TestShow:
    """Tests for `runwatch show`."""

    def test_show_prints_document(self, tmp_path: Path) -> None:
        db = tmp_path / "runwatch.db"
        runner = CliRunner()
        runner.invoke(cli, ["--db", str(db), "register", "T", "--script", "t.py", "--name", "Demo"])
        result = runner.invoke(cli, ["--db", str(db), "show", "T"])
        assert result.exit_code == 0
        assert json.loads(result.output)["name"] == "Demo"

    def test_show_missing(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["--db", str(tmp_path / "runwatch.db"), "show", "NOPE"])
        assert result.exit_code != 0
        assert "not found" in result.output


class TestServe:
    def test_serve_invokes_uvicorn(self) -> None:
        with patch("uvicorn.run") as mock_run:
            result = CliRunner().invoke(cli, ["serve", "--port", "4000"])
        assert result.exit_code == 0, result.output
        args, kwargs = mock_run.call_args
        assert args == ("dashboard.app:app",)
        assert kwargs["port"] == 4000


class TestVersion:
    def test_version(self) -> None:
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestRun:
    """Tests for `runwatch run`."""

    def test_run_in_foreground(self, tmp_path: Path) -> None:
        """Test a foreground run of a child that reports two steps."""
        scripts = tmp_path / "scripts"
        scripts.mkdir()
        (scripts / "child.py").write_text(
            "import sys\n"
            "for frame in (\n"
            "    '{\"type\": \"step:end\", \"payload\": {\"title\": \"A\", \"duration\": 1, \"status\": \"passed\"}}',\n"
            "    '{\"type\": \"step:end\", \"payload\": {\"title\": \"B\", \"duration\": 2, \"status\": \"passed\"}}',\n"
            "    '{\"type\": \"test:end\", \"payload\": {\"duration\": 3, \"status\": \"passed\"}}',\n"
            "):\n"
            "    sys.stdout.write(frame + '__END_OF_JSON__')\n"
        )
        db = tmp_path / "runwatch.db"
        runner = CliRunner()
        runner.invoke(
            cli,
            ["--db", str(db), "register", "T", "--script", "child.py", "--step", "A", "--step", "B"],
        )
        with patch("dashboard.config.BLOB_DIR", tmp_path / "blobs"):
            result = runner.invoke(
                cli, ["--db", str(db), "run", "T", "--scripts-dir", str(scripts)]
            )
        assert result.exit_code == 0, result.output
        assert RunStore(db).get_test_case("T").status == RunStatus.COMPLETED

    def test_run_document_deleted_during_run(self, tmp_path: Path) -> None:
        """Test that a test case removed mid-run is reported as a CLI error."""
        scripts = tmp_path / "scripts"
        scripts.mkdir()
        db = tmp_path / "runwatch.db"
        (scripts / "child.py").write_text(
            "import sqlite3\n"
            f"conn = sqlite3.connect({str(db)!r})\n"
            "conn.execute(\"DELETE FROM test_cases WHERE id = 'T'\")\n"
            "conn.commit()\n"
            "conn.close()\n"
        )
        runner = CliRunner()
        runner.invoke(cli, ["--db", str(db), "register", "T", "--script", "child.py", "--step", "A"])
        with patch("dashboard.config.BLOB_DIR", tmp_path / "blobs"):
            result = runner.invoke(
                cli, ["--db", str(db), "run", "T", "--scripts-dir", str(scripts)]
            )
        assert result.exit_code == 1
        assert "not found" in result.output
        assert not isinstance(result.exception, RunwatchError)
