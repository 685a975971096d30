"""Tests for dashboard configuration and logging setup."""

import logging
from pathlib import Path

import pytest

from dashboard.config import LOG_FORMAT, setup_logging, validate_setup
from runwatch.errors import ConfigurationError


class TestValidateSetup:
    """Tests for validate_setup."""

    def test_creates_data_directories(self, tmp_path: Path) -> None:
        scripts = tmp_path / "scripts"
        scripts.mkdir()
        validate_setup(tmp_path / "data", tmp_path / "data" / "blobs", scripts)
        assert (tmp_path / "data" / "blobs").is_dir()

    def test_missing_scripts_dir(self, tmp_path: Path) -> None:
        """Test that startup is refused without a scripts directory."""
        with pytest.raises(ConfigurationError) as exc_info:
            validate_setup(tmp_path / "data", tmp_path / "blobs", tmp_path / "missing")
        assert "RUNWATCH_SCRIPTS_DIR" in (exc_info.value.detail or "")

    def test_uncreatable_data_dir(self, tmp_path: Path) -> None:
        scripts = tmp_path / "scripts"
        scripts.mkdir()
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(ConfigurationError):
            validate_setup(blocker / "data", tmp_path / "blobs", scripts)


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_handlers_not_duplicated(self, tmp_path: Path) -> None:
        setup_logging(log_file=tmp_path / "runwatch.log")
        setup_logging(log_file=tmp_path / "runwatch.log")
        logger = logging.getLogger("runwatch")
        console = [
            h for h in logger.handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        ]
        assert len(console) == 1
        assert console[0].formatter is not None
        assert console[0].formatter._fmt == LOG_FORMAT
        assert logger.propagate is False
