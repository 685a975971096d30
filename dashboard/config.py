"""Configuration for the Runwatch dashboard."""

import logging
import os
import sys
from pathlib import Path

from runwatch.errors import ConfigurationError
from runwatch.supervisor import parse_runner_command

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Server configuration
HOST = os.environ.get("RUNWATCH_HOST", "127.0.0.1")
PORT = int(os.environ.get("RUNWATCH_PORT", "3001"))

# Storage locations
DATA_DIR = Path(os.environ.get("RUNWATCH_DATA_DIR", str(PROJECT_ROOT / ".runwatch")))
DB_PATH = Path(os.environ.get("RUNWATCH_DB_PATH", str(DATA_DIR / "runwatch.db")))
BLOB_DIR = Path(os.environ.get("RUNWATCH_BLOB_DIR", str(DATA_DIR / "blobs")))
SCRIPTS_DIR = Path(os.environ.get("RUNWATCH_SCRIPTS_DIR", str(PROJECT_ROOT / "scripts")))

# Blobs are served by this app under BLOB_ROUTE
BLOB_ROUTE = "/blobs"
PUBLIC_URL = os.environ.get("RUNWATCH_PUBLIC_URL", f"http://{HOST}:{PORT}").rstrip("/")
BLOB_PUBLIC_URL = PUBLIC_URL + BLOB_ROUTE

# Command prefix used to execute a test script, e.g. "pytest -s"
RUNNER_COMMAND = parse_runner_command(os.environ.get("RUNWATCH_RUNNER"))

# Log file for the service itself
LOG_FILE = Path(os.environ.get("RUNWATCH_LOG_FILE", str(PROJECT_ROOT / "runwatch.log")))

# CORS allowed origins (dashboard frontend dev servers)
CORS_ORIGINS = [
    f"http://localhost:{PORT}",
    f"http://127.0.0.1:{PORT}",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
for origin in os.environ.get("RUNWATCH_CORS_ORIGINS", "").split(","):
    origin = origin.strip()
    if origin and origin not in CORS_ORIGINS:
        CORS_ORIGINS.append(origin)

# Logging configuration
# Valid values: DEBUG, INFO, WARNING, ERROR, CRITICAL
LOG_LEVEL_STR = os.environ.get("RUNWATCH_LOG_LEVEL", "INFO").upper()
LOG_LEVEL = getattr(logging, LOG_LEVEL_STR, logging.INFO)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers configured by setup_logging()
LOGGER_NAMES = ("dashboard", "runwatch")


def setup_logging(log_file: Path | None = LOG_FILE) -> None:
    """Configure logging for the dashboard and the run pipeline.

    Sets up a console handler on stderr and, when possible, a file handler.
    Child process debug output arrives on the ``runwatch.child`` logger.

    Args:
        log_file: File to append logs to, or None for console only.
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    for name in LOGGER_NAMES:
        logger = logging.getLogger(name)
        logger.setLevel(LOG_LEVEL)

        # Avoid duplicate handlers if setup is called multiple times
        if logger.handlers:
            continue

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(LOG_LEVEL)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        if log_file is not None:
            try:
                file_handler = logging.FileHandler(log_file, encoding="utf-8")
                file_handler.setLevel(LOG_LEVEL)
                file_handler.setFormatter(formatter)
                logger.addHandler(file_handler)
            except OSError as e:
                logger.warning("Could not set up file logging to %s: %s", log_file, e)

        logger.propagate = False


def validate_setup(
    data_dir: Path = DATA_DIR,
    blob_dir: Path = BLOB_DIR,
    scripts_dir: Path = SCRIPTS_DIR,
) -> None:
    """Check that everything needed to serve runs is in place.

    Raises:
        ConfigurationError: If the scripts directory is missing or the data
            directories cannot be created.
    """
    if not scripts_dir.is_dir():
        raise ConfigurationError(
            "Scripts directory not found",
            detail=f"RUNWATCH_SCRIPTS_DIR={scripts_dir}",
        )
    for directory, variable in ((data_dir, "RUNWATCH_DATA_DIR"), (blob_dir, "RUNWATCH_BLOB_DIR")):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot create {variable} directory",
                detail=f"{directory}: {e}",
            ) from e
        if not os.access(directory, os.W_OK):
            raise ConfigurationError(
                f"{variable} directory is not writable",
                detail=str(directory),
            )
