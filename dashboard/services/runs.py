"""Construction of the run pipeline shared by all API routes."""

import logging
from dataclasses import dataclass
from pathlib import Path

from fastapi import Request

from dashboard.config import (
    BLOB_DIR,
    BLOB_PUBLIC_URL,
    DB_PATH,
    RUNNER_COMMAND,
    SCRIPTS_DIR,
)
from runwatch.archive import LocalBlobStore, ScreenshotArchiver
from runwatch.broadcast import Broadcaster
from runwatch.notifications import NotificationService
from runwatch.store import RunStore
from runwatch.supervisor import Supervisor

logger = logging.getLogger(__name__)


@dataclass
class RunServices:
    """Long-lived pipeline objects owned by the application."""

    store: RunStore
    blob_store: LocalBlobStore
    notifications: NotificationService
    supervisor: Supervisor


def build_services(
    broadcaster: Broadcaster,
    db_path: Path = DB_PATH,
    blob_dir: Path = BLOB_DIR,
    blob_public_url: str = BLOB_PUBLIC_URL,
    scripts_dir: Path = SCRIPTS_DIR,
    runner_command: list[str] | None = None,
) -> RunServices:
    """Create the store, archiver, notifier and supervisor.

    Raises:
        StoreError: If the document store cannot be opened.
    """
    store = RunStore(db_path)
    blob_store = LocalBlobStore(blob_dir, blob_public_url, store=store)
    if blob_store.check():
        logger.info("Blob store ready at %s", blob_dir)
    notifications = NotificationService(store)
    supervisor = Supervisor(
        store=store,
        archiver=ScreenshotArchiver(blob_store),
        scripts_dir=scripts_dir,
        broadcaster=broadcaster,
        notifier=notifications,
        runner_command=runner_command or RUNNER_COMMAND,
    )
    return RunServices(
        store=store,
        blob_store=blob_store,
        notifications=notifications,
        supervisor=supervisor,
    )


def get_services(request: Request) -> RunServices:
    """FastAPI dependency returning the application's pipeline."""
    services: RunServices = request.app.state.services
    return services
