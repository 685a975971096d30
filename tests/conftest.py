"""Shared fixtures for Runwatch tests."""

from pathlib import Path
from typing import Any

import pytest

from runwatch.archive import LocalBlobStore, ScreenshotArchiver
from runwatch.models import RunStatus, TestRun
from runwatch.store import RunStore
from runwatch.tracker import initial_steps

TEST_ID = "TEST-001"
STEP_NAMES = ["A", "B", "C"]
PUBLIC_URL = "http://testserver/blobs"

# 1x1 PNG
PNG_B64_PLACEHOLDER = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


class RecordingBroadcaster:
    """Broadcaster that keeps every published message in order."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, event: str, data: dict[str, Any]) -> None:
        self.messages.append((event, data))

    @property
    def events(self) -> list[str]:
        return [event for event, _ in self.messages]

    def inner_types(self) -> list[str]:
        """Event tags of the forwarded test:event messages."""
        return [data["type"] for event, data in self.messages if event == "test:event"]


@pytest.fixture
def store(tmp_path: Path) -> RunStore:
    """Fresh document store in a temporary directory."""
    return RunStore(tmp_path / "data" / "runwatch.db")


@pytest.fixture
def blob_store(tmp_path: Path, store: RunStore) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs", PUBLIC_URL, store=store)


@pytest.fixture
def archiver(blob_store: LocalBlobStore) -> ScreenshotArchiver:
    return ScreenshotArchiver(blob_store)


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def test_case(store: RunStore) -> TestRun:
    """A registered three-step test case."""
    run = TestRun(
        id=TEST_ID,
        name="Close guide popup",
        status=RunStatus.PENDING,
        steps=initial_steps(STEP_NAMES),
        script_path="child.py",
        template_steps=list(STEP_NAMES),
        test_url="https://example.com/",
    )
    store.upsert_test_case(run)
    return run
