"""Screenshot archival for failed steps.

A failure screenshot arrives as a base64 string (optionally a data URL) tied
to a step index. It is decoded, written to the blob store under a name derived
from the test id, step index and current time, published, and the resulting
URL is handed back to the dispatcher. Old artifacts are never deleted: the
latest write for a step is the authoritative one.
"""

import base64
import binascii
import logging
import re
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from runwatch.errors import ArchivalError, StoreError, ValidationError
from runwatch.store import RunStore

logger = logging.getLogger(__name__)

SCREENSHOT_CONTENT_TYPE = "image/png"
SCREENSHOT_PREFIX = "screenshots"

DATA_URL_HEADER = re.compile(r"^data:image/\w+;base64,")


class BlobStore(Protocol):
    """Durable storage for binary artifacts."""

    def save(
        self,
        name: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> None: ...

    def make_public(self, name: str) -> str: ...


class LocalBlobStore:
    """Blob store backed by a local directory.

    Files are served by the dashboard under ``public_base_url``; metadata
    (content type, test id, step index, timestamp) is recorded in the run
    store's ``blobs`` table for auditing.
    """

    def __init__(self, root: Path, public_base_url: str, store: RunStore | None = None) -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.store = store

    def _path(self, name: str) -> Path:
        path = (self.root / name).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ArchivalError(f"Blob name escapes the store root: {name}")
        return path

    def check(self) -> bool:
        """Return True if the blob directory exists and is writable."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            probe = self.root / ".write-probe"
            probe.write_bytes(b"")
            probe.unlink()
        except OSError as e:
            logger.error("Blob store not writable at %s: %s", self.root, e)
            return False
        return True

    def save(
        self,
        name: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> None:
        path = self._path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except OSError as e:
            raise ArchivalError(f"Failed to write blob {name}", detail=str(e)) from e

        if self.store is not None:
            try:
                self.store.insert_blob(name, content_type, len(data), metadata)
            except StoreError as e:
                raise ArchivalError(
                    f"Failed to record blob metadata for {name}", detail=e.detail
                ) from e

    def make_public(self, name: str) -> str:
        if not self._path(name).exists():
            raise ArchivalError(f"Cannot publish missing blob {name}")
        if self.store is not None:
            try:
                self.store.mark_blob_public(name)
            except StoreError as e:
                raise ArchivalError(f"Failed to publish blob {name}", detail=e.detail) from e
        return f"{self.public_base_url}/{name}"


def strip_data_url(payload: str) -> str:
    """Remove a ``data:image/...;base64,`` header if present."""
    return DATA_URL_HEADER.sub("", payload, count=1)


def decode_screenshot(payload: object) -> bytes:
    """Decode a base64 screenshot payload into raw image bytes.

    Raises:
        ValidationError: If the payload is empty, not a string or not base64.
    """
    if not payload or not isinstance(payload, str):
        raise ValidationError(
            "Invalid screenshot data: payload is empty or not a string",
            field="screenshotBase64",
        )

    data = strip_data_url(payload).strip()
    if not data:
        raise ValidationError(
            "Screenshot base64 data is empty after header removal",
            field="screenshotBase64",
        )

    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(
            f"Screenshot payload is not valid base64: {e}", field="screenshotBase64"
        ) from e


class _MillisClock:
    """Wall-clock milliseconds that never repeat within one process."""

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            now = int(time.time() * 1000)
            if now <= self._last:
                now = self._last + 1
            self._last = now
            return now


unique_millis = _MillisClock()


def screenshot_name(test_id: str, step_index: int, timestamp_ms: int) -> str:
    """Destination name for a step's failure screenshot."""
    safe_id = re.sub(r"[^A-Za-z0-9_.-]", "_", test_id)
    return f"{SCREENSHOT_PREFIX}/screenshot-{safe_id}-step{step_index}-{timestamp_ms}.png"


class ScreenshotArchiver:
    """Decodes, stores and publishes failure screenshots."""

    def __init__(
        self,
        blob_store: BlobStore,
        clock: Callable[[], int] = unique_millis,
    ) -> None:
        self.blob_store = blob_store
        self._clock = clock

    def archive(self, test_id: str, payload: object, step_index: int) -> str:
        """Archive one screenshot and return its public URL.

        Args:
            test_id: Test case the screenshot belongs to.
            payload: Base64 image data, optionally with a data URL header.
            step_index: Index of the failed step in the run's steps.

        Raises:
            ValidationError: If the payload is empty or invalid.
            ArchivalError: If storing or publishing fails.
        """
        logger.info("Archiving screenshot for test %s, step %d", test_id, step_index)
        image = decode_screenshot(payload)
        logger.debug("Decoded screenshot: %d bytes", len(image))

        timestamp = self._clock()
        name = screenshot_name(test_id, step_index, timestamp)
        metadata = {
            "testId": test_id,
            "stepIndex": str(step_index),
            "timestamp": str(timestamp),
        }

        try:
            self.blob_store.save(name, image, SCREENSHOT_CONTENT_TYPE, metadata)
            url = self.blob_store.make_public(name)
        except ArchivalError as e:
            e.test_id = e.test_id or test_id
            e.step_index = step_index if e.step_index is None else e.step_index
            raise
        except OSError as e:
            raise ArchivalError(
                "Screenshot storage failed", test_id=test_id, step_index=step_index, detail=str(e)
            ) from e

        logger.info("Screenshot stored at %s", url)
        return url
