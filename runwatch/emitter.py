"""Event emitter used inside a running test process.

A test script reports its progress by writing framed JSON events to stdout.
The Reporter mirrors a browser-test reporter lifecycle (test begin, step end,
test end) and TestSession gives plain Python scripts a ``with session.step()``
API on top of it::

    with TestSession("Close guide popup") as session:
        with session.step("Go to target URL"):
            page.goto(target_url)
"""

from __future__ import annotations

import base64
import sys
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import Any, TextIO

from runwatch.framing import encode_frame
from runwatch.models import SUCCESS_STATUS, EventType

# Step category that counts towards the step ordinal
STEP_CATEGORY = "test.step"
# Structural categories, traversed but never counted
HOOK_CATEGORY = "hook"
ACTION_CATEGORY = "pw:api"

SCREENSHOT_ATTACHMENT = "screenshot"

FAILED_STATUS = "failed"


@dataclass
class StepResult:
    """One node of a test's step tree."""

    title: str
    category: str = STEP_CATEGORY
    duration: int = 0
    error: str | None = None
    steps: list[StepResult] = field(default_factory=list)

    @property
    def countable(self) -> bool:
        return self.category == STEP_CATEGORY


@dataclass
class Attachment:
    """File or in-memory artifact attached to a test result."""

    name: str
    path: Path | None = None
    body: bytes | None = None
    content_type: str = "image/png"

    def read(self) -> bytes:
        if self.body is not None:
            return self.body
        if self.path is None:
            raise OSError(f"Attachment {self.name} has no content")
        return self.path.read_bytes()


@dataclass
class TestResult:
    """Outcome of a whole test."""

    status: str
    duration: int = 0
    steps: list[StepResult] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)

    __test__ = False


@dataclass
class StepCounter:
    """Ordinal of countable steps seen so far during a tree walk."""

    value: int = 0


def find_first_failed_step(
    steps: list[StepResult],
    counter: StepCounter | None = None,
) -> tuple[StepResult, int] | None:
    """Locate the first countable step carrying an error.

    Walks the tree depth-first in declaration order. Only countable steps
    advance the ordinal; container steps of other categories are descended
    into but not counted.

    Args:
        steps: Top-level steps of the test.
        counter: Shared ordinal for the recursion; leave as None.

    Returns:
        The failed step and its zero-based ordinal among countable steps,
        or None if no countable step has an error.
    """
    if counter is None:
        counter = StepCounter()
    for step in steps:
        if step.countable:
            if step.error:
                return step, counter.value
            counter.value += 1
        if step.steps:
            found = find_first_failed_step(step.steps, counter)
            if found is not None:
                return found
    return None


def count_step_outcomes(steps: list[StepResult]) -> tuple[int, int]:
    """Passed and failed counts over the top-level countable steps."""
    passed = failed = 0
    for step in steps:
        if not step.countable:
            continue
        if step.error:
            failed += 1
        else:
            passed += 1
    return passed, failed


class EventEmitter:
    """Writes framed events to a text stream (stdout by default)."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        # Resolved lazily so pytest's capture swapping sys.stdout is honored
        return self._stream or sys.stdout

    def emit(self, event_type: EventType | str, payload: dict[str, Any]) -> None:
        type_value = event_type.value if isinstance(event_type, EventType) else event_type
        self.stream.write(encode_frame({"type": type_value, "payload": payload}))
        self.stream.flush()

    def test_start(self, title: str) -> None:
        self.emit(EventType.TEST_START, {"title": title})

    def step_end(self, title: str, duration: int, status: str, error: str | None = None) -> None:
        payload: dict[str, Any] = {"title": title, "duration": duration, "status": status}
        if error is not None:
            payload["error"] = error
        self.emit(EventType.STEP_END, payload)

    def screenshot(self, failed_step_index: int, image: bytes | str) -> None:
        """Send a failure screenshot for the step at failed_step_index."""
        if isinstance(image, bytes):
            image = base64.b64encode(image).decode("ascii")
        self.emit(
            EventType.SCREENSHOT_ADD,
            {"failedStepIndex": failed_step_index, "screenshotBase64": image},
        )

    def debug(self, message: str) -> None:
        self.emit(EventType.DEBUG_LOG, {"message": message})

    def test_end(self, duration: int, status: str) -> None:
        self.emit(EventType.TEST_END, {"duration": duration, "status": status})


class Reporter:
    """Translates test lifecycle hooks into framed events."""

    def __init__(self, emitter: EventEmitter | None = None) -> None:
        self.emitter = emitter or EventEmitter()

    def on_test_begin(self, title: str) -> None:
        self.emitter.test_start(title)

    def on_step_end(self, step: StepResult) -> None:
        if not step.countable:
            return
        status = FAILED_STATUS if step.error else SUCCESS_STATUS
        self.emitter.step_end(step.title, step.duration, status, step.error)

    def on_test_end(self, result: TestResult) -> None:
        if result.status == FAILED_STATUS:
            self._send_failure_screenshot(result)
        self.emitter.test_end(result.duration, result.status)

    def _send_failure_screenshot(self, result: TestResult) -> None:
        found = find_first_failed_step(result.steps)
        if found is None:
            return
        _, index = found

        attachment = next(
            (
                a
                for a in result.attachments
                if a.name == SCREENSHOT_ATTACHMENT and (a.path or a.body)
            ),
            None,
        )
        if attachment is None:
            return

        try:
            image = attachment.read()
        except OSError as e:
            self.emitter.debug(f"[Reporter] Screenshot read error: {e}")
            return
        self.emitter.screenshot(index, image)


class TestSession:
    """Context-manager API for writing reporting test scripts.

    Steps opened with :meth:`step` are timed and reported as they finish. An
    exception inside a step marks it failed and propagates; the session then
    reports the test as failed on exit. ``screenshot`` is called once, when the
    first countable step fails, and may return PNG bytes or a file path.
    """

    __test__ = False

    def __init__(
        self,
        title: str,
        reporter: Reporter | None = None,
        screenshot: Callable[[], bytes | Path | None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.title = title
        self.reporter = reporter or Reporter()
        self.capture_screenshot = screenshot
        self._clock = clock
        self._started = 0.0
        self._stack: list[StepResult] = []
        self.steps: list[StepResult] = []
        self.attachments: list[Attachment] = []
        self.result: TestResult | None = None

    @property
    def emitter(self) -> EventEmitter:
        return self.reporter.emitter

    def debug(self, message: str) -> None:
        self.emitter.debug(message)

    def __enter__(self) -> TestSession:
        self._started = self._clock()
        self.reporter.on_test_begin(self.title)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        failed = exc is not None or find_first_failed_step(self.steps) is not None
        self.result = TestResult(
            status=FAILED_STATUS if failed else SUCCESS_STATUS,
            duration=self._elapsed_ms(self._started),
            steps=self.steps,
            attachments=self.attachments,
        )
        passed, failed_steps = count_step_outcomes(self.steps)
        self.debug(f"{self.title}: {passed} steps passed, {failed_steps} failed")
        self.reporter.on_test_end(self.result)
        return False

    def _elapsed_ms(self, since: float) -> int:
        return int((self._clock() - since) * 1000)

    @contextmanager
    def step(self, title: str, category: str = STEP_CATEGORY) -> Iterator[StepResult]:
        """Run a block as one step of the test."""
        step = StepResult(title=title, category=category)
        parent = self._stack[-1].steps if self._stack else self.steps
        parent.append(step)
        self._stack.append(step)
        started = self._clock()
        try:
            yield step
        except Exception as e:
            step.error = str(e) or e.__class__.__name__
            if step.countable:
                self._capture(step)
            raise
        finally:
            step.duration = self._elapsed_ms(started)
            self._stack.pop()
            self.reporter.on_step_end(step)

    def attach_screenshot(self, path: Path | str) -> None:
        self.attachments.append(Attachment(name=SCREENSHOT_ATTACHMENT, path=Path(path)))

    def _capture(self, step: StepResult) -> None:
        if self.capture_screenshot is None or self._has_screenshot():
            return
        try:
            captured = self.capture_screenshot()
        except Exception as e:
            self.debug(f"Screenshot capture failed for '{step.title}': {e}")
            return
        if captured is None:
            return
        if isinstance(captured, bytes):
            self.attachments.append(Attachment(name=SCREENSHOT_ATTACHMENT, body=captured))
        else:
            self.attach_screenshot(captured)

    def _has_screenshot(self) -> bool:
        return any(a.name == SCREENSHOT_ATTACHMENT for a in self.attachments)
