"""Tests for the in-process event emitter and reporter."""

import base64
import io
import json
from pathlib import Path

import pytest

from runwatch.emitter import (
    ACTION_CATEGORY,
    HOOK_CATEGORY,
    Attachment,
    EventEmitter,
    Reporter,
    StepResult,
    TestResult,
    TestSession,
    count_step_outcomes,
    find_first_failed_step,
)
from runwatch.framing import FrameDecoder


def _events(stream: io.StringIO) -> list[dict]:
    return [json.loads(frame) for frame in FrameDecoder().feed(stream.getvalue())]


class FakeClock:
    """Monotonic clock advancing 0.01s per call."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        self.now += 0.01
        return self.now


class TestFindFirstFailedStep:
    """Tests for find_first_failed_step."""

    def test_no_failure(self) -> None:
        """Test that a passing tree has no failed step."""
        steps = [StepResult("A"), StepResult("B")]
        assert find_first_failed_step(steps) is None

    def test_flat_failure_ordinal(self) -> None:
        """Test the ordinal of a failure among flat steps."""
        steps = [StepResult("A"), StepResult("B", error="boom"), StepResult("C")]
        found = find_first_failed_step(steps)
        assert found is not None
        step, index = found
        assert step.title == "B"
        assert index == 1

    def test_containers_not_counted(self) -> None:
        """Test that hook and action containers do not advance the ordinal."""
        steps = [
            StepResult(
                "Before Hooks",
                category=HOOK_CATEGORY,
                steps=[StepResult("launch", category=ACTION_CATEGORY)],
            ),
            StepResult("A", steps=[StepResult("click", category=ACTION_CATEGORY)]),
            StepResult(
                "wrapper",
                category=HOOK_CATEGORY,
                steps=[StepResult("B"), StepResult("C", error="timeout")],
            ),
        ]
        found = find_first_failed_step(steps)
        assert found is not None
        step, index = found
        assert step.title == "C"
        assert index == 2

    def test_errored_container_ignored(self) -> None:
        """Test that an error on a non-countable step is not a step failure."""
        steps = [
            StepResult("A"),
            StepResult("page.goto", category=ACTION_CATEGORY, error="net::ERR"),
            StepResult("B", error="assertion"),
        ]
        found = find_first_failed_step(steps)
        assert found is not None
        assert found[0].title == "B"
        assert found[1] == 1

    def test_nested_countable_steps_counted_in_walk_order(self) -> None:
        """Test that nested countable steps are counted depth-first."""
        steps = [
            StepResult("outer", steps=[StepResult("inner-1"), StepResult("inner-2", error="x")]),
        ]
        found = find_first_failed_step(steps)
        assert found is not None
        assert found[0].title == "inner-2"
        assert found[1] == 2


class TestCountStepOutcomes:
    """Tests for count_step_outcomes."""

    def test_counts_top_level_countable_steps(self) -> None:
        steps = [
            StepResult("A"),
            StepResult("B", error="x"),
            StepResult("hook", category=HOOK_CATEGORY, error="ignored"),
        ]
        assert count_step_outcomes(steps) == (1, 1)


class TestEventEmitter:
    """Tests for EventEmitter."""

    def test_step_end_frame(self) -> None:
        """Test that step_end writes one framed event."""
        stream = io.StringIO()
        EventEmitter(stream).step_end("A", 12, "passed")
        assert _events(stream) == [
            {"type": "step:end", "payload": {"title": "A", "duration": 12, "status": "passed"}}
        ]

    def test_screenshot_encodes_bytes(self) -> None:
        """Test that raw image bytes are sent as base64."""
        stream = io.StringIO()
        EventEmitter(stream).screenshot(1, b"\x89PNG")
        (event,) = _events(stream)
        assert event["type"] == "screenshot:add"
        assert event["payload"]["failedStepIndex"] == 1
        assert base64.b64decode(event["payload"]["screenshotBase64"]) == b"\x89PNG"


class TestReporter:
    """Tests for Reporter."""

    def test_non_countable_steps_not_reported(self) -> None:
        """Test that only test.step steps produce step:end events."""
        stream = io.StringIO()
        reporter = Reporter(EventEmitter(stream))
        reporter.on_step_end(StepResult("click", category=ACTION_CATEGORY))
        reporter.on_step_end(StepResult("A"))
        assert [e["payload"]["title"] for e in _events(stream)] == ["A"]

    def test_failure_sends_screenshot_before_test_end(self) -> None:
        """Test that a failed test reports its screenshot at the failed ordinal."""
        stream = io.StringIO()
        reporter = Reporter(EventEmitter(stream))
        result = TestResult(
            status="failed",
            duration=100,
            steps=[
                StepResult("hook", category=HOOK_CATEGORY),
                StepResult("A"),
                StepResult("B", error="boom"),
            ],
            attachments=[Attachment(name="screenshot", body=b"png-bytes")],
        )
        reporter.on_test_end(result)
        events = _events(stream)
        assert [e["type"] for e in events] == ["screenshot:add", "test:end"]
        assert events[0]["payload"]["failedStepIndex"] == 1
        assert events[1]["payload"] == {"duration": 100, "status": "failed"}

    def test_failure_without_attachment(self) -> None:
        """Test that a failure with no screenshot only reports test:end."""
        stream = io.StringIO()
        reporter = Reporter(EventEmitter(stream))
        reporter.on_test_end(
            TestResult(status="failed", steps=[StepResult("A", error="boom")])
        )
        assert [e["type"] for e in _events(stream)] == ["test:end"]

    def test_unreadable_attachment_reports_debug(self, tmp_path: Path) -> None:
        """Test that a screenshot read error becomes a debug:log event."""
        stream = io.StringIO()
        reporter = Reporter(EventEmitter(stream))
        reporter.on_test_end(
            TestResult(
                status="failed",
                steps=[StepResult("A", error="boom")],
                attachments=[Attachment(name="screenshot", path=tmp_path / "missing.png")],
            )
        )
        events = _events(stream)
        assert [e["type"] for e in events] == ["debug:log", "test:end"]
        assert "Screenshot read error" in events[0]["payload"]["message"]

    def test_passed_test_sends_no_screenshot(self) -> None:
        stream = io.StringIO()
        reporter = Reporter(EventEmitter(stream))
        reporter.on_test_end(
            TestResult(
                status="passed",
                steps=[StepResult("A")],
                attachments=[Attachment(name="screenshot", body=b"x")],
            )
        )
        assert [e["type"] for e in _events(stream)] == ["test:end"]


class TestTestSession:
    """Tests for TestSession."""

    def test_passing_session(self) -> None:
        """Test the event sequence of a passing session."""
        stream = io.StringIO()
        with TestSession("Demo", Reporter(EventEmitter(stream)), clock=FakeClock()) as session:
            with session.step("A"):
                pass
            with session.step("B"):
                pass
        events = _events(stream)
        assert [e["type"] for e in events] == [
            "test:start",
            "step:end",
            "step:end",
            "debug:log",
            "test:end",
        ]
        assert events[0]["payload"] == {"title": "Demo"}
        assert events[-1]["payload"]["status"] == "passed"
        assert session.result is not None
        assert session.result.status == "passed"

    def test_failing_step_captures_screenshot(self) -> None:
        """Test that a failing step is reported with its screenshot."""
        stream = io.StringIO()
        shots: list[int] = []

        def screenshot() -> bytes:
            shots.append(1)
            return b"image"

        with pytest.raises(RuntimeError):
            with TestSession(
                "Demo", Reporter(EventEmitter(stream)), screenshot=screenshot, clock=FakeClock()
            ) as session:
                with session.step("A"):
                    pass
                with session.step("B"):
                    raise RuntimeError("element not found")

        events = _events(stream)
        step_events = [e for e in events if e["type"] == "step:end"]
        assert step_events[1]["payload"]["status"] == "failed"
        assert step_events[1]["payload"]["error"] == "element not found"

        screenshot_events = [e for e in events if e["type"] == "screenshot:add"]
        assert len(screenshot_events) == 1
        assert screenshot_events[0]["payload"]["failedStepIndex"] == 1
        assert base64.b64decode(screenshot_events[0]["payload"]["screenshotBase64"]) == b"image"
        assert events[-1]["type"] == "test:end"
        assert events[-1]["payload"]["status"] == "failed"
        assert shots == [1]

    def test_screenshot_capture_error_is_reported(self) -> None:
        """Test that a failing screenshot callable does not mask the step error."""
        stream = io.StringIO()

        def screenshot() -> bytes:
            raise OSError("browser closed")

        with pytest.raises(ValueError):
            with TestSession(
                "Demo", Reporter(EventEmitter(stream)), screenshot=screenshot, clock=FakeClock()
            ) as session:
                with session.step("A"):
                    raise ValueError("bad")

        events = _events(stream)
        assert any(
            e["type"] == "debug:log" and "browser closed" in e["payload"]["message"]
            for e in events
        )
        assert not any(e["type"] == "screenshot:add" for e in events)

    def test_nested_action_steps_not_reported(self) -> None:
        """Test that non-countable nested steps are not emitted."""
        stream = io.StringIO()
        with TestSession("Demo", Reporter(EventEmitter(stream)), clock=FakeClock()) as session:
            with session.step("A"):
                with session.step("page.click", category=ACTION_CATEGORY):
                    pass
        titles = [e["payload"]["title"] for e in _events(stream) if e["type"] == "step:end"]
        assert titles == ["A"]
        assert session.steps[0].steps[0].title == "page.click"

    def test_attached_file_screenshot(self, tmp_path: Path) -> None:
        """Test that a screenshot file attached by path is sent."""
        image = tmp_path / "shot.png"
        image.write_bytes(b"file-image")
        stream = io.StringIO()
        with pytest.raises(AssertionError):
            with TestSession("Demo", Reporter(EventEmitter(stream)), clock=FakeClock()) as session:
                session.attach_screenshot(image)
                with session.step("A"):
                    raise AssertionError("nope")
        (shot,) = [e for e in _events(stream) if e["type"] == "screenshot:add"]
        assert base64.b64decode(shot["payload"]["screenshotBase64"]) == b"file-image"
