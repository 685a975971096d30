"""Data model for test runs, steps, events and notifications.

Run and step records are dataclasses with explicit to_dict/from_dict helpers
so they round-trip through the document store using the same field names the
dashboard reads (``lastResult``, ``screenshotURL``, ...). Event payloads are
validated with pydantic models, one per event type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """Lifecycle states of a test run."""

    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    FAILED = "Failed"


class StepStatus(str, Enum):
    """States of a single step within a run."""

    PENDING = "Pending"
    PASSED = "passed"
    FAILED = "failed"


class EventType(str, Enum):
    """Event tags emitted by a running test."""

    TEST_START = "test:start"
    STEP_END = "step:end"
    SCREENSHOT_ADD = "screenshot:add"
    DEBUG_LOG = "debug:log"
    TEST_END = "test:end"


# Payload status reported by the child for a successful test
SUCCESS_STATUS = "passed"


@dataclass
class StepRecord:
    """Persisted state of one step of a run."""

    name: str
    status: StepStatus = StepStatus.PENDING
    duration: float = 0
    error: str | None = None
    screenshot_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "duration": self.duration,
            "error": self.error,
        }
        if self.screenshot_url is not None:
            result["screenshotURL"] = self.screenshot_url
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepRecord:
        """Create a StepRecord from its serialized form."""
        try:
            status = StepStatus(data.get("status", StepStatus.PENDING.value))
        except ValueError:
            status = StepStatus.PENDING
        return cls(
            name=data.get("name", ""),
            status=status,
            duration=data.get("duration") or 0,
            error=data.get("error"),
            screenshot_url=data.get("screenshotURL"),
        )


@dataclass
class TestRun:
    """A nameable test case together with the state of its latest run."""

    id: str
    name: str = ""
    status: RunStatus = RunStatus.PENDING
    steps: list[StepRecord] = field(default_factory=list)
    last_result: str | None = None
    duration: float | None = None
    script_path: str | None = None
    template_steps: list[str] | None = None
    test_url: str | None = None
    last_run: str | None = None

    # pytest would otherwise try to collect this class
    __test__ = False

    def step_names(self) -> list[str]:
        """Return the ordered step names used to initialize a run.

        The explicit template wins; otherwise the names of the current
        steps are reused.
        """
        if self.template_steps:
            return list(self.template_steps)
        return [step.name for step in self.steps]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "steps": [step.to_dict() for step in self.steps],
            "lastResult": self.last_result,
            "duration": self.duration,
            "scriptPath": self.script_path,
            "templateSteps": self.template_steps,
            "testUrl": self.test_url,
            "lastRun": self.last_run,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestRun:
        """Create a TestRun from its serialized form."""
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            status=RunStatus(data.get("status") or RunStatus.PENDING.value),
            steps=[StepRecord.from_dict(s) for s in data.get("steps") or []],
            last_result=data.get("lastResult"),
            duration=data.get("duration"),
            script_path=data.get("scriptPath"),
            template_steps=data.get("templateSteps"),
            test_url=data.get("testUrl"),
            last_run=data.get("lastRun"),
        )


@dataclass
class Notification:
    """Lifecycle notification shown in the dashboard header."""

    id: str
    test_id: str
    title: str
    message: str
    type: str
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    read_by: set[str] = field(default_factory=set)

    def is_read_by(self, user_id: str) -> bool:
        return user_id in self.read_by

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "testId": self.test_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "createdAt": self.created_at,
            "readBy": sorted(self.read_by),
        }


# Event payloads, one model per event type


class TestStartPayload(BaseModel):
    __test__ = False

    title: str = ""


class StepEndPayload(BaseModel):
    title: str = ""
    duration: float = 0
    status: StepStatus
    error: str | None = None


class ScreenshotPayload(BaseModel):
    failed_step_index: int = Field(..., alias="failedStepIndex", ge=0)
    screenshot_base64: str = Field(..., alias="screenshotBase64")


class DebugLogPayload(BaseModel):
    message: str = ""


class TestEndPayload(BaseModel):
    __test__ = False

    duration: float = 0
    status: str


PAYLOAD_MODELS: dict[EventType, type[BaseModel]] = {
    EventType.TEST_START: TestStartPayload,
    EventType.STEP_END: StepEndPayload,
    EventType.SCREENSHOT_ADD: ScreenshotPayload,
    EventType.DEBUG_LOG: DebugLogPayload,
    EventType.TEST_END: TestEndPayload,
}


@dataclass(frozen=True)
class Event:
    """One decoded event from a run's stream.

    ``raw`` keeps the event exactly as emitted so it can be forwarded
    verbatim to live subscribers.
    """

    type: EventType
    payload: Any
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        """Validate a decoded JSON object into an Event.

        Raises:
            ValueError: If the type tag is unknown.
            pydantic.ValidationError: If the payload has the wrong shape.
        """
        event_type = EventType(data.get("type"))
        model = PAYLOAD_MODELS[event_type]
        payload = model.model_validate(data.get("payload") or {})
        return cls(type=event_type, payload=payload, raw=data)
