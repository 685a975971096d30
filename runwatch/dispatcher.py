"""Event dispatch for a single run.

The dispatcher consumes decoded events in emission order. Every event is first
queued verbatim for live subscribers, then its state transition is applied
through the RunTracker. Persistence and archival failures are logged and the
single update is dropped; processing continues with the next event.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from runwatch.archive import ScreenshotArchiver
from runwatch.broadcast import TEST_EVENT, TEST_FINISH, FanOut
from runwatch.errors import RunwatchError
from runwatch.framing import ChunkReader, FrameDecoder, iter_frames, parse_frame
from runwatch.models import (
    SUCCESS_STATUS,
    DebugLogPayload,
    Event,
    EventType,
    ScreenshotPayload,
    StepEndPayload,
    StepStatus,
    TestEndPayload,
    TestStartPayload,
)
from runwatch.notifications import NotificationService
from runwatch.tracker import RunTracker

logger = logging.getLogger(__name__)

# Operational log sink for debug:log events from the child
child_logger = logging.getLogger("runwatch.child")

T = TypeVar("T")


@dataclass
class RunContext:
    """Mutable state owned by one run, discarded when the run ends."""

    test_id: str
    step_count: int
    project: str = ""
    cursor: int = 0
    passed: int = 0
    failed: int = 0
    decoder: FrameDecoder = field(default_factory=FrameDecoder)
    stderr: list[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def error_output(self) -> str:
        return "".join(self.stderr)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


class EventDispatcher:
    """Applies a run's events to its tracker, archiver and subscribers."""

    def __init__(
        self,
        context: RunContext,
        tracker: RunTracker,
        archiver: ScreenshotArchiver,
        fanout: FanOut,
        notifier: NotificationService | None = None,
    ) -> None:
        self.context = context
        self.tracker = tracker
        self.archiver = archiver
        self.fanout = fanout
        self.notifier = notifier
        self._handlers: dict[EventType, Callable[[Any], Any]] = {
            EventType.TEST_START: self._on_test_start,
            EventType.STEP_END: self._on_step_end,
            EventType.SCREENSHOT_ADD: self._on_screenshot_add,
            EventType.DEBUG_LOG: self._on_debug_log,
            EventType.TEST_END: self._on_test_end,
        }

    async def consume(self, reader: ChunkReader) -> int:
        """Decode and dispatch every frame of a child's stdout.

        Returns:
            Number of events dispatched.
        """
        count = 0
        async for frame in iter_frames(reader, self.context.decoder):
            event = parse_frame(frame)
            if event is None:
                continue
            await self.dispatch(event)
            count += 1
        return count

    async def dispatch(self, event: Event) -> None:
        """Fan out one event and apply its transition."""
        logger.debug("Dispatching %s for %s", event.type.value, self.context.test_id)
        self.fanout.post(TEST_EVENT, {"testId": self.context.test_id, **event.raw})
        await self._handlers[event.type](event.payload)

    async def _persist(self, description: str, func: Callable[..., T], *args: Any) -> T | None:
        """Run a blocking store call off the event loop, containing its errors."""
        try:
            return await asyncio.to_thread(func, *args)
        except RunwatchError as e:
            logger.error(
                "Dropping %s for %s: %s (%s)",
                description,
                self.context.test_id,
                e.message,
                e.detail or "no detail",
            )
            return None

    async def _on_test_start(self, payload: TestStartPayload) -> None:
        if payload.title:
            self.context.project = payload.title
        await self._persist("status update", self.tracker.mark_in_progress)
        if self.notifier is not None:
            await asyncio.to_thread(
                self.notifier.notify_test_start,
                self.context.test_id,
                self.context.project or self.context.test_id,
            )

    async def _on_step_end(self, payload: StepEndPayload) -> None:
        ctx = self.context
        if ctx.cursor >= ctx.step_count:
            logger.debug(
                "Ignoring step:end '%s' beyond %d steps for %s",
                payload.title,
                ctx.step_count,
                ctx.test_id,
            )
            return

        index = ctx.cursor
        ctx.cursor += 1
        if payload.status == StepStatus.FAILED:
            ctx.failed += 1
        else:
            ctx.passed += 1

        await self._persist(
            f"step {index} update",
            self.tracker.apply_step_end,
            index,
            payload.status,
            payload.duration,
            payload.error,
        )

    async def _on_screenshot_add(self, payload: ScreenshotPayload) -> None:
        index = payload.failed_step_index
        try:
            url = await asyncio.to_thread(
                self.archiver.archive,
                self.context.test_id,
                payload.screenshot_base64,
                index,
            )
        except RunwatchError as e:
            logger.error(
                "Screenshot processing failed for %s step %d: %s",
                self.context.test_id,
                index,
                e.message,
            )
            return

        attached = await self._persist(
            f"screenshot URL for step {index}", self.tracker.attach_screenshot, index, url
        )
        if attached:
            logger.info("Screenshot URL saved for %s step %d", self.context.test_id, index)

    async def _on_debug_log(self, payload: DebugLogPayload) -> None:
        child_logger.info("[%s] %s", self.context.test_id, payload.message)

    async def _on_test_end(self, payload: TestEndPayload) -> None:
        ctx = self.context
        passed = payload.status == SUCCESS_STATUS
        await self._persist("final status", self.tracker.finish, passed, payload.duration)
        self.fanout.post(TEST_FINISH, {"testId": ctx.test_id, "status": payload.status})
        logger.info(
            "Run %s finished: %s in %sms (%d passed, %d failed)",
            ctx.test_id,
            payload.status,
            payload.duration,
            ctx.passed,
            ctx.failed,
        )
        if self.notifier is not None:
            await asyncio.to_thread(
                self.notifier.notify_test_end,
                ctx.test_id,
                ctx.project or ctx.test_id,
                ctx.passed,
                ctx.failed,
            )
