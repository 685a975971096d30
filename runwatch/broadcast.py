"""Live fan-out of run events to subscribers.

The pipeline never awaits subscribers directly. Each run owns a FanOut that
queues messages and delivers them in order from its own task, so a slow or
failing subscriber cannot hold up parsing or persistence.
"""

import asyncio
import json
import logging
from typing import Any, Protocol

import click

logger = logging.getLogger(__name__)

# Event names on the publish/subscribe channel
TEST_START = "test:start"
TEST_EVENT = "test:event"
TEST_FINISH = "test:finish"


class Broadcaster(Protocol):
    """Publish/subscribe channel shared by all runs."""

    async def publish(self, event: str, data: dict[str, Any]) -> None: ...


class NullBroadcaster:
    """Broadcaster that drops everything."""

    async def publish(self, event: str, data: dict[str, Any]) -> None:
        return None


class ConsoleBroadcaster:
    """Broadcaster that echoes events to the terminal, used by the CLI."""

    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose

    async def publish(self, event: str, data: dict[str, Any]) -> None:
        if event == TEST_EVENT and not self.verbose:
            inner = data.get("type")
            payload = data.get("payload") or {}
            if inner == "step:end":
                mark = "✓" if payload.get("status") == "passed" else "✗"
                click.echo(f"  {mark} {payload.get('title', '')} ({payload.get('duration', 0)}ms)")
            elif inner == "screenshot:add":
                click.echo(f"  [screenshot for step {payload.get('failedStepIndex')}]")
            return
        if event == TEST_EVENT:
            data = {**data}
            payload = data.get("payload")
            if isinstance(payload, dict) and "screenshotBase64" in payload:
                data["payload"] = {**payload, "screenshotBase64": "<omitted>"}
        click.echo(f"{event} {json.dumps(data, ensure_ascii=False)}")


class FanOut:
    """Ordered, non-blocking delivery of one run's messages."""

    def __init__(self, broadcaster: Broadcaster, name: str = "") -> None:
        self.broadcaster = broadcaster
        self.name = name
        self._queue: asyncio.Queue[tuple[str, dict[str, Any]] | None] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._deliver(), name=f"fanout-{self.name}")

    def post(self, event: str, data: dict[str, Any]) -> None:
        """Queue a message for delivery; never blocks."""
        self._queue.put_nowait((event, data))

    async def _deliver(self) -> None:
        while True:
            item = await self._queue.get()
            if item is None:
                break
            event, data = item
            try:
                await self.broadcaster.publish(event, data)
            except Exception as e:
                logger.warning("Failed to publish %s for %s: %s", event, self.name, e)

    async def close(self) -> None:
        """Deliver everything queued so far, then stop."""
        if self._task is None:
            return
        self._queue.put_nowait(None)
        await self._task
        self._task = None
