"""WebSocket endpoint for live test run updates.

This module provides the publish/subscribe channel the run pipeline fans out
to: ``test:start`` when a run is launched, ``test:event`` for every event
the test process emits, and ``test:finish`` with the final status.
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])

# Seconds a single send may take before the client is dropped
SEND_TIMEOUT = 5.0

HEARTBEAT_INTERVAL = 30.0


class MessageType(str, Enum):
    """WebSocket message types."""

    # System messages
    CONNECTED = "connected"
    HEARTBEAT = "heartbeat"
    ERROR = "error"
    SUBSCRIBED = "subscribed"

    # Run updates
    TEST_START = "test:start"
    TEST_EVENT = "test:event"
    TEST_FINISH = "test:finish"


@dataclass
class WebSocketMessage:
    """Message sent over WebSocket."""

    type: MessageType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat().replace("+00:00", "Z"))

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps({
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp,
        }, ensure_ascii=False)


class ConnectionManager:
    """Manages WebSocket connections and broadcasting.

    A connection with no subscriptions receives every run's messages; once it
    subscribes to test ids it only receives messages for those runs.
    """

    def __init__(self, send_timeout: float = SEND_TIMEOUT) -> None:
        self._active: dict[WebSocket, set[str]] = {}
        self._lock = asyncio.Lock()
        self.send_timeout = send_timeout

    async def connect(self, websocket: WebSocket) -> None:
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._active[websocket] = set()
        logger.info("WebSocket connected: %s", id(websocket))

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        async with self._lock:
            self._active.pop(websocket, None)
        logger.info("WebSocket disconnected: %s", id(websocket))

    async def subscribe(self, websocket: WebSocket, test_ids: list[str]) -> set[str]:
        async with self._lock:
            subscriptions = self._active.setdefault(websocket, set())
            subscriptions.update(test_ids)
            return set(subscriptions)

    async def unsubscribe(self, websocket: WebSocket, test_ids: list[str]) -> set[str]:
        async with self._lock:
            subscriptions = self._active.get(websocket, set())
            subscriptions.difference_update(test_ids)
            return set(subscriptions)

    async def publish(self, event: str, data: dict[str, Any]) -> None:
        """Broadcaster interface used by the run pipeline."""
        await self.broadcast(WebSocketMessage(type=MessageType(event), data=data))

    async def broadcast(self, message: WebSocketMessage) -> None:
        """Send a message to every interested client.

        Clients that fail or take longer than send_timeout are dropped.
        """
        test_id = message.data.get("testId")
        async with self._lock:
            targets = [
                ws
                for ws, subscriptions in self._active.items()
                if not subscriptions or test_id is None or test_id in subscriptions
            ]

        payload = message.to_json()
        dead_connections: list[WebSocket] = []
        for connection in targets:
            try:
                await asyncio.wait_for(connection.send_text(payload), timeout=self.send_timeout)
            except Exception as e:
                logger.debug("Failed to send to WebSocket: %s", e)
                dead_connections.append(connection)

        if dead_connections:
            async with self._lock:
                for connection in dead_connections:
                    self._active.pop(connection, None)

    async def send_personal(self, websocket: WebSocket, message: WebSocketMessage) -> None:
        """Send a message to a specific client."""
        try:
            await websocket.send_text(message.to_json())
        except Exception as e:
            logger.debug("Failed to send personal message: %s", e)

    @property
    def connection_count(self) -> int:
        """Return the number of active connections."""
        return len(self._active)


# Global connection manager instance
manager = ConnectionManager()


@asynccontextmanager
async def websocket_connection(websocket: WebSocket) -> AsyncGenerator[ConnectionManager, None]:
    """Context manager for WebSocket connection lifecycle."""
    await manager.connect(websocket)
    try:
        yield manager
    finally:
        await manager.disconnect(websocket)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for live run updates.

    The connection starts with a 'connected' message and maintains
    heartbeats every 30 seconds.

    Message format:
    {
        "type": "test:event",
        "data": {"testId": "TEST-001", "type": "step:end", "payload": {...}},
        "timestamp": "2024-01-15T10:30:00Z"
    }
    """
    async with websocket_connection(websocket) as conn_manager:
        await conn_manager.send_personal(
            websocket,
            WebSocketMessage(
                type=MessageType.CONNECTED,
                data={"message": "Connected to Runwatch"},
            ),
        )

        heartbeat_task = asyncio.create_task(_heartbeat_loop(websocket))

        try:
            while True:
                try:
                    data = await websocket.receive_text()
                    await _handle_client_message(websocket, data, conn_manager)
                except WebSocketDisconnect:
                    logger.info("WebSocket client disconnected normally")
                    break
        finally:
            heartbeat_task.cancel()
            try:
                await heartbeat_task
            except asyncio.CancelledError:
                pass


async def _heartbeat_loop(websocket: WebSocket) -> None:
    """Send periodic heartbeats to keep connection alive."""
    while True:
        try:
            await asyncio.sleep(HEARTBEAT_INTERVAL)
            await manager.send_personal(
                websocket,
                WebSocketMessage(
                    type=MessageType.HEARTBEAT,
                    data={"connections": manager.connection_count},
                ),
            )
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.debug("Heartbeat error: %s", e)
            break


async def _handle_client_message(
    websocket: WebSocket,
    data: str,
    conn_manager: ConnectionManager,
) -> None:
    """Handle incoming messages from WebSocket clients.

    Supported commands:
    - {"type": "ping"} - Returns a pong
    - {"type": "subscribe", "testIds": [...]} - Only receive these runs
    - {"type": "unsubscribe", "testIds": [...]} - Stop receiving these runs
    """
    try:
        message = json.loads(data)
    except json.JSONDecodeError:
        await conn_manager.send_personal(
            websocket,
            WebSocketMessage(type=MessageType.ERROR, data={"message": "Invalid JSON message"}),
        )
        return

    msg_type = message.get("type") if isinstance(message, dict) else None
    if msg_type == "ping":
        await conn_manager.send_personal(
            websocket,
            WebSocketMessage(type=MessageType.HEARTBEAT, data={"pong": True}),
        )
    elif msg_type in ("subscribe", "unsubscribe"):
        test_ids = [str(t) for t in message.get("testIds") or []]
        if msg_type == "subscribe":
            subscriptions = await conn_manager.subscribe(websocket, test_ids)
        else:
            subscriptions = await conn_manager.unsubscribe(websocket, test_ids)
        logger.debug("Client subscriptions now: %s", subscriptions)
        await conn_manager.send_personal(
            websocket,
            WebSocketMessage(
                type=MessageType.SUBSCRIBED,
                data={"testIds": sorted(subscriptions)},
            ),
        )
    else:
        logger.debug("Unknown message type: %s", msg_type)
