"""Framed-JSON protocol used between a running test and the supervisor.

Each event is a complete JSON object immediately followed by the literal
sentinel ``__END_OF_JSON__``. There is no length prefix and no newline
requirement, so the decoder reassembles frames from arbitrarily chunked
reads by keeping a single residual buffer.
"""

import codecs
import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

from pydantic import ValidationError as PayloadValidationError

from runwatch.errors import FramingError
from runwatch.models import Event

logger = logging.getLogger(__name__)

SENTINEL = "__END_OF_JSON__"

# Read size for a child process stdout pipe
READ_CHUNK_SIZE = 4096


class ChunkReader(Protocol):
    """Anything with an asyncio.StreamReader style read()."""

    async def read(self, n: int = -1) -> bytes: ...


def encode_frame(event: dict[str, Any]) -> str:
    """Serialize one event as a frame ready to be written to the stream."""
    return json.dumps(event, ensure_ascii=False) + SENTINEL


class FrameDecoder:
    """Incremental splitter for a sentinel-delimited stream.

    A frame is only returned once its trailing sentinel has fully arrived.
    The residual after the last sentinel is never flushed: a partial frame
    left at end of stream is dropped.
    """

    def __init__(self, sentinel: str = SENTINEL) -> None:
        if not sentinel:
            raise ValueError("sentinel must not be empty")
        self.sentinel = sentinel
        # Pending text as chunks, joined only once a sentinel arrives
        self._parts: list[str] = []
        self._tail = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        """Text received after the last complete frame."""
        return "".join(self._parts)

    def _tail_of(self, text: str) -> str:
        # Enough trailing text to detect a sentinel split across chunks
        keep = len(self.sentinel) - 1
        return text[-keep:] if keep else ""

    def feed(self, chunk: str | bytes) -> list[str]:
        """Append a chunk and return every frame it completed, in order."""
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        if not chunk:
            return []
        window = self._tail + chunk
        self._parts.append(chunk)
        if self.sentinel not in window:
            self._tail = self._tail_of(window)
            return []

        pieces = "".join(self._parts).split(self.sentinel)
        rest = pieces.pop()
        self._parts = [rest] if rest else []
        self._tail = self._tail_of(rest)
        return [piece for piece in pieces if piece.strip()]

    def close(self) -> None:
        """Discard the residual buffer at end of stream."""
        pending = self.pending
        if pending.strip():
            logger.debug("Dropping partial frame at end of stream (%d chars)", len(pending))
        self._parts = []
        self._tail = ""


async def iter_frames(
    reader: ChunkReader,
    decoder: FrameDecoder | None = None,
    chunk_size: int = READ_CHUNK_SIZE,
) -> AsyncIterator[str]:
    """Yield complete frames from a byte stream until it reaches EOF."""
    decoder = decoder or FrameDecoder()
    try:
        while True:
            chunk = await reader.read(chunk_size)
            if not chunk:
                break
            for frame in decoder.feed(chunk):
                yield frame
    finally:
        decoder.close()


def decode_frame(frame: str) -> Event:
    """Parse one frame into an Event.

    Raises:
        FramingError: If the frame is not valid JSON or not a known event.
    """
    try:
        data = json.loads(frame)
    except (ValueError, RecursionError) as e:
        raise FramingError(f"Invalid JSON frame: {e}", raw_frame=frame) from e

    if not isinstance(data, dict):
        raise FramingError("Frame is not a JSON object", raw_frame=frame)

    try:
        return Event.from_dict(data)
    except (ValueError, PayloadValidationError) as e:
        raise FramingError(f"Unrecognized event: {e}", raw_frame=frame) from e


def parse_frame(frame: str) -> Event | None:
    """Parse one frame, logging and skipping it when malformed."""
    try:
        return decode_frame(frame)
    except FramingError as e:
        logger.error("Skipping malformed frame: %s", e.message)
        logger.debug("Problematic frame: %r", e.raw_frame)
        return None
