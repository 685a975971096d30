"""Tests for the framed-JSON protocol."""

import json
import time

import pytest

from runwatch.errors import FramingError
from runwatch.framing import (
    SENTINEL,
    FrameDecoder,
    decode_frame,
    encode_frame,
    iter_frames,
    parse_frame,
)
from runwatch.models import EventType, StepStatus


def _stream(*events: dict) -> str:
    return "".join(encode_frame(e) for e in events)


STEP_EVENT = {
    "type": "step:end",
    "payload": {"title": "A", "duration": 5, "status": "passed"},
}
END_EVENT = {"type": "test:end", "payload": {"duration": 10, "status": "passed"}}


class ChunkedReader:
    """Async reader returning predefined chunks, then EOF."""

    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = list(chunks)

    async def read(self, n: int = -1) -> bytes:
        if not self.chunks:
            return b""
        return self.chunks.pop(0)


class TestEncodeFrame:
    """Tests for encode_frame."""

    def test_appends_sentinel(self) -> None:
        """Test that a frame is JSON followed by the sentinel."""
        frame = encode_frame({"type": "debug:log", "payload": {"message": "hi"}})
        assert frame.endswith(SENTINEL)
        assert json.loads(frame[: -len(SENTINEL)]) == {
            "type": "debug:log",
            "payload": {"message": "hi"},
        }

    def test_no_newline(self) -> None:
        """Test that frames carry no newline delimiter."""
        assert "\n" not in encode_frame(STEP_EVENT)


class TestFrameDecoder:
    """Tests for FrameDecoder."""

    def test_single_chunk_multiple_frames(self) -> None:
        """Test that one chunk with several frames yields them in order."""
        decoder = FrameDecoder()
        frames = decoder.feed(_stream(STEP_EVENT, END_EVENT))
        assert [json.loads(f)["type"] for f in frames] == ["step:end", "test:end"]
        assert decoder.pending == ""

    def test_every_split_point(self) -> None:
        """Test that splitting at any byte yields the same frames."""
        data = _stream(STEP_EVENT, END_EVENT).encode("utf-8")
        expected = FrameDecoder().feed(data)
        for i in range(len(data) + 1):
            decoder = FrameDecoder()
            frames = decoder.feed(data[:i]) + decoder.feed(data[i:])
            assert frames == expected, f"split at {i}"

    def test_byte_at_a_time(self) -> None:
        """Test feeding one byte per chunk."""
        data = _stream(STEP_EVENT, END_EVENT).encode("utf-8")
        decoder = FrameDecoder()
        frames: list[str] = []
        for i in range(len(data)):
            frames.extend(decoder.feed(data[i : i + 1]))
        assert len(frames) == 2

    def test_sentinel_split_across_chunks(self) -> None:
        """Test that a frame is only emitted once its sentinel is complete."""
        decoder = FrameDecoder()
        body = json.dumps(STEP_EVENT)
        assert decoder.feed(body + SENTINEL[:6]) == []
        assert decoder.feed(SENTINEL[6:]) == [body]

    def test_partial_tail_retained(self) -> None:
        """Test that text after the last sentinel stays buffered."""
        decoder = FrameDecoder()
        frames = decoder.feed(encode_frame(STEP_EVENT) + '{"type": "te')
        assert len(frames) == 1
        assert decoder.pending == '{"type": "te'

    def test_close_drops_partial_frame(self) -> None:
        """Test that a trailing partial frame is never flushed."""
        decoder = FrameDecoder()
        decoder.feed('{"type": "test:end"')
        decoder.close()
        assert decoder.pending == ""

    def test_whitespace_frames_skipped(self) -> None:
        """Test that whitespace between sentinels is not a frame."""
        decoder = FrameDecoder()
        frames = decoder.feed(SENTINEL + "  \n" + SENTINEL + encode_frame(STEP_EVENT))
        assert len(frames) == 1

    def test_multibyte_character_split(self) -> None:
        """Test that a UTF-8 character split across chunks is reassembled."""
        event = {"type": "debug:log", "payload": {"message": "이용가이드"}}
        data = encode_frame(event).encode("utf-8")
        index = data.index("이".encode()) + 1
        decoder = FrameDecoder()
        frames = decoder.feed(data[:index]) + decoder.feed(data[index:])
        assert json.loads(frames[0])["payload"]["message"] == "이용가이드"

    def test_empty_sentinel_rejected(self) -> None:
        """Test that an empty sentinel is refused."""
        with pytest.raises(ValueError):
            FrameDecoder(sentinel="")


class TestIterFrames:
    """Tests for iter_frames."""

    @pytest.mark.asyncio
    async def test_yields_frames_until_eof(self) -> None:
        """Test that frames are reassembled from chunked reads."""
        data = _stream(STEP_EVENT, END_EVENT).encode("utf-8")
        reader = ChunkedReader([data[:7], data[7:40], data[40:]])
        frames = [frame async for frame in iter_frames(reader)]
        assert len(frames) == 2

    @pytest.mark.asyncio
    async def test_trailing_partial_dropped(self) -> None:
        """Test that an unterminated final frame is not yielded."""
        data = (encode_frame(STEP_EVENT) + json.dumps(END_EVENT)).encode("utf-8")
        decoder = FrameDecoder()
        frames = [frame async for frame in iter_frames(ChunkedReader([data]), decoder)]
        assert len(frames) == 1
        assert decoder.pending == ""

    @pytest.mark.asyncio
    async def test_large_frame_decoded_in_linear_time(self) -> None:
        """Test that a multi-megabyte screenshot frame is reassembled quickly."""
        image = "A" * (4 * 1024 * 1024)
        event = {
            "type": "screenshot:add",
            "payload": {"failedStepIndex": 0, "screenshotBase64": image},
        }
        data = _stream(event, END_EVENT).encode("utf-8")
        reader = ChunkedReader([data[i : i + 4096] for i in range(0, len(data), 4096)])

        started = time.perf_counter()
        frames = [frame async for frame in iter_frames(reader)]
        elapsed = time.perf_counter() - started

        assert len(frames) == 2
        assert json.loads(frames[0])["payload"]["screenshotBase64"] == image
        assert elapsed < 0.5


class TestDecodeFrame:
    """Tests for decode_frame and parse_frame."""

    def test_decodes_step_end(self) -> None:
        """Test that a step:end frame becomes a typed Event."""
        event = decode_frame(json.dumps(STEP_EVENT))
        assert event.type == EventType.STEP_END
        assert event.payload.status == StepStatus.PASSED
        assert event.raw == STEP_EVENT

    def test_decodes_screenshot_aliases(self) -> None:
        """Test that screenshot payload fields use their wire names."""
        event = decode_frame(
            json.dumps(
                {
                    "type": "screenshot:add",
                    "payload": {"failedStepIndex": 2, "screenshotBase64": "aGk="},
                }
            )
        )
        assert event.payload.failed_step_index == 2
        assert event.payload.screenshot_base64 == "aGk="

    def test_invalid_json_raises(self) -> None:
        """Test that malformed JSON raises FramingError with the raw frame."""
        with pytest.raises(FramingError) as exc_info:
            decode_frame("{not json")
        assert exc_info.value.raw_frame == "{not json"

    def test_non_object_raises(self) -> None:
        """Test that a JSON array is not an event."""
        with pytest.raises(FramingError):
            decode_frame("[1, 2]")

    def test_unknown_type_raises(self) -> None:
        """Test that an unknown event tag is rejected."""
        with pytest.raises(FramingError):
            decode_frame(json.dumps({"type": "test:pause", "payload": {}}))

    def test_bad_payload_raises(self) -> None:
        """Test that a payload of the wrong shape is rejected."""
        with pytest.raises(FramingError):
            decode_frame(json.dumps({"type": "step:end", "payload": {"status": "skipped"}}))

    def test_parse_frame_returns_none_on_error(self) -> None:
        """Test that parse_frame skips malformed frames."""
        assert parse_frame("garbage") is None
        assert parse_frame(json.dumps(END_EVENT)) is not None

    def test_deeply_nested_frame_skipped(self) -> None:
        """Test that a frame too deep for the JSON parser is dropped, not raised."""
        frame = '{"type": "debug:log", "payload": ' + "[" * 100000 + "]" * 100000 + "}"
        with pytest.raises(FramingError):
            decode_frame(frame)
        assert parse_frame(frame) is None
