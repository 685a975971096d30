"""Runwatch - live supervision of browser-automation test runs."""

from runwatch.archive import LocalBlobStore, ScreenshotArchiver
from runwatch.emitter import EventEmitter, Reporter, TestSession, find_first_failed_step
from runwatch.errors import RunwatchError
from runwatch.framing import SENTINEL, FrameDecoder, encode_frame
from runwatch.models import Event, EventType, RunStatus, StepStatus, TestRun
from runwatch.store import RunStore
from runwatch.supervisor import Supervisor
from runwatch.version import __version__

__all__ = [
    "__version__",
    "SENTINEL",
    "FrameDecoder",
    "encode_frame",
    "Event",
    "EventType",
    "RunStatus",
    "StepStatus",
    "TestRun",
    "RunStore",
    "RunwatchError",
    "LocalBlobStore",
    "ScreenshotArchiver",
    "Supervisor",
    "EventEmitter",
    "Reporter",
    "TestSession",
    "find_first_failed_step",
]
