"""Exception hierarchy for the Runwatch pipeline.

All pipeline errors inherit from RunwatchError so callers can contain them at
the boundary of a single event, a single screenshot or a single run.

Exception Hierarchy:
    RunwatchError (base)
    ├── RunNotFoundError (test case document missing or vanished)
    ├── MissingScriptError (template without an executable script)
    ├── RunInProgressError (test case already has an active run)
    ├── StoreError (document store unreachable or write failed)
    ├── FramingError (malformed frame on the event stream)
    ├── ValidationError (invalid screenshot payload)
    ├── ArchivalError (blob store write or publish failure)
    └── ConfigurationError (fatal setup problem)
"""

from typing import Any


class RunwatchError(Exception):
    """Base exception for all Runwatch errors.

    Attributes:
        message: Human-readable error description.
        detail: Technical details for debugging (optional).
        status_code: Suggested HTTP status code for API responses.
    """

    def __init__(
        self,
        message: str,
        detail: str | None = None,
        status_code: int = 500,
    ) -> None:
        self.message = message
        self.detail = detail
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for JSON responses."""
        result: dict[str, Any] = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.detail:
            result["detail"] = self.detail
        return result


class RunNotFoundError(RunwatchError):
    """Raised when a test case document does not exist."""

    def __init__(self, test_id: str, message: str | None = None) -> None:
        msg = message or f"Test case not found: {test_id}"
        super().__init__(msg, status_code=404)
        self.test_id = test_id


class MissingScriptError(RunwatchError):
    """Raised when a test case has no script to execute."""

    def __init__(self, test_id: str) -> None:
        super().__init__(
            "No script file is configured for this test case",
            detail=f"test_id: {test_id}",
            status_code=400,
        )
        self.test_id = test_id


class StoreError(RunwatchError):
    """Raised when the document store cannot be read or written."""

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message, detail=detail, status_code=500)


class FramingError(RunwatchError):
    """Raised when a frame on the event stream cannot be decoded."""

    def __init__(self, message: str, raw_frame: str | None = None) -> None:
        detail: str | None
        if raw_frame and len(raw_frame) > 200:
            detail = f"raw_frame: {raw_frame[:200]}..."
        else:
            detail = raw_frame
        super().__init__(message, detail=detail, status_code=500)
        self.raw_frame = raw_frame


class ValidationError(RunwatchError):
    """Raised when an input payload fails validation."""

    def __init__(self, message: str, field: str | None = None) -> None:
        detail = f"field: {field}" if field else None
        super().__init__(message, detail=detail, status_code=400)
        self.field = field


class ArchivalError(RunwatchError):
    """Raised when a screenshot cannot be stored or published."""

    def __init__(
        self,
        message: str,
        test_id: str | None = None,
        step_index: int | None = None,
        detail: str | None = None,
    ) -> None:
        detail_parts = []
        if test_id:
            detail_parts.append(f"test_id: {test_id}")
        if step_index is not None:
            detail_parts.append(f"step_index: {step_index}")
        if detail:
            detail_parts.append(detail)

        combined_detail = "; ".join(detail_parts) if detail_parts else None
        super().__init__(message, detail=combined_detail, status_code=500)
        self.test_id = test_id
        self.step_index = step_index


class ConfigurationError(RunwatchError):
    """Raised when the service cannot start because of missing setup."""

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message, detail=detail, status_code=500)


class RunInProgressError(RunwatchError):
    """Raised when a test case is started while its previous run is active."""

    def __init__(self, test_id: str) -> None:
        super().__init__(
            f"Test case is already running: {test_id}",
            detail=f"test_id: {test_id}",
            status_code=409,
        )
        self.test_id = test_id
