"""Exception handlers for the Runwatch dashboard.

Pipeline errors are defined in runwatch.errors; every RunwatchError carries a
suggested status code and a to_dict() body, so the API maps them to JSON
responses in one place instead of per route.
"""

import logging
from typing import cast

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from runwatch.errors import RunwatchError

logger = logging.getLogger(__name__)


async def runwatch_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle RunwatchError exceptions with consistent JSON responses."""
    error = cast(RunwatchError, exc)
    log = logger.error if error.status_code >= 500 else logger.info
    log(
        "Request failed: %s - %s (status=%d)",
        error.__class__.__name__,
        error.message,
        error.status_code,
    )
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with a generic error response."""
    logger.exception("Unexpected error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RunwatchError, runwatch_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
