"""REST API endpoints for test runs.

``POST /api/run-test/{test_id}`` accepts a run and returns immediately; the
run itself proceeds in the background and reports over the WebSocket channel.
The remaining endpoints are read-only views of the stored run documents.
"""

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from dashboard.services import RunServices, get_services
from runwatch.models import RunStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["runs"])


class RunAcceptedResponse(BaseModel):
    """Response model for an accepted run request."""

    message: str = Field(..., description="Acknowledgment message")
    test_id: str = Field(..., alias="testId", description="Test case being run")
    steps: int = Field(..., description="Number of steps in the run")

    model_config = {"populate_by_name": True}


class StepResponse(BaseModel):
    """Response model for one step of a run."""

    name: str
    status: str
    duration: float = 0
    error: str | None = None
    screenshot_url: str | None = Field(None, alias="screenshotURL")

    model_config = {"populate_by_name": True}


class RunDocumentResponse(BaseModel):
    """Response model for a test case and its latest run."""

    id: str
    name: str = ""
    status: str
    steps: list[StepResponse] = Field(default_factory=list)
    last_result: str | None = Field(None, alias="lastResult")
    duration: float | None = None
    script_path: str | None = Field(None, alias="scriptPath")
    template_steps: list[str] | None = Field(None, alias="templateSteps")
    test_url: str | None = Field(None, alias="testUrl")
    last_run: str | None = Field(None, alias="lastRun")
    active: bool = False

    model_config = {"populate_by_name": True}


def _run_to_response(data: dict[str, Any], active: bool) -> dict[str, Any]:
    return {**data, "active": active}


@router.post("/run-test/{test_id}", response_model=RunAcceptedResponse, status_code=202)
async def run_test(test_id: str, services: RunServices = Depends(get_services)) -> Any:
    """Start a test run in the background.

    Returns 404 for an unknown test case, 400 when it has no script, and 409
    when it is already running.
    """
    logger.info("Received request to run test: %s", test_id)
    run = await services.supervisor.start(test_id)
    return RunAcceptedResponse(
        message="Test execution started",
        testId=test_id,
        steps=len(run.steps),
    ).model_dump(by_alias=True)


@router.get("/tests", response_model=list[RunDocumentResponse], response_model_by_alias=True)
async def list_tests(
    status: RunStatus | None = Query(None, description="Filter by run status"),
    services: RunServices = Depends(get_services),
) -> list[dict[str, Any]]:
    """List all test cases with their latest run state."""
    runs = await asyncio.to_thread(services.store.list_test_cases, status)
    return [
        _run_to_response(run.to_dict(), services.supervisor.is_active(run.id)) for run in runs
    ]


@router.get("/tests/{test_id}", response_model=RunDocumentResponse, response_model_by_alias=True)
async def get_test(test_id: str, services: RunServices = Depends(get_services)) -> dict[str, Any]:
    """Get one test case and its latest run state."""
    run = await asyncio.to_thread(services.store.get_test_case, test_id)
    return _run_to_response(run.to_dict(), services.supervisor.is_active(test_id))


@router.get("/runs/active")
async def list_active_runs(services: RunServices = Depends(get_services)) -> dict[str, Any]:
    """Test ids whose run is currently in flight."""
    active = services.supervisor.active_runs
    return {"active": active, "total": len(active)}
