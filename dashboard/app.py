"""Runwatch Dashboard - FastAPI application."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from dashboard.config import (
    BLOB_DIR,
    BLOB_ROUTE,
    CORS_ORIGINS,
    DATA_DIR,
    HOST,
    LOG_LEVEL_STR,
    PORT,
    SCRIPTS_DIR,
    setup_logging,
    validate_setup,
)
from dashboard.exceptions import register_exception_handlers
from dashboard.routes.notifications import router as notifications_router
from dashboard.routes.runs import router as runs_router
from dashboard.routes.ws import manager
from dashboard.routes.ws import router as ws_router
from dashboard.services import build_services
from runwatch.version import __version__

# Configure logging using centralized setup
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Validate setup, build the run pipeline, and stop runs on shutdown.

    A ConfigurationError raised here aborts startup: the server refuses to
    serve runs without its scripts and data directories.
    """
    validate_setup()
    services = build_services(broadcaster=manager)
    app.state.services = services

    logger.info(
        "Runwatch starting: host=%s, port=%d, log_level=%s, data=%s, scripts=%s",
        HOST,
        PORT,
        LOG_LEVEL_STR,
        DATA_DIR,
        SCRIPTS_DIR,
    )
    yield
    logger.info(
        "Runwatch shutting down (%d active runs)", len(services.supervisor.active_runs)
    )
    await services.supervisor.shutdown()


app = FastAPI(
    title="Runwatch",
    description="Live dashboard for browser-automation test runs",
    version=__version__,
    lifespan=lifespan,
)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(runs_router)
app.include_router(notifications_router)
app.include_router(ws_router)

# Archived screenshots; the directory is created by validate_setup() at startup
app.mount(BLOB_ROUTE, StaticFiles(directory=str(BLOB_DIR), check_dir=False), name="blobs")


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("dashboard.app:app", host=HOST, port=PORT, reload=True)
