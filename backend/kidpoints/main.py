"""FastAPI application entry point.

This module wires together the API routers, configures logging, middleware
and startup, and exposes the ASGI application object used by the server.
Domain errors raised by the workflows are turned into JSON responses here.
"""

import os
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kidpoints.routes import (
    auth,
    children,
    tasks,
    rewards,
    redemptions,
    ledger,
    settings,
)
from kidpoints.database import create_db_and_tables, async_session
from kidpoints.crud import get_settings
from kidpoints.errors import PointsError, StorageFailure

# Basic logging configuration.  The log level can be controlled with an
# environment variable so deployments can adjust verbosity without code
# changes.
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL))
logger = logging.getLogger(__name__)

app = FastAPI(title="Kid Points")

# CORS setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup():
    """Create tables and the settings row."""

    await create_db_and_tables()
    async with async_session() as session:
        await get_settings(session)


app.include_router(auth.router)
app.include_router(children.router)
app.include_router(tasks.router)
app.include_router(rewards.router)
app.include_router(redemptions.router)
app.include_router(ledger.router)
app.include_router(settings.router)


@app.get("/")
async def read_root():
    async with async_session() as session:
        s = await get_settings(session)
        name = s.site_name
    return {"message": f"Welcome to {name} API"}


@app.exception_handler(PointsError)
async def points_error_handler(request: Request, exc: PointsError):
    """Render workflow errors in the same ``{"detail": {"code", "message"}}``
    shape the auth routes use.

    Refused transitions are normal business outcomes and only logged at
    INFO; storage failures are transient and safe to retry.
    """
    if isinstance(exc, StorageFailure):
        logger.warning("Storage failure during %s: %s", request.url.path, exc.message)
    else:
        logger.info("%s refused: %s (%s)", request.url.path, exc.message, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {"code": exc.code, "message": exc.message}},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler that logs the stack trace once."""
    logger.exception("Unhandled error during request %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "detail": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred",
            }
        },
    )
