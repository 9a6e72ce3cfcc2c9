"""Application entry point for the push delivery and realtime service."""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Iterable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .database import create_session, init_db
from .routers import notifications_router, realtime_router
from .services import PushServiceError, delete_expired_notifications

logger = logging.getLogger(__name__)

settings = get_settings()
APP_NAME = settings.app_name
API_VERSION = settings.api_version
DISABLE_SWEEP = os.getenv("DISABLE_EXPIRY_SWEEP", "").lower() == "true" or os.getenv("PYTEST_CURRENT_TEST") is not None

app = FastAPI(title=APP_NAME, version=API_VERSION)

cors_origins = os.getenv("CORS_ORIGINS")
if cors_origins:
    origins: Iterable[str] = [origin.strip() for origin in cors_origins.split(",") if origin.strip()]
else:
    origins = [settings.public_base_url]

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(notifications_router)
app.include_router(realtime_router)

_sweep_task: asyncio.Task[None] | None = None
_sweep_stop = asyncio.Event()


def _sweep_expired() -> int:
    session = create_session()
    try:
        return delete_expired_notifications(session)
    finally:
        session.close()


async def _run_sweep_once() -> None:
    """Delete expired notifications in a worker thread."""

    try:
        removed = await asyncio.to_thread(_sweep_expired)
        logger.info("Expiry sweep removed %d notifications", removed)
    except PushServiceError:
        logger.exception("Scheduled expiry sweep failed")
    except Exception:
        logger.exception("Unexpected error during expiry sweep")


async def _sweep_loop() -> None:
    interval = settings.expiry_sweep_minutes * 60
    while not _sweep_stop.is_set():
        await _run_sweep_once()
        try:
            await asyncio.wait_for(_sweep_stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def _startup() -> None:
    """Ensure the schema exists and start the expiry sweep."""

    try:
        init_db()
    except Exception:
        logger.exception("Database initialisation failed")
        raise

    if DISABLE_SWEEP:
        logger.info("Expiry sweep disabled (testing mode)")
        return

    global _sweep_task
    if _sweep_task is None or _sweep_task.done():
        _sweep_stop.clear()
        _sweep_task = asyncio.create_task(_sweep_loop())


@app.on_event("shutdown")
async def _shutdown() -> None:
    if DISABLE_SWEEP:
        return

    _sweep_stop.set()
    if _sweep_task is not None:
        try:
            await _sweep_task
        except asyncio.CancelledError:
            pass


@app.get("/api", tags=["system"])
def api_info() -> dict[str, str]:
    return {"service": APP_NAME, "version": API_VERSION}


@app.get("/health", tags=["system"])
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


__all__ = ["app"]
