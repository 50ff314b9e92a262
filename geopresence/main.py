from fastapi import FastAPI
import asyncio
import contextlib

from geopresence.api.v1.router import router as v1_router
from geopresence.core import configure_logging, settings
from geopresence.runtime.presence import room_registry, sweep_idle_rooms

configure_logging(settings.LOG_LEVEL)

app = FastAPI(title="geopresence API", version="0.1.0")
app.include_router(v1_router, prefix="/v1")

_background_tasks: set[asyncio.Task] = set()


@app.on_event("startup")
async def startup_event():
    """Start background sweeper for idle rooms."""
    task = asyncio.create_task(
        sweep_idle_rooms(
            room_registry,
            idle_seconds=settings.ROOM_IDLE_TTL_SECONDS,
            interval=settings.ROOM_SWEEP_INTERVAL_SECONDS,
        )
    )
    _background_tasks.add(task)


@app.on_event("shutdown")
async def shutdown_event():
    for task in list(_background_tasks):
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    _background_tasks.clear()
