"""Entry point for the telephony voice relay service."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import get_active_relays, get_call_registry
from api.media_routes import router as media_router
from api.routes import router as status_router
from api.telnyx_routes import router as telnyx_router
from api.twilio_routes import router as twilio_router
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


async def _expire_idle_calls(interval: float, timeout: float) -> None:
    registry = get_call_registry()
    relays = get_active_relays()
    while True:
        await asyncio.sleep(interval)
        await registry.expire_idle(timeout, keep=relays.call_ids())


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = asyncio.create_task(
        _expire_idle_calls(settings.call_sweep_interval_seconds, settings.call_inactivity_timeout_seconds)
    )
    yield
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Telephony Voice Relay",
    description="Bridges phone calls to a realtime speech model with barge-in support.",
    lifespan=lifespan,
)
app.include_router(status_router)
app.include_router(telnyx_router, prefix="/api")
app.include_router(twilio_router, prefix="/api")
app.include_router(media_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
