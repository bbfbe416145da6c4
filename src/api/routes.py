"""Service status routes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_active_relays, get_call_registry, get_model_connector
from api.schemas import HealthResponse, ModelCheckResponse
from config.settings import get_settings
from gateway.calls import CallRegistry
from relay.duplex import ModelConnector
from relay.errors import LegDisconnectedError
from relay.registry import ActiveRelays

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["status"])


@router.get("/")
async def index() -> dict[str, str]:
    return {"service": "telephony-voice-relay", "status": "ok"}


@router.get("/health", response_model=HealthResponse)
async def health(
    calls: CallRegistry = Depends(get_call_registry),
    relays: ActiveRelays = Depends(get_active_relays),
) -> HealthResponse:
    settings = get_settings()
    return HealthResponse(
        active_calls=len(calls),
        active_relays=len(relays),
        model_configured=bool(settings.openai_api_key),
        telephony_configured=bool(settings.telnyx_api_key),
        model_audio_format=settings.model_audio_format,
        turn_detection=settings.turn_detection,
    )


@router.get("/test-model", response_model=ModelCheckResponse)
async def check_model(connect_model: ModelConnector = Depends(get_model_connector)) -> ModelCheckResponse:
    """Open and close one realtime session to check credentials and reachability."""
    try:
        model = await connect_model()
    except (ValueError, LegDisconnectedError) as exc:
        LOGGER.error("Speech model check failed: %s", exc)
        raise HTTPException(status_code=503, detail=f"Speech model unavailable: {exc}") from exc
    await model.close()
    return ModelCheckResponse(
        status="success",
        message="Realtime session opened and closed",
        timestamp=datetime.now(timezone.utc),
    )
