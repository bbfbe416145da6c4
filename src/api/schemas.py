"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class WebhookAck(BaseModel):
    status: str = "ok"


class TelnyxEventData(BaseModel):
    event_type: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)


class TelnyxWebhook(BaseModel):
    data: TelnyxEventData | None = None


class HealthResponse(BaseModel):
    status: str = "healthy"
    active_calls: int
    active_relays: int
    model_configured: bool
    telephony_configured: bool
    model_audio_format: str
    turn_detection: str


class ModelCheckResponse(BaseModel):
    status: str
    message: str
    timestamp: datetime
