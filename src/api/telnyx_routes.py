"""Telnyx Call Control webhook."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends

from api.dependencies import get_gateway
from api.schemas import TelnyxWebhook, WebhookAck
from gateway.lifecycle import CallLifecycleGateway

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/telnyx", tags=["telnyx"])


@router.post("/webhook", response_model=WebhookAck)
async def telnyx_webhook(
    body: TelnyxWebhook,
    background_tasks: BackgroundTasks,
    gateway: CallLifecycleGateway = Depends(get_gateway),
) -> WebhookAck:
    # Telnyx retries non-2xx responses, so every event is acknowledged.
    if body.data is None:
        return WebhookAck()

    LOGGER.info("Telnyx event %s", body.data.event_type)
    await gateway.handle_event(body.data.event_type, body.data.payload, background_tasks)
    return WebhookAck()
