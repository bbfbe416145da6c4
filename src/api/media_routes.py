"""Media stream endpoint: one duplex relay per provider connection."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket

from agents.tools import ToolRegistry
from api.dependencies import get_active_relays, get_call_registry, get_model_connector, get_tool_registry
from config.settings import get_settings
from gateway.calls import CallRegistry
from relay.config import RelayConfig
from relay.duplex import DuplexRelay, ModelConnector
from relay.errors import UnsupportedCodecError
from relay.legs import WebSocketTelephonyLeg
from relay.registry import ActiveRelays
from telephony.media_stream import StreamStart

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["media"])


@router.websocket("/media-stream")
async def media_stream(
    websocket: WebSocket,
    calls: CallRegistry = Depends(get_call_registry),
    relays: ActiveRelays = Depends(get_active_relays),
    tools: ToolRegistry = Depends(get_tool_registry),
    connect_model: ModelConnector = Depends(get_model_connector),
) -> None:
    await websocket.accept()

    async def on_stream_started(relay: DuplexRelay, start: StreamStart) -> None:
        if not start.call_id:
            return
        await calls.attach_stream(start.call_id, start.stream_id)
        relays.add(start.call_id, relay)

    relay = DuplexRelay(
        WebSocketTelephonyLeg(websocket),
        connect_model,
        RelayConfig.from_settings(get_settings()),
        tools=tools,
        on_stream_started=on_stream_started,
    )
    try:
        await relay.run()
    except UnsupportedCodecError as exc:
        LOGGER.warning("Media stream for call %s failed to start: %s", relay.call_id, exc.detail)
    except Exception:
        LOGGER.exception("Media stream relay for call %s crashed", relay.call_id)
    finally:
        if relay.call_id:
            relays.discard(relay.call_id, relay)
