"""Connection adapters for the two legs of a relayed call.

Each adapter turns its transport's close/error signals into
``LegDisconnectedError`` so the relay handles both legs the same way.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol
from urllib.parse import urlencode

import websockets
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState
from websockets.exceptions import ConnectionClosed, WebSocketException

from config.settings import Settings
from relay.errors import LegDisconnectedError

LOGGER = logging.getLogger(__name__)


class TelephonyLeg(Protocol):
    async def receive_text(self) -> str: ...

    async def send_json(self, message: dict[str, Any]) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class ModelLeg(Protocol):
    async def recv(self) -> str: ...

    async def send(self, message: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class WebSocketTelephonyLeg:
    """Phone leg served by our own WebSocket endpoint."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket

    async def receive_text(self) -> str:
        try:
            return await self._ws.receive_text()
        except WebSocketDisconnect as exc:
            raise LegDisconnectedError("telephony", f"Media stream closed (code {exc.code})") from exc
        except RuntimeError as exc:
            raise LegDisconnectedError("telephony", str(exc)) from exc

    async def send_json(self, message: dict[str, Any]) -> None:
        if self._ws.application_state != WebSocketState.CONNECTED:
            raise LegDisconnectedError("telephony", "Media stream is not connected")
        try:
            await self._ws.send_text(json.dumps(message))
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise LegDisconnectedError("telephony", f"Send failed: {exc}") from exc

    async def close(self, code: int = 1000) -> None:
        if (
            self._ws.application_state == WebSocketState.DISCONNECTED
            or self._ws.client_state == WebSocketState.DISCONNECTED
        ):
            return
        try:
            await self._ws.close(code=code)
        except RuntimeError:
            LOGGER.debug("Media stream already closed", exc_info=True)


class RealtimeModelLeg:
    """Speech-model leg over a ``websockets`` client connection."""

    def __init__(self, connection: Any) -> None:
        self._ws = connection

    async def recv(self) -> str:
        try:
            message = await self._ws.recv()
        except ConnectionClosed as exc:
            raise LegDisconnectedError("model", f"Speech model connection closed: {exc}") from exc
        if isinstance(message, bytes):
            return message.decode("utf-8", errors="replace")
        return message

    async def send(self, message: dict[str, Any]) -> None:
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as exc:
            raise LegDisconnectedError("model", f"Speech model connection closed: {exc}") from exc

    async def close(self) -> None:
        await self._ws.close()


def realtime_ws_url(settings: Settings) -> str:
    return f"{settings.realtime_url}?{urlencode({'model': settings.realtime_model})}"


async def connect_realtime(settings: Settings) -> RealtimeModelLeg:
    """Open a realtime session with the speech model."""

    if not settings.openai_api_key:
        raise ValueError("OPENAI_API_KEY is not configured")

    url = realtime_ws_url(settings)
    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "OpenAI-Beta": "realtime=v1",
    }
    LOGGER.info("Connecting to speech model: %s", url)
    try:
        connection = await websockets.connect(
            url,
            additional_headers=headers,
            open_timeout=settings.realtime_connect_timeout_seconds,
            ping_interval=20,
            ping_timeout=20,
            max_size=None,
        )
    except (OSError, TimeoutError, WebSocketException) as exc:
        raise LegDisconnectedError("model", f"Could not reach speech model: {exc}") from exc

    return RealtimeModelLeg(connection)
