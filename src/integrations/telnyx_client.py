"""Telnyx Call Control commands used to answer calls and route their media."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TelnyxConfig:
    api_key: str
    api_base: str
    public_base_url: str
    stream_track: str = "inbound_track"


def get_telnyx_config() -> TelnyxConfig:
    settings = get_settings()
    if not settings.telnyx_api_key:
        raise ValueError("Telnyx API key is not configured")
    if not settings.public_base_url:
        raise ValueError("PUBLIC_BASE_URL is required for the media stream URL")

    return TelnyxConfig(
        api_key=settings.telnyx_api_key,
        api_base=settings.telnyx_api_base.rstrip("/"),
        public_base_url=settings.public_base_url.rstrip("/"),
        stream_track=settings.telnyx_stream_track,
    )


def to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def media_stream_url(public_base_url: str) -> str:
    return to_ws_url(f"{public_base_url.rstrip('/')}/api/media-stream")


class TelnyxCallControl:
    """Thin async wrapper over the Call Control ``actions`` endpoints."""

    def __init__(self, cfg: TelnyxConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._cfg = cfg
        self._transport = transport

    @property
    def stream_url(self) -> str:
        return media_stream_url(self._cfg.public_base_url)

    async def answer(self, call_control_id: str) -> None:
        await self._action(call_control_id, "answer")

    async def start_streaming(self, call_control_id: str) -> None:
        await self._action(
            call_control_id,
            "streaming_start",
            {
                "stream_url": self.stream_url,
                "stream_track": self._cfg.stream_track,
                "stream_bidirectional_mode": "rtp",
                "enable_dialogflow_enhanced": False,
            },
        )

    async def hangup(self, call_control_id: str) -> None:
        await self._action(call_control_id, "hangup")

    async def _action(self, call_control_id: str, action: str, body: dict[str, Any] | None = None) -> None:
        url = f"{self._cfg.api_base}/calls/{call_control_id}/actions/{action}"
        headers = {
            "Authorization": f"Bearer {self._cfg.api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
            response = await client.post(url, json=body or {}, headers=headers)
        try:
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.error("Telnyx %s failed for call %s: %s", action, call_control_id, exc)
            raise
        LOGGER.info("Telnyx %s accepted for call %s", action, call_control_id)
