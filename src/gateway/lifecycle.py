"""Call-control webhook handling: answer calls and point their media at the relay."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from gateway.calls import CallRegistry
from integrations.telnyx_client import TelnyxCallControl
from relay.registry import ActiveRelays

LOGGER = logging.getLogger(__name__)


class TaskScheduler(Protocol):
    def add_task(self, func: Any, *args: Any, **kwargs: Any) -> None: ...


class CallLifecycleGateway:
    def __init__(
        self,
        calls: CallRegistry,
        relays: ActiveRelays,
        call_control: TelnyxCallControl | None,
        *,
        stream_start_delay: float = 1.0,
    ) -> None:
        self._calls = calls
        self._relays = relays
        self._call_control = call_control
        self._stream_start_delay = stream_start_delay

    async def handle_event(self, event_type: str, payload: dict[str, Any], scheduler: TaskScheduler) -> None:
        """Apply one provider event. Provider errors are logged, never raised."""

        call_id = str(payload.get("call_control_id") or "")
        if not call_id:
            LOGGER.info("Ignoring %s event without call_control_id", event_type)
            return

        try:
            if event_type == "call.initiated":
                await self._on_initiated(call_id, payload)
            elif event_type == "call.answered":
                await self._on_answered(call_id, payload, scheduler)
            elif event_type == "call.streaming.started":
                await self._calls.set_state(call_id, "streaming")
            elif event_type == "call.streaming.stopped":
                LOGGER.info("Provider stopped streaming for call %s", call_id)
            elif event_type == "call.hangup":
                await self._on_hangup(call_id)
            else:
                LOGGER.debug("Unhandled call event %s for %s", event_type, call_id)
        except httpx.HTTPError as exc:
            LOGGER.error("Handling %s for call %s failed: %s", event_type, call_id, exc)

    def _require_call_control(self, action: str, call_id: str) -> TelnyxCallControl | None:
        if self._call_control is None:
            LOGGER.error("Cannot %s call %s: Telnyx call control is not configured", action, call_id)
        return self._call_control

    async def _on_initiated(self, call_id: str, payload: dict[str, Any]) -> None:
        direction = str(payload.get("direction") or "incoming")
        LOGGER.info("Call %s initiated (%s) from %s to %s", call_id, direction, payload.get("from"), payload.get("to"))

        await self._calls.register(
            call_id,
            state="initiated",
            from_number=payload.get("from"),
            to_number=payload.get("to"),
        )
        if direction == "incoming":
            call_control = self._require_call_control("answer", call_id)
            if call_control is not None:
                await call_control.answer(call_id)

    async def _on_answered(self, call_id: str, payload: dict[str, Any], scheduler: TaskScheduler) -> None:
        existing = await self._calls.get(call_id)
        if existing is not None and existing.state in ("answered", "streaming"):
            LOGGER.info("Call %s already answered; not starting a second stream", call_id)
            return

        await self._calls.register(
            call_id,
            state="answered",
            from_number=payload.get("from"),
            to_number=payload.get("to"),
        )
        scheduler.add_task(self.start_streaming, call_id)

    async def _on_hangup(self, call_id: str) -> None:
        await self._calls.remove(call_id)
        await self._relays.hangup(call_id)
        LOGGER.info("Call %s hung up", call_id)

    async def start_streaming(self, call_id: str) -> None:
        """Ask the provider to open the media stream, after the setup pause."""

        if self._stream_start_delay > 0:
            await asyncio.sleep(self._stream_start_delay)

        call = await self._calls.get(call_id)
        if call is None:
            LOGGER.info("Call %s ended before streaming could start", call_id)
            return

        call_control = self._require_call_control("streaming_start", call_id)
        if call_control is None:
            return
        try:
            await call_control.start_streaming(call_id)
        except httpx.HTTPError:
            LOGGER.exception("Could not start media streaming for call %s", call_id)
