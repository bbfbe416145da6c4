"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

import logging
from functools import lru_cache, partial

from fastapi import Depends

from agents.reservations import register_reservation_tools
from agents.tools import ToolRegistry
from config.settings import get_settings
from gateway.calls import CallRegistry
from gateway.lifecycle import CallLifecycleGateway
from integrations.telnyx_client import TelnyxCallControl, get_telnyx_config
from relay.duplex import ModelConnector
from relay.legs import connect_realtime
from relay.registry import ActiveRelays

LOGGER = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_call_registry() -> CallRegistry:
    return CallRegistry()


@lru_cache(maxsize=1)
def get_active_relays() -> ActiveRelays:
    return ActiveRelays()


@lru_cache(maxsize=1)
def get_tool_registry() -> ToolRegistry:
    registry = ToolRegistry()
    if get_settings().enable_reservation_tools:
        register_reservation_tools(registry)
    return registry


def get_model_connector() -> ModelConnector:
    return partial(connect_realtime, get_settings())


def get_call_control() -> TelnyxCallControl | None:
    try:
        cfg = get_telnyx_config()
    except ValueError as exc:
        # Webhooks are still acknowledged; the gateway logs each skipped command.
        LOGGER.error("Telnyx call control unavailable: %s", exc)
        return None
    return TelnyxCallControl(cfg)


def get_gateway(
    calls: CallRegistry = Depends(get_call_registry),
    relays: ActiveRelays = Depends(get_active_relays),
    call_control: TelnyxCallControl | None = Depends(get_call_control),
) -> CallLifecycleGateway:
    return CallLifecycleGateway(
        calls,
        relays,
        call_control,
        stream_start_delay=get_settings().stream_start_delay_seconds,
    )
