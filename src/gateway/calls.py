"""Provider-side call metadata, keyed by call id."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Collection
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Literal

LOGGER = logging.getLogger(__name__)

CallState = Literal["initiated", "answered", "streaming", "ended"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CallSession:
    call_id: str
    state: CallState = "initiated"
    from_number: str | None = None
    to_number: str | None = None
    stream_id: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


class CallRegistry:
    """In-memory store of active calls.

    Note: This is a single-process store. For multi-worker deployments, replace
    with Redis or another shared store.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._calls: dict[str, CallSession] = {}

    def __len__(self) -> int:
        return len(self._calls)

    async def register(
        self,
        call_id: str,
        *,
        state: CallState = "initiated",
        from_number: str | None = None,
        to_number: str | None = None,
    ) -> CallSession:
        async with self._lock:
            session = self._calls.get(call_id)
            if session is None:
                session = CallSession(
                    call_id=call_id,
                    state=state,
                    from_number=from_number,
                    to_number=to_number,
                )
                self._calls[call_id] = session
            else:
                session.state = state
                session.from_number = from_number or session.from_number
                session.to_number = to_number or session.to_number
                session.updated_at = _utcnow()
            return replace(session)

    async def get(self, call_id: str) -> CallSession | None:
        async with self._lock:
            session = self._calls.get(call_id)
            return replace(session) if session else None

    async def set_state(self, call_id: str, state: CallState) -> CallSession | None:
        async with self._lock:
            session = self._calls.get(call_id)
            if session is None:
                return None
            session.state = state
            session.updated_at = _utcnow()
            return replace(session)

    async def attach_stream(self, call_id: str, stream_id: str) -> CallSession:
        """Record the media stream serving a call, creating the entry if unknown."""

        async with self._lock:
            session = self._calls.setdefault(call_id, CallSession(call_id=call_id))
            session.stream_id = stream_id
            session.state = "streaming"
            session.updated_at = _utcnow()
            return replace(session)

    async def remove(self, call_id: str) -> CallSession | None:
        async with self._lock:
            session = self._calls.pop(call_id, None)
        if session is not None:
            session.state = "ended"
        return session

    async def expire_idle(
        self,
        timeout_seconds: float,
        *,
        now: datetime | None = None,
        keep: Collection[str] = (),
    ) -> list[str]:
        """Drop calls not updated within ``timeout_seconds``; returns their ids.

        Calls listed in ``keep`` (those with a live relay) are never expired.
        """

        cutoff = (now or _utcnow()) - timedelta(seconds=timeout_seconds)
        async with self._lock:
            expired = [
                call_id
                for call_id, s in self._calls.items()
                if s.updated_at < cutoff and call_id not in keep
            ]
            for call_id in expired:
                del self._calls[call_id]
        if expired:
            LOGGER.info("Expired %d idle calls: %s", len(expired), ", ".join(expired))
        return expired
