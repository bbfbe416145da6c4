from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from relay.duplex import DuplexRelay

LOGGER = logging.getLogger(__name__)


class ActiveRelays:
    """Live relays by call id, so call-control events can end a stream.

    Note: This is a single-process map, like the call registry.
    """

    def __init__(self) -> None:
        self._relays: dict[str, DuplexRelay] = {}

    def __len__(self) -> int:
        return len(self._relays)

    def call_ids(self) -> set[str]:
        return set(self._relays)

    def get(self, call_id: str) -> DuplexRelay | None:
        return self._relays.get(call_id)

    def add(self, call_id: str, relay: DuplexRelay) -> None:
        previous = self._relays.get(call_id)
        if previous is not None and previous is not relay:
            LOGGER.warning("Call %s already had a relay (stream %s); replacing it", call_id, previous.stream_id)
        self._relays[call_id] = relay

    def discard(self, call_id: str, relay: DuplexRelay | None = None) -> None:
        current = self._relays.get(call_id)
        if current is None:
            return
        if relay is None or current is relay:
            del self._relays[call_id]

    async def hangup(self, call_id: str) -> bool:
        """Force teardown of the call's relay. Returns False if none was live."""

        relay = self._relays.pop(call_id, None)
        if relay is None:
            return False
        LOGGER.info("Forcing relay teardown for call %s", call_id)
        await relay.close()
        return True
