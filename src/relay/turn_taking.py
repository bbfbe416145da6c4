"""Turn-taking state for one call: who is speaking and how much the caller heard."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

LOGGER = logging.getLogger(__name__)

TurnState = Literal["idle", "agent_speaking"]


@dataclass(frozen=True, slots=True)
class Truncation:
    """Cut the model's copy of an utterance to what was actually played."""

    item_id: str
    audio_end_ms: int


@dataclass(frozen=True, slots=True)
class TurnSnapshot:
    state: TurnState
    agent_utterance_id: str | None
    response_started_at_media_time: int | None
    latest_media_time: int


class TurnTaking:
    """Idle / agent-speaking state machine driven by both legs.

    ``agent_utterance_id`` and ``response_started_at_media_time`` are always set
    and cleared together. Media times come from the phone leg and are in
    milliseconds.
    """

    def __init__(self) -> None:
        self.agent_utterance_id: str | None = None
        self.response_started_at_media_time: int | None = None
        self.latest_media_time: int = 0
        self.interrupted_items: set[str] = set()

    @property
    def state(self) -> TurnState:
        return "idle" if self.agent_utterance_id is None else "agent_speaking"

    @property
    def agent_speaking(self) -> bool:
        return self.agent_utterance_id is not None

    def observe_media_time(self, media_time: int) -> None:
        self.latest_media_time = media_time

    def start_utterance(self, item_id: str) -> bool:
        """The model began emitting audio for ``item_id``.

        Returns False for an item the caller already talked over; its late audio
        must not be played and does not reopen the turn.
        """

        if item_id in self.interrupted_items:
            return False
        if self.agent_utterance_id == item_id:
            return True
        if self.agent_utterance_id is not None:
            LOGGER.warning(
                "Utterance %s started while %s was still in flight; replacing it",
                item_id,
                self.agent_utterance_id,
            )
        self.agent_utterance_id = item_id
        self.response_started_at_media_time = self.latest_media_time
        return True

    def complete(self) -> None:
        self.agent_utterance_id = None
        self.response_started_at_media_time = None

    def barge_in(self) -> Truncation | None:
        """The caller started talking. Returns the truncation to apply, if any."""

        if self.agent_utterance_id is None or self.response_started_at_media_time is None:
            return None

        elapsed = max(0, self.latest_media_time - self.response_started_at_media_time)
        truncation = Truncation(item_id=self.agent_utterance_id, audio_end_ms=elapsed)
        self.interrupted_items.add(self.agent_utterance_id)
        self.complete()
        return truncation

    def reset(self) -> None:
        self.complete()
        self.latest_media_time = 0
        self.interrupted_items.clear()

    def snapshot(self) -> TurnSnapshot:
        return TurnSnapshot(
            state=self.state,
            agent_utterance_id=self.agent_utterance_id,
            response_started_at_media_time=self.response_started_at_media_time,
            latest_media_time=self.latest_media_time,
        )
