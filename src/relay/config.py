from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:  # pragma: no cover
    from config.settings import Settings


@dataclass(frozen=True, slots=True)
class RelayConfig:
    """Per-session relay choices, fixed when the session starts."""

    model_audio_format: str = "g711_ulaw"
    model_sample_rate: int = 24000
    frame_ms: int = 20
    turn_detection: Literal["server_vad", "manual"] = "server_vad"
    vad_threshold: float = 0.5
    vad_prefix_padding_ms: int = 300
    vad_silence_duration_ms: int = 500
    manual_commit_interval_ms: int = 3000
    voice: str = "alloy"
    instructions: str = ""
    greeting: str | None = None
    input_transcription_model: str | None = None
    keepalive_seconds: float = 25.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RelayConfig:
        return cls(
            model_audio_format=settings.model_audio_format,
            model_sample_rate=settings.model_pcm_sample_rate,
            frame_ms=settings.frame_ms,
            turn_detection=settings.turn_detection,
            vad_threshold=settings.vad_threshold,
            vad_prefix_padding_ms=settings.vad_prefix_padding_ms,
            vad_silence_duration_ms=settings.vad_silence_duration_ms,
            manual_commit_interval_ms=settings.manual_commit_interval_ms,
            voice=settings.realtime_voice,
            instructions=settings.realtime_instructions,
            greeting=settings.realtime_greeting,
            input_transcription_model=settings.realtime_input_transcription_model,
            keepalive_seconds=settings.telephony_keepalive_seconds,
        )
