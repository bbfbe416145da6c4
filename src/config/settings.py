"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, gt=0)

    # Speech model (realtime session)
    openai_api_key: str | None = Field(default=None)
    realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    realtime_model: str = Field(default="gpt-4o-realtime-preview-2024-10-01")
    realtime_voice: str = Field(default="alloy")
    realtime_instructions: str = Field(
        default=(
            "You are a friendly, concise phone assistant. Keep answers short, "
            "speak naturally and ask one question at a time."
        ),
    )
    realtime_greeting: str | None = Field(
        default=None,
        description="Optional instruction for the first spoken turn, sent right after the session update.",
    )
    realtime_input_transcription_model: str | None = Field(default="whisper-1")
    realtime_connect_timeout_seconds: float = Field(default=10.0, gt=0)

    # Transcoding path between the phone leg and the model leg
    model_audio_format: Literal["g711_ulaw", "g711_alaw", "pcm16"] = Field(
        default="g711_ulaw",
        description="Audio format announced to the speech model. g711 formats pass through when the laws match.",
    )
    model_pcm_sample_rate: int = Field(default=24000, gt=0)

    # Turn taking
    turn_detection: Literal["server_vad", "manual"] = Field(default="server_vad")
    vad_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    vad_prefix_padding_ms: int = Field(default=300, ge=0)
    vad_silence_duration_ms: int = Field(default=500, ge=0)
    manual_commit_interval_ms: int = Field(
        default=3000,
        gt=0,
        description="Media time between buffer commits when turn_detection is manual.",
    )

    # Media stream
    frame_ms: int = Field(default=20, gt=0)
    telephony_keepalive_seconds: float = Field(
        default=25.0,
        ge=0.0,
        description="Interval of keepalive marks on the phone leg. 0 disables them.",
    )

    # Telnyx call control
    telnyx_api_key: str | None = Field(default=None)
    telnyx_api_base: str = Field(default="https://api.telnyx.com/v2")
    telnyx_stream_track: Literal["inbound_track", "outbound_track", "both_tracks"] = Field(
        default="inbound_track"
    )
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for webhooks and the media stream (e.g. https://<tunnel>.example).",
    )
    stream_start_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Pause between answering a call and asking the provider to open the media stream.",
    )

    # Call registry
    call_inactivity_timeout_seconds: int = Field(default=3600, gt=0)
    call_sweep_interval_seconds: float = Field(default=60.0, gt=0)

    # Tools
    enable_reservation_tools: bool = Field(default=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
