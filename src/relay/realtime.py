"""Speech-model realtime protocol messages."""

from __future__ import annotations

import base64
import json
from typing import Any

from relay.config import RelayConfig
from relay.errors import MalformedMessageError


def build_session_update(config: RelayConfig, tools: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    if config.turn_detection == "server_vad":
        turn_detection: dict[str, Any] | None = {
            "type": "server_vad",
            "threshold": config.vad_threshold,
            "prefix_padding_ms": config.vad_prefix_padding_ms,
            "silence_duration_ms": config.vad_silence_duration_ms,
        }
    else:
        # Manual mode: the relay commits the buffer and asks for responses itself.
        turn_detection = None

    session: dict[str, Any] = {
        "modalities": ["text", "audio"],
        "voice": config.voice,
        "instructions": config.instructions,
        "input_audio_format": config.model_audio_format,
        "output_audio_format": config.model_audio_format,
        "turn_detection": turn_detection,
        "tools": list(tools or []),
        "tool_choice": "auto" if tools else "none",
    }
    if config.input_transcription_model:
        session["input_audio_transcription"] = {"model": config.input_transcription_model}

    return {"type": "session.update", "session": session}


def input_audio_append(audio: bytes) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": base64.b64encode(audio).decode("ascii")}


def input_audio_commit() -> dict[str, Any]:
    return {"type": "input_audio_buffer.commit"}


def response_create(instructions: str | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"type": "response.create"}
    if instructions:
        message["response"] = {"modalities": ["text", "audio"], "instructions": instructions}
    return message


def item_truncate(item_id: str, audio_end_ms: int) -> dict[str, Any]:
    return {
        "type": "conversation.item.truncate",
        "item_id": item_id,
        "content_index": 0,
        "audio_end_ms": audio_end_ms,
    }


def function_call_output(call_id: str, result: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "function_call_output",
            "call_id": call_id,
            "output": json.dumps(result),
        },
    }


def parse_model_message(text: str) -> dict[str, Any]:
    """Parse one server event from the model leg.

    Raises:
        MalformedMessageError: if the text is not a JSON object with a ``type``.
    """

    try:
        message = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedMessageError(f"Invalid JSON: {exc.msg}") from exc
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise MalformedMessageError("Model event without type")
    return message
