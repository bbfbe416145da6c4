"""Provider media-stream messages (Twilio Media Streams / Telnyx media streaming).

Both providers frame events as JSON text messages with an ``event`` field; the
parser accepts either provider's spelling of the start block.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any

from relay.errors import MalformedMessageError


@dataclass(frozen=True, slots=True)
class StreamStart:
    stream_id: str
    call_id: str | None = None
    media_format: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MediaChunk:
    payload: bytes
    timestamp: int | None = None
    track: str | None = None


@dataclass(frozen=True, slots=True)
class StreamMark:
    name: str | None = None


@dataclass(frozen=True, slots=True)
class StreamStop:
    pass


@dataclass(frozen=True, slots=True)
class OtherEvent:
    event: str


TelephonyEvent = StreamStart | MediaChunk | StreamMark | StreamStop | OtherEvent


def parse_telephony_message(text: str) -> TelephonyEvent:
    """Parse one inbound media-stream message.

    Raises:
        MalformedMessageError: if the text is not a well-formed event.
    """

    try:
        message = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedMessageError(f"Invalid JSON: {exc.msg}") from exc
    if not isinstance(message, dict):
        raise MalformedMessageError("Expected a JSON object")

    event = message.get("event")
    if event == "media":
        return _parse_media(message)
    if event == "start":
        return _parse_start(message)
    if event == "stop":
        return StreamStop()
    if event == "mark":
        mark = message.get("mark") or {}
        name = mark.get("name") if isinstance(mark, dict) else None
        return StreamMark(name=str(name) if name is not None else None)
    if not isinstance(event, str) or not event:
        raise MalformedMessageError("Missing event type")
    return OtherEvent(event=event)


def _parse_start(message: dict[str, Any]) -> StreamStart:
    start = message.get("start")
    if not isinstance(start, dict):
        raise MalformedMessageError("Start event without start block")

    stream_id = (
        start.get("streamSid")
        or message.get("streamSid")
        or message.get("stream_id")
        or start.get("stream_id")
    )
    if not stream_id:
        raise MalformedMessageError("Start event without stream id")

    call_id = start.get("callSid") or start.get("call_control_id") or start.get("callId")
    media_format = start.get("mediaFormat") or start.get("media_format") or {}
    if not isinstance(media_format, dict):
        raise MalformedMessageError("Media format must be an object")

    return StreamStart(
        stream_id=str(stream_id),
        call_id=str(call_id) if call_id else None,
        media_format=dict(media_format),
    )


def _parse_media(message: dict[str, Any]) -> MediaChunk:
    media = message.get("media")
    if not isinstance(media, dict):
        raise MalformedMessageError("Media event without media block")

    payload = media.get("payload")
    if not isinstance(payload, str):
        raise MalformedMessageError("Media event without payload")
    try:
        audio = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedMessageError("Media payload is not valid base64") from exc

    timestamp = media.get("timestamp")
    if timestamp is not None:
        try:
            timestamp = int(timestamp)
        except (TypeError, ValueError) as exc:
            raise MalformedMessageError(f"Invalid media timestamp: {timestamp!r}") from exc

    track = media.get("track")
    return MediaChunk(payload=audio, timestamp=timestamp, track=str(track) if track else None)


def media_message(stream_id: str | None, frame: bytes) -> dict[str, Any]:
    return {
        "event": "media",
        "streamSid": stream_id,
        "media": {"payload": base64.b64encode(frame).decode("ascii")},
    }


def clear_message(stream_id: str | None) -> dict[str, Any]:
    return {"event": "clear", "streamSid": stream_id}


def mark_message(stream_id: str | None, name: str) -> dict[str, Any]:
    return {"event": "mark", "streamSid": stream_id, "mark": {"name": name}}
