from __future__ import annotations

import asyncio
import base64
import json
from typing import Any

import pytest

from agents.tools import ToolRegistry, ToolSpec
from relay.config import RelayConfig
from relay.duplex import DuplexRelay, Leg
from relay.errors import LegDisconnectedError, UnsupportedCodecError
from relay.registry import ActiveRelays
from telephony.media_stream import StreamStart

ULAW_FORMAT = {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1}


def _run(coro):
    return asyncio.run(coro)


class FakeTelephonyLeg:
    """Scripted phone leg; ``None`` in the inbox means the socket went away."""

    def __init__(self, *messages: Any) -> None:
        self.inbox: asyncio.Queue[str | None] = asyncio.Queue()
        for message in messages:
            self.push(message)
        self.sent: list[dict[str, Any]] = []
        self.close_codes: list[int] = []

    def push(self, message: Any) -> None:
        if message is None or isinstance(message, str):
            self.inbox.put_nowait(message)
        else:
            self.inbox.put_nowait(json.dumps(message))

    async def receive_text(self) -> str:
        message = await self.inbox.get()
        if message is None:
            raise LegDisconnectedError("telephony", "closed by test")
        return message

    async def send_json(self, message: dict[str, Any]) -> None:
        if self.close_codes:
            raise LegDisconnectedError("telephony", "already closed")
        self.sent.append(message)

    async def close(self, code: int = 1000) -> None:
        self.close_codes.append(code)

    def events(self, kind: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m["event"] == kind]


class FakeModelLeg:
    def __init__(self) -> None:
        self.inbox: asyncio.Queue[str | None] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.closed = False

    async def recv(self) -> str:
        message = await self.inbox.get()
        if message is None:
            raise LegDisconnectedError("model", "closed by test")
        return message

    async def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise LegDisconnectedError("model", "already closed")
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


class Connector:
    def __init__(self, model: FakeModelLeg | None = None, error: Exception | None = None) -> None:
        self.model = model or FakeModelLeg()
        self.error = error
        self.calls = 0

    async def __call__(self) -> FakeModelLeg:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.model


def _start(call_id: str = "CA1", media_format: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "event": "start",
        "streamSid": "MZ1",
        "start": {"streamSid": "MZ1", "callSid": call_id, "mediaFormat": media_format or ULAW_FORMAT},
    }


def _media(payload: bytes, timestamp: int, track: str = "inbound") -> str:
    return json.dumps(
        {
            "event": "media",
            "media": {"payload": base64.b64encode(payload).decode(), "timestamp": timestamp, "track": track},
        }
    )


def _delta(audio: bytes, item_id: str = "item_1") -> str:
    return json.dumps(
        {"type": "response.audio.delta", "item_id": item_id, "delta": base64.b64encode(audio).decode()}
    )


def _model_event(kind: str, **fields: Any) -> str:
    return json.dumps({"type": kind, **fields})


async def _opened_relay(config: RelayConfig | None = None, **kwargs: Any):
    telephony = FakeTelephonyLeg()
    connector = Connector()
    relay = DuplexRelay(telephony, connector, config or RelayConfig(keepalive_seconds=0), **kwargs)
    await relay.open(StreamStart(stream_id="MZ1", call_id="CA1", media_format=ULAW_FORMAT))
    return relay, telephony, connector.model


def test_inbound_frames_reach_model_in_order() -> None:
    async def scenario() -> None:
        relay, _telephony, model = await _opened_relay()
        frames = [bytes([i]) * 160 for i in range(50)]
        for i, frame in enumerate(frames):
            assert await relay.handle(Leg.TELEPHONY, _media(frame, i * 20))

        appends = [m for m in model.sent if m["type"] == "input_audio_buffer.append"]
        assert model.sent[0]["type"] == "session.update"
        assert [base64.b64decode(m["audio"]) for m in appends] == frames
        assert relay.turns.latest_media_time == 49 * 20
        await relay.close()

    _run(scenario())


def test_outbound_track_is_not_forwarded() -> None:
    async def scenario() -> None:
        relay, _telephony, model = await _opened_relay()
        await relay.handle(Leg.TELEPHONY, _media(b"\xff" * 160, 0, track="outbound"))
        assert "input_audio_buffer.append" not in model.types()
        await relay.close()

    _run(scenario())


def test_model_audio_is_paced_into_frames() -> None:
    async def scenario() -> None:
        relay, telephony, _model = await _opened_relay()
        await relay.handle(Leg.MODEL, _delta(b"\x01" * 100))
        assert telephony.events("media") == []

        await relay.handle(Leg.MODEL, _delta(b"\x02" * 300))
        media = telephony.events("media")
        assert len(media) == 2
        assert all(m["streamSid"] == "MZ1" for m in media)
        assert all(len(base64.b64decode(m["media"]["payload"])) == 160 for m in media)
        assert relay.turns.agent_utterance_id == "item_1"
        await relay.close()

    _run(scenario())


def test_barge_in_clears_playback_and_truncates() -> None:
    async def scenario() -> None:
        relay, telephony, model = await _opened_relay()
        await relay.handle(Leg.TELEPHONY, _media(b"\xff" * 160, 1000))
        await relay.handle(Leg.MODEL, _delta(b"\x01" * 330))
        await relay.handle(Leg.TELEPHONY, _media(b"\xff" * 160, 1500))

        await relay.handle(Leg.MODEL, _model_event("input_audio_buffer.speech_started"))

        assert telephony.sent[-1] == {"event": "clear", "streamSid": "MZ1"}
        assert model.sent[-1] == {
            "type": "conversation.item.truncate",
            "item_id": "item_1",
            "content_index": 0,
            "audio_end_ms": 500,
        }
        assert relay.turns.state == "idle"

        # The 10 buffered bytes were dropped, so a new reply starts on a frame boundary.
        await relay.handle(Leg.MODEL, _delta(b"\x03" * 160, item_id="item_2"))
        assert base64.b64decode(telephony.sent[-1]["media"]["payload"]) == b"\x03" * 160
        await relay.close()

    _run(scenario())


def test_late_audio_for_interrupted_item_is_dropped() -> None:
    async def scenario() -> None:
        relay, telephony, model = await _opened_relay()
        await relay.handle(Leg.TELEPHONY, _media(b"\xff" * 160, 1000))
        await relay.handle(Leg.MODEL, _delta(b"\x01" * 320))
        await relay.handle(Leg.TELEPHONY, _media(b"\xff" * 160, 1500))
        await relay.handle(Leg.MODEL, _model_event("input_audio_buffer.speech_started"))
        sent_to_phone = len(telephony.sent)

        await relay.handle(Leg.TELEPHONY, _media(b"\xff" * 160, 1520))
        await relay.handle(Leg.MODEL, _delta(b"\x02" * 320))
        assert len(telephony.sent) == sent_to_phone
        assert relay.turns.state == "idle"

        await relay.handle(Leg.TELEPHONY, _media(b"\xff" * 160, 2000))
        await relay.handle(Leg.MODEL, _model_event("input_audio_buffer.speech_started"))
        await relay.handle(Leg.MODEL, _model_event("response.done"))

        truncates = [m for m in model.sent if m["type"] == "conversation.item.truncate"]
        assert [t["audio_end_ms"] for t in truncates] == [500]
        assert len(telephony.sent) == sent_to_phone

        await relay.handle(Leg.MODEL, _delta(b"\x03" * 160, item_id="item_2"))
        assert base64.b64decode(telephony.sent[-1]["media"]["payload"]) == b"\x03" * 160
        assert relay.turns.agent_utterance_id == "item_2"
        await relay.close()

    _run(scenario())


def test_speech_while_idle_is_a_no_op() -> None:
    async def scenario() -> None:
        relay, telephony, model = await _opened_relay()
        sent_before = len(model.sent)
        await relay.handle(Leg.MODEL, _model_event("input_audio_buffer.speech_started"))

        assert telephony.sent == []
        assert len(model.sent) == sent_before
        await relay.close()

    _run(scenario())


def test_response_done_flushes_tail_and_marks_playback() -> None:
    async def scenario() -> None:
        relay, telephony, _model = await _opened_relay()
        await relay.handle(Leg.MODEL, _delta(b"\x01" * 200))
        await relay.handle(Leg.MODEL, _model_event("response.done"))

        media = telephony.events("media")
        assert len(media) == 2
        assert base64.b64decode(media[-1]["media"]["payload"]) == b"\x01" * 40 + b"\xff" * 120
        assert telephony.sent[-1] == {"event": "mark", "streamSid": "MZ1", "mark": {"name": "item_1"}}
        assert relay.turns.state == "idle"
        await relay.close()

    _run(scenario())


def test_speech_over_queued_playback_sends_clear_only() -> None:
    async def scenario() -> None:
        relay, telephony, model = await _opened_relay()
        await relay.handle(Leg.MODEL, _delta(b"\x01" * 160))
        await relay.handle(Leg.MODEL, _model_event("response.done"))
        model_sent = len(model.sent)

        await relay.handle(Leg.MODEL, _model_event("input_audio_buffer.speech_started"))
        assert telephony.sent[-1] == {"event": "clear", "streamSid": "MZ1"}
        assert len(model.sent) == model_sent
        await relay.close()

    _run(scenario())


def test_played_mark_stops_later_clear() -> None:
    async def scenario() -> None:
        relay, telephony, _model = await _opened_relay()
        await relay.handle(Leg.MODEL, _delta(b"\x01" * 160))
        await relay.handle(Leg.MODEL, _model_event("response.done"))
        await relay.handle(Leg.TELEPHONY, json.dumps({"event": "mark", "mark": {"name": "item_1"}}))
        sent = len(telephony.sent)

        await relay.handle(Leg.MODEL, _model_event("input_audio_buffer.speech_started"))
        assert len(telephony.sent) == sent
        await relay.close()

    _run(scenario())


def test_manual_mode_commits_on_interval() -> None:
    async def scenario() -> None:
        config = RelayConfig(turn_detection="manual", manual_commit_interval_ms=1000, keepalive_seconds=0)
        relay, _telephony, model = await _opened_relay(config)
        assert model.sent[0]["session"]["turn_detection"] is None

        for i in range(101):
            await relay.handle(Leg.TELEPHONY, _media(b"\xff" * 160, i * 20))

        types = model.types()
        assert types.count("input_audio_buffer.commit") == 2
        first_commit = types.index("input_audio_buffer.commit")
        assert types[first_commit + 1] == "response.create"
        await relay.close()

    _run(scenario())


def test_tool_call_result_is_returned_to_model() -> None:
    async def scenario() -> None:
        tools = ToolRegistry()
        tools.register(ToolSpec(name="lookup", description="Look something up."), lambda args: {"echo": args["q"]})
        relay, _telephony, model = await _opened_relay(tools=tools)
        assert model.sent[0]["session"]["tools"][0]["name"] == "lookup"

        await relay.handle(
            Leg.MODEL,
            _model_event(
                "response.function_call_arguments.done", name="lookup", call_id="call_9", arguments='{"q": "x"}'
            ),
        )
        for _ in range(5):
            await asyncio.sleep(0)

        output, follow_up = model.sent[-2:]
        assert output["type"] == "conversation.item.create"
        assert output["item"]["call_id"] == "call_9"
        assert json.loads(output["item"]["output"]) == {"echo": "x"}
        assert follow_up == {"type": "response.create"}
        await relay.close()

    _run(scenario())


def test_malformed_messages_are_dropped() -> None:
    async def scenario() -> None:
        relay, telephony, model = await _opened_relay()
        sent = len(model.sent)
        assert await relay.handle(Leg.TELEPHONY, "{not json")
        assert await relay.handle(Leg.MODEL, "[]")
        assert len(model.sent) == sent
        assert telephony.sent == []
        assert not relay.closed
        await relay.close()

    _run(scenario())


def test_handle_requires_open_session() -> None:
    async def scenario() -> None:
        relay = DuplexRelay(FakeTelephonyLeg(), Connector())
        with pytest.raises(RuntimeError):
            await relay.handle(Leg.TELEPHONY, '{"event": "stop"}')

    _run(scenario())


def test_close_is_idempotent_and_safe_before_open() -> None:
    async def scenario() -> None:
        telephony = FakeTelephonyLeg()
        connector = Connector()
        relay = DuplexRelay(telephony, connector)
        await relay.close()
        await relay.close()

        assert relay.closed
        assert telephony.close_codes == [1000]
        assert connector.calls == 0

    _run(scenario())


def test_run_relays_until_stop() -> None:
    async def scenario() -> None:
        telephony = FakeTelephonyLeg(
            "garbage",
            {"event": "connected"},
            _start(),
            _media(b"\xff" * 160, 0),
            _media(b"\xff" * 160, 20),
            _media(b"\xff" * 160, 40),
            {"event": "stop"},
        )
        connector = Connector()
        relay = DuplexRelay(telephony, connector, RelayConfig(keepalive_seconds=0))
        await relay.run()

        model = connector.model
        assert relay.stream_id == "MZ1"
        assert relay.call_id == "CA1"
        assert model.types() == ["session.update"] + ["input_audio_buffer.append"] * 3
        assert model.closed
        assert telephony.close_codes == [1000]

    _run(scenario())


def test_greeting_requests_first_response() -> None:
    async def scenario() -> None:
        relay, _telephony, model = await _opened_relay(RelayConfig(greeting="Say hello.", keepalive_seconds=0))
        assert model.types() == ["session.update", "response.create"]
        assert model.sent[1]["response"]["instructions"] == "Say hello."
        await relay.close()

    _run(scenario())


def test_model_disconnect_tears_down_phone_leg() -> None:
    async def scenario() -> None:
        telephony = FakeTelephonyLeg(_start())
        connector = Connector()
        connector.model.inbox.put_nowait(_model_event("session.created"))
        connector.model.inbox.put_nowait(None)

        relay = DuplexRelay(telephony, connector, RelayConfig(keepalive_seconds=0))
        await asyncio.wait_for(relay.run(), timeout=5)

        assert relay.closed
        assert telephony.close_codes == [1000]
        assert connector.model.closed

    _run(scenario())


def test_stop_before_start_never_connects_model() -> None:
    async def scenario() -> None:
        telephony = FakeTelephonyLeg({"event": "stop"})
        connector = Connector()
        await DuplexRelay(telephony, connector).run()

        assert connector.calls == 0
        assert telephony.close_codes == [1000]

    _run(scenario())


def test_unsupported_codec_rejects_stream() -> None:
    async def scenario() -> None:
        telephony = FakeTelephonyLeg(_start(media_format={"encoding": "audio/L16", "sampleRate": 16000}))
        connector = Connector()
        relay = DuplexRelay(telephony, connector)

        with pytest.raises(UnsupportedCodecError):
            await relay.run()

        assert connector.calls == 0
        assert telephony.close_codes == [UnsupportedCodecError.close_code]

    _run(scenario())


def test_model_connect_failure_closes_phone_leg() -> None:
    async def scenario() -> None:
        telephony = FakeTelephonyLeg(_start())
        connector = Connector(error=LegDisconnectedError("model", "unreachable"))
        relay = DuplexRelay(telephony, connector)
        await relay.run()

        assert connector.calls == 1
        assert relay.closed
        assert telephony.close_codes == [1000]

    _run(scenario())


def test_forced_hangup_ends_running_relay() -> None:
    async def scenario() -> None:
        relays = ActiveRelays()

        async def on_started(relay: DuplexRelay, start: StreamStart) -> None:
            relays.add(start.call_id, relay)

        telephony = FakeTelephonyLeg(_start("CA42"))
        connector = Connector()
        relay = DuplexRelay(telephony, connector, RelayConfig(keepalive_seconds=0), on_stream_started=on_started)
        task = asyncio.create_task(relay.run())

        while relays.get("CA42") is None:
            await asyncio.sleep(0)
        for _ in range(5):
            await asyncio.sleep(0)

        assert await relays.hangup("CA42")
        await asyncio.wait_for(task, timeout=5)

        assert relay.closed
        assert connector.model.closed
        assert telephony.close_codes == [1000]
        assert await relays.hangup("CA42") is False

    _run(scenario())


def test_keepalive_marks_are_sent() -> None:
    async def scenario() -> None:
        telephony = FakeTelephonyLeg(_start())
        relay = DuplexRelay(telephony, Connector(), RelayConfig(keepalive_seconds=0.01))
        task = asyncio.create_task(relay.run())

        await asyncio.sleep(0.1)
        telephony.push(None)
        await asyncio.wait_for(task, timeout=5)

        marks = telephony.events("mark")
        assert marks
        assert marks[0]["mark"]["name"] == "keepalive"

    _run(scenario())
