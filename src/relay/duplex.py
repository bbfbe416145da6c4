"""Duplex relay between one telephony media stream and one speech-model session.

Each leg is read by its own pump task. Both pumps feed a single queue that one
dispatcher drains, so every turn-taking transition is applied in the order the
messages arrived, whichever leg they came from.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import enum
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from agents.tools import ToolRegistry
from relay.config import RelayConfig
from relay.errors import LegDisconnectedError, MalformedMessageError, UnsupportedCodecError
from relay.legs import ModelLeg, TelephonyLeg
from relay.realtime import (
    build_session_update,
    function_call_output,
    input_audio_append,
    input_audio_commit,
    item_truncate,
    parse_model_message,
    response_create,
)
from relay.turn_taking import TurnTaking
from telephony.g711 import silence_byte
from telephony.media_stream import (
    MediaChunk,
    OtherEvent,
    StreamMark,
    StreamStart,
    StreamStop,
    TelephonyEvent,
    clear_message,
    mark_message,
    media_message,
    parse_telephony_message,
)
from telephony.pacer import FramePacer
from telephony.transcoder import AudioPath, Transcoder, negotiate_audio_path

LOGGER = logging.getLogger(__name__)

AUDIO_DELTA_EVENTS = frozenset({"response.audio.delta", "response.output_audio.delta"})
TRANSCRIPT_DONE_EVENTS = frozenset({"response.audio_transcript.done", "response.output_audio_transcript.done"})
KEEPALIVE_MARK = "keepalive"

ModelConnector = Callable[[], Awaitable[ModelLeg]]
StreamStartedHook = Callable[["DuplexRelay", StreamStart], Awaitable[None]]


class Leg(str, enum.Enum):
    TELEPHONY = "telephony"
    MODEL = "model"


class DuplexRelay:
    """Owns one relay session from stream start until either leg goes away."""

    def __init__(
        self,
        telephony: TelephonyLeg,
        connect_model: ModelConnector,
        config: RelayConfig | None = None,
        *,
        tools: ToolRegistry | None = None,
        on_stream_started: StreamStartedHook | None = None,
    ) -> None:
        self._telephony = telephony
        self._connect_model = connect_model
        self._config = config or RelayConfig()
        self._tools = tools
        self._on_stream_started = on_stream_started

        self.turns = TurnTaking()
        self._model: ModelLeg | None = None
        self._start: StreamStart | None = None
        self._transcoder: Transcoder | None = None
        self._pacer: FramePacer | None = None
        self._pending_marks: deque[str] = deque()
        self._events: asyncio.Queue[tuple[Leg | None, str | None]] = asyncio.Queue()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

        self._last_commit_at: int | None = None
        self._appended_since_commit = 0

    @property
    def stream_id(self) -> str | None:
        return self._start.stream_id if self._start else None

    @property
    def call_id(self) -> str | None:
        return self._start.call_id if self._start else None

    @property
    def audio_path(self) -> AudioPath | None:
        return self._transcoder.path if self._transcoder else None

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self) -> None:
        """Relay until the call ends. Always tears both legs down before returning.

        Raises:
            UnsupportedCodecError: if the stream's media format cannot be relayed.
        """

        try:
            start = await self._wait_for_start()
            if start is None:
                return
            await self.open(start)
            model = self._model
            if self._closed or model is None:
                return

            self._spawn(self._pump(Leg.TELEPHONY, self._telephony.receive_text))
            self._spawn(self._pump(Leg.MODEL, model.recv))
            if self._config.keepalive_seconds > 0:
                self._spawn(self._keepalive())

            await self._dispatch()
        except LegDisconnectedError as exc:
            LOGGER.info("Stream %s ended (%s leg): %s", self.stream_id, exc.leg, exc.detail)
        except UnsupportedCodecError as exc:
            LOGGER.warning("Rejecting media stream: %s", exc.detail)
            await self.close(code=exc.close_code)
            raise
        finally:
            await self.close()

    async def open(self, start: StreamStart) -> None:
        """Negotiate audio, connect the model leg and configure its session."""

        if self._closed:
            raise LegDisconnectedError("telephony", "Relay already closed")

        self._start = start
        path = negotiate_audio_path(
            start.media_format,
            self._config.model_audio_format,
            self._config.model_sample_rate,
        )
        self._transcoder = Transcoder(path)
        self._pacer = FramePacer(path.frame_bytes(self._config.frame_ms), silence=silence_byte(path.telephony_law))
        LOGGER.info(
            "Stream %s started for call %s (%s/%d Hz -> %s/%d Hz)",
            start.stream_id,
            start.call_id,
            path.telephony_law,
            path.telephony_rate,
            path.model_format,
            path.model_rate,
        )

        if self._on_stream_started is not None:
            await self._on_stream_started(self, start)

        model = await self._connect_model()
        if self._closed:
            await model.close()
            raise LegDisconnectedError("telephony", "Call ended while connecting to the speech model")
        self._model = model

        tools = self._tools.manifest() if self._tools else []
        await self._send_model(build_session_update(self._config, tools))
        if self._config.greeting:
            await self._send_model(response_create(self._config.greeting))

    async def handle(self, leg: Leg, raw: str) -> bool:
        """Apply one inbound message. Returns False once the session should end."""

        self._media_path()

        if leg is Leg.TELEPHONY:
            try:
                event = parse_telephony_message(raw)
            except MalformedMessageError as exc:
                LOGGER.warning("Dropping malformed telephony message on %s: %s", self.stream_id, exc.detail)
                return True
            return await self._on_telephony_event(event)

        try:
            message = parse_model_message(raw)
        except MalformedMessageError as exc:
            LOGGER.warning("Dropping malformed model message on %s: %s", self.stream_id, exc.detail)
            return True
        await self._on_model_event(message)
        return True

    async def close(self, code: int = 1000) -> None:
        """Tear down both legs and drop buffered audio. Safe to call repeatedly."""

        if self._closed:
            return
        self._closed = True

        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        self._events.put_nowait((None, None))

        if self._pacer is not None:
            self._pacer.reset()
        if self._transcoder is not None:
            self._transcoder.reset()
        self.turns.reset()
        self._pending_marks.clear()

        model, self._model = self._model, None
        if model is not None:
            try:
                await model.close()
            except Exception:
                LOGGER.warning("Closing model leg for stream %s failed", self.stream_id, exc_info=True)
        try:
            await self._telephony.close(code)
        except Exception:
            LOGGER.warning("Closing media stream %s failed", self.stream_id, exc_info=True)

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        LOGGER.info("Relay for stream %s closed", self.stream_id)

    async def _wait_for_start(self) -> StreamStart | None:
        while True:
            raw = await self._telephony.receive_text()
            try:
                event = parse_telephony_message(raw)
            except MalformedMessageError as exc:
                LOGGER.warning("Dropping malformed message before stream start: %s", exc.detail)
                continue
            if isinstance(event, StreamStart):
                return event
            if isinstance(event, StreamStop):
                LOGGER.info("Media stream stopped before it started")
                return None
            LOGGER.debug("Ignoring %s before stream start", type(event).__name__)

    async def _pump(self, leg: Leg, receive: Callable[[], Awaitable[str]]) -> None:
        try:
            while True:
                raw = await receive()
                await self._events.put((leg, raw))
        except LegDisconnectedError as exc:
            LOGGER.info("%s leg of stream %s closed: %s", leg.value, self.stream_id, exc.detail)
            await self._events.put((leg, None))

    async def _dispatch(self) -> None:
        while True:
            leg, raw = await self._events.get()
            if leg is None or raw is None:
                return
            if not await self.handle(leg, raw):
                return

    async def _on_telephony_event(self, event: TelephonyEvent) -> bool:
        if isinstance(event, MediaChunk):
            await self._on_media(event)
        elif isinstance(event, StreamStop):
            LOGGER.info("Telephony leg stopped stream %s", self.stream_id)
            return False
        elif isinstance(event, StreamMark):
            if event.name in self._pending_marks:
                self._pending_marks.remove(event.name)
            LOGGER.debug("Playback reached mark %s on %s", event.name, self.stream_id)
        elif isinstance(event, StreamStart):
            LOGGER.warning("Duplicate start event on stream %s ignored", self.stream_id)
        elif isinstance(event, OtherEvent):
            LOGGER.debug("Ignoring telephony event %s", event.event)
        return True

    async def _on_media(self, chunk: MediaChunk) -> None:
        transcoder, _pacer = self._media_path()
        if chunk.track and chunk.track not in ("inbound", "inbound_track"):
            return

        if chunk.timestamp is not None:
            self.turns.observe_media_time(chunk.timestamp)

        await self._send_model(input_audio_append(transcoder.to_model(chunk.payload)))
        self._appended_since_commit += 1

        if self._config.turn_detection == "manual":
            await self._maybe_commit()

    async def _maybe_commit(self) -> None:
        now = self.turns.latest_media_time
        if self._last_commit_at is None:
            self._last_commit_at = now
            return
        if now - self._last_commit_at < self._config.manual_commit_interval_ms:
            return

        self._last_commit_at = now
        if not self._appended_since_commit:
            return
        self._appended_since_commit = 0
        await self._send_model(input_audio_commit())
        await self._send_model(response_create())

    async def _on_model_event(self, message: dict[str, Any]) -> None:
        kind = message["type"]

        if kind in AUDIO_DELTA_EVENTS:
            await self._on_audio_delta(message)
        elif kind == "input_audio_buffer.speech_started":
            await self._on_speech_started()
        elif kind == "response.created":
            response = message.get("response") or {}
            LOGGER.debug("Response %s created on %s", response.get("id"), self.stream_id)
        elif kind == "response.done":
            await self._on_response_done()
        elif kind in TRANSCRIPT_DONE_EVENTS:
            LOGGER.info("Agent on %s said: %s", self.stream_id, message.get("transcript"))
        elif kind == "conversation.item.input_audio_transcription.completed":
            LOGGER.info("Caller on %s said: %s", self.stream_id, message.get("transcript"))
        elif kind == "response.function_call_arguments.done":
            self._spawn(self._run_tool(message))
        elif kind in ("session.created", "session.updated"):
            LOGGER.info("Speech model %s for stream %s", kind, self.stream_id)
        elif kind == "error":
            LOGGER.error("Speech model error on %s: %s", self.stream_id, message.get("error"))
        else:
            LOGGER.debug("Model event %s on %s", kind, self.stream_id)

    async def _on_audio_delta(self, message: dict[str, Any]) -> None:
        transcoder, pacer = self._media_path()

        delta = message.get("delta")
        if not isinstance(delta, str) or not delta:
            return
        try:
            audio = base64.b64decode(delta, validate=True)
        except (binascii.Error, ValueError):
            LOGGER.warning("Dropping audio delta with invalid base64 on %s", self.stream_id)
            return

        item_id = message.get("item_id") or message.get("response_id")
        if item_id and not self.turns.start_utterance(str(item_id)):
            LOGGER.debug("Dropping late audio for interrupted item %s on %s", item_id, self.stream_id)
            return

        for frame in pacer.push(transcoder.to_telephony(audio)):
            await self._send_telephony(media_message(self.stream_id, frame))

    async def _on_response_done(self) -> None:
        _transcoder, pacer = self._media_path()

        tail = pacer.flush()
        if tail is not None:
            await self._send_telephony(media_message(self.stream_id, tail))

        utterance = self.turns.agent_utterance_id
        self.turns.complete()
        if utterance is not None:
            self._pending_marks.append(utterance)
            await self._send_telephony(mark_message(self.stream_id, utterance))

    async def _on_speech_started(self) -> None:
        transcoder, pacer = self._media_path()

        truncation = self.turns.barge_in()
        dropped = pacer.reset()
        transcoder.reset_outbound()

        if truncation is None:
            if self._pending_marks:
                # The model is done but the phone still has its audio queued.
                LOGGER.info("Caller spoke over queued playback on %s; clearing", self.stream_id)
                self._pending_marks.clear()
                await self._send_telephony(clear_message(self.stream_id))
            return

        LOGGER.info(
            "Barge-in on %s: truncating %s at %d ms (%d buffered bytes dropped)",
            self.stream_id,
            truncation.item_id,
            truncation.audio_end_ms,
            dropped,
        )
        self._pending_marks.clear()
        await self._send_telephony(clear_message(self.stream_id))
        await self._send_model(item_truncate(truncation.item_id, truncation.audio_end_ms))

    async def _run_tool(self, message: dict[str, Any]) -> None:
        name = str(message.get("name") or "")
        call_id = str(message.get("call_id") or "")
        if self._tools is None:
            result: dict[str, Any] = {"error": f"No functions are available (requested {name})."}
        else:
            result = await self._tools.invoke(name, message.get("arguments"))

        try:
            await self._send_model(function_call_output(call_id, result))
            await self._send_model(response_create())
        except LegDisconnectedError:
            LOGGER.info("Model leg closed before result of %s could be delivered", name)

    async def _keepalive(self) -> None:
        while True:
            await asyncio.sleep(self._config.keepalive_seconds)
            try:
                await self._telephony.send_json(mark_message(self.stream_id, KEEPALIVE_MARK))
            except LegDisconnectedError:
                return

    async def _send_model(self, message: dict[str, Any]) -> None:
        if self._model is None:
            raise LegDisconnectedError("model", "Speech model is not connected")
        await self._model.send(message)

    async def _send_telephony(self, message: dict[str, Any]) -> None:
        await self._telephony.send_json(message)

    def _media_path(self) -> tuple[Transcoder, FramePacer]:
        if self._transcoder is None or self._pacer is None:
            raise RuntimeError("Relay session has not been opened")
        return self._transcoder, self._pacer

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Relay task for stream %s failed", self.stream_id, exc_info=exc)
            self._events.put_nowait((None, None))
