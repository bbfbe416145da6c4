"""Audio path negotiated at stream start and per-chunk conversion along it."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Final

import numpy as np

from relay.errors import UnsupportedCodecError
from telephony.g711 import CompandingLaw, decode_companded, encode_companded, normalize_law
from telephony.resample import StreamResampler

LOGGER = logging.getLogger(__name__)

TELEPHONY_SAMPLE_RATE: Final[int] = 8000
MODEL_FORMATS: Final[tuple[str, ...]] = ("g711_ulaw", "g711_alaw", "pcm16")


@dataclass(frozen=True, slots=True)
class AudioPath:
    telephony_law: CompandingLaw
    telephony_rate: int
    model_format: str
    model_rate: int

    @property
    def model_law(self) -> CompandingLaw | None:
        if self.model_format == "pcm16":
            return None
        return normalize_law(self.model_format)

    @property
    def passthrough(self) -> bool:
        return self.model_law == self.telephony_law

    def frame_bytes(self, frame_ms: int) -> int:
        # One byte per companded sample.
        return self.telephony_rate * frame_ms // 1000


def negotiate_audio_path(
    media_format: dict[str, Any] | None,
    model_format: str,
    model_rate: int,
) -> AudioPath:
    """Pick the conversion between the phone leg's format and the model's.

    Raises:
        UnsupportedCodecError: if either side asks for something other than mono
            8 kHz G.711 on the phone leg, or g711_ulaw/g711_alaw/pcm16 on the model leg.
    """

    media_format = media_format or {}
    if not media_format:
        LOGGER.warning("Stream start carried no media format; assuming 8 kHz mu-law")

    encoding = str(media_format.get("encoding") or "audio/x-mulaw")
    try:
        law = normalize_law(encoding)
    except ValueError as exc:
        raise UnsupportedCodecError(f"Unsupported telephony encoding: {encoding}") from exc

    rate = _as_int(media_format.get("sampleRate", media_format.get("sample_rate")), TELEPHONY_SAMPLE_RATE)
    if rate != TELEPHONY_SAMPLE_RATE:
        raise UnsupportedCodecError(f"Unsupported telephony sample rate: {rate}")

    channels = _as_int(media_format.get("channels"), 1)
    if channels != 1:
        raise UnsupportedCodecError(f"Unsupported channel count: {channels}")

    if model_format not in MODEL_FORMATS:
        raise UnsupportedCodecError(f"Unsupported model audio format: {model_format}")
    if model_format == "pcm16":
        if model_rate <= 0:
            raise UnsupportedCodecError(f"Unsupported model sample rate: {model_rate}")
    else:
        model_rate = TELEPHONY_SAMPLE_RATE

    return AudioPath(
        telephony_law=law,
        telephony_rate=rate,
        model_format=model_format,
        model_rate=model_rate,
    )


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise UnsupportedCodecError(f"Invalid media format value: {value!r}") from exc


class Transcoder:
    """Convert audio chunks along one negotiated path, in both directions.

    On the PCM16 path each direction keeps its own resampler state, so a call's
    audio is resampled as one continuous stream whatever the chunk sizes.
    """

    def __init__(self, path: AudioPath) -> None:
        self.path = path
        self._carry = b""
        self._upsampler = StreamResampler(path.telephony_rate, path.model_rate)
        self._downsampler = StreamResampler(path.model_rate, path.telephony_rate)

    def to_model(self, payload: bytes) -> bytes:
        path = self.path
        if path.passthrough:
            return payload

        pcm = decode_companded(payload, path.telephony_law)
        if path.model_law is not None:
            return encode_companded(pcm, path.model_law)

        pcm = self._upsampler.process(pcm)
        return pcm.astype("<i2").tobytes()

    def to_telephony(self, payload: bytes) -> bytes:
        path = self.path
        if path.passthrough:
            return payload

        if path.model_law is not None:
            pcm = decode_companded(payload, path.model_law)
            return encode_companded(pcm, path.telephony_law)

        # PCM16 chunks may split a sample across deltas.
        data = self._carry + payload
        usable = len(data) - (len(data) % 2)
        self._carry = data[usable:]
        pcm = np.frombuffer(data[:usable], dtype="<i2")
        pcm = self._downsampler.process(pcm)
        return encode_companded(pcm, path.telephony_law)

    def reset_outbound(self) -> None:
        """Forget model audio not yet converted, e.g. after the caller interrupts."""

        self._carry = b""
        self._downsampler.reset()

    def reset(self) -> None:
        self.reset_outbound()
        self._upsampler.reset()
