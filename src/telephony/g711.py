"""G.711 companding (mu-law and A-law) for 8-bit telephone audio."""

from __future__ import annotations

from typing import Final, Literal

import numpy as np

CompandingLaw = Literal["ulaw", "alaw"]

_LAW_ALIASES: Final[dict[str, CompandingLaw]] = {
    "ulaw": "ulaw",
    "mulaw": "ulaw",
    "pcmu": "ulaw",
    "audio/x-mulaw": "ulaw",
    "g711_ulaw": "ulaw",
    "alaw": "alaw",
    "pcma": "alaw",
    "audio/x-alaw": "alaw",
    "g711_alaw": "alaw",
}

_ULAW_BIAS: Final[int] = 0x84
_ULAW_CLIP: Final[int] = 8159
_ULAW_SEG_END = np.array([0x3F, 0x7F, 0xFF, 0x1FF, 0x3FF, 0x7FF, 0xFFF, 0x1FFF], dtype=np.int32)
_ALAW_SEG_END = np.array([0x1F, 0x3F, 0x7F, 0xFF, 0x1FF, 0x3FF, 0x7FF, 0xFFF], dtype=np.int32)


def normalize_law(name: str) -> CompandingLaw:
    """Map an encoding name (``PCMU``, ``audio/x-alaw``, ...) to a companding law.

    Raises:
        ValueError: if the name does not denote mu-law or A-law.
    """

    law = _LAW_ALIASES.get(name.strip().lower())
    if law is None:
        raise ValueError(f"Unknown companding law: {name!r}")
    return law


def _build_ulaw_table() -> np.ndarray:
    codes = np.bitwise_not(np.arange(256, dtype=np.int32)) & 0xFF
    t = ((codes & 0x0F) << 3) + _ULAW_BIAS
    t = t << ((codes & 0x70) >> 4)
    pcm = np.where(codes & 0x80, _ULAW_BIAS - t, t - _ULAW_BIAS)
    return pcm.astype(np.int16)


def _build_alaw_table() -> np.ndarray:
    codes = np.arange(256, dtype=np.int32) ^ 0x55
    t = (codes & 0x0F) << 4
    seg = (codes & 0x70) >> 4
    t = np.where(seg == 0, t + 8, t + 0x108)
    t = np.where(seg > 1, t << np.maximum(seg - 1, 0), t)
    pcm = np.where(codes & 0x80, t, -t)
    return pcm.astype(np.int16)


_ULAW_TABLE = _build_ulaw_table()
_ALAW_TABLE = _build_alaw_table()


def ulaw_decode(ulaw_bytes: bytes) -> np.ndarray:
    """Decode G.711 mu-law bytes to PCM16 int16 array."""

    return _ULAW_TABLE[np.frombuffer(ulaw_bytes, dtype=np.uint8)]


def alaw_decode(alaw_bytes: bytes) -> np.ndarray:
    """Decode G.711 A-law bytes to PCM16 int16 array."""

    return _ALAW_TABLE[np.frombuffer(alaw_bytes, dtype=np.uint8)]


def ulaw_encode(pcm16: np.ndarray) -> bytes:
    """Encode PCM16 int16 array to G.711 mu-law bytes.

    This is a vectorized mu-law encoder suitable for realtime packetization.
    """

    if pcm16.size == 0:
        return b""

    x = pcm16.astype(np.int32) >> 2
    mask = np.where(x < 0, 0x7F, 0xFF)
    x = np.minimum(np.abs(x), _ULAW_CLIP) + (_ULAW_BIAS >> 2)

    seg = np.searchsorted(_ULAW_SEG_END, x)
    mantissa = (x >> np.minimum(seg + 1, 8)) & 0x0F
    code = np.where(seg >= 8, 0x7F, (np.minimum(seg, 7) << 4) | mantissa)
    return (code ^ mask).astype(np.uint8).tobytes()


def alaw_encode(pcm16: np.ndarray) -> bytes:
    """Encode PCM16 int16 array to G.711 A-law bytes."""

    if pcm16.size == 0:
        return b""

    x = pcm16.astype(np.int32) >> 3
    mask = np.where(x >= 0, 0xD5, 0x55)
    x = np.where(x >= 0, x, -x - 1)

    seg = np.searchsorted(_ALAW_SEG_END, x)
    shift = np.where(seg < 2, 1, np.minimum(seg, 8))
    mantissa = (x >> shift) & 0x0F
    code = np.where(seg >= 8, 0x7F, (np.minimum(seg, 7) << 4) | mantissa)
    return (code ^ mask).astype(np.uint8).tobytes()


def decode_companded(data: bytes, law: str) -> np.ndarray:
    """Expand companded 8-bit samples to PCM16 for the given law."""

    if normalize_law(law) == "ulaw":
        return ulaw_decode(data)
    return alaw_decode(data)


def encode_companded(pcm16: np.ndarray, law: str) -> bytes:
    """Compress PCM16 samples with the given law (lossy)."""

    if normalize_law(law) == "ulaw":
        return ulaw_encode(pcm16)
    return alaw_encode(pcm16)


def silence_byte(law: str) -> bytes:
    """The code that decodes to (near) zero amplitude."""

    return b"\xff" if normalize_law(law) == "ulaw" else b"\xd5"
