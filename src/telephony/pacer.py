from __future__ import annotations


class FramePacer:
    """Cut an irregular byte stream into fixed-size telephony frames.

    Model audio arrives in chunks of whatever size the model picks; the phone
    leg wants a steady run of equal frames (160 bytes = 20 ms of 8 kHz G.711).
    Bytes that do not fill a whole frame stay buffered for the next push.
    """

    def __init__(self, frame_size: int, *, silence: bytes = b"\xff") -> None:
        if frame_size <= 0:
            raise ValueError("frame_size must be positive")
        if len(silence) != 1:
            raise ValueError("silence must be a single byte")
        self.frame_size = frame_size
        self._silence = silence
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def push(self, data: bytes) -> list[bytes]:
        """Buffer ``data`` and return every complete frame, oldest first."""

        self._buffer.extend(data)
        frames: list[bytes] = []
        while len(self._buffer) >= self.frame_size:
            frames.append(bytes(self._buffer[: self.frame_size]))
            del self._buffer[: self.frame_size]
        return frames

    def flush(self) -> bytes | None:
        """Return the buffered remainder padded with silence to one frame."""

        if not self._buffer:
            return None
        frame = bytes(self._buffer) + self._silence * (self.frame_size - len(self._buffer))
        self._buffer.clear()
        return frame

    def reset(self) -> int:
        """Drop buffered bytes and return how many were discarded."""

        dropped = len(self._buffer)
        self._buffer.clear()
        return dropped
