from __future__ import annotations

import numpy as np


def output_length(n_samples: int, src_rate: int, dst_rate: int) -> int:
    """``round(n_samples * dst_rate / src_rate)`` with halves rounded up, in integer math."""

    return (2 * n_samples * dst_rate + src_rate) // (2 * src_rate)


def resample_linear(pcm: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Resample PCM16 audio by linear interpolation.

    Output sample ``i`` sits at input position ``i * src_rate / dst_rate`` and is
    interpolated between the two nearest input samples; positions past the last
    input sample hold its value. Results are clamped to the int16 range.

    Raises:
        ValueError: if either rate is not positive.
    """

    if src_rate <= 0 or dst_rate <= 0:
        raise ValueError(f"Sample rates must be positive, got {src_rate} -> {dst_rate}")
    if src_rate == dst_rate:
        return pcm

    n_out = output_length(pcm.size, src_rate, dst_rate)
    if pcm.size == 0 or n_out == 0:
        return np.zeros(0, dtype=np.int16)
    if pcm.size == 1:
        return np.full(n_out, pcm[0], dtype=np.int16)

    positions = np.arange(n_out, dtype=np.float64) * (src_rate / dst_rate)
    y_new = np.interp(positions, np.arange(pcm.size, dtype=np.float64), pcm.astype(np.float64))

    return np.clip(np.rint(y_new), -32768, 32767).astype(np.int16)


class StreamResampler:
    """Linear resampler for audio that arrives in chunks.

    Output sample ``k`` of the whole stream sits at input position
    ``k * src_rate / dst_rate`` no matter how the input is split. Positions are
    kept as exact integers in units of ``1 / dst_rate`` and the last input
    sample is carried over, so chunk edges are interpolated like any other
    pair of neighbours. An output sample is produced once both of its
    neighbours have arrived.
    """

    def __init__(self, src_rate: int, dst_rate: int) -> None:
        if src_rate <= 0 or dst_rate <= 0:
            raise ValueError(f"Sample rates must be positive, got {src_rate} -> {dst_rate}")
        self.src_rate = src_rate
        self.dst_rate = dst_rate
        self._position = 0
        self._tail = np.zeros(0, dtype=np.int16)

    def process(self, pcm: np.ndarray) -> np.ndarray:
        if self.src_rate == self.dst_rate:
            return pcm
        if pcm.size == 0:
            return np.zeros(0, dtype=np.int16)

        samples = np.concatenate([self._tail, pcm.astype(np.int16, copy=False)])
        limit = (samples.size - 1) * self.dst_rate
        if self._position > limit:
            count = 0
        else:
            count = (limit - self._position) // self.src_rate + 1

        positions = (self._position + np.arange(count, dtype=np.int64) * self.src_rate) / self.dst_rate
        y_new = np.interp(positions, np.arange(samples.size, dtype=np.float64), samples.astype(np.float64))

        # Re-base on the carried sample, which becomes index 0 of the next chunk.
        self._position += count * self.src_rate - limit
        self._tail = samples[-1:].copy()
        return np.clip(np.rint(y_new), -32768, 32767).astype(np.int16)

    def reset(self) -> None:
        self._position = 0
        self._tail = np.zeros(0, dtype=np.int16)
