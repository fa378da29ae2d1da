from __future__ import annotations

import math
from typing import Optional

import numpy as np


class SampleBuffer:
    """
    Immutable multi-channel float32 audio as a (frames, channels) array.

    The array is stored read-only; every transform returns a new buffer so the
    decoded original can be shared without being mutated.
    """

    __slots__ = ("_data", "_sample_rate")

    def __init__(self, data, sample_rate: int, copy: bool = True):
        if copy:
            arr = np.array(data, dtype=np.float32)
        else:
            arr = np.asarray(data, dtype=np.float32)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        elif arr.ndim != 2:
            raise ValueError(f"SampleBuffer requires (frames, channels) data, got {arr.ndim}D")
        if arr.shape[1] < 1:
            raise ValueError("SampleBuffer requires at least one channel")
        sample_rate = int(sample_rate)
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {sample_rate}")
        if not arr.flags["C_CONTIGUOUS"]:
            arr = np.ascontiguousarray(arr)
        arr.setflags(write=False)
        self._data = arr
        self._sample_rate = sample_rate

    @classmethod
    def silence(cls, frames: int, channels: int = 2, sample_rate: int = 44100) -> "SampleBuffer":
        return cls(np.zeros((int(frames), int(channels)), dtype=np.float32), sample_rate, copy=False)

    @classmethod
    def from_channels(cls, channels: list, sample_rate: int) -> "SampleBuffer":
        """Build from planar per-channel sequences of equal length."""
        arrays = [np.asarray(ch, dtype=np.float32) for ch in channels]
        if not arrays:
            raise ValueError("at least one channel is required")
        lengths = {a.shape[0] for a in arrays}
        if len(lengths) != 1:
            raise ValueError(f"all channels must have the same length, got {sorted(lengths)}")
        return cls(np.stack(arrays, axis=1), sample_rate, copy=False)

    @property
    def data(self) -> np.ndarray:
        """Read-only (frames, channels) float32 view."""
        return self._data

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def channel_count(self) -> int:
        return self._data.shape[1]

    @property
    def frame_count(self) -> int:
        return self._data.shape[0]

    @property
    def duration(self) -> float:
        return self._data.shape[0] / float(self._sample_rate)

    def channel(self, index: int) -> np.ndarray:
        if index < 0 or index >= self.channel_count:
            raise IndexError(f"Channel {index} out of range for {self.channel_count}-channel buffer")
        return self._data[:, index]

    def derive(self, data: np.ndarray) -> "SampleBuffer":
        """New buffer at this buffer's sample rate, taking ownership of data."""
        return SampleBuffer(data, self._sample_rate, copy=False)

    def peak(self) -> float:
        if self._data.size == 0:
            return 0.0
        return float(np.max(np.abs(self._data)))

    def channel_peaks(self) -> np.ndarray:
        if self._data.shape[0] == 0:
            return np.zeros(self.channel_count, dtype=np.float32)
        return np.max(np.abs(self._data), axis=0)

    def frame_at(self, seconds: float) -> int:
        frame = int(round(max(0.0, float(seconds)) * self._sample_rate))
        return min(frame, self.frame_count)

    def __len__(self) -> int:
        return self.frame_count

    def __eq__(self, other) -> bool:
        if not isinstance(other, SampleBuffer):
            return NotImplemented
        return (
            self._sample_rate == other._sample_rate
            and self._data.shape == other._data.shape
            and bool(np.array_equal(self._data, other._data))
        )

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"SampleBuffer(channels={self.channel_count}, frames={self.frame_count}, "
            f"sample_rate={self._sample_rate})"
        )


def waveform_envelope(
    buffer: Optional[SampleBuffer],
    width: int,
    channel: int = 0,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Per-column (min, max) summary of one channel for drawing a waveform.

    Each of the `width` columns covers ceil(frames / width) samples; samples
    past the end of the buffer count as silence.
    """
    width = max(0, int(width))
    if buffer is None or width == 0 or buffer.frame_count == 0:
        zeros = np.zeros(width, dtype=np.float32)
        return zeros, zeros.copy()

    data = buffer.channel(channel)
    step = max(1, math.ceil(data.shape[0] / width))
    padded = np.zeros(step * width, dtype=np.float32)
    usable = min(data.shape[0], padded.shape[0])
    padded[:usable] = data[:usable]
    columns = padded.reshape(width, step)
    return columns.min(axis=1), columns.max(axis=1)
