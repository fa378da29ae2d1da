"""
Canonical 44-byte-header PCM WAV encoding for export.

Layout: RIFF/WAVE, a 16-byte "fmt " chunk (PCM, 16-bit), then a single
"data" chunk of interleaved little-endian int16 frames.
"""

from __future__ import annotations

import struct

import numpy as np

from buffers import SampleBuffer
from dsp import normalize

BITS_PER_SAMPLE = 16
BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8
HEADER_SIZE = 44

_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def data_size(buffer: SampleBuffer) -> int:
    return buffer.frame_count * buffer.channel_count * BYTES_PER_SAMPLE


def build_header(channels: int, sample_rate: int, frames: int) -> bytes:
    block_align = channels * BYTES_PER_SAMPLE
    byte_rate = sample_rate * block_align
    size = frames * block_align
    return _HEADER.pack(
        b"RIFF",
        36 + size,
        b"WAVE",
        b"fmt ",
        16,
        1,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        size,
    )


def quantize(data: np.ndarray) -> np.ndarray:
    """
    Float samples to int16: clip to [-1, 1], scale negatives by 32768 and
    positives by 32767, truncate toward zero.
    """
    x = np.clip(data.astype(np.float64), -1.0, 1.0)
    scaled = np.where(x < 0.0, x * 32768.0, x * 32767.0)
    return np.trunc(scaled).astype("<i2")


def encode(buffer: SampleBuffer) -> bytes:
    """Normalize then serialize `buffer` into WAV bytes."""
    rendered = normalize(buffer)
    header = build_header(rendered.channel_count, rendered.sample_rate, rendered.frame_count)
    # (frames, channels) row-major is already frame-major interleaving.
    pcm = quantize(rendered.data)
    return header + pcm.tobytes()
