from __future__ import annotations

import logging
import math
import time
from typing import Callable, Optional

import numpy as np
from scipy.signal import butter, sosfiltfilt

from buffers import SampleBuffer
from config import NORMALIZE_TARGET
from errors import NoSourceLoaded
from models import Quality, TranspositionRequest

logger = logging.getLogger(__name__)

# Anti-alias filter for the high tier when reading faster than 1 sample/frame.
ANTIALIAS_ORDER = 8
ANTIALIAS_MARGIN = 0.9


# -----------------------------
# Read schedule
# -----------------------------

def output_frame_count(input_frames: int, request: TranspositionRequest) -> int:
    if request.preserve_tempo:
        return int(input_frames)
    # Half-up rounding, not banker's rounding.
    return int(math.floor(input_frames / request.pitch_ratio + 0.5))


def read_step(request: TranspositionRequest) -> float:
    """Source samples advanced per output frame."""
    return request.pitch_ratio if request.preserve_tempo else 1.0


def read_positions(n_out: int, step: float) -> np.ndarray:
    return np.arange(n_out, dtype=np.float64) * step


# -----------------------------
# Interpolation kernels
# x: (frames, channels) source, pos: (n_out,) float positions
# Positions past the end of x leave the output at zero.
# -----------------------------

def _nearest(x: np.ndarray, pos: np.ndarray) -> np.ndarray:
    n = x.shape[0]
    out = np.zeros((pos.shape[0], x.shape[1]), dtype=np.float64)
    idx = np.floor(pos + 0.5).astype(np.int64)
    valid = idx < n
    out[valid] = x[idx[valid]]
    return out


def _linear(x: np.ndarray, pos: np.ndarray) -> np.ndarray:
    n = x.shape[0]
    out = np.zeros((pos.shape[0], x.shape[1]), dtype=np.float64)
    fl = np.floor(pos).astype(np.int64)
    frac = (pos - fl)[:, None]

    inner = fl < n - 1
    i0 = fl[inner]
    t = frac[inner]
    out[inner] = x[i0] * (1.0 - t) + x[i0 + 1] * t

    # Last source sample has no right neighbour: copy it.
    last = fl == n - 1
    out[last] = x[n - 1]
    return out


def _cubic(x: np.ndarray, pos: np.ndarray) -> np.ndarray:
    """4-point Catmull-Rom; passes through every source sample."""
    n = x.shape[0]
    out = np.zeros((pos.shape[0], x.shape[1]), dtype=np.float64)
    fl = np.floor(pos).astype(np.int64)
    frac = (pos - fl)[:, None]

    inner = fl < n - 1
    i1 = fl[inner]
    i0 = np.maximum(i1 - 1, 0)
    i2 = i1 + 1
    i3 = np.minimum(i1 + 2, n - 1)
    p0, p1, p2, p3 = x[i0], x[i1], x[i2], x[i3]
    t = frac[inner]
    t2 = t * t
    t3 = t2 * t
    out[inner] = 0.5 * (
        2.0 * p1
        + (p2 - p0) * t
        + (2.0 * p0 - 5.0 * p1 + 4.0 * p2 - p3) * t2
        + (3.0 * p1 - p0 - 3.0 * p2 + p3) * t3
    )

    last = fl == n - 1
    out[last] = x[n - 1]
    return out


KERNELS: dict[Quality, Callable[[np.ndarray, np.ndarray], np.ndarray]] = {
    Quality.FAST: _nearest,
    Quality.BALANCED: _linear,
    Quality.HIGH: _cubic,
}


def antialias(x: np.ndarray, step: float) -> np.ndarray:
    """Zero-phase low-pass below the Nyquist of the faster read rate."""
    if step <= 1.0 or x.shape[0] < 2:
        return x
    sos = butter(ANTIALIAS_ORDER, ANTIALIAS_MARGIN / step, btype="low", output="sos")
    padlen = min(3 * (2 * sos.shape[0] + 1), x.shape[0] - 1)
    return sosfiltfilt(sos, x, axis=0, padlen=padlen)


# -----------------------------
# Peak guard + normalizer
# -----------------------------

def guard_channel_peaks(reference_peaks: np.ndarray, y: np.ndarray) -> np.ndarray:
    """
    Scale any channel of y whose peak exceeds the matching reference peak back
    down to it. Silent channels (either peak zero) are left alone.
    """
    if y.shape[0] == 0:
        return y
    out_peaks = np.max(np.abs(y), axis=0)
    for ch in range(y.shape[1]):
        ref = float(reference_peaks[ch])
        peak = float(out_peaks[ch])
        if ref > 0.0 and peak > 0.0 and peak > ref:
            ratio = ref / peak
            logger.debug("Peak guard: channel %d scaled by %.4f", ch, ratio)
            y[:, ch] *= ratio
    return y


def normalize(buffer: SampleBuffer, target: float = NORMALIZE_TARGET) -> SampleBuffer:
    """
    Limit the global peak to `target`. Buffers already at or under the
    ceiling are returned unchanged; quieter material is never amplified.
    """
    peak = buffer.peak()
    if peak <= target or peak == 0.0 or not math.isfinite(peak):
        return buffer
    ratio = target / peak
    logger.debug("Normalize: peak %.4f -> %.2f (ratio %.4f)", peak, target, ratio)
    return buffer.derive((buffer.data.astype(np.float64) * ratio).astype(np.float32))


# -----------------------------
# Pitch shifter
# -----------------------------

def transpose(original: Optional[SampleBuffer], request: TranspositionRequest) -> SampleBuffer:
    """
    Resampling pitch shift of `original`, which is never modified.

    With preserve_tempo the output keeps the source length and reads the
    source at pitch_ratio samples per frame; without it the output length
    scales by 1 / pitch_ratio (varispeed).
    """
    if original is None:
        raise NoSourceLoaded()

    started = time.perf_counter()
    n_out = output_frame_count(original.frame_count, request)
    if original.frame_count == 0 or n_out == 0:
        return original.derive(np.zeros((n_out, original.channel_count), dtype=np.float32))

    step = read_step(request)
    pos = read_positions(n_out, step)
    x = original.data.astype(np.float64)
    if request.quality is Quality.HIGH:
        x = antialias(x, step)

    kernel = KERNELS[request.quality]
    y = kernel(x, pos)
    y = guard_channel_peaks(original.channel_peaks(), y)

    result = original.derive(y.astype(np.float32))
    logger.info(
        "Transpose %+d st (ratio=%.4f, preserve_tempo=%s, quality=%s): %d -> %d frames in %.1fms",
        request.semitones,
        request.pitch_ratio,
        request.preserve_tempo,
        request.quality.value,
        original.frame_count,
        result.frame_count,
        (time.perf_counter() - started) * 1000.0,
    )
    return result
