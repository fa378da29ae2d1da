from __future__ import annotations

import logging
import threading
from typing import Optional

import numpy as np

try:
    import sounddevice as sd
    _sounddevice_import_error = None
except Exception as e:
    sd = None
    _sounddevice_import_error = e

from buffers import SampleBuffer
from config import BLOCKSIZE_FRAMES, OUTPUT_LATENCY
from errors import OutputUnavailable
from utils import clamp

logger = logging.getLogger(__name__)


class AudioOutput:
    """Audio device handle: plays one buffer at a time from a frame offset."""
    name: str = "Output"
    _volume: float = 0.8
    _muted: bool = False

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def muted(self) -> bool:
        return self._muted

    def set_volume(self, v: float) -> None:
        self._volume = clamp(float(v), 0.0, 1.0)

    def set_muted(self, muted: bool) -> None:
        self._muted = bool(muted)

    def start(self, buffer: SampleBuffer, start_frame: int = 0) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        self.stop()

    @property
    def active(self) -> bool:
        return False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class SoundDeviceOutput(AudioOutput):
    """
    PortAudio output through sounddevice.

    The stream callback copies straight from the buffer's read-only array;
    gain is applied per block so volume never alters the buffer itself.
    """
    name = "sounddevice"

    def __init__(
        self,
        device: Optional[int] = None,
        blocksize: int = BLOCKSIZE_FRAMES,
        latency: str | float = OUTPUT_LATENCY,
        volume: float = 0.8,
    ):
        self._device = device
        self._blocksize = int(blocksize)
        self._latency = latency
        self._volume = clamp(float(volume), 0.0, 1.0)
        self._muted = False
        self._stream = None
        self._data: Optional[np.ndarray] = None
        self._cursor = 0
        self._lock = threading.Lock()
        self._closed = False

    @property
    def active(self) -> bool:
        stream = self._stream
        return bool(stream is not None and stream.active)

    def _callback(self, outdata, frames, time_info, status):
        data = self._data
        if data is None:
            outdata.fill(0)
            raise sd.CallbackStop
        start = self._cursor
        chunk = data[start:start + frames]
        n = chunk.shape[0]
        gain = 0.0 if self._muted else self._volume
        outdata[:n] = chunk * gain
        if n < frames:
            outdata[n:].fill(0)
        self._cursor = start + n
        if status and getattr(status, "output_underflow", False):
            logger.debug("Output underflow at frame %d", start)
        if n < frames:
            raise sd.CallbackStop

    def start(self, buffer: SampleBuffer, start_frame: int = 0) -> None:
        if self._closed:
            raise OutputUnavailable("Audio output has been closed")
        if sd is None:
            raise OutputUnavailable(f"sounddevice not available: {_sounddevice_import_error}")
        with self._lock:
            self._close_stream()
            self._data = buffer.data
            self._cursor = max(0, min(int(start_frame), buffer.frame_count))
            try:
                self._stream = sd.OutputStream(
                    samplerate=buffer.sample_rate,
                    channels=buffer.channel_count,
                    dtype="float32",
                    blocksize=self._blocksize,
                    latency=self._latency,
                    device=self._device,
                    callback=self._callback,
                )
                self._stream.start()
            except (sd.PortAudioError, ValueError) as e:
                self._stream = None
                self._data = None
                raise OutputUnavailable(f"Audio output error: {e}") from e

    def _close_stream(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            logger.warning("Error closing output stream: %s", e)

    def stop(self) -> None:
        with self._lock:
            self._close_stream()
            self._data = None
            self._cursor = 0

    def close(self) -> None:
        self.stop()
        self._closed = True
