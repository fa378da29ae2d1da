from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from audio.output import AudioOutput
from buffers import SampleBuffer
from config import AUTO_STOP_EPSILON_SEC
from errors import NoSourceLoaded
from models import PlaybackState
from utils import clamp

logger = logging.getLogger(__name__)


class PlaybackTransport:
    """
    Playback position bookkeeping for one output device.

    Position is anchored: while playing it is clock() - start_epoch, so it
    never accumulates timer drift; while stopped it is the committed
    paused_offset. elapsed() only reads the current state snapshot and can be
    polled from any thread at any rate. poll() performs the auto-stop at the
    end of the buffer.
    """

    def __init__(
        self,
        output: AudioOutput,
        clock: Callable[[], float] = time.monotonic,
        end_epsilon: float = AUTO_STOP_EPSILON_SEC,
    ):
        self._output = output
        self._clock = clock
        self._end_epsilon = float(end_epsilon)
        self._buffer: Optional[SampleBuffer] = None
        self._state = PlaybackState()
        self._lock = threading.Lock()

    @property
    def output(self) -> AudioOutput:
        return self._output

    @property
    def buffer(self) -> Optional[SampleBuffer]:
        return self._buffer

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state.is_playing

    @property
    def duration(self) -> float:
        buffer = self._buffer
        return buffer.duration if buffer is not None else 0.0

    def elapsed(self) -> float:
        state = self._state
        if not state.is_playing:
            return state.paused_offset
        return clamp(self._clock() - state.start_epoch, 0.0, self.duration)

    def _start_locked(self, offset: float, now: float) -> None:
        buffer = self._buffer
        self._output.start(buffer, buffer.frame_at(offset))
        self._state = PlaybackState(is_playing=True, start_epoch=now - offset)
        logger.debug("Transport play from %.3fs", offset)

    def _stop_locked(self, now: float) -> None:
        self._output.stop()
        position = clamp(now - self._state.start_epoch, 0.0, self.duration)
        self._state = PlaybackState(paused_offset=position)
        logger.debug("Transport stop at %.3fs", position)

    def _finish_if_ended_locked(self, now: float) -> bool:
        state = self._state
        if not state.is_playing:
            return False
        position = now - state.start_epoch
        if position < self.duration - self._end_epsilon:
            return False
        # Inside the end margin the device drains the last blocks on its own.
        if position >= self.duration:
            self._output.stop()
        self._state = PlaybackState(paused_offset=0.0)
        logger.debug("Transport reached end (%.3fs), rewound to 0", self.duration)
        return True

    def play(self, buffer: Optional[SampleBuffer] = None) -> None:
        """
        Start playback at the paused offset. Any current playback is stopped
        first so two sources never overlap.
        """
        with self._lock:
            if buffer is not None and buffer is not self._buffer:
                if self._state.is_playing:
                    self._stop_locked(self._clock())
                self._buffer = buffer
                self._state = PlaybackState(paused_offset=clamp(self._state.paused_offset, 0.0, self.duration))
            if self._buffer is None:
                raise NoSourceLoaded()
            now = self._clock()
            self._finish_if_ended_locked(now)
            if self._state.is_playing:
                self._stop_locked(now)
            offset = self._state.paused_offset
            if offset >= self.duration - self._end_epsilon:
                # Parked at the end: replay from the top.
                offset = 0.0
            self._start_locked(offset, now)

    def stop(self) -> None:
        with self._lock:
            if not self._state.is_playing:
                return
            self._stop_locked(self._clock())

    def seek(self, target_sec: float) -> float:
        with self._lock:
            target = clamp(float(target_sec), 0.0, self.duration)
            was_playing = self._state.is_playing
            if was_playing:
                self._output.stop()
            self._state = PlaybackState(paused_offset=target)
            if was_playing:
                self._start_locked(target, self._clock())
            logger.debug("Transport seek to %.3fs (playing=%s)", target, was_playing)
            return target

    def poll(self) -> bool:
        """Auto-stop check; True when playback just ran off the end."""
        with self._lock:
            return self._finish_if_ended_locked(self._clock())

    def replace_buffer(self, buffer: Optional[SampleBuffer]) -> None:
        """
        Swap in a new buffer, keeping the current position (clamped to the
        new duration) and resuming if playback was active.
        """
        with self._lock:
            now = self._clock()
            was_playing = self._state.is_playing
            if was_playing:
                self._stop_locked(now)
            position = self._state.paused_offset
            self._buffer = buffer
            self._state = PlaybackState(paused_offset=clamp(position, 0.0, self.duration))
            if was_playing and buffer is not None:
                self._start_locked(self._state.paused_offset, now)

    def reset(self) -> None:
        with self._lock:
            self._output.stop()
            self._buffer = None
            self._state = PlaybackState()
