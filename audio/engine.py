from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

import numpy as np
from PySide6 import QtCore

from audio.output import AudioOutput, SoundDeviceOutput
from audio.transport import PlaybackTransport
from buffers import SampleBuffer, waveform_envelope
from config import SUPPORTED_EXTENSIONS
from decoder import Decoder, make_decoder
from dsp import transpose as shift_pitch
from errors import (
    DecodeFailure,
    EngineBusy,
    KeyShiftError,
    NoSourceLoaded,
    OutputUnavailable,
    RenderFailure,
)
from keys import transpose_key
from models import PlayerState, Preferences, Quality, TranspositionRequest
from wav import encode

logger = logging.getLogger(__name__)


# -----------------------------
# Background tasks
# -----------------------------

class EngineTask(threading.Thread):
    """
    Runs one decode or export off the caller's thread.

    result() joins and returns the value, or re-raises the task's exception.
    """
    def __init__(self, kind: str, fn: Callable[[], Any]):
        super().__init__(daemon=True, name=f"keyshift-{kind}")
        self.kind = kind
        self._fn = fn
        self._result: Any = None
        self._error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            self._result = self._fn()
        except Exception as e:
            self._error = e

    @property
    def done(self) -> bool:
        return self.ident is not None and not self.is_alive()

    def result(self, timeout: Optional[float] = None) -> Any:
        self.join(timeout)
        if self.is_alive():
            raise TimeoutError(f"{self.kind} task still running")
        if self._error is not None:
            raise self._error
        return self._result


# -----------------------------
# Engine facade
# -----------------------------

class KeyShiftEngine(QtCore.QObject):
    """
    Session facade: load a track, transpose it, preview it, export it.

    The decoded original is kept for the lifetime of the session and every
    transposition is rendered from it, never from a previous result.
    """
    stateChanged = QtCore.Signal(object)    # PlayerState
    errorOccurred = QtCore.Signal(str)
    bufferChanged = QtCore.Signal(object)   # SampleBuffer or None
    durationChanged = QtCore.Signal(float)
    keyChanged = QtCore.Signal(str)
    playbackFinished = QtCore.Signal()
    exportFinished = QtCore.Signal(int)     # byte count

    def __init__(
        self,
        decoder: Optional[Decoder] = None,
        output: Optional[AudioOutput] = None,
        clock: Callable[[], float] = time.monotonic,
        preferences: Optional[Preferences] = None,
        parent=None,
    ):
        super().__init__(parent)
        prefs = preferences or Preferences()
        if decoder is None:
            decoder, self._decoder_name = make_decoder()
        else:
            self._decoder_name = getattr(decoder, "name", type(decoder).__name__)
        self._decoder = decoder
        self._output = output if output is not None else SoundDeviceOutput()
        self._output.set_volume(prefs.volume)
        self._transport = PlaybackTransport(self._output, clock=clock)

        self._original: Optional[SampleBuffer] = None
        self._current: Optional[SampleBuffer] = None
        self._semitones = 0
        self._preserve_tempo = bool(prefs.preserve_tempo)
        self._quality = Quality.from_setting(prefs.quality)
        self._original_key: Optional[str] = None

        self._session_lock = threading.RLock()
        self._decode_lock = threading.Lock()
        self._export_lock = threading.Lock()
        self._closed = False
        self.state = PlayerState.EMPTY

        logger.info("Engine ready: decoder=%s output=%s", self._decoder_name, self._output.name)

    # -- properties --------------------------------------------------

    def decoder_name(self) -> str:
        return self._decoder_name

    @property
    def transport(self) -> PlaybackTransport:
        return self._transport

    @property
    def original(self) -> Optional[SampleBuffer]:
        return self._original

    @property
    def buffer(self) -> Optional[SampleBuffer]:
        """The playable/exportable buffer for the current semitone offset."""
        return self._current

    @property
    def semitones(self) -> int:
        return self._semitones

    @property
    def preserve_tempo(self) -> bool:
        return self._preserve_tempo

    @property
    def quality(self) -> Quality:
        return self._quality

    @property
    def duration(self) -> float:
        buffer = self._current
        return buffer.duration if buffer is not None else 0.0

    @property
    def is_playing(self) -> bool:
        return self._transport.is_playing

    @property
    def original_key(self) -> Optional[str]:
        return self._original_key

    @property
    def transposed_key(self) -> Optional[str]:
        if self._original_key is None:
            return None
        return transpose_key(self._original_key, self._semitones)

    def preferences(self) -> Preferences:
        return Preferences(
            preserve_tempo=self._preserve_tempo,
            quality=self._quality,
            semitones=self._semitones,
            volume=self._output.volume,
        )

    # -- loading -----------------------------------------------------

    def _busy(self, operation: str) -> EngineBusy:
        error = EngineBusy(operation)
        logger.warning("%s", error)
        return error

    def _decode_and_install(self, data: bytes) -> tuple[Optional[SampleBuffer], Optional[KeyShiftError]]:
        previous_state = self.state
        self._set_state(PlayerState.LOADING)
        started = time.perf_counter()
        try:
            buffer = self._decoder.decode(data)
        except DecodeFailure as e:
            logger.warning("Decode failed: %s", e)
            self._set_state(previous_state if self._original is not None else PlayerState.EMPTY)
            self.errorOccurred.emit(str(e))
            return None, e

        with self._session_lock:
            self._transport.reset()
            self._original = buffer
            self._current = buffer
            self._semitones = 0
        logger.info(
            "Loaded %d bytes via %s: %d ch, %d frames @ %d Hz (%.2fs) in %.1fms",
            len(data),
            self._decoder_name,
            buffer.channel_count,
            buffer.frame_count,
            buffer.sample_rate,
            buffer.duration,
            (time.perf_counter() - started) * 1000.0,
        )
        self._set_state(PlayerState.STOPPED)
        self.bufferChanged.emit(buffer)
        self.durationChanged.emit(buffer.duration)
        self._emit_key()
        return buffer, None

    def load_audio(self, data: bytes) -> tuple[Optional[SampleBuffer], Optional[KeyShiftError]]:
        """Decode `data` into a new session source. Returns (buffer, None) or (None, error)."""
        if not self._decode_lock.acquire(blocking=False):
            return None, self._busy("decode")
        try:
            return self._decode_and_install(data)
        finally:
            self._decode_lock.release()

    def load_audio_async(self, data: bytes) -> EngineTask:
        if not self._decode_lock.acquire(blocking=False):
            raise self._busy("decode")

        def run() -> SampleBuffer:
            try:
                buffer, error = self._decode_and_install(data)
            finally:
                self._decode_lock.release()
            if error is not None:
                raise error
            return buffer

        task = EngineTask("decode", run)
        task.start()
        return task

    def load_file(self, path: str | os.PathLike) -> tuple[Optional[SampleBuffer], Optional[KeyShiftError]]:
        path = Path(path)
        error: Optional[KeyShiftError] = None
        if not path.is_file():
            error = DecodeFailure(f"File not found: {path}")
        elif path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            supported = ", ".join(sorted(SUPPORTED_EXTENSIONS))
            error = DecodeFailure(f"Unsupported file type '{path.suffix}'. Supported: {supported}")
        if error is not None:
            logger.warning("%s", error)
            self.errorOccurred.emit(str(error))
            return None, error
        return self.load_audio(path.read_bytes())

    # -- transposition -----------------------------------------------

    def _report_no_source(self, operation: str) -> None:
        error = NoSourceLoaded()
        logger.warning("%s ignored: %s", operation, error)
        self.errorOccurred.emit(str(error))

    def _emit_key(self) -> None:
        key = self.transposed_key
        if key is not None:
            self.keyChanged.emit(key)

    def set_preserve_tempo(self, preserve_tempo: bool) -> None:
        preserve_tempo = bool(preserve_tempo)
        if preserve_tempo == self._preserve_tempo:
            return
        self._preserve_tempo = preserve_tempo
        self._rerender()

    def set_quality(self, quality: Quality | str) -> None:
        quality = Quality.from_setting(quality)
        if quality == self._quality:
            return
        self._quality = quality
        self._rerender()

    def _rerender(self) -> None:
        if self._original is not None and self._semitones != 0:
            self.transpose(self._semitones)

    def transpose(
        self,
        semitones: int,
        preserve_tempo: Optional[bool] = None,
        quality: Quality | str | None = None,
    ) -> Optional[SampleBuffer]:
        """
        Render the original at `semitones` and make it the current buffer.
        If playback is running it continues from the same position.
        """
        with self._session_lock:
            if self._original is None:
                self._report_no_source("transpose")
                return None
            if preserve_tempo is not None:
                self._preserve_tempo = bool(preserve_tempo)
            if quality is not None:
                self._quality = Quality.from_setting(quality)
            request = TranspositionRequest(int(semitones), self._preserve_tempo, self._quality)
            result = shift_pitch(self._original, request)
            self._current = result
            self._semitones = request.semitones
            try:
                self._transport.replace_buffer(result)
            except OutputUnavailable as e:
                self._set_error(str(e))

        self.bufferChanged.emit(result)
        self.durationChanged.emit(result.duration)
        self._emit_key()
        return result

    def set_original_key(self, key: Optional[str]) -> None:
        """Label of the source's key, from an external detector; None clears it."""
        if key is not None:
            transpose_key(key, 0)
        self._original_key = key
        self._emit_key()

    # -- playback ----------------------------------------------------

    def play(self, semitones: Optional[int] = None) -> None:
        if self._current is None:
            self._report_no_source("play")
            return
        if semitones is not None and int(semitones) != self._semitones:
            self.transpose(semitones)
        try:
            self._transport.play(self._current)
        except OutputUnavailable as e:
            self._set_error(str(e))
            return
        self._set_state(PlayerState.PLAYING)

    def stop(self) -> None:
        self._transport.stop()
        if self.state == PlayerState.PLAYING:
            self._set_state(PlayerState.STOPPED)

    def seek(self, seconds: float) -> float:
        if self._current is None:
            self._report_no_source("seek")
            return 0.0
        try:
            return self._transport.seek(seconds)
        except OutputUnavailable as e:
            self._set_error(str(e))
            return self._transport.elapsed()

    def restart(self) -> None:
        """Jump back to the start and play."""
        if self._current is None:
            self._report_no_source("restart")
            return
        self._transport.stop()
        self._transport.seek(0.0)
        self.play()

    def elapsed(self) -> float:
        return self._transport.elapsed()

    def poll(self) -> bool:
        """Drive auto-stop from a UI timer or loop; True once playback reaches the end."""
        finished = self._transport.poll()
        if finished:
            self._set_state(PlayerState.STOPPED)
            self.playbackFinished.emit()
        return finished

    def set_volume(self, v: float) -> None:
        self._output.set_volume(v)

    def set_muted(self, muted: bool) -> None:
        self._output.set_muted(muted)

    def waveform(self, width: int, channel: int = 0) -> tuple[np.ndarray, np.ndarray]:
        return waveform_envelope(self._current, width, channel)

    # -- export ------------------------------------------------------

    def _render_export(self) -> bytes:
        buffer = self._current
        if buffer is None:
            raise NoSourceLoaded()
        started = time.perf_counter()
        try:
            data = encode(buffer)
        except Exception as e:
            raise RenderFailure(f"Export render failed: {e}") from e
        logger.info(
            "Exported %d bytes (%d ch, %d frames @ %d Hz, %+d st) in %.1fms",
            len(data),
            buffer.channel_count,
            buffer.frame_count,
            buffer.sample_rate,
            self._semitones,
            (time.perf_counter() - started) * 1000.0,
        )
        self.exportFinished.emit(len(data))
        return data

    def export_container(self) -> bytes:
        """WAV bytes of the current buffer, normalized for 16-bit output."""
        if not self._export_lock.acquire(blocking=False):
            raise self._busy("export")
        try:
            return self._render_export()
        finally:
            self._export_lock.release()

    def export_async(self) -> EngineTask:
        if not self._export_lock.acquire(blocking=False):
            raise self._busy("export")

        def run() -> bytes:
            try:
                return self._render_export()
            finally:
                self._export_lock.release()

        task = EngineTask("export", run)
        task.start()
        return task

    def export_to_file(self, path: str | os.PathLike) -> int:
        data = self.export_container()
        Path(path).write_bytes(data)
        return len(data)

    # -- session lifecycle -------------------------------------------

    def reset(self) -> None:
        """Drop the loaded track and return to an empty session."""
        with self._session_lock:
            self._transport.reset()
            self._original = None
            self._current = None
            self._semitones = 0
            self._original_key = None
        self._set_state(PlayerState.EMPTY)
        self.bufferChanged.emit(None)
        self.durationChanged.emit(0.0)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._transport.reset()
        self._output.close()
        logger.debug("Engine closed")

    def __enter__(self) -> "KeyShiftEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _set_state(self, st: PlayerState) -> None:
        if self.state != st:
            self.state = st
            self.stateChanged.emit(st)

    def _set_error(self, msg: str) -> None:
        logger.warning("Engine error: %s", msg)
        self._set_state(PlayerState.ERROR)
        self.errorOccurred.emit(msg)
