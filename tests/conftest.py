"""Shared fixtures: a manual clock, a device-free output, and WAV byte builders."""

import io
import wave

import numpy as np
import pytest

from audio.output import AudioOutput
from buffers import SampleBuffer
from errors import OutputUnavailable


class FakeClock:
    def __init__(self, start=100.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += float(seconds)


class RecordingOutput(AudioOutput):
    """Records start/stop calls instead of talking to an audio device."""
    name = "recording"

    def __init__(self, fail=False):
        self.starts = []
        self.stops = 0
        self.closed = False
        self.fail = fail
        self._playing = False

    def start(self, buffer, start_frame=0):
        if self.fail:
            raise OutputUnavailable("no device")
        self.starts.append((buffer, start_frame))
        self._playing = True

    def stop(self):
        self.stops += 1
        self._playing = False

    def close(self):
        self.stop()
        self.closed = True

    @property
    def active(self):
        return self._playing


def make_wav(samples, sample_rate=44100):
    """16-bit PCM WAV bytes from a (frames, channels) or mono float array."""
    x = np.asarray(samples, dtype=np.float64)
    if x.ndim == 1:
        x = x.reshape(-1, 1)
    pcm = np.round(np.clip(x, -1.0, 1.0) * 32767.0).astype("<i2")
    out = io.BytesIO()
    with wave.open(out, "wb") as wf:
        wf.setnchannels(x.shape[1])
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm.tobytes())
    return out.getvalue()


def sine(freq, seconds, sample_rate=44100, channels=2, amplitude=0.5):
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    mono = amplitude * np.sin(2.0 * np.pi * freq * t)
    return np.repeat(mono[:, None], channels, axis=1)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def output():
    return RecordingOutput()


@pytest.fixture
def ten_seconds():
    return SampleBuffer.silence(441000, channels=1, sample_rate=44100)


@pytest.fixture
def stereo_tone():
    return SampleBuffer(sine(440.0, 0.5), 44100)


@pytest.fixture
def wav_bytes():
    return make_wav(sine(440.0, 1.0, sample_rate=8000), sample_rate=8000)


@pytest.fixture
def wav_factory():
    return make_wav


@pytest.fixture
def failing_output():
    return RecordingOutput(fail=True)
