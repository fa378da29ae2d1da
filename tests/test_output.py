"""SoundDeviceOutput against a stand-in sounddevice module, no audio hardware."""

import types

import numpy as np
import pytest

import audio.output as output_module
from audio.output import SoundDeviceOutput
from buffers import SampleBuffer
from errors import OutputUnavailable


@pytest.fixture
def fake_sd(monkeypatch):
    class CallbackStop(Exception):
        pass

    class PortAudioError(Exception):
        pass

    streams = []

    class FakeStream:
        def __init__(self, **kwargs):
            self.kwargs = kwargs
            self.active = False
            self.closed = False
            streams.append(self)

        def start(self):
            self.active = True

        def stop(self):
            self.active = False

        def close(self):
            self.closed = True

    fake = types.SimpleNamespace(
        CallbackStop=CallbackStop,
        PortAudioError=PortAudioError,
        OutputStream=FakeStream,
        streams=streams,
    )
    monkeypatch.setattr(output_module, "sd", fake)
    return fake


@pytest.fixture
def ramp():
    data = np.arange(8, dtype=np.float32).reshape(4, 2) / 10.0
    return SampleBuffer(data, 8000)


class TestStart:
    def test_opens_stream_for_buffer(self, fake_sd, ramp):
        sink = SoundDeviceOutput(blocksize=256, latency="low")
        sink.start(ramp)
        stream = fake_sd.streams[-1]
        assert stream.kwargs["samplerate"] == 8000
        assert stream.kwargs["channels"] == 2
        assert stream.kwargs["dtype"] == "float32"
        assert stream.kwargs["blocksize"] == 256
        assert stream.kwargs["callback"] == sink._callback
        assert sink.active

    def test_start_frame_is_clamped(self, fake_sd, ramp):
        sink = SoundDeviceOutput()
        sink.start(ramp, 3)
        assert sink._cursor == 3
        sink.start(ramp, 99)
        assert sink._cursor == 4

    def test_restart_closes_previous_stream(self, fake_sd, ramp):
        sink = SoundDeviceOutput()
        sink.start(ramp)
        sink.start(ramp)
        first, second = fake_sd.streams
        assert first.closed and not first.active
        assert second.active

    def test_stop(self, fake_sd, ramp):
        sink = SoundDeviceOutput()
        sink.start(ramp)
        sink.stop()
        assert fake_sd.streams[-1].closed
        assert not sink.active
        assert sink._data is None

    def test_device_error(self, fake_sd, ramp, monkeypatch):
        def broken(**kwargs):
            raise fake_sd.PortAudioError("no default output device")

        monkeypatch.setattr(fake_sd, "OutputStream", broken)
        sink = SoundDeviceOutput()
        with pytest.raises(OutputUnavailable, match="no default output device"):
            sink.start(ramp)
        assert not sink.active

    def test_closed_sink(self, fake_sd, ramp):
        sink = SoundDeviceOutput()
        sink.close()
        with pytest.raises(OutputUnavailable):
            sink.start(ramp)

    def test_without_sounddevice(self, monkeypatch, ramp):
        monkeypatch.setattr(output_module, "sd", None)
        with pytest.raises(OutputUnavailable, match="sounddevice not available"):
            SoundDeviceOutput().start(ramp)


class TestCallback:
    def test_copies_with_gain_and_advances(self, fake_sd, ramp):
        sink = SoundDeviceOutput(volume=0.5)
        sink.start(ramp)
        out = np.empty((2, 2), dtype=np.float32)
        sink._callback(out, 2, None, None)
        np.testing.assert_allclose(out, ramp.data[:2] * 0.5)
        assert sink._cursor == 2

    def test_pads_and_stops_at_end(self, fake_sd, ramp):
        sink = SoundDeviceOutput(volume=1.0)
        sink.start(ramp, 2)
        out = np.full((3, 2), 9.0, dtype=np.float32)
        with pytest.raises(fake_sd.CallbackStop):
            sink._callback(out, 3, None, None)
        np.testing.assert_allclose(out[:2], ramp.data[2:])
        np.testing.assert_array_equal(out[2], [0.0, 0.0])
        assert sink._cursor == 4

    def test_muted(self, fake_sd, ramp):
        sink = SoundDeviceOutput(volume=1.0)
        sink.set_muted(True)
        sink.start(ramp)
        out = np.empty((2, 2), dtype=np.float32)
        sink._callback(out, 2, None, None)
        assert not out.any()

    def test_no_data(self, fake_sd):
        sink = SoundDeviceOutput()
        out = np.full((4, 2), 1.0, dtype=np.float32)
        with pytest.raises(fake_sd.CallbackStop):
            sink._callback(out, 4, None, None)
        assert not out.any()


class TestVolume:
    def test_clamped(self):
        sink = SoundDeviceOutput(volume=3.0)
        assert sink.volume == 1.0
        sink.set_volume(-1.0)
        assert sink.volume == 0.0
