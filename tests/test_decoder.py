"""Tests for the WAV and ffmpeg decoders and decoder selection."""

import io
import subprocess
import wave

import numpy as np
import pytest

import decoder
from decoder import FFmpegDecoder, WavDecoder, make_decoder, make_ffmpeg_cmd, parse_probe_output
from errors import DecodeFailure


def raw_wav(frames: bytes, sampwidth: int, channels: int = 1, sample_rate: int = 8000) -> bytes:
    out = io.BytesIO()
    with wave.open(out, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sampwidth)
        wf.setframerate(sample_rate)
        wf.writeframes(frames)
    return out.getvalue()


class TestWavDecoder:
    def test_16bit_stereo(self, wav_factory):
        x = np.array([[0.5, -0.5], [0.25, 0.0], [-1.0, 1.0]])
        buf = WavDecoder().decode(wav_factory(x, sample_rate=22050))
        assert buf.channel_count == 2
        assert buf.frame_count == 3
        assert buf.sample_rate == 22050
        np.testing.assert_allclose(buf.data, x, atol=1.0 / 16384)

    def test_8bit_unsigned(self):
        buf = WavDecoder().decode(raw_wav(bytes([0, 128, 192]), sampwidth=1))
        np.testing.assert_allclose(buf.data[:, 0], [-1.0, 0.0, 0.5])

    def test_24bit_sign_extension(self):
        frames = b"\x00\x00\x40" + b"\x00\x00\xc0"
        buf = WavDecoder().decode(raw_wav(frames, sampwidth=3))
        np.testing.assert_allclose(buf.data[:, 0], [0.5, -0.5])

    def test_32bit(self):
        frames = np.array([1 << 30, -(1 << 30)], dtype="<i4").tobytes()
        buf = WavDecoder().decode(raw_wav(frames, sampwidth=4))
        np.testing.assert_allclose(buf.data[:, 0], [0.5, -0.5])

    def test_garbage(self):
        with pytest.raises(DecodeFailure):
            WavDecoder().decode(b"definitely not a riff file")

    def test_empty(self):
        with pytest.raises(DecodeFailure):
            WavDecoder().decode(b"")

    def test_no_frames(self):
        with pytest.raises(DecodeFailure):
            WavDecoder().decode(raw_wav(b"", sampwidth=2))


class TestFFmpegDecoder:
    def test_command(self):
        cmd = make_ffmpeg_cmd(48000, 2, ffmpeg="ffmpeg")
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-ar") + 1] == "48000"
        assert cmd[cmd.index("-ac") + 1] == "2"
        assert cmd[cmd.index("-f") + 1] == "f32le"
        assert cmd[-1] == "pipe:1"

    def test_decode_parses_float_pcm(self, monkeypatch):
        pcm = np.array([[0.1, -0.1], [0.2, -0.2], [0.3, -0.3]], dtype="<f4")
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append((cmd, kwargs))
            # Trailing partial frame must be dropped.
            return subprocess.CompletedProcess(cmd, 0, stdout=pcm.tobytes() + b"\x00\x00", stderr=b"")

        monkeypatch.setattr(decoder.subprocess, "run", fake_run)
        buf = FFmpegDecoder(sample_rate=44100, channels=2).decode(b"fake mp3 bytes")
        assert buf.sample_rate == 44100
        np.testing.assert_array_equal(buf.data, pcm)
        assert calls[0][1]["input"] == b"fake mp3 bytes"

    def test_probe_fallback_channels(self, monkeypatch):
        monkeypatch.setattr(decoder, "have_exe", lambda name: False)
        assert FFmpegDecoder(fallback_channels=2).probe_channels(b"x") == 2

    def test_nonzero_exit(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 1, stdout=b"", stderr=b"Invalid data found")

        monkeypatch.setattr(decoder.subprocess, "run", fake_run)
        with pytest.raises(DecodeFailure, match="Invalid data found"):
            FFmpegDecoder(channels=1).decode(b"bad")

    def test_missing_binary(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(decoder.subprocess, "run", fake_run)
        with pytest.raises(DecodeFailure):
            FFmpegDecoder(channels=1).decode(b"bad")

    def test_no_audio(self, monkeypatch):
        monkeypatch.setattr(
            decoder.subprocess, "run",
            lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 0, stdout=b"", stderr=b""),
        )
        with pytest.raises(DecodeFailure):
            FFmpegDecoder(channels=2).decode(b"x")


class TestProbe:
    def test_parse(self):
        text = '{"streams": [{"channels": 6, "sample_rate": "48000"}]}'
        assert parse_probe_output(text) == (6, 48000)

    def test_parse_unknown(self):
        assert parse_probe_output("") == (0, 0)
        assert parse_probe_output("not json") == (0, 0)
        assert parse_probe_output('{"streams": []}') == (0, 0)


class TestMakeDecoder:
    def test_forced_wav(self):
        dec, name = make_decoder(mode="wav")
        assert isinstance(dec, WavDecoder)
        assert name == "WAV (forced)"

    def test_forced_ffmpeg(self):
        dec, name = make_decoder(sample_rate=48000, mode="ffmpeg")
        assert isinstance(dec, FFmpegDecoder)
        assert dec.sample_rate == 48000

    def test_auto_without_ffmpeg(self, monkeypatch):
        monkeypatch.setattr(decoder, "have_exe", lambda name: False)
        dec, name = make_decoder(mode="auto")
        assert isinstance(dec, WavDecoder)
        assert "not found" in name

    def test_auto_with_ffmpeg(self, monkeypatch):
        monkeypatch.setattr(decoder, "have_exe", lambda name: True)
        dec, name = make_decoder(mode="auto")
        assert isinstance(dec, FFmpegDecoder)
        assert name == "FFmpeg"
