"""
Decoders turn uploaded file bytes into a SampleBuffer.

- FFmpegDecoder: any format ffmpeg understands, piped through stdin/stdout
- WavDecoder: RIFF/WAVE PCM via the stdlib wave module, no external tools

make_decoder() picks one according to KEYSHIFT_DECODER ("auto" | "ffmpeg" | "wav").
"""

from __future__ import annotations

import io
import json
import logging
import os
import subprocess
import wave
from typing import List, Optional, Protocol

import numpy as np

from buffers import SampleBuffer
from config import DECODER_MODE, DEFAULT_SAMPLE_RATE, FFMPEG_BIN, FFPROBE_BIN
from errors import DecodeFailure
from utils import have_exe, safe_int

logger = logging.getLogger(__name__)


class Decoder(Protocol):
    name: str

    def decode(self, data: bytes) -> SampleBuffer:
        ...


def _startupinfo():
    # Keep ffmpeg from popping a console window on Windows.
    if os.name != "nt":
        return None
    startupinfo = subprocess.STARTUPINFO()
    startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW
    return startupinfo


# -----------------------------
# FFmpeg decoding
# -----------------------------

def make_ffmpeg_cmd(sample_rate: int, channels: int, ffmpeg: str = FFMPEG_BIN) -> List[str]:
    return [
        ffmpeg, "-hide_banner", "-loglevel", "error",
        "-i", "pipe:0",
        "-vn",
        "-ac", str(channels),
        "-ar", str(sample_rate),
        "-f", "f32le",
        "pipe:1",
    ]


def make_ffprobe_cmd(ffprobe: str = FFPROBE_BIN) -> List[str]:
    return [
        ffprobe,
        "-v", "error",
        "-print_format", "json",
        "-select_streams", "a:0",
        "-show_entries", "stream=channels,sample_rate",
        "pipe:0",
    ]


def parse_probe_output(text: str) -> tuple[int, int]:
    """(channels, sample_rate) of the first audio stream, zeros if unknown."""
    try:
        info = json.loads(text or "{}")
    except json.JSONDecodeError:
        return 0, 0
    streams = info.get("streams") or []
    if not streams:
        return 0, 0
    stream = streams[0]
    return safe_int(stream.get("channels"), 0), safe_int(stream.get("sample_rate"), 0)


class FFmpegDecoder:
    """
    Decodes through ffmpeg to float32 PCM at a fixed sample rate.

    channels=None keeps the source channel count (probed with ffprobe);
    otherwise ffmpeg up/down-mixes to the requested count.
    """
    name = "FFmpeg"

    def __init__(
        self,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        channels: Optional[int] = None,
        ffmpeg: str = FFMPEG_BIN,
        ffprobe: str = FFPROBE_BIN,
        fallback_channels: int = 2,
    ):
        self.sample_rate = int(sample_rate)
        self.channels = channels
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.fallback_channels = int(fallback_channels)

    def probe_channels(self, data: bytes) -> int:
        if not have_exe(self.ffprobe):
            return self.fallback_channels
        try:
            p = subprocess.run(
                make_ffprobe_cmd(self.ffprobe),
                input=data,
                capture_output=True,
                check=False,
                startupinfo=_startupinfo(),
            )
        except OSError as e:
            logger.warning("ffprobe failed to start: %s", e)
            return self.fallback_channels
        channels, _ = parse_probe_output(p.stdout.decode("utf-8", errors="replace"))
        return channels if channels > 0 else self.fallback_channels

    def decode(self, data: bytes) -> SampleBuffer:
        if not data:
            raise DecodeFailure("Empty input")
        channels = self.channels or self.probe_channels(data)
        cmd = make_ffmpeg_cmd(self.sample_rate, channels, self.ffmpeg)
        logger.debug("Decoding %d bytes: %s", len(data), " ".join(cmd))
        try:
            p = subprocess.run(
                cmd,
                input=data,
                capture_output=True,
                check=False,
                startupinfo=_startupinfo(),
            )
        except OSError as e:
            raise DecodeFailure(f"Failed to start ffmpeg: {e}") from e

        if p.returncode != 0:
            reason = p.stderr.decode("utf-8", errors="replace").strip() or f"exit code {p.returncode}"
            raise DecodeFailure(f"ffmpeg could not decode input: {reason}")

        frame_bytes = channels * 4
        usable = (len(p.stdout) // frame_bytes) * frame_bytes
        if usable == 0:
            raise DecodeFailure("ffmpeg produced no audio")
        x = np.frombuffer(p.stdout[:usable], dtype="<f4").reshape((-1, channels))
        return SampleBuffer(x, self.sample_rate)


# -----------------------------
# WAV decoding
# -----------------------------

class WavDecoder:
    """8-bit unsigned and 16/24/32-bit signed PCM WAV, normalized to [-1, 1)."""
    name = "WAV"

    def decode(self, data: bytes) -> SampleBuffer:
        if not data:
            raise DecodeFailure("Empty input")
        try:
            with wave.open(io.BytesIO(data), "rb") as wf:
                n_channels = wf.getnchannels()
                sampwidth = wf.getsampwidth()
                sample_rate = wf.getframerate()
                n_frames = wf.getnframes()
                raw_bytes = wf.readframes(n_frames)
        except (wave.Error, EOFError) as e:
            raise DecodeFailure(f"Not a PCM WAV file: {e}") from e

        if n_channels < 1 or sample_rate <= 0:
            raise DecodeFailure(f"Invalid WAV format: channels={n_channels} sample_rate={sample_rate}")

        frame_bytes = n_channels * sampwidth
        raw_bytes = raw_bytes[: (len(raw_bytes) // frame_bytes) * frame_bytes]
        if not raw_bytes:
            raise DecodeFailure("WAV file contains no audio frames")

        if sampwidth == 1:
            samples = (np.frombuffer(raw_bytes, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
        elif sampwidth == 2:
            samples = np.frombuffer(raw_bytes, dtype="<i2").astype(np.float32) / 32768.0
        elif sampwidth == 3:
            raw = np.frombuffer(raw_bytes, dtype=np.uint8).reshape(-1, 3)
            padded = np.zeros((raw.shape[0], 4), dtype=np.uint8)
            padded[:, 1:4] = raw
            # Little-endian 24-bit placed in the top three bytes keeps the sign.
            samples = (padded.view("<i4").reshape(-1) >> 8).astype(np.float32) / 8388608.0
        elif sampwidth == 4:
            samples = np.frombuffer(raw_bytes, dtype="<i4").astype(np.float32) / 2147483648.0
        else:
            raise DecodeFailure(f"Unsupported sample width: {sampwidth} bytes")

        return SampleBuffer(samples.reshape(-1, n_channels), sample_rate, copy=False)


def make_decoder(sample_rate: int = DEFAULT_SAMPLE_RATE, mode: Optional[str] = None) -> tuple[Decoder, str]:
    mode = (mode or DECODER_MODE).strip().lower()
    if mode not in ("auto", "ffmpeg", "wav"):
        mode = "auto"

    if mode == "wav":
        return WavDecoder(), "WAV (forced)"
    if mode == "ffmpeg":
        return FFmpegDecoder(sample_rate=sample_rate), "FFmpeg (forced)"
    if have_exe(FFMPEG_BIN):
        return FFmpegDecoder(sample_rate=sample_rate), "FFmpeg"
    return WavDecoder(), "WAV (ffmpeg not found in PATH)"
