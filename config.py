from __future__ import annotations

import os
from typing import Optional

from PySide6 import QtCore

from models import Preferences, Quality
from utils import clamp, env_flag, safe_float, safe_int

DEFAULT_SAMPLE_RATE = safe_int(os.environ.get("KEYSHIFT_SAMPLE_RATE", "44100"), 44100) or 44100

# Decoder backend: "auto" | "ffmpeg" | "wav"
DECODER_MODE = os.environ.get("KEYSHIFT_DECODER", "auto").strip().lower()
FFMPEG_BIN = os.environ.get("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.environ.get("FFPROBE_BIN", "ffprobe")

DEBUG = env_flag("KEYSHIFT_DEBUG")

# Export limiter ceiling, 10% under full scale.
NORMALIZE_TARGET = 0.9

# Transport
AUTO_STOP_EPSILON_SEC = 0.1
POLL_INTERVAL_SEC = 0.1

# Output stream
BLOCKSIZE_FRAMES = 1024
OUTPUT_LATENCY = "high"

# Semitone range is a UI policy, the engine accepts any integer.
SEMITONE_MIN = -12
SEMITONE_MAX = 12

SUPPORTED_EXTENSIONS = {
    ".mp3",
    ".wav",
    ".flac",
    ".ogg",
    ".m4a",
    ".aac",
    ".opus",
    ".aiff",
}

SETTINGS_ORG = "KeyShift"
SETTINGS_APP = "KeyShift"


def clamp_semitones(semitones: int) -> int:
    return int(clamp(int(semitones), SEMITONE_MIN, SEMITONE_MAX))


def open_settings(path: Optional[str] = None) -> QtCore.QSettings:
    """User settings store; an explicit path selects an INI file instead of the platform default."""
    if path:
        return QtCore.QSettings(path, QtCore.QSettings.Format.IniFormat)
    return QtCore.QSettings(SETTINGS_ORG, SETTINGS_APP)


def load_preferences(settings: QtCore.QSettings) -> Preferences:
    defaults = Preferences()
    preserve_tempo = settings.value("transpose/preserve_tempo", defaults.preserve_tempo, type=bool)
    quality = Quality.from_setting(settings.value("transpose/quality", defaults.quality.value))
    semitones = safe_int(settings.value("transpose/semitones", defaults.semitones), defaults.semitones)
    volume = safe_float(settings.value("audio/volume", defaults.volume), defaults.volume)
    return Preferences(
        preserve_tempo=bool(preserve_tempo),
        quality=quality,
        semitones=semitones,
        volume=clamp(volume, 0.0, 1.0),
    )


def save_preferences(settings: QtCore.QSettings, prefs: Preferences) -> None:
    settings.setValue("transpose/preserve_tempo", bool(prefs.preserve_tempo))
    settings.setValue("transpose/quality", prefs.quality.value)
    settings.setValue("transpose/semitones", int(prefs.semitones))
    settings.setValue("audio/volume", float(prefs.volume))
    settings.sync()
