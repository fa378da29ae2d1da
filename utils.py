from __future__ import annotations

import math
import os
import shutil


def have_exe(name: str) -> bool:
    return shutil.which(name) is not None


def clamp(x: float, lo: float, hi: float) -> float:
    return lo if x < lo else hi if x > hi else x


def semitones_to_factor(semitones: float) -> float:
    return float(2.0 ** (semitones / 12.0))


def format_time(seconds: float) -> str:
    if not math.isfinite(seconds) or seconds < 0:
        seconds = 0.0
    total = int(seconds)
    m, s = divmod(total, 60)
    h, m = divmod(m, 60)
    if h > 0:
        return f"{h:d}:{m:02d}:{s:02d}"
    return f"{m:d}:{s:02d}"


def safe_float(x: str, default: float = 0.0) -> float:
    try:
        return float(x)
    except (TypeError, ValueError):
        return default


def safe_int(x: str, default: int = 0) -> int:
    try:
        return int(x)
    except (TypeError, ValueError):
        return default


def env_flag(name: str) -> bool:
    value = os.environ.get(name, "").strip().lower()
    return value in ("1", "true", "yes", "on")
