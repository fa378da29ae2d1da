from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto

from utils import semitones_to_factor


class Quality(Enum):
    FAST = "fast"
    BALANCED = "balanced"
    HIGH = "high"

    @classmethod
    def from_setting(cls, value: str) -> "Quality":
        if isinstance(value, Quality):
            return value
        text = str(value).strip().lower()
        for quality in cls:
            if quality.value == text:
                return quality
        return cls.BALANCED


@dataclass(frozen=True)
class TranspositionRequest:
    semitones: int
    preserve_tempo: bool = True
    quality: Quality = Quality.BALANCED

    @property
    def pitch_ratio(self) -> float:
        return semitones_to_factor(self.semitones)

    @property
    def is_identity(self) -> bool:
        return self.semitones == 0


@dataclass(frozen=True)
class PlaybackState:
    """
    Transport position snapshot.

    While playing, position is derived from start_epoch; while stopped,
    paused_offset is authoritative and start_epoch is None.
    """
    is_playing: bool = False
    start_epoch: float | None = None
    paused_offset: float = 0.0


class PlayerState(Enum):
    EMPTY = auto()
    LOADING = auto()
    STOPPED = auto()
    PLAYING = auto()
    ERROR = auto()


@dataclass(frozen=True)
class Preferences:
    preserve_tempo: bool = True
    quality: Quality = Quality.BALANCED
    semitones: int = 0
    volume: float = 0.8
