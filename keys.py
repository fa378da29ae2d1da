"""
Musical key labels after transposition.

Each supported key has a 12-entry chromatic cycle starting at itself; a
semitone offset indexes that cycle modulo 12. Major and minor keys spell the
pitch class between G and A differently ("A♭ Major" but "G♯/A♭ Minor").
"""

from __future__ import annotations

from errors import UnsupportedKey

MAJOR_NAMES = (
    "C", "C♯/D♭", "D", "E♭", "E", "F", "F♯/G♭", "G", "A♭", "A", "B♭", "B",
)
MINOR_NAMES = (
    "C", "C♯/D♭", "D", "E♭", "E", "F", "F♯/G♭", "G", "G♯/A♭", "A", "B♭", "B",
)


def _build_cycles() -> dict[str, tuple[str, ...]]:
    cycles: dict[str, tuple[str, ...]] = {}
    for mode, names in (("Major", MAJOR_NAMES), ("Minor", MINOR_NAMES)):
        for tonic in range(12):
            cycle = tuple(f"{names[(tonic + step) % 12]} {mode}" for step in range(12))
            cycles[cycle[0]] = cycle
    return cycles


KEY_CYCLES: dict[str, tuple[str, ...]] = _build_cycles()

SUPPORTED_KEYS = tuple(KEY_CYCLES)


def chromatic_index(semitones: int) -> int:
    return ((int(semitones) % 12) + 12) % 12


def transpose_key(original_key: str, semitones: int) -> str:
    cycle = KEY_CYCLES.get(original_key)
    if cycle is None:
        raise UnsupportedKey(original_key)
    return cycle[chromatic_index(semitones)]
