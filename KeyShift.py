"""
KeyShift: change the key of a track, preview it, export it as WAV.

Pipeline:
- Decode: ffmpeg -> float32 PCM (stdlib WAV reader when ffmpeg is missing)
- Transpose: resampling pitch shift, always rendered from the untouched original
- Output: sounddevice (PortAudio) preview, or a 16-bit PCM WAV export

Requirements:
  pip install PySide6 numpy scipy sounddevice
  ffmpeg + ffprobe installed and on PATH for compressed formats

Env vars:
- KEYSHIFT_DECODER = "ffmpeg" | "wav" | "auto" (default auto)
- KEYSHIFT_SAMPLE_RATE = decode sample rate (default 44100)
- KEYSHIFT_DEBUG = 1 for debug logging
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import Optional

from audio.engine import KeyShiftEngine
from config import (
    DEBUG,
    POLL_INTERVAL_SEC,
    SEMITONE_MAX,
    SEMITONE_MIN,
    clamp_semitones,
    load_preferences,
    open_settings,
    save_preferences,
)
from errors import KeyShiftError, UnsupportedKey
from keys import SUPPORTED_KEYS
from models import PlayerState, Preferences, Quality
from utils import format_time

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keyshift",
        description="Shift the key of an audio file, preview it, and export WAV.",
    )
    parser.add_argument("input", help="Audio file to load (mp3, wav, flac, ...)")
    parser.add_argument(
        "-s", "--semitones", type=int, default=None,
        help=f"Semitone offset, {SEMITONE_MIN}..{SEMITONE_MAX} (default: last used)",
    )
    parser.add_argument(
        "-q", "--quality", choices=[q.value for q in Quality], default=None,
        help="Resampling quality (default: last used)",
    )
    parser.add_argument(
        "--preserve-tempo", action=argparse.BooleanOptionalAction, default=None,
        help="Keep the original duration (--no-preserve-tempo for varispeed)",
    )
    parser.add_argument("-o", "--output", help="Write the transposed audio to this WAV file")
    parser.add_argument("--play", action="store_true", help="Preview through the default output device")
    parser.add_argument("--volume", type=float, default=None, help="Preview volume 0..1")
    parser.add_argument("--key", help="Original key label, e.g. 'A Minor', to report the new key")
    parser.add_argument("--settings", help="Preferences INI file (default: per-user settings)")
    parser.add_argument("--no-save", action="store_true", help="Do not remember these options")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _preview(engine: KeyShiftEngine) -> int:
    engine.play()
    if engine.state == PlayerState.ERROR:
        return 1
    try:
        while engine.is_playing:
            if engine.poll():
                break
            print(
                f"\r  {format_time(engine.elapsed())} / {format_time(engine.duration)}",
                end="",
                flush=True,
            )
            time.sleep(POLL_INTERVAL_SEC)
    except KeyboardInterrupt:
        engine.stop()
    print()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if (args.verbose or DEBUG) else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = open_settings(args.settings)
    saved = load_preferences(settings)
    requested = saved.semitones if args.semitones is None else args.semitones
    semitones = clamp_semitones(requested)
    if semitones != requested:
        logger.warning("Semitone offset %d clamped to %d", requested, semitones)
    prefs = Preferences(
        preserve_tempo=saved.preserve_tempo if args.preserve_tempo is None else args.preserve_tempo,
        quality=Quality.from_setting(args.quality) if args.quality else saved.quality,
        semitones=semitones,
        volume=saved.volume if args.volume is None else args.volume,
    )

    with KeyShiftEngine(preferences=prefs) as engine:
        engine.errorOccurred.connect(lambda msg: print(f"Error: {msg}", file=sys.stderr))

        _, error = engine.load_file(args.input)
        if error is not None:
            return 1

        if args.key:
            try:
                engine.set_original_key(args.key)
            except UnsupportedKey as e:
                print(f"Error: {e}. Supported: {', '.join(SUPPORTED_KEYS)}", file=sys.stderr)
                return 2

        buffer = engine.transpose(prefs.semitones)
        print(f"  input: {args.input}")
        print(f"  decoder: {engine.decoder_name()}")
        print(f"  shift: {prefs.semitones:+d} semitones ({engine.quality.value}, "
              f"{'tempo preserved' if engine.preserve_tempo else 'varispeed'})")
        print(f"  format: {buffer.channel_count}ch, {buffer.sample_rate} Hz")
        print(f"  duration: {format_time(engine.original.duration)} -> {format_time(buffer.duration)}")
        if engine.original_key:
            print(f"  key: {engine.original_key} -> {engine.transposed_key}")

        if args.output:
            try:
                size = engine.export_to_file(args.output)
            except (KeyShiftError, OSError) as e:
                print(f"Error writing {args.output}: {e}", file=sys.stderr)
                return 1
            print(f"  wrote: {args.output} ({size} bytes)")

        status = _preview(engine) if args.play else 0

        if not args.no_save:
            save_preferences(settings, engine.preferences())
    return status


if __name__ == "__main__":
    sys.exit(main())
