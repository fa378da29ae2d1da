"""Preferences persistence through QSettings INI files."""

import pytest

from config import (
    SEMITONE_MAX,
    SEMITONE_MIN,
    clamp_semitones,
    load_preferences,
    open_settings,
    save_preferences,
)
from models import Preferences, Quality


@pytest.fixture
def settings(tmp_path):
    return open_settings(str(tmp_path / "keyshift.ini"))


class TestPreferences:
    def test_defaults_when_empty(self, settings):
        assert load_preferences(settings) == Preferences()

    def test_round_trip(self, settings, tmp_path):
        prefs = Preferences(preserve_tempo=False, quality=Quality.HIGH, semitones=-5, volume=0.4)
        save_preferences(settings, prefs)
        reopened = open_settings(str(tmp_path / "keyshift.ini"))
        loaded = load_preferences(reopened)
        assert loaded.preserve_tempo is False
        assert loaded.quality is Quality.HIGH
        assert loaded.semitones == -5
        assert loaded.volume == pytest.approx(0.4)

    def test_bad_values_fall_back(self, settings):
        settings.setValue("transpose/quality", "ultra")
        settings.setValue("transpose/semitones", "abc")
        settings.setValue("audio/volume", 5)
        prefs = load_preferences(settings)
        assert prefs.quality is Quality.BALANCED
        assert prefs.semitones == 0
        assert prefs.volume == 1.0


class TestSemitoneRange:
    def test_clamp(self):
        assert clamp_semitones(20) == SEMITONE_MAX
        assert clamp_semitones(-20) == SEMITONE_MIN
        assert clamp_semitones(3) == 3


class TestQualitySetting:
    @pytest.mark.parametrize("value, expected", [
        ("fast", Quality.FAST),
        (" HIGH ", Quality.HIGH),
        (Quality.BALANCED, Quality.BALANCED),
        (None, Quality.BALANCED),
    ])
    def test_from_setting(self, value, expected):
        assert Quality.from_setting(value) is expected
