"""Unit tests for the SettingsStore."""

import json

import pytest
from pydantic import ValidationError

from tarjuman.models.schemas import PipelineSettings, SettingsUpdate
from tarjuman.services.settings_store import SettingsStore


@pytest.fixture
def path(tmp_path):
    return tmp_path / "data" / "settings.json"


@pytest.mark.unit
class TestSettingsStore:
    def test_defaults_when_no_file(self, path):
        store = SettingsStore(path)
        assert store.get() == PipelineSettings()
        assert not path.exists()

    def test_update_merges_and_saves(self, path):
        store = SettingsStore(path)
        result = store.update(SettingsUpdate(target_language="tr", volume=0.5))
        assert result.target_language == "tr"
        assert result.volume == 0.5
        assert result.source_language == "ar"
        saved = json.loads(path.read_text(encoding="utf-8"))
        assert saved["target_language"] == "tr"

    def test_settings_survive_reload(self, path):
        SettingsStore(path).update(SettingsUpdate(bidirectional_mode=True, mic_device="USB Mic"))
        reloaded = SettingsStore(path).get()
        assert reloaded.bidirectional_mode is True
        assert reloaded.mic_device == "USB Mic"

    def test_volume_is_clamped(self, path):
        assert SettingsStore(path).update(SettingsUpdate(volume=3.0)).volume == 1.0

    def test_unknown_language_rejected(self, path):
        store = SettingsStore(path)
        with pytest.raises(ValidationError):
            store.update(SettingsUpdate(source_language="xx"))
        assert store.get().source_language == "ar"
        assert not path.exists()

    def test_corrupt_file_falls_back(self, path):
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")
        assert SettingsStore(path).get() == PipelineSettings()

    def test_partial_file_keeps_defaults(self, path):
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"target_language": "he"}), encoding="utf-8")
        settings = SettingsStore(path).get()
        assert settings.target_language == "he"
        assert settings.simulated_mode is True

    def test_reset(self, path):
        defaults = PipelineSettings(simulated_mode=False)
        store = SettingsStore(path, defaults)
        store.update(SettingsUpdate(volume=0.1))
        assert store.reset() == defaults
        assert SettingsStore(path, defaults).get() == defaults

    def test_snapshot_is_unaffected_by_later_updates(self, path):
        store = SettingsStore(path)
        snapshot = store.get()
        store.update(SettingsUpdate(target_language="fa"))
        assert snapshot.target_language == "en"
