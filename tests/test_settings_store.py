"""Tests for settings_store: reactive settings with persistence and ledger sync."""

import json

import pytest

import streamcall.app.settings_store
import streamcall.io.settings
from snarfx import autorun
from streamcall.core.ledger import ExecutionLedger


@pytest.fixture
def tmp_settings(tmp_path, monkeypatch):
    """Redirect settings file to a temp directory."""
    settings_file = tmp_path / "settings.json"
    monkeypatch.setenv("STREAMCALL_SETTINGS_FILE", str(settings_file))
    return settings_file


class TestCreate:
    def test_creates_store_with_schema_defaults(self, tmp_settings):
        store = streamcall.app.settings_store.create()
        assert store.get("auto_execute") is True
        assert store.get("legacy_ledger_lookup") is True
        assert store.get("fallback_scan_interval") == 3.0
        assert store.get("stagger_delay") == 0.1

    def test_seeds_from_disk_filtered_to_known_keys(self, tmp_settings):
        tmp_settings.write_text(json.dumps({"auto_execute": False, "bogus": 1}))
        store = streamcall.app.settings_store.create()
        assert store.get("auto_execute") is False
        assert store.get("bogus") is None
        assert "bogus" not in streamcall.app.settings_store.snapshot(store)

    def test_initial_overrides_disk(self, tmp_settings):
        tmp_settings.write_text(json.dumps({"auto_execute": True}))
        store = streamcall.app.settings_store.create({"auto_execute": False})
        assert store.get("auto_execute") is False

    def test_corrupt_file_reads_as_defaults(self, tmp_settings):
        tmp_settings.write_text("{broken")
        assert streamcall.app.settings_store.create().get("auto_execute") is True

    def test_unknown_key_is_ignored(self, tmp_settings):
        store = streamcall.app.settings_store.create(load_from_disk=False)
        store.set("nope", 1)
        assert store.get("nope") is None


class TestObservability:
    def test_autorun_sees_changes(self, tmp_settings):
        store = streamcall.app.settings_store.create(load_from_disk=False)
        seen = []
        r = autorun(lambda: seen.append(store.get("auto_execute")))
        store.set("auto_execute", False)
        store.set("auto_execute", False)
        r.dispose()
        store.set("auto_execute", True)
        assert seen == [True, False]


class TestSetupReactions:
    def test_persistence_reaction(self, tmp_settings):
        store = streamcall.app.settings_store.create()
        disposers = streamcall.app.settings_store.setup_reactions(store)
        store._reaction_disposers = disposers

        store.set("auto_execute", False)

        assert json.loads(tmp_settings.read_text())["auto_execute"] is False

    def test_persistence_is_not_immediate(self, tmp_settings):
        store = streamcall.app.settings_store.create()
        store._reaction_disposers = streamcall.app.settings_store.setup_reactions(store)
        assert not tmp_settings.exists()

    def test_persistence_preserves_unknown_disk_keys(self, tmp_settings):
        tmp_settings.write_text(json.dumps({"other_tool": "keep"}))
        store = streamcall.app.settings_store.create()
        store._reaction_disposers = streamcall.app.settings_store.setup_reactions(store)
        store.set("stagger_delay", 0.3)
        data = json.loads(tmp_settings.read_text())
        assert data["other_tool"] == "keep"
        assert data["stagger_delay"] == 0.3

    def test_ledger_legacy_flag_follows_setting(self, tmp_settings):
        store = streamcall.app.settings_store.create({"legacy_ledger_lookup": False})
        ledger = ExecutionLedger()
        disposers = streamcall.app.settings_store.setup_reactions(store, {"ledger": ledger})
        store._reaction_disposers = disposers

        # fire_immediately syncs initial value
        assert ledger.legacy_lookup is False

        store.set("legacy_ledger_lookup", True)
        assert ledger.legacy_lookup is True

    def test_dispose_detaches(self, tmp_settings):
        store = streamcall.app.settings_store.create()
        store._reaction_disposers = streamcall.app.settings_store.setup_reactions(store)
        store.dispose()
        store.set("auto_execute", False)
        assert not tmp_settings.exists()

    def test_persist_failure_is_logged(self, tmp_settings, monkeypatch, caplog):
        def explode(_data):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(streamcall.io.settings, "save_settings", explode)
        store = streamcall.app.settings_store.create()
        store._reaction_disposers = streamcall.app.settings_store.setup_reactions(store)
        with caplog.at_level("ERROR", logger="streamcall.app.settings_store"):
            store.set("auto_execute", False)
        assert "Failed to persist settings" in caplog.text
        assert store.get("auto_execute") is False


def test_settings_file_round_trip(tmp_settings):
    streamcall.io.settings.save_settings({"auto_execute": False})
    assert streamcall.io.settings.load_settings() == {"auto_execute": False}
