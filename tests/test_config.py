"""Tests for settings and logging setup."""

import json
import logging

import pytest

from ztracker.config import Settings, get_settings
from ztracker.schemas import WorldInfoPolicyMode
from ztracker.utils.logging_config import JSONFormatter, get_logger


@pytest.fixture
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:

    def test_defaults(self):
        settings = Settings()
        assert settings.include_last_x_tracker_messages == 1
        assert settings.world_info_policy_mode is WorldInfoPolicyMode.include_all
        assert set(settings.embed_snapshot_transform_presets) == {"default", "minimal"}
        assert settings.active_embed_preset.input == "pretty_json"

    def test_environment_override(self, monkeypatch, fresh_settings):
        monkeypatch.setenv("ZTRACKER_WORLD_INFO_POLICY_MODE", "allowlist")
        monkeypatch.setenv("ZTRACKER_WORLD_INFO_ALLOWLIST_BOOK_NAMES", '["Lore", "Places"]')
        monkeypatch.setenv("ZTRACKER_INCLUDE_LAST_X_TRACKER_MESSAGES", "3")

        settings = get_settings()

        assert settings.world_info_policy_mode is WorldInfoPolicyMode.allowlist
        assert settings.world_info_allowlist_book_names == ["Lore", "Places"]
        assert settings.include_last_x_tracker_messages == 3

    def test_active_preset_by_key(self):
        settings = Settings(embed_snapshot_transform_preset="minimal")
        assert settings.active_embed_preset.input == "top_level_lines"


class TestLogging:

    def test_loggers_live_under_package_namespace(self):
        assert get_logger("utils.thing").name == "ztracker.utils.thing"
        assert get_logger("ztracker.utils.thing").name == "ztracker.utils.thing"

    def test_json_formatter_includes_extras(self):
        record = logging.LogRecord("ztracker.test", logging.INFO, __file__, 1, "merged %s", ("topics",), None)
        record.part = "topics"
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "merged topics"
        assert entry["level"] == "INFO"
        assert entry["part"] == "topics"
        assert "message_id" not in entry

    def test_message_id_passed_as_extra(self, caplog):
        caplog.set_level(logging.INFO, logger="ztracker")
        get_logger("test.extra").info("sequential run started", extra={"message_id": 42})
        record = next(r for r in caplog.records if r.getMessage() == "sequential run started")
        assert json.loads(JSONFormatter().format(record))["message_id"] == 42

    def test_settings_carry_only_engine_options(self):
        assert set(Settings.model_fields) == {
            "debug_logging",
            "log_file",
            "log_level",
            "include_last_x_tracker_messages",
            "embed_snapshot_header",
            "embed_snapshot_transform_preset",
            "embed_snapshot_transform_presets",
            "world_info_policy_mode",
            "world_info_allowlist_book_names",
            "world_info_allowlist_entry_ids",
        }
