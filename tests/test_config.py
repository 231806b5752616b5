"""
Unit tests for configuration loading and lookups.
"""

import yaml

from config_manager import DEFAULT_CONFIG, get_ledger_setting, get_setting, load_config, save_config


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_returns_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_file_values_override_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"budget": {"warning_threshold": 75}}))
        config = load_config(path)
        assert config["budget"]["warning_threshold"] == 75
        assert config["budget"]["danger_threshold"] == 100.0
        assert config["ledger"]["chart_days"] == 30

    def test_non_mapping_file_uses_defaults(self, tmp_path, caplog):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        assert load_config(path) == DEFAULT_CONFIG
        assert "not a mapping" in caplog.text

    def test_unparseable_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("ledger: [unclosed\n")
        assert load_config(path) == DEFAULT_CONFIG

    def test_loading_does_not_mutate_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"ledger": None}))
        config = load_config(path)
        config["ledger"]["chart_days"] = 7
        assert DEFAULT_CONFIG["ledger"]["chart_days"] == 30


class TestSaveConfig:
    """Tests for save_config."""

    def test_save_preserves_other_sections(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"logging": {"level": "DEBUG"}}))
        assert save_config({"budget": {"warning_threshold": 60}}, path)
        saved = yaml.safe_load(path.read_text())
        assert saved["logging"]["level"] == "DEBUG"
        assert saved["budget"]["warning_threshold"] == 60

    def test_save_failure_returns_false(self, tmp_path):
        assert not save_config({"a": 1}, tmp_path / "missing-dir" / "config.yaml")


class TestGetSetting:
    """Tests for section/key lookups."""

    def test_get_setting(self):
        config = {"budget": {"warning_threshold": 70}}
        assert get_setting("budget", "warning_threshold", config=config) == 70
        assert get_setting("budget", "missing", 5, config=config) == 5
        assert get_setting("nothing", "missing", "x", config=config) == "x"

    def test_non_mapping_section(self):
        assert get_setting("budget", "warning_threshold", 80, config={"budget": "oops"}) == 80

    def test_ledger_setting_falls_back_to_defaults(self):
        assert get_ledger_setting("temp_id_prefix", config={}) == "temp-"
        assert get_ledger_setting("chart_days", config={"ledger": {"chart_days": 14}}) == 14
