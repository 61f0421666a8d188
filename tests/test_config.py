"""Tests for the configuration manager."""

import yaml

from gateway.config import DEFAULTS, PASSWORD_ENV_KEY, ConfigManager


def test_defaults_when_no_file(tmp_path):
    config = ConfigManager(str(tmp_path)).load()
    assert config == DEFAULTS
    assert config is not DEFAULTS


def test_partial_file_is_merged(tmp_path):
    (tmp_path / "config.yaml").write_text("web:\n  port: 4000\n", encoding="utf-8")
    config = ConfigManager(str(tmp_path)).load()
    assert config["web"]["port"] == 4000
    assert config["web"]["host"] == DEFAULTS["web"]["host"]


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    (tmp_path / "config.yaml").write_text("web: [unclosed\n", encoding="utf-8")
    config = ConfigManager(str(tmp_path)).load()
    assert config["web"] == DEFAULTS["web"]
    assert "_config_error" in config


def test_update_saves_known_sections(tmp_path):
    manager = ConfigManager(str(tmp_path))
    manager.update({"web": {"port": 3100}, "_internal": 1})

    saved = yaml.safe_load((tmp_path / "config.yaml").read_text(encoding="utf-8"))
    assert saved["web"]["port"] == 3100
    assert "_internal" not in saved
    assert manager.load()["web"]["port"] == 3100


def test_password_from_env_file(tmp_path, monkeypatch):
    monkeypatch.setenv(PASSWORD_ENV_KEY, "from-environment")
    manager = ConfigManager(str(tmp_path))
    assert manager.get_password() == "from-environment"

    (tmp_path / ".env").write_text(f"{PASSWORD_ENV_KEY}=from-dotenv\n", encoding="utf-8")
    assert manager.get_password() == "from-dotenv"


def test_no_password_configured(tmp_path, monkeypatch):
    monkeypatch.delenv(PASSWORD_ENV_KEY, raising=False)
    assert ConfigManager(str(tmp_path)).get_password() == ""
