"""Tests for configuration loading."""

from pathlib import Path

import pytest

from zenith import config as config_module
from zenith.config import Config, default_db_path, load_config
from zenith.errors import ConfigError
from zenith.layout import PanelId


@pytest.fixture(autouse=True)
def no_user_config(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module, "_DEFAULT_CONFIG_PATH", tmp_path / "missing.toml")


def test_defaults():
    """Test defaults load without a config file."""
    config = load_config()

    assert config.refresh_rate_ms == 2000
    assert config.refresh_rate == 2.0
    assert config.history_enabled
    assert config.panel_heights[PanelId.PROCESS] == 8
    assert config.panel_heights[PanelId.SENSORS] == 0


def test_toml_file_and_overrides(tmp_path):
    """Test the TOML file applies and command-line overrides win."""
    path = tmp_path / "zenith.toml"
    path.write_text('refresh_rate_ms = 3000\ncpu_height = 4\ndb_path = "~/zenith-db"\n')

    config = load_config(path, overrides={"cpu_height": 6, "net_height": None})

    assert config.refresh_rate_ms == 3000
    assert config.cpu_height == 6
    assert config.net_height == 10
    assert config.db_path == Path.home() / "zenith-db"


def test_default_path_is_used_when_present(tmp_path, monkeypatch):
    """Test ~/.config/zenith/config.toml is picked up automatically."""
    path = tmp_path / "config.toml"
    path.write_text("history_enabled = false\n")
    monkeypatch.setattr(config_module, "_DEFAULT_CONFIG_PATH", path)

    assert load_config().history_enabled is False


@pytest.mark.parametrize(
    "overrides, fragment",
    [
        ({"refresh_rate_ms": 500}, "at least 1000 ms"),
        ({"cpu_height": -1}, "greater than or equal to 0"),
        ({"retention_hours": 0}, "must be positive"),
        ({"log_level": "chatty"}, "unknown log level"),
        ({"history_enabled": "yes"}, "true or false"),
        ({"disk_height": 2.5}, "must be an integer"),
    ],
)
def test_invalid_values(overrides, fragment):
    """Test invalid settings raise ConfigError naming the problem."""
    with pytest.raises(ConfigError) as excinfo:
        load_config(overrides=overrides)

    assert fragment in str(excinfo.value)


def test_every_problem_is_reported():
    """Test validation collects all problems rather than stopping at the first."""
    with pytest.raises(ConfigError) as excinfo:
        Config(refresh_rate_ms=10, cpu_height=-2, retention_hours=-1).validate()

    assert len(excinfo.value.problems) == 3


def test_unknown_key_in_file(tmp_path):
    """Test misspelt settings are rejected."""
    path = tmp_path / "zenith.toml"
    path.write_text("refresh_rate = 2000\n")

    with pytest.raises(ConfigError, match="unknown setting 'refresh_rate'"):
        load_config(path)


def test_missing_or_broken_file(tmp_path):
    """Test unreadable config files raise ConfigError."""
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.toml")

    broken = tmp_path / "broken.toml"
    broken.write_text("refresh_rate_ms = = 1\n")
    with pytest.raises(ConfigError, match="invalid TOML"):
        load_config(broken)


def test_default_db_path_honours_xdg(monkeypatch, tmp_path):
    """Test the history directory follows XDG_CACHE_HOME on Linux."""
    monkeypatch.setattr(config_module.sys, "platform", "linux")
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))

    assert default_db_path() == tmp_path / "zenith"
