"""Tests for the configuration manager."""

import json

import pytest

from netscout.config.config_manager import ConfigManager, ConfigSchema, create_default_config
from netscout.exceptions import ConfigError


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_defaults_are_valid(tmp_path):
    config = ConfigManager(str(tmp_path / "missing.json"))
    assert config.load() is False
    assert config.validate()
    assert config.get("scanner.connect_timeout") == 0.8
    assert config.get("api.host") == "127.0.0.1"


def test_missing_file_strict(tmp_path):
    with pytest.raises(ConfigError):
        ConfigManager(str(tmp_path / "missing.json")).load(strict=True)


def test_partial_file_merged_over_defaults(tmp_path):
    path = _write(tmp_path / "c.json", {"scanner": {"connect_scan": True, "ports": "22,80"}})
    config = ConfigManager(path)

    assert config.load(strict=True) is True
    assert config.get("scanner.connect_scan") is True
    assert config.get("scanner.fingerprint_timeout") == 3.0
    assert config.get("geolocation.requests_per_minute") == 45


@pytest.mark.parametrize("bad", [
    {"scanner": {"connect_timeout": -1}},
    {"api": {"port": 70000}},
    {"general": {"log_level": "LOUD"}},
])
def test_invalid_values_rejected_when_strict(tmp_path, bad):
    path = _write(tmp_path / "c.json", bad)
    with pytest.raises(ConfigError):
        ConfigManager(path).load(strict=True)


def test_invalid_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "c.json"
    path.write_text("{not json", encoding="utf-8")
    config = ConfigManager(str(path))

    assert config.load() is False
    assert config.as_dict() == ConfigSchema.get_defaults()


def test_env_override(monkeypatch):
    monkeypatch.setenv("NETSCOUT_SCANNER_CONNECT_TIMEOUT", "1.5")
    monkeypatch.setenv("NETSCOUT_SCANNER_CONCURRENCY", "1")
    monkeypatch.setenv("NETSCOUT_GEOLOCATION_LIVE_LOOKUPS", "no")
    config = ConfigManager()

    assert config.get("scanner.connect_timeout") == 1.5
    assert config.get("scanner.concurrency") == 1
    assert config.get("geolocation.live_lookups") is False


def test_set_get_and_save(tmp_path):
    path = str(tmp_path / "c.json")
    config = ConfigManager(path)
    config.set("scanner.detect_versions", True)
    config.set("custom.nested.value", 3)

    assert config.modified
    assert config.save()

    reloaded = ConfigManager(path)
    reloaded.load()
    assert reloaded.get("scanner.detect_versions") is True
    assert reloaded.get("custom.nested.value") == 3


def test_none_value_returns_default():
    assert ConfigManager().get("api.token", "fallback") == "fallback"


def test_scanner_options(monkeypatch):
    monkeypatch.delenv("NETSCOUT_SCANNER_CONNECT_TIMEOUT", raising=False)
    options = ConfigManager().scanner_options()
    assert options["target"] == "127.0.0.1"
    assert options["connect_timeout"] == 0.8
    assert options["use_external_scanner"] is False


def test_detection_options_from_file(tmp_path, monkeypatch):
    monkeypatch.delenv("NETSCOUT_DETECTION_PROXIED_TIMEOUT", raising=False)
    path = _write(tmp_path / "c.json", {"detection": {"proxied_timeout": 20.0, "workers": 3}})
    config = ConfigManager(path)
    assert config.load()
    assert config.detection_options() == {"direct_timeout": 5.0, "proxied_timeout": 20.0, "workers": 3}


def test_create_default_config(tmp_path):
    path = tmp_path / "netscout_config.json"
    assert create_default_config(str(path))
    assert json.loads(path.read_text(encoding="utf-8")) == ConfigSchema.get_defaults()
