"""Tests for environment-driven configuration."""

import pytest

from settings import BridgeConfig, ScrobbleSettings


class TestScrobbleSettings:
    def test_defaults(self):
        settings = ScrobbleSettings()
        assert settings.percent_threshold == 0.5
        assert settings.min_seconds_threshold == 240.0
        assert not settings.is_backend_enabled("Last.fm")

    def test_toggle_backend(self):
        settings = ScrobbleSettings()
        settings.set_backend_enabled("Libre.fm", True)
        assert settings.is_backend_enabled("Libre.fm")

    @pytest.mark.parametrize("kwargs", [
        {"percent_threshold": 0.0},
        {"percent_threshold": 1.5},
        {"min_seconds_threshold": 0},
    ])
    def test_invalid_thresholds(self, kwargs):
        with pytest.raises(ValueError):
            ScrobbleSettings(**kwargs)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SCROBBLE_PERCENT_THRESHOLD", "0.75")
        monkeypatch.setenv("SCROBBLE_MIN_SECONDS", "120")
        monkeypatch.setenv("SCROBBLE_BACKENDS", "Last.fm, Libre.fm,")
        settings = ScrobbleSettings.from_env()
        assert settings.percent_threshold == 0.75
        assert settings.min_seconds_threshold == 120.0
        assert settings.enabled_backends == {"Last.fm": True, "Libre.fm": True}

    def test_from_env_enables_lastfm_by_default(self, monkeypatch):
        monkeypatch.delenv("SCROBBLE_BACKENDS", raising=False)
        assert ScrobbleSettings.from_env().is_backend_enabled("Last.fm")


class TestBridgeConfig:
    def test_queue_path_follows_data_dir(self, monkeypatch):
        monkeypatch.setenv("SCROBBLE_DATA_DIR", "/tmp/scrobbles")
        monkeypatch.delenv("SCROBBLE_CACHE_PATH", raising=False)
        config = BridgeConfig.from_env()
        assert config.queue_path == "/tmp/scrobbles/scrobble_queue.json"

    def test_lastfm_credentials(self, monkeypatch):
        monkeypatch.setenv("LASTFM_API_KEY", "key")
        monkeypatch.setenv("LASTFM_API_SECRET", "secret")
        monkeypatch.setenv("BLUOS_PORT", "11001")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        config = BridgeConfig.from_env()
        assert config.lastfm.is_configured
        assert config.bluos_port == 11001
        assert config.log_level == "DEBUG"

    def test_librefm_has_placeholder_api_key(self, monkeypatch):
        monkeypatch.delenv("LIBREFM_API_KEY", raising=False)
        monkeypatch.delenv("LIBREFM_API_SECRET", raising=False)
        assert BridgeConfig.from_env().librefm.is_configured
