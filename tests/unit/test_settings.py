"""Tests for jailrun.settings."""

import pytest
from pydantic import ValidationError

from jailrun.settings import Settings, get_settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.log_level == "INFO"
        assert settings.default_shell == ""
        assert settings.temp_dir is None
        assert settings.container_engine == "docker"
        assert settings.container_probe_timeout_seconds == 3.0
        assert settings.container_name_prefix == "jailrun"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("JAILRUN_CONTAINER_ENGINE", "podman")
        monkeypatch.setenv("JAILRUN_DEFAULT_SHELL", "/bin/bash")
        settings = Settings(_env_file=None)
        assert settings.container_engine == "podman"
        assert settings.default_shell == "/bin/bash"

    def test_unknown_engine_rejected(self, monkeypatch):
        monkeypatch.setenv("JAILRUN_CONTAINER_ENGINE", "rkt")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    @pytest.mark.parametrize("timeout", [0, -1, 61])
    def test_probe_timeout_bounds(self, timeout):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, container_probe_timeout_seconds=timeout)


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_cache_clear_rereads_env(self, monkeypatch):
        assert get_settings().temp_dir is None
        monkeypatch.setenv("JAILRUN_TEMP_DIR", "/var/tmp")
        get_settings.cache_clear()
        assert get_settings().temp_dir == "/var/tmp"
