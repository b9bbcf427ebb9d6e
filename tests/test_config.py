"""Tests for settings loading, env overrides and saving."""

from pathlib import Path

import pytest

from blobmesh.config import Settings, default_config_path, load_settings, save_settings
from blobmesh.constants import REQUEST_TIMEOUT_SECONDS
from blobmesh.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer environment variables out of these tests."""
    for var in (
        "BLOBMESH_CONFIG",
        "BLOBMESH_ENDPOINTS",
        "BLOBMESH_IDENTITY",
        "BLOBMESH_IDENTITY_METHOD",
        "BLOBMESH_SIGNER",
        "BLOBMESH_TIMEOUT",
    ):
        monkeypatch.delenv(var, raising=False)


class TestLoadSettings:
    """Loading from YAML."""

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "absent.yaml")
        assert settings.endpoints == []
        assert settings.identity is None
        assert settings.timeout == REQUEST_TIMEOUT_SECONDS
        assert settings.retry.max_attempts == 3

    def test_reads_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "endpoints:\n"
            "  - https://a.test\n"
            "  - https://b.test\n"
            "identity: alice\n"
            "retry:\n"
            "  max_attempts: 5\n"
            "  jitter: false\n"
        )

        settings = load_settings(path)

        assert settings.endpoints == ["https://a.test", "https://b.test"]
        assert settings.identity == "alice"
        assert settings.retry.max_attempts == 5
        assert settings.retry.jitter is False

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_settings(path) == Settings()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("endpoints: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(path)

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("timeout: -1\n")
        with pytest.raises(ConfigError, match="Invalid settings"):
            load_settings(path)

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("identity: bob\n")
        monkeypatch.setenv("BLOBMESH_CONFIG", str(path))

        assert default_config_path() == path
        assert load_settings().identity == "bob"

    def test_default_path_under_home(self, tmp_path, monkeypatch):
        monkeypatch.setattr(Path, "home", lambda: tmp_path)
        assert default_config_path() == tmp_path / ".blobmesh" / "config.yaml"


class TestEnvOverrides:
    """Environment variables win over the file."""

    def test_endpoints_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("endpoints: [https://file.test]\n")
        monkeypatch.setenv("BLOBMESH_ENDPOINTS", "https://a.test, https://b.test,")

        assert load_settings(path).endpoints == ["https://a.test", "https://b.test"]

    def test_identity_and_signer(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BLOBMESH_IDENTITY", "carol")
        monkeypatch.setenv("BLOBMESH_IDENTITY_METHOD", "extension")
        monkeypatch.setenv("BLOBMESH_SIGNER", "sign-event --stdin")

        settings = load_settings(tmp_path / "absent.yaml")

        assert settings.identity == "carol"
        assert settings.identity_method == "extension"
        assert settings.signer_command == "sign-event --stdin"

    def test_timeout(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BLOBMESH_TIMEOUT", "2.5")
        assert load_settings(tmp_path / "absent.yaml").timeout == 2.5

    def test_bad_timeout(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BLOBMESH_TIMEOUT", "soon")
        with pytest.raises(ConfigError, match="BLOBMESH_TIMEOUT"):
            load_settings(tmp_path / "absent.yaml")

    def test_env_ignored_when_disabled(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BLOBMESH_IDENTITY", "carol")
        assert load_settings(tmp_path / "absent.yaml", apply_env=False).identity is None


class TestSaveSettings:

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"
        settings = Settings(endpoints=["https://a.test"], identity="alice", timeout=7.0)

        written = save_settings(settings, path)

        assert written == path
        assert load_settings(path, apply_env=False) == settings

    def test_unset_values_omitted(self, tmp_path):
        path = save_settings(Settings(), tmp_path / "config.yaml")
        text = path.read_text()
        assert "identity:" not in text
        assert "signer_command" not in text
