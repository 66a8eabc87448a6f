"""Tests for settings and release configuration."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from shipyard.config import (
    ReleaseConfig,
    Settings,
    StageToggles,
    VersionPolicy,
    load_release_config,
)
from shipyard.errors import ConfigurationError
from shipyard.platforms import PlatformTarget


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SHIPYARD_ENVIRONMENT", raising=False)
        settings = Settings(_env_file=None)
        assert settings.github_api_url == "https://api.github.com"
        assert settings.update_check_interval == 3600
        assert settings.is_development is False

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("SHIPYARD_ENVIRONMENT", "Development")
        monkeypatch.setenv("SHIPYARD_HTTP_TIMEOUT", "5")
        settings = Settings(_env_file=None)
        assert settings.is_development is True
        assert settings.http_timeout == 5.0

    def test_notarization_timeout_bounds(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, notarization_timeout=10)


class TestReleaseConfig:
    def test_platforms_parse_aliases(self):
        config = ReleaseConfig(product_name="Game", platforms=["mac", "Windows"])
        assert config.platforms == frozenset({PlatformTarget.MACOS, PlatformTarget.WINDOWS})

    def test_ordered_platforms_is_fixed(self):
        config = ReleaseConfig(product_name="Game", platforms=["linux", "macos", "windows"])
        assert config.ordered_platforms() == [
            PlatformTarget.WINDOWS,
            PlatformTarget.MACOS,
            PlatformTarget.LINUX,
        ]

    def test_frozen(self):
        config = ReleaseConfig(product_name="Game")
        with pytest.raises(ValidationError):
            config.product_name = "Other"
        with pytest.raises(ValidationError):
            config.stages.publish = True

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            ReleaseConfig(product_name="Game", surprise=True)

    def test_empty_product_name_rejected(self):
        with pytest.raises(ValidationError):
            ReleaseConfig(product_name="")

    def test_paths(self, tmp_path: Path):
        config = ReleaseConfig(product_name="Game", project_dir=tmp_path)
        assert config.build_path(PlatformTarget.WINDOWS) == tmp_path / "Builds" / "Game-Windows"
        assert config.release_path("1.0.0") == tmp_path / "Releases" / "v1.0.0"
        assert config.resolve("certs/dev.p12") == tmp_path / "certs" / "dev.p12"
        assert config.resolve("/abs/dev.p12") == Path("/abs/dev.p12")

    def test_secrets_are_masked(self):
        config = ReleaseConfig(
            product_name="Game", publish={"repository_url": "x", "token": "ghp_secret"}
        )
        assert "ghp_secret" not in repr(config)
        assert config.publish.token.get_secret_value() == "ghp_secret"


class TestLoadReleaseConfig:
    def test_relative_project_dir(self, tmp_path: Path):
        path = tmp_path / "shipyard.json"
        path.write_text(
            json.dumps(
                {
                    "product_name": "Game",
                    "project_dir": "game",
                    "platforms": ["Windows"],
                    "version_policy": "explicit",
                    "manual_version": "2.0.0",
                    "stages": {"installer": True},
                }
            ),
            encoding="utf-8",
        )
        config = load_release_config(path)
        assert config.project_dir == tmp_path / "game"
        assert config.version_policy is VersionPolicy.EXPLICIT
        assert config.stages == StageToggles(installer=True)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_release_config(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path: Path):
        path = tmp_path / "shipyard.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_release_config(path)

    def test_invalid_platform(self, tmp_path: Path):
        path = tmp_path / "shipyard.json"
        path.write_text(json.dumps({"product_name": "Game", "platforms": ["Amiga"]}))
        with pytest.raises(ConfigurationError, match="Invalid release config"):
            load_release_config(path)
