"""Tests for pre-flight release config validation."""

import sys
from pathlib import Path

import pytest

from shipyard.config import ReleaseConfig
from shipyard.errors import ConfigurationError
from shipyard.pipeline.validation import validate_release_config, validation_errors


def _config(tmp_path: Path, **overrides) -> ReleaseConfig:
    data = {
        "product_name": "Game",
        "project_dir": tmp_path,
        "platforms": ["Windows"],
        "compiler": {"command": [sys.executable, "-c", "pass"]},
    }
    data.update(overrides)
    return ReleaseConfig.model_validate(data)


class TestValidation:
    def test_minimal_config_is_valid(self, tmp_path: Path):
        assert validation_errors(_config(tmp_path)) == []
        validate_release_config(_config(tmp_path))

    def test_no_platforms_fails_without_side_effects(self, tmp_path: Path):
        config = _config(tmp_path, platforms=[])
        with pytest.raises(ConfigurationError, match="at least one platform"):
            validate_release_config(config)
        assert not (tmp_path / "Builds").exists()
        assert not (tmp_path / "Releases").exists()

    def test_missing_compiler(self, tmp_path: Path):
        config = _config(tmp_path, compiler={"command": []})
        assert "No compiler command is configured." in validation_errors(config)
        assert validation_errors(config, require_compiler=False) == []

    def test_compiler_not_found(self, tmp_path: Path):
        config = _config(tmp_path, compiler={"command": ["/definitely/not/here/unity"]})
        errors = validation_errors(config)
        assert errors == ["Compiler executable not found: /definitely/not/here/unity"]

    def test_signing_requires_certificate_and_password(self, tmp_path: Path):
        config = _config(tmp_path, platforms=["MacOS"], stages={"sign": True})
        errors = validation_errors(config)
        assert "macOS signing is enabled but P12 certificate file is not found." in errors
        assert "macOS signing is enabled but P12 password is not provided." in errors

    def test_signing_ignored_without_mac(self, tmp_path: Path):
        config = _config(tmp_path, platforms=["Windows"], stages={"sign": True})
        assert validation_errors(config) == []

    def test_missing_entitlements_file(self, tmp_path: Path):
        cert = tmp_path / "dev.p12"
        cert.write_bytes(b"p12")
        config = _config(
            tmp_path,
            platforms=["MacOS"],
            stages={"sign": True},
            signing={
                "certificate_path": "dev.p12",
                "certificate_password": "pw",
                "entitlements_path": "missing.entitlements",
            },
        )
        assert "Entitlements file not found: missing.entitlements" in validation_errors(config)

    def test_notarization_fields(self, tmp_path: Path):
        config = _config(
            tmp_path,
            platforms=["MacOS"],
            stages={"sign": True, "notarize": True},
        )
        errors = validation_errors(config)
        assert "Notarization is enabled but Team ID is not provided." in errors
        assert "Notarization is enabled but Apple ID is not provided." in errors
        assert "Notarization is enabled but App-Specific Password is not provided." in errors

    def test_installer_needs_compiler(self, tmp_path: Path):
        config = _config(
            tmp_path,
            stages={"installer": True},
            installer={"compiler_path": str(tmp_path / "ISCC.exe")},
        )
        assert validation_errors(config) == [
            "Windows installer is enabled but Inno Setup compiler path is not found."
        ]

    def test_installer_compiler_present(self, tmp_path: Path):
        iscc = tmp_path / "ISCC.exe"
        iscc.write_text("")
        config = _config(
            tmp_path, stages={"installer": True}, installer={"compiler_path": str(iscc)}
        )
        assert validation_errors(config) == []

    def test_publish_needs_repo_and_token(self, tmp_path: Path):
        config = _config(tmp_path, stages={"publish": True})
        assert validation_errors(config) == [
            "GitHub release is enabled but repository URL is not provided.",
            "GitHub release is enabled but GitHub token is not provided.",
        ]

    def test_explicit_version_needs_value(self, tmp_path: Path):
        config = _config(tmp_path, version_policy="explicit", manual_version="  ")
        with pytest.raises(ConfigurationError, match="Manual version"):
            validate_release_config(config)

    def test_first_error_is_raised(self, tmp_path: Path):
        config = _config(tmp_path, platforms=[], stages={"publish": True})
        with pytest.raises(ConfigurationError, match="at least one platform"):
            validate_release_config(config)
