"""Pre-flight validation of a release configuration.

Runs before any stage executes and performs no filesystem writes. The first
failing rule is raised as a ``ConfigurationError``.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from shipyard.config import ReleaseConfig, VersionPolicy
from shipyard.errors import ConfigurationError
from shipyard.platforms import PlatformTarget


def _locatable(tool: str) -> bool:
    if Path(tool).is_file():
        return True
    return shutil.which(tool) is not None


def validation_errors(config: ReleaseConfig, *, require_compiler: bool = True) -> list[str]:
    """Every rule violation, in rule order."""
    errors: list[str] = []
    stages = config.stages

    if not config.platforms:
        errors.append("Please select at least one platform to build.")

    if require_compiler:
        if not config.compiler.command:
            errors.append("No compiler command is configured.")
        elif not _locatable(config.compiler.command[0]):
            errors.append(f"Compiler executable not found: {config.compiler.command[0]}")

    if stages.sign and PlatformTarget.MACOS in config.platforms:
        signing = config.signing
        if not signing.certificate_path or not config.resolve(signing.certificate_path).is_file():
            errors.append("macOS signing is enabled but P12 certificate file is not found.")
        if not signing.certificate_password.get_secret_value():
            errors.append("macOS signing is enabled but P12 password is not provided.")
        if signing.entitlements_path and not config.resolve(signing.entitlements_path).is_file():
            errors.append(f"Entitlements file not found: {signing.entitlements_path}")
        for tool in ("security", "codesign"):
            if not _locatable(tool):
                errors.append(f"macOS signing is enabled but '{tool}' is not available.")

        if stages.notarize:
            if not signing.team_id:
                errors.append("Notarization is enabled but Team ID is not provided.")
            if not signing.apple_id:
                errors.append("Notarization is enabled but Apple ID is not provided.")
            if not signing.app_password.get_secret_value():
                errors.append("Notarization is enabled but App-Specific Password is not provided.")
            for tool in ("xcrun", "ditto"):
                if not _locatable(tool):
                    errors.append(f"Notarization is enabled but '{tool}' is not available.")

    if stages.installer and PlatformTarget.WINDOWS in config.platforms:
        compiler_path = config.installer.compiler_path
        if not compiler_path or not _locatable(compiler_path):
            errors.append("Windows installer is enabled but Inno Setup compiler path is not found.")

    if stages.publish:
        if not config.publish.repository_url:
            errors.append("GitHub release is enabled but repository URL is not provided.")
        if not config.publish.token.get_secret_value():
            errors.append("GitHub release is enabled but GitHub token is not provided.")

    if config.version_policy is VersionPolicy.EXPLICIT and not config.manual_version.strip():
        errors.append("Manual version is selected but no version is provided.")

    return errors


def validate_release_config(config: ReleaseConfig, *, require_compiler: bool = True) -> None:
    """Raise ``ConfigurationError`` with the first failing rule, if any."""
    errors = validation_errors(config, require_compiler=require_compiler)
    if errors:
        raise ConfigurationError(errors[0])
