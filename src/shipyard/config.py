"""Configuration management for Shipyard.

Two layers:

* ``Settings`` holds process-wide knobs loaded from the environment
  (``SHIPYARD_*`` variables or a ``.env`` file).
* ``ReleaseConfig`` is the user-declared intent for one pipeline run. It is
  frozen: once a run starts, any attempt to mutate it raises.
"""

from __future__ import annotations

import json
from enum import StrEnum
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shipyard.constants import (
    BUILDS_DIR,
    DEFAULT_DMG_WORKFLOW,
    DEFAULT_INNO_SETUP_PATH,
    DEFAULT_WORKFLOW_REF,
    RELEASES_DIR,
    VERSION_FILE,
)
from shipyard.errors import ConfigurationError
from shipyard.platforms import PlatformTarget


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SHIPYARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # File logging
    log_to_file: bool = Field(default=False, description="Also write JSON logs to a file")
    log_directory: str = Field(default=".shipyard/logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024, gt=0, description="Rotate the log file at this size"
    )
    log_file_backup_count: int = Field(default=5, ge=0, description="Rotated files to keep")
    log_error_file_enabled: bool = Field(
        default=True, description="Write warnings and errors to a separate file"
    )

    # Release host
    github_api_url: str = Field(
        default="https://api.github.com", description="Release host API base URL"
    )
    github_token: SecretStr | None = Field(
        default=None, description="Token used by the update client for private repositories"
    )
    http_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")

    # Pipeline
    state_path: str = Field(
        default=".shipyard/pipeline-state.json",
        description="Where the last pipeline status snapshot is persisted",
    )
    notarization_timeout: int = Field(
        default=120, ge=30, le=120, description="Seconds to wait for notarization"
    )

    # Updater
    update_repository: str = Field(default="", description="Repository the client updates from")
    update_check_interval: int = Field(
        default=3600, gt=0, description="Seconds between periodic update checks"
    )
    disk_image_unmount_delay: int = Field(
        default=300, gt=0, description="Seconds before a manually-installed disk image unmounts"
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def log_file_path(self) -> str:
        return str(Path(self.log_directory) / "shipyard.log")

    @property
    def error_log_file_path(self) -> str:
        return str(Path(self.log_directory) / "shipyard_error.log")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# ---------------------------------------------------------------------------
# Release configuration
# ---------------------------------------------------------------------------


class VersionPolicy(StrEnum):
    """How the pipeline assigns the release version."""

    AUTO_INCREMENT = "auto-increment"
    EXPLICIT = "explicit"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class StageToggles(_Frozen):
    """Per-stage enablement flags."""

    sign: bool = False
    notarize: bool = False
    installer: bool = False
    publish: bool = False
    disk_image: bool = False


class CompilerSettings(_Frozen):
    """External compiler invocation.

    ``command`` is an argv template; ``{target}``, ``{output}``,
    ``{executable}`` and ``{version}`` are substituted per platform.
    """

    command: tuple[str, ...] = ()
    timeout: int | None = Field(default=None, gt=0)


class SigningSettings(_Frozen):
    """macOS code-signing and notarization parameters."""

    certificate_path: str = ""
    certificate_password: SecretStr = SecretStr("")
    bundle_identifier: str = ""
    team_id: str = ""
    apple_id: str = ""
    app_password: SecretStr = SecretStr("")
    entitlements_path: str = ""


class InstallerSettings(_Frozen):
    """Windows installer (Inno Setup) metadata."""

    compiler_path: str = DEFAULT_INNO_SETUP_PATH
    publisher: str = ""
    copyright: str = ""
    publisher_url: str = ""
    support_url: str = ""
    updates_url: str = ""
    desktop_icon: bool = True
    start_menu_icon: bool = True
    uninstaller: bool = True
    allow_dir_change: bool = True


class PublishSettings(_Frozen):
    """Release host destination and release metadata."""

    repository_url: str = ""
    token: SecretStr = SecretStr("")
    title: str = ""
    description: str = ""
    prerelease: bool = False
    workflow: str = DEFAULT_DMG_WORKFLOW
    workflow_ref: str = DEFAULT_WORKFLOW_REF
    # Repository secret holding the P12 for remote disk-image signing
    p12_secret_name: str = ""


class ReleaseConfig(_Frozen):
    """User-declared intent for a release run."""

    product_name: str = Field(min_length=1)
    project_dir: Path = Path(".")
    platforms: frozenset[PlatformTarget] = frozenset()
    version_policy: VersionPolicy = VersionPolicy.AUTO_INCREMENT
    manual_version: str = ""
    version_file: str = VERSION_FILE
    stages: StageToggles = StageToggles()
    compiler: CompilerSettings = CompilerSettings()
    signing: SigningSettings = SigningSettings()
    installer: InstallerSettings = InstallerSettings()
    publish: PublishSettings = PublishSettings()
    package_exclude: tuple[str, ...] = ()
    builds_dir: str = BUILDS_DIR
    releases_dir: str = RELEASES_DIR

    @field_validator("platforms", mode="before")
    @classmethod
    def _coerce_platforms(cls, value: object) -> object:
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(PlatformTarget.parse(str(item)) for item in value)
        return value

    @property
    def builds_path(self) -> Path:
        return self.project_dir / self.builds_dir

    @property
    def releases_path(self) -> Path:
        return self.project_dir / self.releases_dir

    @property
    def version_path(self) -> Path:
        return self.project_dir / self.version_file

    def ordered_platforms(self) -> list[PlatformTarget]:
        """Selected platforms in fixed build order (Windows, MacOS, Linux)."""
        return [p for p in PlatformTarget if p in self.platforms]

    def build_path(self, platform: PlatformTarget) -> Path:
        return self.builds_path / platform.build_folder_name(self.product_name)

    def release_path(self, version: str) -> Path:
        return self.releases_path / f"v{version}"

    def resolve(self, value: str) -> Path:
        """Resolve a user-supplied path against the project directory."""
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.project_dir / path


def load_release_config(path: str | Path) -> ReleaseConfig:
    """Load a ``ReleaseConfig`` from a JSON file.

    Relative ``project_dir`` values resolve against the file's directory.
    """
    config_path = Path(path)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as err:
        raise ConfigurationError(f"Release config not found: {config_path}") from err
    except json.JSONDecodeError as err:
        raise ConfigurationError(f"Release config is not valid JSON: {err}") from err

    if not isinstance(data, dict):
        raise ConfigurationError("Release config must be a JSON object")

    project_dir = Path(data.get("project_dir", "."))
    if not project_dir.is_absolute():
        data["project_dir"] = str(config_path.parent / project_dir)

    try:
        return ReleaseConfig.model_validate(data)
    except ValueError as err:
        raise ConfigurationError(f"Invalid release config: {err}") from err
