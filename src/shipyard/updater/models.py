"""Data models for the self-update client."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from shipyard.host import ReleaseAsset
from shipyard.platforms import PlatformTarget


class UpdateState(Enum):
    """Lifecycle of one check/update cycle."""

    IDLE = "idle"
    CHECKING = "checking"
    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    INSTALLING = "installing"
    RESTARTING = "restarting"
    ERROR = "error"


class AssetKind(Enum):
    ARCHIVE = "archive"
    DISK_IMAGE = "disk_image"

    @classmethod
    def for_name(cls, name: str) -> AssetKind:
        return cls.DISK_IMAGE if name.lower().endswith(".dmg") else cls.ARCHIVE


class CheckStatus(Enum):
    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"
    NO_COMPATIBLE_ASSET = "no_compatible_asset"
    NO_RELEASES = "no_releases"


@dataclass
class UpdateCandidate:
    """A newer release with an asset that fits this platform."""

    version: str
    tag: str
    asset: ReleaseAsset
    kind: AssetKind
    download_url: str
    release_notes: str = ""
    html_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "tag": self.tag,
            "asset": self.asset.name,
            "kind": self.kind.value,
            "download_url": self.download_url,
            "release_notes": self.release_notes[:500],
            "html_url": self.html_url,
        }


@dataclass
class CheckResult:
    status: CheckStatus
    current_version: str
    latest_version: str | None = None
    candidate: UpdateCandidate | None = None
    message: str = ""

    @property
    def update_available(self) -> bool:
        return self.status is CheckStatus.UPDATE_AVAILABLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "current_version": self.current_version,
            "latest_version": self.latest_version,
            "candidate": self.candidate.to_dict() if self.candidate else None,
            "message": self.message,
        }


@dataclass(frozen=True)
class Installation:
    """Where the running application lives."""

    product_name: str
    version: str
    platform: PlatformTarget
    install_dir: Path
    executable: Path

    @property
    def is_frozen(self) -> bool:
        return bool(getattr(sys, "frozen", False))

    @classmethod
    def current(cls, product_name: str, version: str) -> Installation:
        """Describe the running process's own installation."""
        executable = Path(sys.executable).resolve()
        platform = PlatformTarget.current()
        if platform is PlatformTarget.MACOS:
            # .../Product.app/Contents/MacOS/binary -> Product.app
            for parent in executable.parents:
                if parent.suffix == ".app":
                    return cls(product_name, version, platform, parent.parent, parent)
        return cls(product_name, version, platform, executable.parent, executable)

    @property
    def pid(self) -> int:
        return os.getpid()
