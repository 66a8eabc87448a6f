"""Platform targets and the naming conventions attached to them."""

from __future__ import annotations

import sys
from enum import Enum
from pathlib import PurePath

_CONTENT_TYPES: dict[str, str] = {
    ".zip": "application/zip",
    ".dmg": "application/x-apple-diskimage",
    ".exe": "application/vnd.microsoft.portable-executable",
    ".iss": "text/plain",
}

_ALIASES: dict[str, str] = {
    "windows": "WINDOWS",
    "win": "WINDOWS",
    "macos": "MACOS",
    "mac": "MACOS",
    "osx": "MACOS",
    "linux": "LINUX",
}


class PlatformTarget(Enum):
    """A desktop platform the pipeline can build and the updater can install."""

    WINDOWS = ("Windows", "Windows", "StandaloneWindows64")
    MACOS = ("MacOS", "Mac", "StandaloneOSX")
    LINUX = ("Linux", "Linux", "StandaloneLinux64")

    def __init__(self, label: str, asset_label: str, compiler_target: str) -> None:
        self.label = label
        self.asset_label = asset_label
        self.compiler_target = compiler_target

    def __str__(self) -> str:
        return self.label

    @classmethod
    def parse(cls, value: str) -> PlatformTarget:
        """Parse a platform name (``Windows``, ``mac``, ``MacOS``, ...)."""
        key = _ALIASES.get(value.strip().lower())
        if key is None:
            raise ValueError(f"Unknown platform: {value!r}")
        return cls[key]

    @classmethod
    def current(cls) -> PlatformTarget:
        """The platform this process is running on."""
        if sys.platform.startswith("win"):
            return cls.WINDOWS
        if sys.platform == "darwin":
            return cls.MACOS
        return cls.LINUX

    def executable_name(self, product: str) -> str:
        if self is PlatformTarget.WINDOWS:
            return f"{product}.exe"
        if self is PlatformTarget.MACOS:
            return f"{product}.app"
        return product

    def build_folder_name(self, product: str) -> str:
        return f"{product}-{self.label}"

    def archive_name(self, product: str) -> str:
        """Name of the release archive produced by the package stage."""
        return f"{self.build_folder_name(product)}.zip"

    def update_asset_names(self, product: str) -> list[str]:
        """Asset names the updater accepts, most preferred first.

        Mac prefers a disk image and falls back to the archive (including the
        pipeline's own ``-MacOS.zip`` name); the other platforms have exactly
        one expected name.
        """
        if self is PlatformTarget.MACOS:
            return [
                f"{product}-{self.asset_label}.dmg",
                f"{product}-{self.asset_label}.zip",
                self.archive_name(product),
            ]
        return [f"{product}-{self.asset_label}.zip"]


def content_type_for(filename: str) -> str:
    """Content type used when uploading a release asset."""
    return _CONTENT_TYPES.get(PurePath(filename).suffix.lower(), "application/octet-stream")
