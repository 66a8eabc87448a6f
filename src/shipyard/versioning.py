"""Version parsing, comparison, and assignment.

Versions are dot-separated non-negative integers (``1.2.3``). Comparison is
component-wise and numeric; missing trailing components count as zero, so
``1.2`` equals ``1.2.0``. An optional leading ``v`` (as used in release
tags) is ignored.
"""

from __future__ import annotations

from itertools import zip_longest
from pathlib import Path

from shipyard.config import VersionPolicy
from shipyard.logging import get_logger

log = get_logger("shipyard.versioning")


def parse_version(version_str: str) -> tuple[int, ...]:
    """Parse a version string into integer components.

    Raises ``ValueError`` if any component is not a non-negative integer.
    """
    cleaned = version_str.strip().lstrip("vV").lstrip(".")
    if not cleaned:
        raise ValueError(f"Empty version string: {version_str!r}")

    parts = cleaned.split(".")
    components: list[int] = []
    for part in parts:
        if not part.isdigit():
            raise ValueError(f"Invalid version component {part!r} in {version_str!r}")
        components.append(int(part))
    return tuple(components)


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as *a* is older than, equal to, or newer than *b*."""
    for left, right in zip_longest(parse_version(a), parse_version(b), fillvalue=0):
        if left != right:
            return 1 if left > right else -1
    return 0


def is_newer(candidate: str, current: str) -> bool:
    """Return True if *candidate* is strictly newer than *current*."""
    return compare_versions(candidate, current) > 0


def tag_for(version: str) -> str:
    """Release tag for a version (``1.2.3`` -> ``v1.2.3``)."""
    return f"v{version}"


def version_from_tag(tag: str) -> str:
    return tag.strip().lstrip("vV")


def next_patch_version(current: str) -> str:
    """Increment the patch component of an ``X.Y.Z`` version.

    Anything that is not exactly three integer components is returned
    unchanged.
    """
    parts = current.strip().split(".")
    if len(parts) != 3 or not all(part.isdigit() for part in parts):
        return current
    major, minor, patch = parts
    return f"{major}.{minor}.{int(patch) + 1}"


def assign_version(current: str, policy: VersionPolicy, manual: str = "") -> str:
    """Apply the version-assignment policy to the current version."""
    if policy is VersionPolicy.EXPLICIT:
        if not manual:
            raise ValueError("Manual version is selected but no version is provided.")
        return manual
    return next_patch_version(current)


class VersionStore:
    """Reads and writes the project's version file."""

    def __init__(self, path: Path, default: str = "0.0.0") -> None:
        self._path = path
        self._default = default

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> str:
        if not self._path.exists():
            return self._default
        value = self._path.read_text(encoding="utf-8").strip()
        return value or self._default

    def write(self, version: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(f"{version}\n", encoding="utf-8")
        tmp_path.replace(self._path)
        log.info("version_written", path=str(self._path), version=version)
