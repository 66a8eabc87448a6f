"""Repository URL parsing."""

from __future__ import annotations

from typing import NamedTuple

from shipyard.errors import ConfigurationError

_HOST_SEPARATOR = "github.com/"


class RepositoryRef(NamedTuple):
    owner: str
    repo: str

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def web_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}"


def _strip_git_suffix(name: str) -> str:
    return name[: -len(".git")] if name.endswith(".git") else name


def parse_repository_url(url: str, *, strict: bool = True) -> RepositoryRef:
    """Split a repository URL into owner and repository name.

    Strict mode (used when publishing) requires exactly one ``github.com/``
    separator followed by exactly two path segments. Lenient mode (used by
    the update client) also accepts a bare ``owner/repo`` and ignores extra
    trailing segments. A ``.git`` suffix is always stripped.
    """
    value = (url or "").strip()
    if not value:
        raise ConfigurationError("Repository URL is not configured")

    chunks = [chunk for chunk in value.split(_HOST_SEPARATOR) if chunk]
    if len(chunks) == 2:
        path = chunks[1]
    elif len(chunks) == 1 and not strict and _HOST_SEPARATOR not in value:
        path = chunks[0]
    else:
        raise ConfigurationError(
            f"Invalid repository URL format: {value!r}. Expected: https://github.com/owner/repo"
        )

    segments = path.rstrip("/").split("/") if strict else [s for s in path.split("/") if s]
    if strict and len(segments) != 2:
        raise ConfigurationError(
            f"Invalid repository URL format: {value!r}. Expected: https://github.com/owner/repo"
        )
    if len(segments) < 2:
        raise ConfigurationError(
            f"Invalid repository URL format: {value!r}. "
            "Use https://github.com/owner/repo or owner/repo"
        )

    owner, repo = segments[0], _strip_git_suffix(segments[1])
    if not owner or not repo:
        raise ConfigurationError(f"Repository URL is missing owner or name: {value!r}")
    return RepositoryRef(owner=owner, repo=repo)
