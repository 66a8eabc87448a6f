"""Exception taxonomy for Shipyard.

All errors derive from ``ShipyardError``. ``PipelineCancelled`` is also a
``ShipyardError`` so it travels the same paths, but the orchestrator treats
it as a clean stop rather than a failure.
"""

from __future__ import annotations

from collections.abc import Sequence


class ShipyardError(Exception):
    """Base class for all Shipyard errors."""


class ConfigurationError(ShipyardError):
    """Invalid or missing required settings. Raised before any side effect."""


class ExternalToolError(ShipyardError):
    """An external process exited with a non-zero status."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: int | None,
        stdout: str = "",
        stderr: str = "",
        message: str | None = None,
    ) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        if message is None:
            detail = (stderr or stdout).strip()[:500]
            message = f"Command '{' '.join(self.command)}' failed with exit code {returncode}"
            if detail:
                message = f"{message}: {detail}"
        super().__init__(message)


class CommandTimeoutError(ExternalToolError):
    """An external process did not finish within its timeout and was killed."""

    def __init__(self, command: Sequence[str], timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            command,
            None,
            message=f"Command '{' '.join(command)}' timed out after {timeout:g}s",
        )


class NetworkError(ShipyardError):
    """A release host request failed."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """Rate limits and server errors may succeed on a later attempt."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class AuthenticationError(NetworkError):
    """401: the token is missing, expired, or lacks scope."""


class ForbiddenError(NetworkError):
    """403: the token lacks permission or the repository is private."""


class NotFoundError(NetworkError):
    """404: the repository, release, or asset does not exist."""


class RateLimitError(NetworkError):
    """429: release host rate limit exceeded."""


class ServerError(NetworkError):
    """5xx: release host failure."""


class IntegrityError(ShipyardError):
    """A downloaded or extracted artifact is empty or corrupt."""


class PipelineCancelled(ShipyardError):
    """Cooperative cancellation was observed. Not a failure."""


class UpdateError(ShipyardError):
    """The update cycle failed; the running installation is untouched."""

    def __init__(self, message: str, reason: str = "failed") -> None:
        self.reason = reason
        super().__init__(message)
