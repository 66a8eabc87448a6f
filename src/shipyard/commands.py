"""External process execution and retry helpers.

All subprocess calls made by the pipeline and the updater go through
``run_command`` so that output capture, timeouts and error reporting are
uniform. ``retry_async`` applies the bounded retry policy to recoverable
conditions only (a file not yet visible, a transient lock, an archive that
failed verification); semantic failures propagate on the first attempt.
"""

from __future__ import annotations

import asyncio
import zipfile
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from shipyard.constants import (
    COMMAND_RETRY_ATTEMPTS,
    COMMAND_RETRY_DELAY_SECONDS,
    NETWORK_RETRY_ATTEMPTS,
    NETWORK_RETRY_BASE_DELAY_SECONDS,
)
from shipyard.errors import CommandTimeoutError, ExternalToolError, IntegrityError, NetworkError
from shipyard.logging import get_logger

log = get_logger("shipyard.commands")

T = TypeVar("T")

RECOVERABLE_ERRORS: tuple[type[BaseException], ...] = (
    FileNotFoundError,
    PermissionError,
    BlockingIOError,
    zipfile.BadZipFile,
    IntegrityError,
)


@dataclass
class CommandResult:
    """Captured outcome of an external process."""

    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


Runner = Callable[..., Awaitable[CommandResult]]


async def run_command(
    args: Sequence[str],
    *,
    timeout: float | None = 120,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
) -> CommandResult:
    """Run an external command and capture its output.

    Raises ``ExternalToolError`` when the program cannot be started or, with
    *check* set, exits non-zero. Raises ``CommandTimeoutError`` if the
    process outlives *timeout*; the process is killed first.
    """
    argv = [str(arg) for arg in args]
    log.debug("command_started", cmd=argv[0], argc=len(argv))

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
        )
    except OSError as exc:
        log.warning("command_not_started", cmd=argv[0], error=str(exc))
        raise ExternalToolError(argv, None, message=f"Failed to start {argv[0]}: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        log.warning("command_timeout", cmd=argv[0], timeout=timeout)
        raise CommandTimeoutError(argv, timeout or 0) from None

    result = CommandResult(
        args=argv,
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
    if check and not result.ok:
        log.warning(
            "command_failed",
            cmd=argv[0],
            returncode=result.returncode,
            stderr=result.stderr[:500],
        )
        raise ExternalToolError(argv, result.returncode, result.stdout, result.stderr)
    return result


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = COMMAND_RETRY_ATTEMPTS,
    delay: float = COMMAND_RETRY_DELAY_SECONDS,
    recoverable: tuple[type[BaseException], ...] = RECOVERABLE_ERRORS,
    label: str = "operation",
) -> T:
    """Run *operation*, retrying recoverable failures.

    *operation* is a zero-arg callable returning a fresh awaitable each time.
    After the final attempt the last error is re-raised unchanged.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except recoverable as exc:
            if attempt >= attempts:
                log.error(
                    "retry_exhausted",
                    operation=label,
                    attempts=attempts,
                    error=str(exc),
                )
                raise
            log.warning(
                "retry_scheduled",
                operation=label,
                attempt=attempt,
                delay=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = NETWORK_RETRY_ATTEMPTS,
    base_delay: float = NETWORK_RETRY_BASE_DELAY_SECONDS,
    label: str = "request",
) -> T:
    """Retry release-host calls that failed with a retryable status.

    Only 429 and 5xx responses are retried, with exponential backoff;
    401/403/404 propagate immediately.
    """
    for attempt in range(attempts):
        try:
            return await operation()
        except NetworkError as exc:
            if not exc.retryable or attempt >= attempts - 1:
                raise
            wait = base_delay * (2**attempt)
            log.warning(
                "network_retry_scheduled",
                operation=label,
                status=exc.status_code,
                attempt=attempt + 1,
                delay=wait,
            )
            await asyncio.sleep(wait)

    raise AssertionError("unreachable")  # pragma: no cover
