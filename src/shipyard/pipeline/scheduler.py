"""Single-worker scheduler for compiler invocations.

The external compiler is not reentrant, so every build unit runs on the same
dedicated thread, one at a time, and is awaited before the next is submitted.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

from shipyard.logging import get_logger

log = get_logger("shipyard.pipeline.scheduler")

T = TypeVar("T")


class BuildScheduler:
    """Runs blocking build work on one dedicated worker thread."""

    def __init__(self) -> None:
        self._executor: ThreadPoolExecutor | None = None
        self._worker_ident: int | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="shipyard-build")
        return self._executor

    @property
    def worker_ident(self) -> int | None:
        """Thread id of the worker, once it has run a unit of work."""
        return self._worker_ident

    def _invoke(self, func: Callable[[], T]) -> T:
        self._worker_ident = threading.get_ident()
        return func()

    async def submit(self, func: Callable[[], T], *, label: str = "build") -> T:
        """Run *func* on the worker and wait for it to finish."""
        loop = asyncio.get_running_loop()
        log.debug("build_unit_submitted", unit=label)
        result = await loop.run_in_executor(self._get_executor(), self._invoke, func)
        log.debug("build_unit_finished", unit=label)
        return result

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
