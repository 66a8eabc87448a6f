"""Host environment mutation for the duration of a run."""

from __future__ import annotations

import contextlib
import os
from collections.abc import Iterator, MutableMapping

from shipyard.logging import get_logger

log = get_logger("shipyard.pipeline.environment")

HOT_RELOAD_ENV = "SHIPYARD_SUSPEND_HOT_RELOAD"


@contextlib.contextmanager
def suspend_hot_reload(env: MutableMapping[str, str] | None = None) -> Iterator[None]:
    """Signal watchers to pause recompilation while a run is in flight.

    The previous value is restored on exit whatever the outcome, so nested
    suspensions unwind correctly.
    """
    target = os.environ if env is None else env
    previous = target.get(HOT_RELOAD_ENV)
    target[HOT_RELOAD_ENV] = "1"
    log.debug("hot_reload_suspended")
    try:
        yield
    finally:
        if previous is None:
            target.pop(HOT_RELOAD_ENV, None)
        else:
            target[HOT_RELOAD_ENV] = previous
        log.debug("hot_reload_restored")


def hot_reload_suspended(env: MutableMapping[str, str] | None = None) -> bool:
    target = os.environ if env is None else env
    return target.get(HOT_RELOAD_ENV) == "1"
