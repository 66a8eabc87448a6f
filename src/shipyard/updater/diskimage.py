"""Disk image (.dmg) installation on macOS.

Mounts the image with ``hdiutil``, finds the bundled ``.app`` and replaces the
installed copy. The replace keeps a backup of the previous bundle and puts it
back if the copy fails.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from collections.abc import Callable
from pathlib import Path

from shipyard.commands import Runner, run_command
from shipyard.errors import ExternalToolError, UpdateError
from shipyard.logging import get_logger

log = get_logger("shipyard.updater.diskimage")

HDIUTIL_TIMEOUT = 120
DITTO_COPY_TIMEOUT = 600


async def mount(dmg: Path, *, runner: Runner = run_command) -> Path:
    """Attach *dmg* at a fresh temporary mount point and return it."""
    mount_point = Path(tempfile.mkdtemp(prefix="shipyard_dmg_"))
    try:
        await runner(
            ["hdiutil", "attach", "-nobrowse", "-mountpoint", str(mount_point), str(dmg)],
            timeout=HDIUTIL_TIMEOUT,
        )
    except ExternalToolError as err:
        shutil.rmtree(mount_point, ignore_errors=True)
        raise UpdateError(f"Failed to mount disk image: {err}", reason="mount") from err
    log.info("disk_image_mounted", dmg=str(dmg), mount_point=str(mount_point))
    return mount_point


async def unmount(mount_point: Path, *, runner: Runner = run_command) -> None:
    """Detach *mount_point*. Failures are logged, not raised."""
    try:
        await runner(["hdiutil", "detach", str(mount_point)], timeout=HDIUTIL_TIMEOUT)
        log.info("disk_image_unmounted", mount_point=str(mount_point))
    except ExternalToolError as err:
        log.warning("disk_image_unmount_failed", mount_point=str(mount_point), error=str(err))
    shutil.rmtree(mount_point, ignore_errors=True)


def find_app(mount_point: Path, preferred: str | None = None) -> Path | None:
    """Locate the application bundle inside a mounted volume.

    Checks the volume root first (preferring *preferred* by name), then walks
    subdirectories without descending into bundles.
    """
    if preferred:
        candidate = mount_point / preferred
        if candidate.is_dir():
            return candidate

    root_apps = sorted(p for p in mount_point.glob("*.app") if p.is_dir())
    if root_apps:
        return root_apps[0]

    for path in sorted(mount_point.rglob("*.app")):
        if path.is_dir() and not any(parent.suffix == ".app" for parent in path.parents):
            return path
    return None


async def replace_app(source: Path, target: Path, *, runner: Runner = run_command) -> Path:
    """Copy the *source* bundle over *target* with rollback.

    The existing bundle is renamed to ``<name>.backup`` first. On success the
    backup is removed; on failure any partial copy is removed and the backup
    is restored.
    """
    backup = target.with_name(target.name + ".backup")
    had_previous = target.exists()
    try:
        if backup.is_dir():
            shutil.rmtree(backup)
        elif backup.exists():
            backup.unlink()
        if had_previous:
            target.rename(backup)
    except OSError as err:
        log.warning("app_backup_failed", target=str(target), error=str(err))
        raise UpdateError(f"Failed to back up {target.name}: {err}", reason="install") from err

    try:
        await runner(["ditto", str(source), str(target)], timeout=DITTO_COPY_TIMEOUT)
    except (ExternalToolError, OSError) as err:
        log.warning("app_replace_failed", target=str(target), error=str(err))
        if target.exists():
            shutil.rmtree(target, ignore_errors=True)
        if had_previous:
            backup.rename(target)
        raise UpdateError(f"Failed to install {target.name}: {err}", reason="install") from err

    if had_previous:
        shutil.rmtree(backup, ignore_errors=True)
    log.info("app_replaced", target=str(target))
    return target


async def open_path(
    path: Path, *, new_instance: bool = False, runner: Runner = run_command
) -> None:
    args = ["open", "-n", str(path)] if new_instance else ["open", str(path)]
    await runner(args, timeout=30)


def schedule_unmount(
    mount_point: Path,
    delay: float,
    *,
    runner: Runner = run_command,
    on_done: Callable[[], None] | None = None,
) -> asyncio.Task:
    """Unmount *mount_point* after *delay* seconds whether or not the user acted."""

    async def _later() -> None:
        await asyncio.sleep(delay)
        await unmount(mount_point, runner=runner)
        if on_done is not None:
            on_done()

    log.info("disk_image_unmount_scheduled", mount_point=str(mount_point), delay=delay)
    return asyncio.create_task(_later())
