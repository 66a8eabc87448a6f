"""Detached swap scripts that install a staged update.

The running process cannot overwrite its own files, so the updater writes a
small script that waits for the process to exit, copies the staged files
over the installation directory in one operation, removes the update work
directory, relaunches the application and deletes itself.
"""

from __future__ import annotations

import os
import shlex
import subprocess
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path, PureWindowsPath

from shipyard.errors import UpdateError
from shipyard.logging import get_logger
from shipyard.platforms import PlatformTarget

log = get_logger("shipyard.updater.swap")

# Windows process creation flags (only defined by subprocess on Windows)
_DETACHED_PROCESS = getattr(subprocess, "DETACHED_PROCESS", 0x00000008)
_CREATE_NEW_PROCESS_GROUP = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0x00000200)


@dataclass(frozen=True)
class SwapPlan:
    """Everything a swap script needs to know."""

    staging_dir: Path
    install_dir: Path
    executable: Path
    work_dir: Path
    pid: int
    platform: PlatformTarget

    @property
    def script_suffix(self) -> str:
        return ".bat" if self.platform is PlatformTarget.WINDOWS else ".sh"


def render_windows_script(plan: SwapPlan) -> str:
    staging = PureWindowsPath(plan.staging_dir)
    install_dir = PureWindowsPath(plan.install_dir)
    executable = PureWindowsPath(plan.executable)
    work_dir = PureWindowsPath(plan.work_dir)
    lines = [
        "@echo off",
        "echo Waiting for application to exit...",
        "ping 127.0.0.1 -n 3 > nul",
        ":wait",
        f'tasklist /FI "PID eq {plan.pid}" | findstr /I "{plan.pid}" >nul',
        "if not errorlevel 1 (",
        "    ping 127.0.0.1 -n 2 > nul",
        "    goto wait",
        ")",
        "echo Copying new files...",
        f'xcopy /Y /E /I "{staging}\\*" "{install_dir}"',
        "if errorlevel 1 (",
        "    echo Failed to copy files. Aborting update.",
        f'    rmdir /S /Q "{work_dir}"',
        "    exit /b 1",
        ")",
        f'rmdir /S /Q "{work_dir}"',
        f'start "" "{executable}"',
        'del "%~f0"',
    ]
    return "\r\n".join(lines) + "\r\n"


def render_posix_script(plan: SwapPlan) -> str:
    staging = shlex.quote(f"{plan.staging_dir}/.")
    install_dir = shlex.quote(f"{plan.install_dir}/")
    executable = shlex.quote(str(plan.executable))
    work_dir = shlex.quote(str(plan.work_dir))
    if plan.platform is PlatformTarget.MACOS and plan.executable.suffix == ".app":
        relaunch = f"open -n {executable}"
    else:
        relaunch = f"chmod +x {executable}\nnohup {executable} >/dev/null 2>&1 &"
    return "\n".join(
        [
            "#!/bin/sh",
            'echo "Waiting for application to exit..."',
            f"while kill -0 {plan.pid} 2>/dev/null; do sleep 1; done",
            'echo "Copying new files..."',
            f"if ! cp -R {staging} {install_dir}; then",
            '    echo "Failed to copy files. Aborting update."',
            f"    rm -rf {work_dir}",
            '    rm -f "$0"',
            "    exit 1",
            "fi",
            f"rm -rf {work_dir}",
            relaunch,
            'rm -f "$0"',
            "",
        ]
    )


def render_swap_script(plan: SwapPlan) -> str:
    if plan.platform is PlatformTarget.WINDOWS:
        return render_windows_script(plan)
    return render_posix_script(plan)


def write_swap_script(plan: SwapPlan, directory: Path) -> Path:
    """Write the swap script next to (not inside) the work directory.

    The script removes the work directory, so it must live outside it.
    """
    directory.mkdir(parents=True, exist_ok=True)
    script = directory / f"shipyard-update-{uuid.uuid4().hex[:8]}{plan.script_suffix}"
    newline = "" if plan.platform is PlatformTarget.WINDOWS else "\n"
    with script.open("w", encoding="utf-8", newline=newline) as f:
        f.write(render_swap_script(plan))
    if plan.platform is not PlatformTarget.WINDOWS:
        script.chmod(0o755)
    log.info("swap_script_written", script=str(script))
    return script


def launch_detached(script: Path, platform: PlatformTarget | None = None) -> subprocess.Popen:
    """Start *script* in its own session so it outlives this process."""
    platform = platform or PlatformTarget.current()
    try:
        if platform is PlatformTarget.WINDOWS:
            proc = subprocess.Popen(
                ["cmd.exe", "/c", str(script)],
                creationflags=_DETACHED_PROCESS | _CREATE_NEW_PROCESS_GROUP,
                close_fds=True,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        else:
            proc = subprocess.Popen(
                ["/bin/sh", str(script)],
                start_new_session=True,
                close_fds=True,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=os.environ.copy(),
            )
    except OSError as err:
        raise UpdateError(f"Failed to launch update script: {err}", reason="launch") from err

    log.info("swap_script_launched", script=str(script), pid=proc.pid)
    return proc


def default_quit() -> None:
    """Terminate the running application so the swap script can proceed."""
    log.info("application_exiting_for_update")
    sys.exit(0)
