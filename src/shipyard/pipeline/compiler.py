"""External compiler adapter.

The compiler is opaque: it is handed a target identifier and an output path
and must leave a directory of files behind. Invocations are blocking and are
always run through ``BuildScheduler``.
"""

from __future__ import annotations

import shutil
import stat
import subprocess
from pathlib import Path
from typing import Protocol

from shipyard.config import ReleaseConfig
from shipyard.errors import CommandTimeoutError, ExternalToolError
from shipyard.logging import get_logger
from shipyard.platforms import PlatformTarget

log = get_logger("shipyard.pipeline.compiler")


class Compiler(Protocol):
    def build(self, config: ReleaseConfig, platform: PlatformTarget, version: str) -> Path:
        """Produce the platform's build directory and return its path."""
        ...


def prepare_output_dir(path: Path) -> None:
    """Delete and recreate a platform build directory."""
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)


def mark_executable(root: Path) -> None:
    """Add execute bits to everything under *root* (``chmod -R +x``)."""
    for path in [root, *root.rglob("*")]:
        if path.is_symlink():
            continue
        mode = path.stat().st_mode
        path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


class CommandCompiler:
    """Runs the configured compiler command template once per platform."""

    def build(self, config: ReleaseConfig, platform: PlatformTarget, version: str) -> Path:
        output_dir = config.build_path(platform)
        executable = output_dir / platform.executable_name(config.product_name)
        prepare_output_dir(output_dir)

        substitutions = {
            "target": platform.compiler_target,
            "output": str(output_dir),
            "executable": str(executable),
            "version": version,
            "product": config.product_name,
        }
        argv = [part.format(**substitutions) for part in config.compiler.command]

        log.info("compiler_started", platform=platform.label, target=platform.compiler_target)
        try:
            proc = subprocess.run(
                argv,
                cwd=config.project_dir,
                capture_output=True,
                text=True,
                timeout=config.compiler.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as err:
            raise CommandTimeoutError(argv, config.compiler.timeout or 0) from err
        except OSError as err:
            raise ExternalToolError(argv, None, message=f"Failed to start compiler: {err}") from err

        if proc.returncode != 0:
            raise ExternalToolError(argv, proc.returncode, proc.stdout, proc.stderr)

        if not any(output_dir.iterdir()):
            raise ExternalToolError(
                argv,
                proc.returncode,
                proc.stdout,
                proc.stderr,
                message=f"Build for {platform.label} produced no output in {output_dir}",
            )

        if platform is PlatformTarget.MACOS:
            mark_executable(output_dir)

        log.info("compiler_finished", platform=platform.label, output=str(output_dir))
        return output_dir
