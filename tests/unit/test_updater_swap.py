"""Tests for the detached swap scripts."""

from __future__ import annotations

import stat
import subprocess
import sys
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from shipyard.errors import UpdateError
from shipyard.platforms import PlatformTarget
from shipyard.updater.swap import (
    SwapPlan,
    launch_detached,
    render_posix_script,
    render_windows_script,
    write_swap_script,
)


def _plan(tmp_path: Path, platform: PlatformTarget, executable: str = "Game.exe") -> SwapPlan:
    work_dir = tmp_path / "work" / "shipyard-update-abc"
    return SwapPlan(
        staging_dir=work_dir / "staging",
        install_dir=tmp_path / "install",
        executable=tmp_path / "install" / executable,
        work_dir=work_dir,
        pid=4242,
        platform=platform,
    )


class TestRenderScripts:
    def test_windows_script(self, tmp_path: Path):
        script = render_windows_script(_plan(tmp_path, PlatformTarget.WINDOWS))

        assert script.startswith("@echo off\r\n")
        assert '"PID eq 4242"' in script
        assert "xcopy /Y /E /I" in script
        assert "exit /b 1" in script
        assert script.rstrip().endswith('del "%~f0"')
        # The work dir is removed on both the success and failure paths.
        assert script.count("rmdir /S /Q") == 2

    def test_posix_script(self, tmp_path: Path):
        plan = _plan(tmp_path, PlatformTarget.LINUX, executable="Game")
        script = render_posix_script(plan)

        assert script.startswith("#!/bin/sh\n")
        assert "kill -0 4242" in script
        assert f"cp -R {plan.staging_dir}/. {plan.install_dir}/" in script
        assert f"nohup {plan.executable}" in script
        assert script.count(f"rm -rf {plan.work_dir}") == 2
        assert script.rstrip().endswith('rm -f "$0"')

    def test_mac_bundle_relaunches_with_open(self, tmp_path: Path):
        plan = _plan(tmp_path, PlatformTarget.MACOS, executable="Game.app")
        script = render_posix_script(plan)
        assert f"open -n {plan.executable}" in script
        assert "nohup" not in script

    def test_paths_with_spaces_are_quoted(self, tmp_path: Path):
        plan = _plan(tmp_path / "my games", PlatformTarget.LINUX, executable="Space Game")
        script = render_posix_script(plan)
        assert f"'{plan.executable}'" in script


class TestWriteScript:
    def test_written_outside_work_dir(self, tmp_path: Path):
        plan = _plan(tmp_path, PlatformTarget.LINUX, executable="Game")
        script = write_swap_script(plan, tmp_path / "work")

        assert script.parent == tmp_path / "work"
        assert script.suffix == ".sh"
        assert plan.work_dir not in script.parents
        if sys.platform != "win32":
            assert script.stat().st_mode & stat.S_IXUSR

    def test_windows_line_endings(self, tmp_path: Path):
        script = write_swap_script(_plan(tmp_path, PlatformTarget.WINDOWS), tmp_path)
        assert script.suffix == ".bat"
        assert b"\r\n" in script.read_bytes()
        assert b"\r\r\n" not in script.read_bytes()


class TestLaunch:
    def test_posix_starts_new_session(self, tmp_path: Path):
        with patch("shipyard.updater.swap.subprocess.Popen") as popen:
            popen.return_value = MagicMock(pid=99)
            launch_detached(tmp_path / "swap.sh", PlatformTarget.LINUX)

        args, kwargs = popen.call_args
        assert args[0] == ["/bin/sh", str(tmp_path / "swap.sh")]
        assert kwargs["start_new_session"] is True
        assert kwargs["stdout"] == subprocess.DEVNULL

    def test_windows_detaches(self, tmp_path: Path):
        with patch("shipyard.updater.swap.subprocess.Popen") as popen:
            popen.return_value = MagicMock(pid=99)
            launch_detached(tmp_path / "swap.bat", PlatformTarget.WINDOWS)

        args, kwargs = popen.call_args
        assert args[0][:2] == ["cmd.exe", "/c"]
        assert kwargs["creationflags"] & 0x00000008

    def test_spawn_failure(self, tmp_path: Path):
        with patch("shipyard.updater.swap.subprocess.Popen", side_effect=OSError("denied")):
            with pytest.raises(UpdateError) as excinfo:
                launch_detached(tmp_path / "swap.sh", PlatformTarget.LINUX)
        assert excinfo.value.reason == "launch"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell script")
class TestPosixScriptExecution:
    def test_replaces_files_and_relaunches(self, tmp_path: Path):
        install_dir = tmp_path / "install"
        install_dir.mkdir()
        (install_dir / "run.sh").write_text("old")
        (install_dir / "keep.txt").write_text("untouched")

        work_dir = tmp_path / "work" / "shipyard-update-xyz"
        staging = work_dir / "staging"
        (staging / "data").mkdir(parents=True)
        (staging / "run.sh").write_text('#!/bin/sh\ntouch "$(dirname "$0")/launched"\n')
        (staging / "data" / "level.dat").write_text("new level")

        exited = subprocess.Popen(["true"])
        exited.wait()

        plan = SwapPlan(
            staging_dir=staging,
            install_dir=install_dir,
            executable=install_dir / "run.sh",
            work_dir=work_dir,
            pid=exited.pid,
            platform=PlatformTarget.LINUX,
        )
        script = write_swap_script(plan, tmp_path / "scripts")
        subprocess.run(["/bin/sh", str(script)], check=True, timeout=30)

        assert (install_dir / "data" / "level.dat").read_text() == "new level"
        assert (install_dir / "keep.txt").read_text() == "untouched"
        assert "launched" in (install_dir / "run.sh").read_text()
        assert not work_dir.exists()
        assert not script.exists()

        deadline = time.monotonic() + 10
        while not (install_dir / "launched").exists() and time.monotonic() < deadline:
            time.sleep(0.05)
        assert (install_dir / "launched").exists()
