"""Tests for the compiler adapter, build scheduler and hot-reload guard."""

import asyncio
import os
import sys
import threading
from pathlib import Path

import pytest

from shipyard.config import ReleaseConfig
from shipyard.errors import CommandTimeoutError, ExternalToolError
from shipyard.pipeline.compiler import CommandCompiler, mark_executable, prepare_output_dir
from shipyard.pipeline.environment import HOT_RELOAD_ENV, hot_reload_suspended, suspend_hot_reload
from shipyard.pipeline.scheduler import BuildScheduler
from shipyard.platforms import PlatformTarget

WRITE_OUTPUT = (
    "import pathlib, sys; out = pathlib.Path(sys.argv[1]); "
    "(out / sys.argv[2]).write_text(sys.argv[3])"
)


def _config(tmp_path: Path, command: list[str], timeout: int | None = None) -> ReleaseConfig:
    return ReleaseConfig(
        product_name="Game",
        project_dir=tmp_path,
        platforms=["Windows", "MacOS"],
        compiler={"command": command, "timeout": timeout},
    )


class TestCommandCompiler:
    def test_placeholders_are_substituted(self, tmp_path: Path):
        config = _config(
            tmp_path,
            [sys.executable, "-c", WRITE_OUTPUT, "{output}", "target.txt", "{target}-{version}"],
        )
        out = CommandCompiler().build(config, PlatformTarget.WINDOWS, "1.2.3")
        assert out == tmp_path / "Builds" / "Game-Windows"
        assert (out / "target.txt").read_text() == "StandaloneWindows64-1.2.3"

    def test_output_dir_is_recreated(self, tmp_path: Path):
        stale = tmp_path / "Builds" / "Game-Windows" / "stale.txt"
        stale.parent.mkdir(parents=True)
        stale.write_text("old")
        config = _config(tmp_path, [sys.executable, "-c", WRITE_OUTPUT, "{output}", "a", "b"])
        CommandCompiler().build(config, PlatformTarget.WINDOWS, "1.0.0")
        assert not stale.exists()

    def test_mac_output_is_marked_executable(self, tmp_path: Path):
        config = _config(tmp_path, [sys.executable, "-c", WRITE_OUTPUT, "{output}", "bin", "x"])
        out = CommandCompiler().build(config, PlatformTarget.MACOS, "1.0.0")
        assert os.access(out / "bin", os.X_OK)

    def test_non_zero_exit(self, tmp_path: Path):
        config = _config(tmp_path, [sys.executable, "-c", "import sys; sys.exit(4)"])
        with pytest.raises(ExternalToolError) as excinfo:
            CommandCompiler().build(config, PlatformTarget.WINDOWS, "1.0.0")
        assert excinfo.value.returncode == 4

    def test_empty_output_is_an_error(self, tmp_path: Path):
        config = _config(tmp_path, [sys.executable, "-c", "pass"])
        with pytest.raises(ExternalToolError, match="produced no output"):
            CommandCompiler().build(config, PlatformTarget.WINDOWS, "1.0.0")

    def test_timeout(self, tmp_path: Path):
        config = _config(tmp_path, [sys.executable, "-c", "import time; time.sleep(10)"], 1)
        with pytest.raises(CommandTimeoutError):
            CommandCompiler().build(config, PlatformTarget.WINDOWS, "1.0.0")

    def test_missing_executable(self, tmp_path: Path):
        config = _config(tmp_path, [str(tmp_path / "no-such-compiler")])
        with pytest.raises(ExternalToolError, match="Failed to start compiler"):
            CommandCompiler().build(config, PlatformTarget.WINDOWS, "1.0.0")


class TestFilesystemHelpers:
    def test_prepare_output_dir(self, tmp_path: Path):
        target = tmp_path / "a" / "b"
        prepare_output_dir(target)
        (target / "f").write_text("x")
        prepare_output_dir(target)
        assert list(target.iterdir()) == []

    def test_mark_executable_skips_symlinks(self, tmp_path: Path):
        (tmp_path / "file").write_text("x")
        (tmp_path / "link").symlink_to(tmp_path / "missing")
        mark_executable(tmp_path)
        assert os.access(tmp_path / "file", os.X_OK)


class TestBuildScheduler:
    @pytest.mark.asyncio
    async def test_runs_on_one_dedicated_thread(self):
        scheduler = BuildScheduler()
        try:
            first = await scheduler.submit(threading.get_ident)
            second = await scheduler.submit(threading.get_ident)
        finally:
            scheduler.shutdown()
        assert first == second == scheduler.worker_ident
        assert first != threading.get_ident()

    @pytest.mark.asyncio
    async def test_units_do_not_overlap(self):
        scheduler = BuildScheduler()
        active = 0
        peak = 0
        lock = threading.Lock()

        def unit() -> None:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            threading.Event().wait(0.05)
            with lock:
                active -= 1

        try:
            await asyncio.gather(*(scheduler.submit(unit) for _ in range(3)))
        finally:
            scheduler.shutdown()
        assert peak == 1

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        scheduler = BuildScheduler()

        def boom() -> None:
            raise RuntimeError("compiler crashed")

        try:
            with pytest.raises(RuntimeError, match="compiler crashed"):
                await scheduler.submit(boom)
        finally:
            scheduler.shutdown()


class TestHotReload:
    def test_restored_after_exception(self):
        env: dict[str, str] = {}
        with pytest.raises(RuntimeError):
            with suspend_hot_reload(env):
                assert hot_reload_suspended(env)
                raise RuntimeError("stage failed")
        assert HOT_RELOAD_ENV not in env

    def test_previous_value_kept(self):
        env = {HOT_RELOAD_ENV: "0"}
        with suspend_hot_reload(env):
            assert env[HOT_RELOAD_ENV] == "1"
        assert env[HOT_RELOAD_ENV] == "0"
