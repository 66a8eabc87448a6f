"""Tests for disk image mounting and bundle replacement."""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from unittest.mock import patch

import pytest

from shipyard.commands import CommandResult
from shipyard.errors import ExternalToolError, UpdateError
from shipyard.updater import diskimage


def _bundle(path: Path, marker: str) -> Path:
    (path / "Contents").mkdir(parents=True)
    (path / "Contents" / "Info.plist").write_text(marker)
    return path


class RecordingRunner:
    def __init__(self, fail: tuple[str, ...] | None = None) -> None:
        self.calls: list[list[str]] = []
        self.fail = fail

    async def __call__(self, args, **kwargs) -> CommandResult:
        argv = [str(a) for a in args]
        self.calls.append(argv)
        if self.fail and tuple(argv[: len(self.fail)]) == self.fail:
            raise ExternalToolError(argv, 1, stderr="resource busy")
        if argv[0] == "ditto":
            shutil.copytree(argv[1], argv[2])
        return CommandResult(argv, 0, "", "")


class TestFindApp:
    def test_preferred_name_wins(self, tmp_path: Path):
        _bundle(tmp_path / "Another.app", "a")
        _bundle(tmp_path / "Game.app", "g")
        assert diskimage.find_app(tmp_path, "Game.app") == tmp_path / "Game.app"

    def test_root_bundle(self, tmp_path: Path):
        _bundle(tmp_path / "Zeta.app", "z")
        _bundle(tmp_path / "Alpha.app", "a")
        assert diskimage.find_app(tmp_path, "Missing.app") == tmp_path / "Alpha.app"

    def test_nested_bundle_skips_inner_apps(self, tmp_path: Path):
        outer = _bundle(tmp_path / "Payload" / "Game.app", "g")
        _bundle(outer / "Contents" / "Helpers" / "Helper.app", "h")
        assert diskimage.find_app(tmp_path) == outer

    def test_none(self, tmp_path: Path):
        (tmp_path / "README.txt").write_text("drag me")
        assert diskimage.find_app(tmp_path) is None


class TestReplaceApp:
    @pytest.mark.asyncio
    async def test_replaces_and_drops_backup(self, tmp_path: Path):
        source = _bundle(tmp_path / "volume" / "Game.app", "new")
        target = _bundle(tmp_path / "Applications" / "Game.app", "old")

        await diskimage.replace_app(source, target, runner=RecordingRunner())

        assert (target / "Contents" / "Info.plist").read_text() == "new"
        assert not (tmp_path / "Applications" / "Game.app.backup").exists()

    @pytest.mark.asyncio
    async def test_failure_restores_previous_bundle(self, tmp_path: Path):
        source = _bundle(tmp_path / "volume" / "Game.app", "new")
        target = _bundle(tmp_path / "Applications" / "Game.app", "old")

        with pytest.raises(UpdateError) as excinfo:
            await diskimage.replace_app(source, target, runner=RecordingRunner(fail=("ditto",)))

        assert excinfo.value.reason == "install"
        assert (target / "Contents" / "Info.plist").read_text() == "old"
        assert not (tmp_path / "Applications" / "Game.app.backup").exists()

    @pytest.mark.asyncio
    async def test_stale_backup_file_is_cleared(self, tmp_path: Path):
        source = _bundle(tmp_path / "volume" / "Game.app", "new")
        target = _bundle(tmp_path / "Applications" / "Game.app", "old")
        (tmp_path / "Applications" / "Game.app.backup").write_text("leftover")

        await diskimage.replace_app(source, target, runner=RecordingRunner())

        assert (target / "Contents" / "Info.plist").read_text() == "new"
        assert not (tmp_path / "Applications" / "Game.app.backup").exists()

    @pytest.mark.asyncio
    async def test_backup_rename_failure_is_update_error(self, tmp_path: Path):
        source = _bundle(tmp_path / "volume" / "Game.app", "new")
        target = _bundle(tmp_path / "Applications" / "Game.app", "old")
        runner = RecordingRunner()

        with patch.object(Path, "rename", side_effect=PermissionError("denied")):
            with pytest.raises(UpdateError) as excinfo:
                await diskimage.replace_app(source, target, runner=runner)

        assert excinfo.value.reason == "install"
        assert runner.calls == []
        assert (target / "Contents" / "Info.plist").read_text() == "old"

    @pytest.mark.asyncio
    async def test_fresh_install(self, tmp_path: Path):
        source = _bundle(tmp_path / "volume" / "Game.app", "new")
        target = tmp_path / "Applications" / "Game.app"
        target.parent.mkdir()
        await diskimage.replace_app(source, target, runner=RecordingRunner())
        assert (target / "Contents" / "Info.plist").read_text() == "new"


class TestMount:
    @pytest.mark.asyncio
    async def test_mount_failure_cleans_mount_point(self, tmp_path: Path):
        runner = RecordingRunner(fail=("hdiutil", "attach"))
        with pytest.raises(UpdateError) as excinfo:
            await diskimage.mount(tmp_path / "Game.dmg", runner=runner)
        assert excinfo.value.reason == "mount"
        mount_point = Path(runner.calls[0][runner.calls[0].index("-mountpoint") + 1])
        assert not mount_point.exists()

    @pytest.mark.asyncio
    async def test_unmount_failure_is_not_raised(self, tmp_path: Path):
        mount_point = tmp_path / "mnt"
        mount_point.mkdir()
        await diskimage.unmount(mount_point, runner=RecordingRunner(fail=("hdiutil",)))
        assert not mount_point.exists()

    @pytest.mark.asyncio
    async def test_scheduled_unmount(self, tmp_path: Path):
        mount_point = tmp_path / "mnt"
        mount_point.mkdir()
        runner = RecordingRunner()
        done: list[bool] = []

        task = diskimage.schedule_unmount(
            mount_point, 0, runner=runner, on_done=lambda: done.append(True)
        )
        await asyncio.wait_for(task, timeout=5)

        assert runner.calls == [["hdiutil", "detach", str(mount_point)]]
        assert done == [True]
