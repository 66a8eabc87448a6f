"""Tests for Windows installer script generation."""

from pathlib import Path

import pytest

from shipyard.commands import CommandResult
from shipyard.config import ReleaseConfig
from shipyard.errors import ExternalToolError
from shipyard.pipeline.installer import (
    InstallerBuilder,
    installer_filename,
    render_inno_script,
    safe_product_name,
    script_filename,
)


def _config(tmp_path: Path, **installer) -> ReleaseConfig:
    return ReleaseConfig(
        product_name="Space Game",
        project_dir=tmp_path,
        platforms=["Windows"],
        stages={"installer": True},
        installer={
            "compiler_path": str(tmp_path / "Inno" / "ISCC.exe"),
            "publisher": "Acme",
            "copyright": "(c) Acme",
            **installer,
        },
    )


def test_names():
    assert safe_product_name("My Cool-Game_2") == "MyCoolGame2"
    assert installer_filename("Space Game") == "SpaceGame-Installer.exe"
    assert script_filename("Space Game") == "Space Game_installer.iss"


class TestRenderScript:
    def test_sections(self, tmp_path: Path):
        script = render_inno_script(
            _config(tmp_path, publisher_url="https://acme.test"),
            "1.2.3",
            tmp_path / "Builds" / "Space Game-Windows",
            tmp_path / "Releases" / "v1.2.3",
        )
        for section in ("[Setup]", "[Languages]", "[Tasks]", "[Files]", "[Icons]", "[Run]"):
            assert section in script
        assert "AppVersion=1.2.3" in script
        assert "OutputBaseFilename=SpaceGame-Installer" in script
        assert "AppPublisherURL=https://acme.test" in script
        assert "{app}\\Space Game.exe" in script
        assert "desktopicon" in script

    def test_options_off(self, tmp_path: Path):
        script = render_inno_script(
            _config(tmp_path, desktop_icon=False, uninstaller=False, allow_dir_change=False),
            "1.0.0",
            tmp_path / "build",
            tmp_path / "out",
        )
        assert "desktopicon" not in script
        assert "Uninstallable=no" in script
        assert "DisableDirPage=yes" in script
        assert "{uninstallexe}" not in script


class TestInstallerBuilder:
    def test_script_requires_windows_build(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError, match="Windows build not found"):
            InstallerBuilder(_config(tmp_path)).write_script("1.0.0")

    @pytest.mark.asyncio
    async def test_build_runs_compiler(self, tmp_path: Path):
        config = _config(tmp_path)
        config.build_path(config.ordered_platforms()[0]).mkdir(parents=True)
        calls: list[dict] = []

        async def runner(args, **kwargs):
            calls.append({"args": list(args), **kwargs})
            out = config.release_path("1.0.0") / "SpaceGame-Installer.exe"
            out.write_bytes(b"MZ")
            return CommandResult(list(args), 0, "", "")

        installer = await InstallerBuilder(config, runner=runner).build("1.0.0")

        assert installer == config.release_path("1.0.0") / "SpaceGame-Installer.exe"
        assert (config.release_path("1.0.0") / "Space Game_installer.iss").is_file()
        assert calls[0]["args"][0] == str(tmp_path / "Inno" / "ISCC.exe")
        assert calls[0]["timeout"] == 600
        assert calls[0]["cwd"] == tmp_path / "Inno"

    @pytest.mark.asyncio
    async def test_missing_installer_output(self, tmp_path: Path):
        config = _config(tmp_path)
        config.build_path(config.ordered_platforms()[0]).mkdir(parents=True)

        async def runner(args, **kwargs):
            return CommandResult(list(args), 0, "", "")

        with pytest.raises(ExternalToolError, match="was not produced"):
            await InstallerBuilder(config, runner=runner).build("1.0.0")
