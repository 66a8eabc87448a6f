"""Windows installer generation via Inno Setup."""

from __future__ import annotations

from pathlib import Path, PureWindowsPath

from shipyard.commands import Runner, run_command
from shipyard.config import ReleaseConfig
from shipyard.errors import ExternalToolError
from shipyard.logging import get_logger
from shipyard.platforms import PlatformTarget

log = get_logger("shipyard.pipeline.installer")

INSTALLER_COMPILE_TIMEOUT = 600


def safe_product_name(product: str) -> str:
    """Product name with spaces, hyphens and underscores removed."""
    return product.replace(" ", "").replace("-", "").replace("_", "")


def installer_filename(product: str) -> str:
    return f"{safe_product_name(product)}-Installer.exe"


def script_filename(product: str) -> str:
    return f"{product}_installer.iss"


def _win(path: Path) -> str:
    return str(PureWindowsPath(path.resolve()))


def render_inno_script(
    config: ReleaseConfig, version: str, build_dir: Path, output_dir: Path
) -> str:
    """Render the ``.iss`` script for the Windows build in *build_dir*."""
    product = config.product_name
    meta = config.installer
    exe_name = PlatformTarget.WINDOWS.executable_name(product)

    setup = [
        "[Setup]",
        f"AppName={product}",
        f"AppVersion={version}",
        f"AppPublisher={meta.publisher}",
        f"DefaultDirName={{autopf}}\\{product}",
        f"DefaultGroupName={meta.publisher or product}",
        "AllowNoIcons=yes",
        f"OutputDir={_win(output_dir)}",
        f"OutputBaseFilename={safe_product_name(product)}-Installer",
        "Compression=lzma",
        "SolidCompression=yes",
        "WizardStyle=modern",
        f"VersionInfoVersion={version}",
        f"VersionInfoCompany={meta.publisher}",
        f"VersionInfoDescription={product} Installer",
        f"VersionInfoCopyright={meta.copyright}",
    ]
    if meta.publisher_url:
        setup.append(f"AppPublisherURL={meta.publisher_url}")
    if meta.support_url:
        setup.append(f"AppSupportURL={meta.support_url}")
    if meta.updates_url:
        setup.append(f"AppUpdatesURL={meta.updates_url}")
    if not meta.allow_dir_change:
        setup.append("DisableDirPage=yes")
    if not meta.uninstaller:
        setup.append("Uninstallable=no")

    sections = [
        "\n".join(setup),
        '[Languages]\nName: "english"; MessagesFile: "compiler:Default.isl"',
    ]

    tasks = ["[Tasks]"]
    if meta.desktop_icon:
        tasks.append(
            'Name: "desktopicon"; Description: "{cm:CreateDesktopIcon}"; '
            'GroupDescription: "{cm:AdditionalIcons}"; Flags: unchecked'
        )
    sections.append("\n".join(tasks))

    sections.append(
        "[Files]\n"
        f'Source: "{_win(build_dir)}\\*"; DestDir: "{{app}}"; '
        "Flags: ignoreversion recursesubdirs createallsubdirs"
    )

    icons = ["[Icons]"]
    if meta.start_menu_icon:
        icons.append(f'Name: "{{group}}\\{product}"; Filename: "{{app}}\\{exe_name}"')
    if meta.desktop_icon:
        icons.append(
            f'Name: "{{autodesktop}}\\{product}"; Filename: "{{app}}\\{exe_name}"; '
            "Tasks: desktopicon"
        )
    if meta.uninstaller:
        icons.append(
            f'Name: "{{group}}\\{{cm:UninstallProgram,{product}}}"; Filename: "{{uninstallexe}}"'
        )
    sections.append("\n".join(icons))

    sections.append(
        "[Run]\n"
        f'Filename: "{{app}}\\{exe_name}"; Description: "{{cm:LaunchProgram,{product}}}"; '
        "Flags: nowait postinstall skipifsilent"
    )
    return "\n\n".join(sections) + "\n"


class InstallerBuilder:
    """Writes the installer script and runs the installer compiler."""

    def __init__(self, config: ReleaseConfig, *, runner: Runner = run_command) -> None:
        self._config = config
        self._runner = runner

    def write_script(self, version: str) -> Path:
        config = self._config
        build_dir = config.build_path(PlatformTarget.WINDOWS)
        if not build_dir.is_dir():
            raise FileNotFoundError(f"Windows build not found for installer creation: {build_dir}")

        output_dir = config.release_path(version)
        output_dir.mkdir(parents=True, exist_ok=True)
        script_path = output_dir / script_filename(config.product_name)
        script_path.write_text(
            render_inno_script(config, version, build_dir, output_dir), encoding="utf-8"
        )
        log.info("installer_script_written", path=str(script_path))
        return script_path

    async def build(self, version: str) -> Path:
        """Generate the script and compile it; returns the installer path."""
        script_path = self.write_script(version)
        compiler = Path(self._config.installer.compiler_path)

        await self._runner(
            [str(compiler), str(script_path.resolve())],
            timeout=INSTALLER_COMPILE_TIMEOUT,
            cwd=compiler.parent if compiler.is_absolute() else None,
        )

        installer = script_path.parent / installer_filename(self._config.product_name)
        if not installer.is_file():
            raise ExternalToolError(
                [str(compiler), str(script_path)],
                0,
                message=f"Installer compiler succeeded but {installer.name} was not produced",
            )
        log.info("installer_built", path=str(installer))
        return installer
