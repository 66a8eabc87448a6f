"""Command-line entry point for Shipyard."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import signal
import sys
from pathlib import Path
from typing import Any

from shipyard import __version__
from shipyard.config import get_settings, load_release_config
from shipyard.errors import ShipyardError
from shipyard.logging import get_logger, setup_logging
from shipyard.pipeline import PipelineOrchestrator, RunOutcome, RunStatus
from shipyard.platforms import PlatformTarget
from shipyard.updater import CheckStatus, Installation, UpdateResolver
from shipyard.workflows import ensure_workflows, regenerate_bundle

log = get_logger("shipyard.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

_PIPELINE_COMMANDS = {
    "run": "run",
    "build": "build_only",
    "package": "package_only",
    "trigger-dmg": "trigger_disk_image",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shipyard",
        description="Desktop release pipeline and self-update client",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    sub = parser.add_subparsers(dest="command", required=True)

    helps = {
        "run": "Run the full pipeline (build, sign, package, installer, publish)",
        "build": "Assign the version and build the selected platforms",
        "package": "Package existing builds for the current version",
        "trigger-dmg": "Dispatch the remote disk-image job for the current version",
    }
    for name, help_text in helps.items():
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument(
            "-c",
            "--config",
            default="shipyard.json",
            help="Release config file (default: shipyard.json)",
        )

    for name, help_text in (
        ("check-update", "Check the release host for a newer version"),
        ("update", "Download and install the newest version"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--repo", default="", help="Repository URL or owner/repo")
        cmd.add_argument("--token", default=None, help="Token for private repositories")
        cmd.add_argument("--product", required=True, help="Product name used in asset names")
        cmd.add_argument("--current", required=True, help="Installed version")
        cmd.add_argument("--platform", default=None, help="Platform (default: this machine)")
        cmd.add_argument("--install-dir", default=None, help="Installation directory")
        cmd.add_argument("--executable", default=None, help="Application executable or bundle")

    cmd = sub.add_parser("setup-workflows", help="Install the bundled remote job definitions")
    cmd.add_argument("--project-dir", default=".", help="Project root (default: .)")
    cmd.add_argument("--bundle", default=None, help="Workflow bundle path")
    cmd.add_argument(
        "--regenerate",
        action="store_true",
        help="Rebuild the bundle from the project's workflow files instead",
    )
    return parser


def _emit(args: argparse.Namespace, message: str, payload: dict[str, Any]) -> None:
    if args.json:
        print(json.dumps(payload, indent=2))
    else:
        print(message)


def _exit_code(outcome: RunOutcome) -> int:
    if outcome.status is RunStatus.COMPLETED:
        return EXIT_OK
    if outcome.status is RunStatus.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_FAILED


async def _pipeline_command(args: argparse.Namespace) -> int:
    config = load_release_config(args.config)
    orchestrator = PipelineOrchestrator()
    loop = asyncio.get_running_loop()
    # Ctrl-C asks the run to stop at the next checkpoint
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
    try:
        entry = getattr(orchestrator, _PIPELINE_COMMANDS[args.command])
        outcome: RunOutcome = await entry(config)
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        orchestrator.close()

    _emit(args, outcome.message, outcome.to_dict())
    return _exit_code(outcome)


def _installation(args: argparse.Namespace) -> tuple[Installation, bool]:
    """The installation to update, and whether it is this process's own."""
    if args.install_dir is None and args.executable is None and args.platform is None:
        return Installation.current(args.product, args.current), True

    platform = PlatformTarget.parse(args.platform) if args.platform else PlatformTarget.current()
    install_dir = Path(args.install_dir or ".").resolve()
    executable = (
        Path(args.executable).resolve()
        if args.executable
        else install_dir / platform.executable_name(args.product)
    )
    return Installation(args.product, args.current, platform, install_dir, executable), False


async def _update_command(args: argparse.Namespace) -> int:
    installation, own = _installation(args)
    repository = args.repo or get_settings().update_repository
    development = None if own else get_settings().is_development
    resolver = UpdateResolver(installation, repository, args.token, development=development)

    if args.command == "check-update":
        result = await resolver.check()
        _emit(args, result.message, result.to_dict())
        return EXIT_OK if result.status is not CheckStatus.NO_COMPATIBLE_ASSET else EXIT_FAILED

    installed = await resolver.update()
    snapshot = resolver.status_snapshot()
    if installed:
        _emit(args, "Update handed off; restarting.", snapshot)
        return EXIT_OK
    result = resolver.last_result
    if resolver.last_error is None and result is not None and result.candidate is None:
        _emit(args, result.message, snapshot)
        return EXIT_OK
    _emit(args, resolver.last_error or "Update was not applied.", snapshot)
    return EXIT_FAILED


def _workflows_command(args: argparse.Namespace) -> int:
    project_dir = Path(args.project_dir).resolve()
    bundle = Path(args.bundle).resolve() if args.bundle else None
    if args.regenerate:
        path = regenerate_bundle(project_dir, bundle)
        _emit(args, f"Workflow bundle written to {path}", {"bundle": str(path)})
        return EXIT_OK

    extracted = ensure_workflows(project_dir, bundle)
    if extracted:
        message = f"Installed {len(extracted)} workflow file(s) into .github/workflows/"
    else:
        message = ".github/workflows already exists; nothing to do."
    _emit(args, message, {"extracted": [str(path) for path in extracted]})
    return EXIT_OK


async def main(argv: list[str] | None = None) -> int:
    """Parse arguments, dispatch the command, return the exit code."""
    args = build_parser().parse_args(argv)
    try:
        if args.command in _PIPELINE_COMMANDS:
            return await _pipeline_command(args)
        if args.command in ("check-update", "update"):
            return await _update_command(args)
        return _workflows_command(args)
    except (ShipyardError, OSError, ValueError) as exc:
        log.error("command_failed", command=args.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILED


def run() -> None:
    """Run the application."""
    setup_logging()
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        code = EXIT_CANCELLED
    sys.exit(code)


if __name__ == "__main__":
    run()
