"""Release pipeline orchestrator.

Stage order is fixed:

1. Validate the configuration (no side effects on failure)
2. Assign the release version
3. Build every selected platform, one at a time, on the build scheduler
4. Sign the MacOS bundle (if enabled)
5. Package each platform build into ``Releases/v{version}/``
6. Generate the Windows installer (if enabled)
7. Publish to the release host (if enabled), then trigger the disk-image job

Cancellation is cooperative: the flag is polled between stages and before
each platform build and each upload. Work already produced stays on disk.
Only one run may be in flight at a time.
"""

from __future__ import annotations

import asyncio
import json
import shutil
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from shipyard.archive import compress_directory_async
from shipyard.commands import Runner, run_command
from shipyard.config import ReleaseConfig, StageToggles, get_settings
from shipyard.errors import ConfigurationError, PipelineCancelled, ShipyardError
from shipyard.logging import get_logger
from shipyard.pipeline.compiler import CommandCompiler, Compiler
from shipyard.pipeline.environment import suspend_hot_reload
from shipyard.pipeline.installer import InstallerBuilder, script_filename
from shipyard.pipeline.publish import ClientFactory, Publisher, default_client_factory
from shipyard.pipeline.run import PipelineRun, RunOutcome, RunStatus, Stage, StageOutcome
from shipyard.pipeline.scheduler import BuildScheduler
from shipyard.pipeline.signing import MacSigner
from shipyard.pipeline.validation import validate_release_config
from shipyard.platforms import PlatformTarget
from shipyard.versioning import VersionStore, assign_version

log = get_logger("shipyard.pipeline.orchestrator")

SignerFactory = Callable[..., MacSigner]
StageSequence = Callable[[ReleaseConfig], Awaitable[None]]


class PipelineOrchestrator:
    """Runs release pipelines, one at a time."""

    def __init__(
        self,
        *,
        compiler: Compiler | None = None,
        scheduler: BuildScheduler | None = None,
        runner: Runner = run_command,
        client_factory: ClientFactory = default_client_factory,
        signer_factory: SignerFactory = MacSigner,
        state_path: Path | None = None,
    ) -> None:
        self._compiler = compiler or CommandCompiler()
        self._scheduler = scheduler or BuildScheduler()
        self._runner = runner
        self._client_factory = client_factory
        self._signer_factory = signer_factory
        self._state_path_override = state_path
        self._state_path: Path | None = state_path
        self._lock = asyncio.Lock()
        self._run: PipelineRun | None = None
        self._release_files: list[Path] = []
        self._release_url: str | None = None
        self._completion_note = ""

    # ------------------------------------------------------------------
    # Public status surface
    # ------------------------------------------------------------------

    @property
    def is_processing(self) -> bool:
        return self._lock.locked()

    @property
    def current_run(self) -> PipelineRun | None:
        return self._run

    @property
    def status_message(self) -> str:
        return self._run.status_message if self._run else "Idle"

    def status_snapshot(self) -> dict[str, Any]:
        """Current run state for presentation layers."""
        snapshot = self._run.snapshot() if self._run else PipelineRun().snapshot()
        snapshot["processing"] = self.is_processing
        return snapshot

    def cancel(self) -> bool:
        """Request cooperative cancellation of the in-flight run."""
        if self._run is None or not self.is_processing:
            return False
        self._run.cancel_requested = True
        self._set_status("Cancellation requested. Stopping after current step...")
        log.info("pipeline_cancel_requested", stage=self._stage_name())
        return True

    def close(self) -> None:
        self._scheduler.shutdown()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(self, config: ReleaseConfig) -> RunOutcome:
        """Run the full pipeline."""
        return await self._guarded(config, self._full_sequence, "Build pipeline")

    async def build_only(self, config: ReleaseConfig) -> RunOutcome:
        """Assign the version and build the selected platforms."""
        return await self._guarded(config, self._build_sequence, "Build")

    async def package_only(self, config: ReleaseConfig) -> RunOutcome:
        """Package existing builds for the current version."""
        return await self._guarded(config, self._package_sequence, "Packaging")

    async def trigger_disk_image(self, config: ReleaseConfig) -> RunOutcome:
        """Dispatch the disk-image job for the current version's release."""
        return await self._guarded(config, self._disk_image_sequence, "DMG creation")

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    async def _guarded(
        self, config: ReleaseConfig, sequence: StageSequence, label: str
    ) -> RunOutcome:
        if self._lock.locked():
            return RunOutcome(
                status=RunStatus.FAILED, message="A pipeline run is already in progress"
            )

        async with self._lock:
            run = self._begin(config)
            log.info("pipeline_started", mode=label, product=config.product_name)

            status = RunStatus.FAILED
            try:
                await sequence(config)
                status = RunStatus.COMPLETED
                self._set_status(f"{label} completed successfully! {self._completion_note}".strip())
            except PipelineCancelled:
                status = RunStatus.CANCELLED
                # A stage that already finished keeps its result.
                if run.current_stage is not None and run.current_stage not in run.outcomes:
                    run.record(run.current_stage, StageOutcome.CANCELLED)
                self._set_status(f"{label} cancelled.")
                log.info("pipeline_cancelled", stage=self._stage_name())
            except (ShipyardError, OSError, ValueError) as exc:
                run.fail(run.current_stage or Stage.VALIDATE, f"{label} failed: {exc}")
                log.error("pipeline_failed", stage=self._stage_name(), error=str(exc))
            except Exception as exc:
                run.fail(
                    run.current_stage or Stage.VALIDATE,
                    f"{label} failed: Unexpected error: {exc}",
                )
                log.exception("pipeline_unexpected_error", stage=self._stage_name())
            finally:
                run.completed_at = datetime.now(UTC).isoformat()
                self._save_state()

            outcome = RunOutcome(
                status=status,
                message=run.status_message,
                version=run.version,
                outcomes=dict(run.outcomes),
                release_files=list(self._release_files),
                release_url=self._release_url,
            )
            log.info("pipeline_finished", mode=label, status=status.value, version=outcome.version)
            return outcome

    def _begin(self, config: ReleaseConfig) -> PipelineRun:
        self._run = PipelineRun()
        self._release_files = []
        self._release_url = None
        self._completion_note = ""
        if self._state_path_override is None:
            self._state_path = config.resolve(get_settings().state_path)
        return self._run

    # ------------------------------------------------------------------
    # Sequences
    # ------------------------------------------------------------------

    async def _full_sequence(self, config: ReleaseConfig) -> None:
        self._validate(config)
        with suspend_hot_reload():
            version = await self._assign_version(config)
            await self._build(config, version)
            await self._sign(config)
            await self._package(config, version)
            await self._installer(config, version)
            await self._publish(config, version)
            self._checkpoint()

    async def _build_sequence(self, config: ReleaseConfig) -> None:
        self._validate(config.model_copy(update={"stages": StageToggles()}))
        with suspend_hot_reload():
            version = await self._assign_version(config)
            await self._build(config, version)
            self._checkpoint()

    async def _package_sequence(self, config: ReleaseConfig) -> None:
        self._validate(config.model_copy(update={"stages": StageToggles()}), require_compiler=False)
        version = self._load_version(config)
        await self._package(config, version)

    async def _disk_image_sequence(self, config: ReleaseConfig) -> None:
        self._enter(Stage.VALIDATE, "Validating settings...")
        publish = config.publish
        if not publish.repository_url or not publish.token.get_secret_value():
            raise ConfigurationError(
                "GitHub repository URL and token are required for DMG creation."
            )
        self._record(Stage.VALIDATE, StageOutcome.SUCCEEDED)

        version = self._load_version(config)
        self._enter(Stage.PUBLISH, "Triggering manual DMG creation...")
        publisher = Publisher(
            config, client_factory=self._client_factory, on_status=self._set_status
        )
        release = await publisher.trigger_disk_image(version)
        self._release_url = release.html_url or None
        self._record(Stage.PUBLISH, StageOutcome.SUCCEEDED)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _validate(self, config: ReleaseConfig, *, require_compiler: bool = True) -> None:
        self._enter(Stage.VALIDATE, "Validating settings...")
        validate_release_config(config, require_compiler=require_compiler)
        self._record(Stage.VALIDATE, StageOutcome.SUCCEEDED)

    def _load_version(self, config: ReleaseConfig) -> str:
        version = VersionStore(config.version_path).read()
        self._active_run().version = version
        return version

    async def _assign_version(self, config: ReleaseConfig) -> str:
        self._checkpoint()
        self._enter(Stage.ASSIGN_VERSION, "Updating version...")
        store = VersionStore(config.version_path)
        current = store.read()
        version = assign_version(current, config.version_policy, config.manual_version)
        if version != current:
            store.write(version)
        self._active_run().version = version
        log.info(
            "version_assigned",
            previous=current,
            version=version,
            policy=config.version_policy.value,
        )
        self._record(Stage.ASSIGN_VERSION, StageOutcome.SUCCEEDED)
        return version

    async def _build(self, config: ReleaseConfig, version: str) -> None:
        self._checkpoint()
        self._enter(Stage.BUILD, "Building selected platforms...")
        for platform in config.ordered_platforms():
            self._checkpoint()
            self._set_status(f"Building {platform.label}...")
            await self._scheduler.submit(
                lambda p=platform: self._compiler.build(config, p, version),
                label=f"build {platform.label}",
            )
            log.info("platform_built", platform=platform.label, version=version)
        self._record(Stage.BUILD, StageOutcome.SUCCEEDED)

    async def _sign(self, config: ReleaseConfig) -> None:
        self._checkpoint()
        if not (config.stages.sign and PlatformTarget.MACOS in config.platforms):
            self._record(Stage.SIGN, StageOutcome.SKIPPED)
            return

        self._enter(Stage.SIGN, "Signing macOS build...")
        app_path = config.build_path(PlatformTarget.MACOS) / PlatformTarget.MACOS.executable_name(
            config.product_name
        )
        signer = self._signer_factory(config, runner=self._runner, on_status=self._set_status)
        result = await signer.sign(app_path)

        if result.ad_hoc:
            self._completion_note = "macOS build was signed ad-hoc after a signing timeout."
        elif result.notarized is True:
            self._completion_note = "Notarization completed successfully!"
        elif result.notarized is False:
            self._completion_note = f"Notarization failed: {result.notarization_error}"
        self._set_status(f"macOS signing completed successfully. {self._completion_note}".strip())
        self._record(Stage.SIGN, StageOutcome.SUCCEEDED)

    async def _package(self, config: ReleaseConfig, version: str) -> None:
        self._checkpoint()
        self._enter(Stage.PACKAGE, "Creating release files...")
        release_dir = config.release_path(version)
        if release_dir.exists():
            shutil.rmtree(release_dir)
        release_dir.mkdir(parents=True)

        produced: list[Path] = []
        for platform in config.ordered_platforms():
            self._checkpoint()
            build_dir = config.build_path(platform)
            if not build_dir.is_dir():
                log.warning("package_build_missing", platform=platform.label, path=str(build_dir))
                continue
            archive = release_dir / platform.archive_name(config.product_name)
            self._set_status(f"Packaging {platform.label}...")
            await compress_directory_async(build_dir, archive, config.package_exclude)
            produced.append(archive)

        if not produced:
            raise ShipyardError("No build output found to package")
        self._release_files.extend(produced)
        self._set_status("Release files created.")
        self._record(Stage.PACKAGE, StageOutcome.SUCCEEDED)

    async def _installer(self, config: ReleaseConfig, version: str) -> None:
        self._checkpoint()
        if not (config.stages.installer and PlatformTarget.WINDOWS in config.platforms):
            self._record(Stage.INSTALLER, StageOutcome.SKIPPED)
            return

        self._enter(Stage.INSTALLER, "Creating Windows installer...")
        builder = InstallerBuilder(config, runner=self._runner)
        self._set_status("Compiling installer...")
        installer = await builder.build(version)
        script = installer.parent / script_filename(config.product_name)
        self._release_files.extend([installer, script])
        self._set_status("Windows installer created successfully.")
        self._record(Stage.INSTALLER, StageOutcome.SUCCEEDED)

    async def _publish(self, config: ReleaseConfig, version: str) -> None:
        self._checkpoint()
        if not config.stages.publish:
            self._record(Stage.PUBLISH, StageOutcome.SKIPPED)
            return

        self._enter(Stage.PUBLISH, "Publishing release...")
        publisher = Publisher(
            config,
            client_factory=self._client_factory,
            on_status=self._set_status,
            checkpoint=self._checkpoint,
        )
        result = await publisher.publish(version)
        self._release_url = result.release.html_url or None
        if result.disk_image_error:
            note = f"DMG creation workflow failed: {result.disk_image_error}"
            self._completion_note = f"{self._completion_note} {note}".strip()
        self._record(Stage.PUBLISH, StageOutcome.SUCCEEDED)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _active_run(self) -> PipelineRun:
        if self._run is None:
            raise RuntimeError("No active pipeline run")
        return self._run

    def _checkpoint(self) -> None:
        if self._run is not None and self._run.cancel_requested:
            raise PipelineCancelled("Build pipeline cancelled.")

    def _enter(self, stage: Stage, message: str) -> None:
        self._active_run().enter(stage, message)
        log.info("pipeline_stage_started", stage=stage.value)
        self._save_state()

    def _record(self, stage: Stage, outcome: StageOutcome) -> None:
        self._active_run().record(stage, outcome)

    def _set_status(self, message: str) -> None:
        if self._run is not None:
            self._run.status_message = message
        log.debug("pipeline_status", status=message)

    def _stage_name(self) -> str | None:
        if self._run is None or self._run.current_stage is None:
            return None
        return self._run.current_stage.value

    def _save_state(self) -> None:
        """Persist the run snapshot atomically (tmp file + replace)."""
        if self._state_path is None or self._run is None:
            return
        try:
            self._state_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._state_path.with_suffix(".tmp")
            tmp_path.write_text(
                json.dumps(self.status_snapshot(), indent=2, sort_keys=True),
                encoding="utf-8",
            )
            tmp_path.replace(self._state_path)
        except OSError:
            log.exception("pipeline_state_save_failed", path=str(self._state_path))
