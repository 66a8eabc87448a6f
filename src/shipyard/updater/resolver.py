"""Self-update client.

``UpdateResolver`` asks the release host whether a newer, platform-compatible
release exists and, on request, installs it. An update is all-or-nothing:
either the running installation is left untouched or a fully-staged
replacement is handed to a detached swap script (archives) or copied into
the applications directory with rollback (disk images).
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from shipyard.archive import extract_archive
from shipyard.commands import Runner, run_command
from shipyard.config import get_settings
from shipyard.errors import (
    AuthenticationError,
    ConfigurationError,
    ForbiddenError,
    NetworkError,
    NotFoundError,
    ShipyardError,
    UpdateError,
)
from shipyard.host import (
    ReleaseAsset,
    ReleaseHostClient,
    ReleaseRecord,
    RepositoryRef,
    parse_repository_url,
)
from shipyard.logging import get_logger
from shipyard.platforms import PlatformTarget
from shipyard.updater import diskimage
from shipyard.updater.models import (
    AssetKind,
    CheckResult,
    CheckStatus,
    Installation,
    UpdateCandidate,
    UpdateState,
)
from shipyard.updater.swap import SwapPlan, default_quit, launch_detached, write_swap_script
from shipyard.versioning import compare_versions, is_newer, parse_version, version_from_tag

log = get_logger("shipyard.updater.resolver")

ClientFactory = Callable[[RepositoryRef, str | None], ReleaseHostClient]
Launcher = Callable[[Path, PlatformTarget], Any]

_FRIENDLY_ERRORS: dict[type[NetworkError], str] = {
    NotFoundError: "Repository not found. Please check the repository URL and make sure it "
    "exists. If it is private, a token with access is required.",
    AuthenticationError: "Authentication failed. Please check your GitHub token. Make sure it "
    "has the 'repo' scope and is valid.",
    ForbiddenError: "Access forbidden. The token may not have the required permissions or the "
    "repository may be private.",
}


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _default_client_factory(ref: RepositoryRef, token: str | None) -> ReleaseHostClient:
    return ReleaseHostClient(ref.owner, ref.repo, token)


def _explain(err: NetworkError) -> NetworkError:
    """Same error category, with a message the user can act on."""
    message = _FRIENDLY_ERRORS.get(type(err))
    if message is None:
        return err
    return type(err)(message, err.status_code, err.body)


def select_latest(releases: list[ReleaseRecord]) -> tuple[ReleaseRecord, str] | None:
    """The stable release with the greatest version, with that version.

    Drafts, prereleases and tags that are not numeric versions are ignored.
    """
    best: tuple[ReleaseRecord, str] | None = None
    for release in releases:
        if release.prerelease or release.draft:
            continue
        version = version_from_tag(release.tag_name)
        try:
            parse_version(version)
        except ValueError:
            log.debug("release_tag_skipped", tag=release.tag_name)
            continue
        if best is None or compare_versions(version, best[1]) > 0:
            best = (release, version)
    return best


def match_asset(
    release: ReleaseRecord, platform: PlatformTarget, product_name: str
) -> tuple[ReleaseAsset, AssetKind] | None:
    """First asset of *release* matching the platform's naming, by preference."""
    for name in platform.update_asset_names(product_name):
        asset = release.asset_named(name)
        if asset is not None:
            return asset, AssetKind.for_name(name)
    return None


class UpdateResolver:
    """Checks for and installs updates of one installed application."""

    def __init__(
        self,
        installation: Installation,
        repository: str = "",
        token: str | None = None,
        *,
        client_factory: ClientFactory = _default_client_factory,
        runner: Runner = run_command,
        launcher: Launcher = launch_detached,
        quit_app: Callable[[], None] = default_quit,
        development: bool | None = None,
        work_root: Path | None = None,
        applications_dir: Path = Path("/Applications"),
        unmount_delay: float | None = None,
    ) -> None:
        settings = get_settings()
        self.installation = installation
        self._repository = repository or settings.update_repository
        if token is None and settings.github_token is not None:
            token = settings.github_token.get_secret_value() or None
        self._token = token
        self._client_factory = client_factory
        self._runner = runner
        self._launcher = launcher
        self._quit_app = quit_app
        if development is None:
            development = settings.is_development or not installation.is_frozen
        self.development = development
        self._work_root = work_root or Path(tempfile.gettempdir())
        self._applications_dir = applications_dir
        self._unmount_delay = (
            unmount_delay if unmount_delay is not None else settings.disk_image_unmount_delay
        )
        self._lock = asyncio.Lock()
        self._unmount_tasks: set[asyncio.Task] = set()

        self.state = UpdateState.IDLE
        self.last_error: str | None = None
        self.last_checked: str | None = None
        self.last_result: CheckResult | None = None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def configure(self, repository: str, token: str | None = None) -> None:
        """Point the resolver at another repository (and token)."""
        self._repository = repository
        self._token = token or None
        self.last_result = None

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "current_version": self.installation.version,
            "repository": self._repository,
            "last_checked": self.last_checked,
            "last_error": self.last_error,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }

    def _set_state(self, state: UpdateState) -> None:
        if state is not self.state:
            log.debug("update_state_changed", previous=self.state.value, state=state.value)
        self.state = state

    # ------------------------------------------------------------------
    # Check
    # ------------------------------------------------------------------

    async def check(self) -> CheckResult:
        """Ask the release host whether a newer compatible release exists.

        Raises ``ConfigurationError`` when the repository or the installed
        version does not parse and
        a ``NetworkError`` subclass (not found, auth failed, forbidden, ...)
        when the host refuses.
        """
        self._set_state(UpdateState.CHECKING)
        self.last_checked = _now_iso()
        try:
            result = await self._check()
        except ShipyardError as exc:
            self._set_state(UpdateState.ERROR)
            self.last_error = str(exc)
            raise

        self.last_result = result
        self.last_error = None
        if result.status is CheckStatus.UPDATE_AVAILABLE:
            self._set_state(UpdateState.UPDATE_AVAILABLE)
        elif result.status is CheckStatus.UP_TO_DATE:
            self._set_state(UpdateState.UP_TO_DATE)
        else:
            self._set_state(UpdateState.IDLE)
        log.info(
            "update_check_completed",
            status=result.status.value,
            current=result.current_version,
            latest=result.latest_version,
        )
        return result

    async def _check(self) -> CheckResult:
        ref = parse_repository_url(self._repository, strict=False)
        current = self.installation.version
        try:
            parse_version(current)
        except ValueError as exc:
            raise ConfigurationError(f"Installed version is not a valid version: {exc}") from exc

        client = self._client_factory(ref, self._token)
        try:
            try:
                await client.get_repository()
                releases = await client.list_releases()
            except NetworkError as err:
                raise _explain(err) from err
        finally:
            await client.close()

        if not releases:
            return CheckResult(
                CheckStatus.NO_RELEASES,
                current,
                message="No releases found for this repository. "
                "Please create at least one release.",
            )

        latest = select_latest(releases)
        if latest is None:
            return CheckResult(
                CheckStatus.NO_RELEASES, current, message="No stable releases found."
            )
        release, version = latest

        if not is_newer(version, current):
            return CheckResult(
                CheckStatus.UP_TO_DATE,
                current,
                version,
                message=f"You are running the latest version ({current}).",
            )

        matched = match_asset(release, self.installation.platform, self.installation.product_name)
        if matched is None:
            expected = self.installation.platform.update_asset_names(
                self.installation.product_name
            )
            return CheckResult(
                CheckStatus.NO_COMPATIBLE_ASSET,
                current,
                version,
                message=f"Release {release.tag_name} has no asset for "
                f"{self.installation.platform}. Expected one of: {', '.join(expected)}",
            )

        asset, kind = matched
        candidate = UpdateCandidate(
            version=version,
            tag=release.tag_name,
            asset=asset,
            kind=kind,
            download_url=asset.download_url,
            release_notes=release.body or "",
            html_url=release.html_url or "",
        )
        return CheckResult(
            CheckStatus.UPDATE_AVAILABLE,
            current,
            version,
            candidate,
            message=f"Update available: {current} -> {version}",
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self) -> bool:
        """Download and install the newest compatible release.

        Returns True once the replacement has been handed off and the
        application asked to quit. Returns False when there is nothing to
        install, the host is a development environment, or any step failed;
        in every False case the running installation is untouched.
        """
        if self.development:
            log.warning(
                "update_refused_development_host",
                reason="Updates cannot be applied from a development environment",
            )
            return False

        if self._lock.locked():
            log.warning("update_already_running")
            return False

        async with self._lock:
            try:
                result = await self.check()
            except ShipyardError as exc:
                log.error("update_check_failed", error=str(exc))
                return False
            if result.candidate is None:
                return False

            work_dir = Path(tempfile.mkdtemp(prefix="shipyard-update-", dir=self._work_root))
            try:
                return await self._install(result.candidate, work_dir)
            except (ShipyardError, OSError) as exc:
                shutil.rmtree(work_dir, ignore_errors=True)
                self._set_state(UpdateState.ERROR)
                self.last_error = str(exc)
                log.error("update_failed", version=result.candidate.version, error=str(exc))
                return False
            except Exception as exc:
                shutil.rmtree(work_dir, ignore_errors=True)
                self._set_state(UpdateState.ERROR)
                self.last_error = f"Unexpected error: {exc}"
                log.exception("update_unexpected_error")
                return False

    async def _install(self, candidate: UpdateCandidate, work_dir: Path) -> bool:
        download = await self._download(candidate, work_dir)
        if candidate.kind is AssetKind.DISK_IMAGE:
            return await self._install_disk_image(candidate, download, work_dir)
        return await self._install_archive(candidate, download, work_dir)

    async def _download(self, candidate: UpdateCandidate, work_dir: Path) -> Path:
        self._set_state(UpdateState.DOWNLOADING)
        ref = parse_repository_url(self._repository, strict=False)
        destination = work_dir / candidate.asset.name
        client = self._client_factory(ref, self._token)
        try:
            await client.download_asset(candidate.download_url, destination)
        finally:
            await client.close()

        size = destination.stat().st_size if destination.exists() else 0
        if size == 0:
            raise UpdateError("Downloaded update is empty", reason="integrity")
        expected = candidate.asset.size
        if expected and size != expected:
            raise UpdateError(
                f"Downloaded update is incomplete ({size} of {expected} bytes)",
                reason="integrity",
            )
        log.info("update_downloaded", asset=candidate.asset.name, size=size)
        return destination

    async def _install_archive(
        self, candidate: UpdateCandidate, archive: Path, work_dir: Path
    ) -> bool:
        self._set_state(UpdateState.EXTRACTING)
        staging = work_dir / "staging"
        await extract_archive(archive, staging)

        self._set_state(UpdateState.INSTALLING)
        installation = self.installation
        if not installation.install_dir.is_dir():
            raise UpdateError(
                f"Installation directory not found: {installation.install_dir}",
                reason="install",
            )
        plan = SwapPlan(
            staging_dir=staging,
            install_dir=installation.install_dir,
            executable=installation.executable,
            work_dir=work_dir,
            pid=installation.pid,
            platform=installation.platform,
        )
        script = write_swap_script(plan, self._work_root)
        try:
            self._launcher(script, installation.platform)
        except (ShipyardError, OSError):
            script.unlink(missing_ok=True)
            raise

        self._set_state(UpdateState.RESTARTING)
        log.info("update_handed_off", version=candidate.version, script=str(script))
        self._quit_app()
        return True

    async def _install_disk_image(
        self, candidate: UpdateCandidate, dmg: Path, work_dir: Path
    ) -> bool:
        self._set_state(UpdateState.INSTALLING)
        mount_point = await diskimage.mount(dmg, runner=self._runner)

        preferred = self.installation.platform.executable_name(self.installation.product_name)
        app = diskimage.find_app(mount_point, preferred)
        if app is not None:
            target = self._applications_dir / app.name
            try:
                await diskimage.replace_app(app, target, runner=self._runner)
            except (UpdateError, OSError) as exc:
                log.warning("disk_image_auto_install_failed", error=str(exc))
            else:
                await diskimage.unmount(mount_point, runner=self._runner)
                shutil.rmtree(work_dir, ignore_errors=True)
                await diskimage.open_path(target, new_instance=True, runner=self._runner)
                self._set_state(UpdateState.RESTARTING)
                log.info("update_installed", version=candidate.version, target=str(target))
                self._quit_app()
                return True
        else:
            log.warning("disk_image_app_not_found", mount_point=str(mount_point))

        # Fall back to a manual install from the opened volume.
        try:
            await diskimage.open_path(mount_point, runner=self._runner)
        finally:
            task = diskimage.schedule_unmount(
                mount_point,
                self._unmount_delay,
                runner=self._runner,
                on_done=lambda: shutil.rmtree(work_dir, ignore_errors=True),
            )
            self._unmount_tasks.add(task)
            task.add_done_callback(self._unmount_tasks.discard)

        self._set_state(UpdateState.IDLE)
        self.last_error = (
            f"Automatic installation failed. Drag {preferred} from the opened disk image "
            "into Applications to finish updating."
        )
        return False

    # ------------------------------------------------------------------
    # Periodic checks
    # ------------------------------------------------------------------

    async def run_periodic(
        self,
        stop_event: asyncio.Event,
        interval: float | None = None,
        *,
        max_backoff: float = 3600.0,
    ) -> None:
        """Check for updates every *interval* seconds until *stop_event* is set.

        Retryable host errors (rate limit, server error) shorten the next wait
        with exponential backoff; other failures wait the normal interval.
        """
        interval = interval if interval is not None else get_settings().update_check_interval
        failures = 0
        while not stop_event.is_set():
            wait = interval
            try:
                await self.check()
                failures = 0
            except NetworkError as exc:
                if exc.retryable:
                    failures += 1
                    wait = min(max_backoff, 2.0 * (2 ** (failures - 1)))
                log.warning(
                    "periodic_update_check_failed",
                    error=str(exc),
                    status=exc.status_code,
                    retry_in=wait,
                )
            except ConfigurationError as exc:
                log.error("periodic_update_check_misconfigured", error=str(exc))
                return
            except ShipyardError as exc:
                log.warning("periodic_update_check_failed", error=str(exc), retry_in=wait)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=wait)
            except TimeoutError:
                continue
