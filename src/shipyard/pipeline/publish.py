"""Publish stage: release record, asset uploads, disk-image job trigger."""

from __future__ import annotations

import base64
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from shipyard.commands import retry_with_backoff
from shipyard.config import ReleaseConfig
from shipyard.errors import NetworkError, ShipyardError
from shipyard.host import (
    ReleaseHostClient,
    ReleaseRecord,
    RepositoryRef,
    WorkflowDispatch,
    WorkflowSigningParams,
    parse_repository_url,
)
from shipyard.logging import get_logger
from shipyard.platforms import PlatformTarget
from shipyard.versioning import tag_for

log = get_logger("shipyard.pipeline.publish")

RELEASE_FILE_PATTERNS = ("*.zip", "*.dmg", "*.exe", "*.iss")

ClientFactory = Callable[[RepositoryRef, str], ReleaseHostClient]
StatusCallback = Callable[[str], None]


def default_client_factory(ref: RepositoryRef, token: str) -> ReleaseHostClient:
    return ReleaseHostClient(ref.owner, ref.repo, token)


def release_files(folder: Path) -> list[Path]:
    """Uploadable files in a version folder, grouped by kind."""
    files: list[Path] = []
    for pattern in RELEASE_FILE_PATTERNS:
        files.extend(sorted(folder.glob(pattern)))
    return files


@dataclass
class PublishResult:
    release: ReleaseRecord
    uploaded: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    reused_release: bool = False
    disk_image_triggered: bool | None = None
    disk_image_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.release.tag_name,
            "release_id": self.release.id,
            "html_url": self.release.html_url,
            "uploaded": self.uploaded,
            "skipped": self.skipped,
            "reused_release": self.reused_release,
            "disk_image_triggered": self.disk_image_triggered,
            "disk_image_error": self.disk_image_error,
        }


class Publisher:
    """Publishes one version's release folder to the release host."""

    def __init__(
        self,
        config: ReleaseConfig,
        *,
        client_factory: ClientFactory = default_client_factory,
        on_status: StatusCallback | None = None,
        checkpoint: Callable[[], None] | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory
        self._on_status = on_status
        self._checkpoint = checkpoint

    def _status(self, message: str) -> None:
        if self._on_status is not None:
            self._on_status(message)

    def _check(self) -> None:
        if self._checkpoint is not None:
            self._checkpoint()

    @property
    def repository(self) -> RepositoryRef:
        return parse_repository_url(self._config.publish.repository_url, strict=True)

    def _client(self) -> ReleaseHostClient:
        return self._client_factory(self.repository, self._config.publish.token.get_secret_value())

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def publish(self, version: str) -> PublishResult:
        """Create (or reuse) the release for *version* and upload its files.

        The release record always exists before the first upload starts.
        Files already attached to a reused release are not uploaded again.
        """
        folder = self._config.release_path(version)
        if not folder.is_dir():
            raise FileNotFoundError(
                f"Release folder not found: {folder}. Create release files first."
            )
        files = release_files(folder)
        if not files:
            raise ShipyardError("No release files found to upload")

        publish = self._config.publish
        tag = tag_for(version)
        title = publish.title or f"{self._config.product_name}-{version}"
        body = publish.description or f"Release {version}"

        async with self._client() as client:
            self._status("Creating GitHub release...")
            release, reused = await retry_with_backoff(
                lambda: self._find_or_create(client, tag, title, body, publish.prerelease),
                label="create_release",
            )
            if reused:
                log.info("release_reused", tag=tag, release_id=release.id)

            result = PublishResult(release=release, reused_release=reused)
            existing = release.asset_names
            target = release

            for index, path in enumerate(files, start=1):
                self._check()
                if path.name in existing:
                    log.info("release_asset_skipped", asset=path.name)
                    result.skipped.append(path.name)
                    continue
                self._status(f"Uploading {path.name} ({index}/{len(files)})...")
                await retry_with_backoff(
                    lambda p=path: client.upload_asset(target, p), label=f"upload {path.name}"
                )
                result.uploaded.append(path.name)

            self._status("GitHub release created successfully!")

            if self._config.stages.disk_image and PlatformTarget.MACOS in self._config.platforms:
                self._check()
                await self._trigger_after_publish(client, release, version, result)

        log.info(
            "release_published",
            tag=tag,
            uploaded=len(result.uploaded),
            skipped=len(result.skipped),
            reused=reused,
        )
        return result

    async def _find_or_create(
        self, client: ReleaseHostClient, tag: str, title: str, body: str, prerelease: bool
    ) -> tuple[ReleaseRecord, bool]:
        """Return the release for *tag*, creating it if absent.

        The tag is looked up on every attempt: a create that failed with a
        5xx may still have gone through on the host. A 422 from the create
        means the tag was claimed in the meantime, so that release is reused.
        """
        existing = await client.get_release_by_tag(tag)
        if existing is not None:
            return existing, True
        try:
            return await client.create_release(tag, title, body, prerelease=prerelease), False
        except NetworkError as exc:
            if exc.status_code != 422:
                raise
            existing = await client.get_release_by_tag(tag)
            if existing is None:
                raise
            return existing, True

    async def _trigger_after_publish(
        self,
        client: ReleaseHostClient,
        release: ReleaseRecord,
        version: str,
        result: PublishResult,
    ) -> None:
        archive = self._config.release_path(version) / PlatformTarget.MACOS.archive_name(
            self._config.product_name
        )
        if not archive.is_file():
            log.warning("disk_image_skipped_no_archive", archive=str(archive))
            result.disk_image_triggered = False
            result.disk_image_error = f"{archive.name} not found"
            return

        self._status("Triggering DMG creation workflow...")
        try:
            await self._dispatch(client, version, release_id_from(release))
        except ShipyardError as err:
            log.warning("disk_image_trigger_failed", error=str(err))
            self._status(f"DMG creation workflow failed: {err}")
            result.disk_image_triggered = False
            result.disk_image_error = str(err)
            return

        self._status(
            "DMG creation workflow triggered successfully! "
            "The DMG will be attached to the release automatically."
        )
        result.disk_image_triggered = True

    # ------------------------------------------------------------------
    # Disk image job
    # ------------------------------------------------------------------

    def signing_params(self) -> WorkflowSigningParams | None:
        """Signing parameters for the remote job, or None when signing is off."""
        config = self._config
        if not config.stages.sign:
            return None

        entitlements = ""
        if config.signing.entitlements_path:
            path = config.resolve(config.signing.entitlements_path)
            if path.is_file():
                entitlements = base64.b64encode(path.read_bytes()).decode("ascii")

        secret_name = config.publish.p12_secret_name
        has_password = bool(config.signing.certificate_password.get_secret_value())
        return WorkflowSigningParams(
            use_proper_signing=True,
            bundle_identifier=config.signing.bundle_identifier,
            enable_notarization=config.stages.notarize,
            team_id=config.signing.team_id,
            apple_id=config.signing.apple_id,
            entitlements_content=entitlements,
            use_github_secrets=bool(secret_name),
            p12_secret_name=secret_name,
            has_p12_password=has_password if secret_name else None,
        )

    def dispatch_for(self, version: str, release_id: str) -> WorkflowDispatch:
        config = self._config
        archive_name = PlatformTarget.MACOS.archive_name(config.product_name)
        download_path = f"releases/download/{tag_for(version)}/{archive_name}"
        return WorkflowDispatch(
            ref=config.publish.workflow_ref,
            download_url=f"{self.repository.web_url}/{download_path}",
            app_name=config.product_name,
            version=version,
            release_id=release_id,
            signing_params=self.signing_params(),
        )

    async def _dispatch(self, client: ReleaseHostClient, version: str, release_id: str) -> None:
        dispatch = self.dispatch_for(version, release_id)
        await retry_with_backoff(
            lambda: client.trigger_workflow(self._config.publish.workflow, dispatch),
            label="trigger_workflow",
        )

    async def trigger_disk_image(self, version: str) -> ReleaseRecord:
        """Dispatch the disk-image job for an already-published version."""
        tag = tag_for(version)
        async with self._client() as client:
            release = await retry_with_backoff(
                lambda: client.get_release_by_tag(tag), label="get_release_by_tag"
            )
            if release is None:
                raise ShipyardError(
                    f"No release found for {tag}. Please create a release first."
                )
            await self._dispatch(client, version, str(release.id))
        log.info("disk_image_triggered", tag=tag, release_id=release.id)
        return release


def release_id_from(release: ReleaseRecord) -> str:
    """Release id, falling back to the id embedded in the upload URL.

    Upload URLs look like ``.../repos/{owner}/{repo}/releases/{id}/assets{?name,label}``.
    """
    if release.id:
        return str(release.id)
    parts = release.upload_url.split("{", 1)[0].rstrip("/").split("/")
    if "releases" in parts:
        index = parts.index("releases") + 1
        if index < len(parts) and parts[index].isdigit():
            return parts[index]
    raise ShipyardError(f"Cannot determine release id from {release.upload_url!r}")
