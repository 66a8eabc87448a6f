"""macOS code signing and notarization.

Signing identity extraction imports the certificate into a disposable
keychain that exists only for the duration of the lookup. Every external
call carries an explicit timeout; a timed-out signing step falls back to an
ad-hoc signature instead of hanging. A non-zero exit from the signing tools
is fatal. Notarization is best-effort.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from shipyard.commands import CommandResult, Runner, run_command
from shipyard.config import ReleaseConfig, get_settings
from shipyard.constants import (
    CODESIGN_TIMEOUT,
    CODESIGN_VERIFY_TIMEOUT,
    DITTO_TIMEOUT,
    KEYCHAIN_TIMEOUT,
    STAPLE_TIMEOUT,
)
from shipyard.errors import CommandTimeoutError, ExternalToolError, ShipyardError
from shipyard.logging import get_logger

log = get_logger("shipyard.pipeline.signing")

StatusCallback = Callable[[str], None]

IDENTITY_MARKER = "Developer ID Application"
ENTITLEMENTS_FILENAME = "temp_entitlements.entitlements"

DEFAULT_ENTITLEMENTS = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN" "http://www.apple.com/DTDs/PropertyList-1.0.dtd">
<plist version="1.0">
    <dict>
        <key>com.apple.security.cs.disable-library-validation</key>
        <true/>
        <key>com.apple.security.cs.disable-executable-page-protection</key>
        <true/>
    </dict>
</plist>
"""


class SigningError(ShipyardError):
    """The signing identity could not be determined."""


@dataclass
class SigningResult:
    app_path: Path
    identity: str | None
    ad_hoc: bool = False
    notarized: bool | None = None
    notarization_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "app_path": str(self.app_path),
            "identity": self.identity,
            "ad_hoc": self.ad_hoc,
            "notarized": self.notarized,
            "notarization_error": self.notarization_error,
        }


def parse_identity(output: str) -> str | None:
    """Pull the quoted Developer ID identity out of ``find-identity`` output."""
    for line in output.splitlines():
        if IDENTITY_MARKER not in line:
            continue
        start = line.find('"')
        end = line.rfind('"')
        if start >= 0 and end > start:
            return line[start + 1 : end]
    return None


class MacSigner:
    """Signs (and optionally notarizes) one application bundle."""

    def __init__(
        self,
        config: ReleaseConfig,
        *,
        runner: Runner = run_command,
        on_status: StatusCallback | None = None,
        notarization_timeout: int | None = None,
    ) -> None:
        self._config = config
        self._signing = config.signing
        self._runner = runner
        self._on_status = on_status
        self._notarization_timeout = notarization_timeout or get_settings().notarization_timeout
        self._secrets = {
            self._signing.certificate_password.get_secret_value(),
            self._signing.app_password.get_secret_value(),
        }

    def _status(self, message: str) -> None:
        if self._on_status is not None:
            self._on_status(message)

    def _redact(self, argv: list[str]) -> list[str]:
        hidden = {value for value in self._secrets if value}
        return ["***" if arg in hidden else arg for arg in argv]

    async def _run(self, args: Sequence[str | Path], timeout: float) -> CommandResult:
        """Run a tool; secrets never appear in raised error messages."""
        argv = [str(arg) for arg in args]
        try:
            return await self._runner(argv, timeout=timeout)
        except CommandTimeoutError as err:
            raise CommandTimeoutError(self._redact(argv), err.timeout) from None
        except ExternalToolError as err:
            raise ExternalToolError(
                self._redact(argv), err.returncode, err.stdout, err.stderr
            ) from None

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def extract_identity(self) -> str:
        """Import the certificate into a throwaway keychain and read its identity.

        The keychain is deleted on every path out of this method.
        """
        keychain = f"temp_signing_{secrets.token_hex(4)}"
        keychain_password = secrets.token_hex(16)
        self._secrets.add(keychain_password)
        certificate = self._config.resolve(self._signing.certificate_path)

        await self._run(
            ["security", "create-keychain", "-p", keychain_password, keychain],
            KEYCHAIN_TIMEOUT,
        )
        try:
            await self._run(
                [
                    "security",
                    "import",
                    certificate,
                    "-k",
                    keychain,
                    "-P",
                    self._signing.certificate_password.get_secret_value(),
                    "-T",
                    "/usr/bin/codesign",
                ],
                KEYCHAIN_TIMEOUT,
            )
            result = await self._run(
                ["security", "find-identity", "-v", "-p", "codesigning", keychain],
                KEYCHAIN_TIMEOUT,
            )
        finally:
            await self._delete_keychain(keychain)

        identity = parse_identity(result.stdout)
        if identity is None:
            raise SigningError(f"Could not find {IDENTITY_MARKER} identity in certificate")
        log.info("signing_identity_extracted", identity=identity)
        return identity

    async def _delete_keychain(self, keychain: str) -> None:
        try:
            await self._run(["security", "delete-keychain", keychain], KEYCHAIN_TIMEOUT)
        except ExternalToolError as err:
            log.warning("keychain_delete_failed", keychain=keychain, error=str(err))

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def _entitlements_file(self, app_path: Path) -> tuple[Path, bool]:
        """Return the entitlements path and whether it is a temp file."""
        if self._signing.entitlements_path:
            custom = self._config.resolve(self._signing.entitlements_path)
            if custom.is_file():
                return custom, False
            log.warning("entitlements_not_found", path=str(custom))
        generated = app_path.parent / ENTITLEMENTS_FILENAME
        generated.write_text(DEFAULT_ENTITLEMENTS, encoding="utf-8")
        return generated, True

    async def sign(self, app_path: Path) -> SigningResult:
        """Sign *app_path*, verify the signature, then notarize if enabled."""
        if not app_path.exists():
            raise SigningError(f"Application bundle not found: {app_path}")

        self._status("Extracting signing identity...")
        try:
            identity = await self.extract_identity()
        except CommandTimeoutError as err:
            log.warning("signing_identity_timeout", error=str(err))
            return await self._ad_hoc(app_path)

        entitlements, is_temp = self._entitlements_file(app_path)
        try:
            self._status("Setting file permissions...")
            await self._run(["chmod", "-R", "a+xr", app_path], KEYCHAIN_TIMEOUT)

            self._status("Code signing application...")
            await self._run(
                [
                    "codesign",
                    "--deep",
                    "--force",
                    "--verify",
                    "--verbose",
                    "--timestamp",
                    "--options",
                    "runtime",
                    "--entitlements",
                    entitlements,
                    "--sign",
                    identity,
                    app_path,
                ],
                CODESIGN_TIMEOUT,
            )

            self._status("Verifying signature...")
            await self._run(
                ["codesign", "--verify", "--deep", "--strict", "--verbose=2", app_path],
                CODESIGN_VERIFY_TIMEOUT,
            )
        except CommandTimeoutError as err:
            log.warning("codesign_timeout", error=str(err))
            return await self._ad_hoc(app_path)
        finally:
            if is_temp:
                entitlements.unlink(missing_ok=True)

        result = SigningResult(app_path=app_path, identity=identity)
        log.info("app_signed", app=str(app_path), identity=identity)

        if self._config.stages.notarize:
            result.notarized, result.notarization_error = await self.notarize(app_path)
        return result

    async def _ad_hoc(self, app_path: Path) -> SigningResult:
        self._status("Signing timed out, applying ad-hoc signature...")
        await self._run(
            ["codesign", "--force", "--deep", "--sign", "-", app_path], CODESIGN_TIMEOUT
        )
        log.warning("app_signed_ad_hoc", app=str(app_path))
        return SigningResult(app_path=app_path, identity=None, ad_hoc=True)

    # ------------------------------------------------------------------
    # Notarization
    # ------------------------------------------------------------------

    async def notarize(self, app_path: Path) -> tuple[bool, str | None]:
        """Submit, wait and staple. Returns ``(ok, error)``; never raises."""
        archive = app_path.with_suffix(".zip")
        try:
            self._status("Creating zip for notarization...")
            await self._run(["ditto", "-c", "-k", "--keepParent", app_path, archive], DITTO_TIMEOUT)

            self._status("Submitting to Apple for notarization...")
            await self._run(
                [
                    "xcrun",
                    "notarytool",
                    "submit",
                    archive,
                    "--apple-id",
                    self._signing.apple_id,
                    "--password",
                    self._signing.app_password.get_secret_value(),
                    "--team-id",
                    self._signing.team_id,
                    "--wait",
                ],
                self._notarization_timeout,
            )

            self._status("Stapling notarization...")
            await self._run(["xcrun", "stapler", "staple", app_path], STAPLE_TIMEOUT)
        except ExternalToolError as err:
            log.warning("notarization_failed", app=str(app_path), error=str(err))
            return False, str(err)
        finally:
            archive.unlink(missing_ok=True)

        log.info("app_notarized", app=str(app_path))
        return True, None
