"""Pydantic models for the release host API."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shipyard.constants import MAX_WORKFLOW_INPUTS


class ReleaseAsset(BaseModel):
    """A binary attached to a release."""

    model_config = ConfigDict(extra="ignore")

    id: int = 0
    name: str
    url: str = ""
    browser_download_url: str = ""
    size: int = 0
    content_type: str = ""

    @property
    def download_url(self) -> str:
        """API URL when known (works for private repos), else the browser URL."""
        return self.url or self.browser_download_url


class ReleaseRecord(BaseModel):
    """A remote release. Never mutated locally after creation."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int = 0
    tag_name: str
    name: str | None = None
    body: str | None = None
    prerelease: bool = False
    draft: bool = False
    upload_url: str = ""
    html_url: str = ""
    assets: list[ReleaseAsset] = Field(default_factory=list)

    def upload_target(self, filename: str) -> str:
        """Expand the ``{?name,label}`` URI template for one asset."""
        base = self.upload_url.split("{", 1)[0]
        return f"{base}?name={filename}"

    def asset_named(self, name: str) -> ReleaseAsset | None:
        for asset in self.assets:
            if asset.name == name:
                return asset
        return None

    @property
    def asset_names(self) -> set[str]:
        return {asset.name for asset in self.assets}


class WorkflowSigningParams(BaseModel):
    """Optional code-signing parameters forwarded to the disk-image job.

    Serialized into a single JSON string input so the dispatch stays under
    the job-trigger API's input limit.
    """

    use_proper_signing: bool = False
    signing_identity: str = ""
    bundle_identifier: str = ""
    enable_notarization: bool = False
    team_id: str = ""
    apple_id: str = ""
    entitlements_content: str = ""  # base64 encoded entitlements file
    use_github_secrets: bool = False
    p12_secret_name: str = ""
    has_p12_password: bool | None = None

    def to_input(self) -> str | None:
        """Encode as a compact JSON string, or None when signing is off."""
        if not self.use_proper_signing:
            return None

        payload: dict[str, Any] = {"use_proper_signing": True}
        if self.signing_identity:
            payload["signing_identity"] = self.signing_identity
        if self.bundle_identifier:
            payload["bundle_identifier"] = self.bundle_identifier
        if self.enable_notarization:
            payload["enable_notarization"] = True
            if self.team_id:
                payload["team_id"] = self.team_id
            if self.apple_id:
                payload["apple_id"] = self.apple_id
        if self.entitlements_content:
            payload["entitlements_content"] = self.entitlements_content
        if self.use_github_secrets:
            payload["use_github_secrets"] = True
            if self.p12_secret_name:
                payload["p12_secret_name"] = self.p12_secret_name
            if self.has_p12_password is not None:
                payload["has_p12_password"] = self.has_p12_password
        return json.dumps(payload, separators=(",", ":"))


class WorkflowDispatch(BaseModel):
    """Inputs for the remote disk-image job."""

    ref: str = "main"
    download_url: str
    app_name: str
    version: str
    release_id: str
    signing_params: WorkflowSigningParams | None = None

    def to_payload(self) -> dict[str, Any]:
        inputs: dict[str, str] = {
            "download_url": self.download_url,
            "app_name": self.app_name,
            "version": self.version,
            "release_id": self.release_id,
        }
        if self.signing_params is not None:
            encoded = self.signing_params.to_input()
            if encoded is not None:
                inputs["signing_params"] = encoded
        if len(inputs) > MAX_WORKFLOW_INPUTS:
            raise ValueError(
                f"Workflow dispatch has {len(inputs)} inputs; limit is {MAX_WORKFLOW_INPUTS}"
            )
        return {"ref": self.ref, "inputs": inputs}
