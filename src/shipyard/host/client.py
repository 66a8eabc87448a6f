"""Release host API client.

Thin async wrapper over the GitHub REST API covering what the pipeline and
the updater need: repository probes, release creation and lookup, asset
upload and download, and remote job dispatch. HTTP status codes are mapped
onto the ``NetworkError`` hierarchy; retries are the caller's concern (see
``shipyard.commands.retry_with_backoff``).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx

from shipyard.config import get_settings
from shipyard.constants import GITHUB_ACCEPT, USER_AGENT
from shipyard.errors import (
    AuthenticationError,
    ForbiddenError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
)
from shipyard.host.auth import auth_header
from shipyard.host.models import ReleaseRecord, WorkflowDispatch
from shipyard.logging import get_logger
from shipyard.platforms import content_type_for

log = get_logger("shipyard.host.client")

_DOWNLOAD_CHUNK = 64 * 1024


def _error_for_status(status: int, message: str, body: str) -> NetworkError:
    if status == 401:
        return AuthenticationError(message, status, body)
    if status == 403:
        return ForbiddenError(message, status, body)
    if status == 404:
        return NotFoundError(message, status, body)
    if status == 429:
        return RateLimitError(message, status, body)
    if status >= 500:
        return ServerError(message, status, body)
    return NetworkError(message, status, body)


class ReleaseHostClient:
    """Async client for one repository on the release host.

    The underlying ``httpx.AsyncClient`` is created lazily and reused until
    ``close()``. A *transport* may be injected for tests.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str | None = None,
        *,
        api_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.owner = owner
        self.repo = repo
        self._token = token
        self._api_url = (api_url or settings.github_api_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.http_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def _headers(self, accept: str = GITHUB_ACCEPT) -> dict[str, str]:
        headers = {"User-Agent": USER_AGENT, "Accept": accept}
        headers.update(auth_header(self._token))
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> ReleaseHostClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        accept: str = GITHUB_ACCEPT,
        extra_headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and raise the matching ``NetworkError`` on failure."""
        if not url.startswith("http"):
            url = f"{self._api_url}{url}"
        headers = self._headers(accept)
        if extra_headers:
            headers.update(extra_headers)

        try:
            response = await self._get_client().request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Request to release host timed out: {exc}") from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"Request to release host failed: {exc}") from exc

        if response.is_success:
            return response

        body = response.text[:1000]
        log.warning(
            "release_host_error",
            method=method,
            url=url,
            status=response.status_code,
            body=body[:200],
        )
        raise _error_for_status(
            response.status_code,
            f"Release host returned {response.status_code} for {method} {url}",
            body,
        )

    # ------------------------------------------------------------------
    # Repository and releases
    # ------------------------------------------------------------------

    async def get_repository(self) -> dict[str, Any]:
        """Probe the repository; raises NotFound/Authentication/Forbidden."""
        response = await self._request("GET", self.repo_path)
        data: dict[str, Any] = response.json()
        return data

    async def create_release(
        self,
        tag: str,
        name: str,
        body: str,
        *,
        prerelease: bool = False,
        draft: bool = False,
    ) -> ReleaseRecord:
        payload = {
            "tag_name": tag,
            "name": name,
            "body": body,
            "draft": draft,
            "prerelease": prerelease,
        }
        response = await self._request("POST", f"{self.repo_path}/releases", json=payload)
        release = ReleaseRecord.model_validate(response.json())
        log.info("release_created", tag=tag, release_id=release.id, url=release.html_url)
        return release

    async def get_release_by_tag(self, tag: str) -> ReleaseRecord | None:
        """Fetch the release for *tag*, or None if it does not exist."""
        try:
            response = await self._request("GET", f"{self.repo_path}/releases/tags/{tag}")
        except NotFoundError:
            return None
        return ReleaseRecord.model_validate(response.json())

    async def list_releases(self, per_page: int = 30) -> list[ReleaseRecord]:
        response = await self._request(
            "GET", f"{self.repo_path}/releases", params={"per_page": per_page}
        )
        data = response.json()
        if not isinstance(data, list):
            raise NetworkError("Unexpected release list payload", response.status_code)
        return [ReleaseRecord.model_validate(item) for item in data]

    async def upload_asset(self, release: ReleaseRecord, path: Path) -> dict[str, Any]:
        """Upload one file as a release asset named after the file."""
        if not release.upload_url:
            raise NetworkError(f"Release {release.tag_name} has no upload URL")
        content = path.read_bytes()
        response = await self._request(
            "POST",
            release.upload_target(path.name),
            extra_headers={"Content-Type": content_type_for(path.name)},
            content=content,
        )
        log.info("release_asset_uploaded", asset=path.name, size=len(content))
        data: dict[str, Any] = response.json()
        return data

    async def download_asset(self, url: str, destination: Path) -> Path:
        """Stream an asset's binary content to *destination*."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        headers = self._headers("application/octet-stream")
        try:
            async with self._get_client().stream("GET", url, headers=headers) as response:
                if not response.is_success:
                    body = (await response.aread()).decode(errors="replace")[:1000]
                    raise _error_for_status(
                        response.status_code,
                        f"Asset download failed with {response.status_code}",
                        body,
                    )
                with destination.open("wb") as fh:
                    async for chunk in response.aiter_bytes(_DOWNLOAD_CHUNK):
                        fh.write(chunk)
        except httpx.RequestError as exc:
            destination.unlink(missing_ok=True)
            raise NetworkError(f"Asset download failed: {exc}") from exc
        except NetworkError:
            destination.unlink(missing_ok=True)
            raise

        log.info("release_asset_downloaded", path=str(destination), size=destination.stat().st_size)
        return destination

    # ------------------------------------------------------------------
    # Remote jobs
    # ------------------------------------------------------------------

    async def trigger_workflow(self, workflow: str, dispatch: WorkflowDispatch) -> None:
        """Dispatch a remote job. The host answers 204 with no body."""
        payload = dispatch.to_payload()
        await self._request(
            "POST",
            f"{self.repo_path}/actions/workflows/{workflow}/dispatches",
            json=payload,
        )
        log.info(
            "workflow_dispatched",
            workflow=workflow,
            ref=dispatch.ref,
            version=dispatch.version,
            inputs=sorted(payload["inputs"]),
        )
