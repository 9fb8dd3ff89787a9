"""Publisher connectors — hand a built site to the hosting platform."""

from __future__ import annotations
import asyncio
import io
import logging
import os
import shutil
import tarfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import httpx

from slipway.core.errors import AuthorizationError, PublishError, PublishRejectedError
from slipway.pipeline.permissions import IdentityProvider, PublishCredential

logger = logging.getLogger("slipway.connectors.publisher")


@dataclass
class PublishResult:
    url: str
    deployment_id: str | None = None


class Publisher(ABC):
    """Base class for hosting platforms.

    Publishers that hold a connection open it in ``connect`` and release it in
    ``disconnect``; the daemon calls both around its lifetime.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, *args):
        await self.disconnect()

    @abstractmethod
    async def publish(
        self,
        environment: str,
        site_dir: Path,
        credential: PublishCredential,
    ) -> PublishResult:
        """Publish *site_dir* to *environment*. Returns the public URL."""
        ...


class DirectoryPublisher(Publisher):
    """Publishes into a directory served as static files.

    Each run's site is copied to ``<root>/<env>/releases/<run_id>`` and the
    ``<root>/<env>/current`` symlink is swapped to it in one rename, so
    readers never see a half-written site. Only the newest ``keep_releases``
    releases are kept on disk, the live one always among them.
    """

    def __init__(
        self,
        root: str | Path,
        base_url: str,
        verifier: IdentityProvider | None = None,
        keep_releases: int = 3,
    ):
        if keep_releases < 1:
            raise ValueError("keep_releases must be at least 1")
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.verifier = verifier
        self.keep_releases = keep_releases

    def url_for(self, environment: str) -> str:
        return f"{self.base_url}/{environment}/current/"

    async def publish(
        self,
        environment: str,
        site_dir: Path,
        credential: PublishCredential,
    ) -> PublishResult:
        if self.verifier is not None:
            try:
                self.verifier.verify(credential.token, environment)
            except AuthorizationError as e:
                raise PublishRejectedError(f"Publish to '{environment}' denied: {e}") from e
        elif credential.environment != environment:
            raise PublishRejectedError(f"Credential does not cover environment '{environment}'")

        try:
            await asyncio.to_thread(self._swap_in, environment, Path(site_dir), credential.run_id)
        except OSError as e:
            raise PublishError(f"Could not write site for '{environment}': {e}") from e

        url = self.url_for(environment)
        logger.info(f"Published run {credential.run_id} to {url}")
        return PublishResult(url=url, deployment_id=credential.run_id)

    def _swap_in(self, environment: str, site_dir: Path, run_id: str) -> None:
        env_dir = self.root / environment
        release = env_dir / "releases" / run_id
        if release.exists():
            shutil.rmtree(release)
        shutil.copytree(site_dir, release)

        link_tmp = env_dir / f".current-{run_id}"
        link_tmp.unlink(missing_ok=True)
        link_tmp.symlink_to(release.relative_to(env_dir), target_is_directory=True)
        os.replace(link_tmp, env_dir / "current")
        self._prune(env_dir, keep=release)

    def _prune(self, env_dir: Path, keep: Path) -> list[str]:
        # a concurrent publish may have moved current since our own swap
        pinned = {keep.resolve(), (env_dir / "current").resolve()}
        releases = sorted(
            (p for p in (env_dir / "releases").iterdir() if p.is_dir() and p.resolve() not in pinned),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        removed = []
        for old in releases[self.keep_releases - 1:]:
            shutil.rmtree(old, ignore_errors=True)
            removed.append(old.name)
        if removed:
            logger.info(f"Pruned {len(removed)} old release(s) from {env_dir.name}")
        return removed


class HttpPublisher(Publisher):
    """Uploads the site as a tar archive to a hosting API.

    ``POST {api_url}/environments/{environment}/deployments`` with the
    publish credential as bearer token; the response carries ``page_url``.
    """

    def __init__(self, api_url: str, timeout: int = 120, transport: httpx.AsyncBaseTransport | None = None):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def publish(
        self,
        environment: str,
        site_dir: Path,
        credential: PublishCredential,
    ) -> PublishResult:
        if not self._client:
            await self.connect()

        archive = await asyncio.to_thread(_pack, Path(site_dir))
        try:
            resp = await self._client.post(
                f"/environments/{environment}/deployments",
                headers=credential.authorization_header(),
                files={"artifact": ("artifact.tar", archive, "application/x-tar")},
                data={"run_id": credential.run_id},
            )
        except httpx.HTTPError as e:
            raise PublishError(f"Hosting platform unreachable: {e}") from e

        if resp.status_code in (401, 403):
            raise PublishRejectedError(
                f"Publish to '{environment}' denied: {resp.status_code} — {resp.text}",
                status_code=resp.status_code,
            )
        if 400 <= resp.status_code < 500:
            raise PublishRejectedError(
                f"Publish to '{environment}' rejected: {resp.status_code} — {resp.text}",
                status_code=resp.status_code,
            )
        if resp.status_code >= 500:
            raise PublishError(f"Hosting platform error: {resp.status_code} — {resp.text}")

        try:
            data = resp.json()
            url = data.get("page_url") or data["url"]
        except (ValueError, KeyError) as e:
            raise PublishError(f"Hosting platform returned no page URL: {resp.text[:200]}") from e

        logger.info(f"Published run {credential.run_id} to {url}")
        return PublishResult(url=url, deployment_id=data.get("id"))


def _pack(site_dir: Path) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for path in sorted(p for p in site_dir.rglob("*") if p.is_file()):
            tar.add(path, arcname=path.relative_to(site_dir).as_posix(), recursive=False)
    return buf.getvalue()
