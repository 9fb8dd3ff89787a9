"""Artifact store — run-scoped staging area between build and deploy.

Each artifact is a tar of the build output written once under
``<root>/<run_id>/artifact.tar`` next to a ``handle.json`` describing it.
Nothing ever rewrites an artifact in place; a second upload for the same run
id is refused.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import shutil
import tarfile
import tempfile
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from slipway.core.errors import (
    ArtifactCorruptedError,
    ArtifactNotFoundError,
    ArtifactUploadError,
)

logger = logging.getLogger("slipway.artifacts")

ARCHIVE_NAME = "artifact.tar"
HANDLE_NAME = "handle.json"


@dataclass(frozen=True)
class ArtifactHandle:
    run_id: str
    name: str
    digest: str  # sha256 of the archive
    size_bytes: int
    file_count: int
    created_at: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ArtifactHandle":
        return cls(
            run_id=data["run_id"],
            name=data["name"],
            digest=data["digest"],
            size_bytes=int(data["size_bytes"]),
            file_count=int(data["file_count"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


class ArtifactStore(ABC):
    """Base interface for artifact stores."""

    @abstractmethod
    async def put(self, run_id: str, directory: str | Path) -> ArtifactHandle:
        """Package *directory* and store it under *run_id*."""
        ...

    @abstractmethod
    async def get(self, handle: ArtifactHandle, destination: str | Path) -> Path:
        """Unpack the artifact into *destination* and return it."""
        ...

    @abstractmethod
    async def exists(self, handle: ArtifactHandle) -> bool:
        ...

    @abstractmethod
    async def discard(self, run_id: str) -> None:
        """Drop whatever is stored for *run_id*."""
        ...

    @abstractmethod
    async def purge_expired(self) -> list[str]:
        """Delete artifacts past retention. Returns the purged run ids."""
        ...


class LocalArtifactStore(ArtifactStore):
    """Filesystem-backed store rooted at a single directory."""

    def __init__(self, root: str | Path, retention_seconds: int = 86400, name: str = "site"):
        self.root = Path(root)
        self.retention = timedelta(seconds=retention_seconds)
        self.name = name
        self.root.mkdir(parents=True, exist_ok=True)

    def _run_dir(self, run_id: str) -> Path:
        if not run_id or "/" in run_id or "\\" in run_id or run_id in (".", ".."):
            raise ValueError(f"Invalid run id: {run_id!r}")
        return self.root / run_id

    def _expired(self, handle: ArtifactHandle) -> bool:
        return datetime.now(tz=timezone.utc) - handle.created_at > self.retention

    # ─── put ───

    async def put(self, run_id: str, directory: str | Path) -> ArtifactHandle:
        try:
            return await asyncio.to_thread(self._put, run_id, Path(directory))
        except ArtifactUploadError:
            raise
        except (OSError, ValueError, tarfile.TarError) as e:
            raise ArtifactUploadError(f"Artifact upload for run {run_id} failed: {e}") from e

    def _put(self, run_id: str, directory: Path) -> ArtifactHandle:
        run_dir = self._run_dir(run_id)
        if not directory.is_dir():
            raise ArtifactUploadError(f"Artifact source is not a directory: {directory}")
        files = sorted(p for p in directory.rglob("*") if p.is_file())
        if not files:
            raise ArtifactUploadError(f"Refusing to upload empty directory: {directory}")

        fd, tmp_name = tempfile.mkstemp(prefix=f".{run_id}-", suffix=".tar", dir=self.root)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as raw, tarfile.open(fileobj=raw, mode="w") as tar:
                for path in files:
                    tar.add(path, arcname=path.relative_to(directory).as_posix(), recursive=False)

            digest = _sha256(tmp_path)
            handle = ArtifactHandle(
                run_id=run_id,
                name=self.name,
                digest=digest,
                size_bytes=tmp_path.stat().st_size,
                file_count=len(files),
                created_at=datetime.now(tz=timezone.utc),
            )

            try:
                run_dir.mkdir()
            except FileExistsError:
                raise ArtifactUploadError(
                    f"Artifact for run {run_id} already exists; artifacts are immutable"
                ) from None
            (run_dir / HANDLE_NAME).write_text(json.dumps(handle.to_dict(), indent=2))
            tmp_path.replace(run_dir / ARCHIVE_NAME)
        finally:
            tmp_path.unlink(missing_ok=True)

        logger.info(f"Stored artifact for run {run_id}: {handle.file_count} files, {handle.size_bytes} bytes")
        return handle

    # ─── get ───

    async def get(self, handle: ArtifactHandle, destination: str | Path) -> Path:
        return await asyncio.to_thread(self._get, handle, Path(destination))

    def _get(self, handle: ArtifactHandle, destination: Path) -> Path:
        archive = self._run_dir(handle.run_id) / ARCHIVE_NAME
        if not archive.exists():
            raise ArtifactNotFoundError(f"Artifact for run {handle.run_id} not found")
        if self._expired(handle):
            raise ArtifactNotFoundError(
                f"Artifact for run {handle.run_id} expired (retention {int(self.retention.total_seconds())}s)"
            )
        if _sha256(archive) != handle.digest:
            raise ArtifactCorruptedError(f"Artifact for run {handle.run_id} does not match its digest")

        destination.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive, mode="r") as tar:
            members = tar.getmembers()
            for member in members:
                _check_member(member)
            tar.extractall(destination, members=members, filter="data")
        return destination

    async def find(self, run_id: str) -> ArtifactHandle:
        """Look up the handle stored for *run_id*."""
        handle_path = self._run_dir(run_id) / HANDLE_NAME
        if not handle_path.exists():
            raise ArtifactNotFoundError(f"Artifact for run {run_id} not found")
        return ArtifactHandle.from_dict(json.loads(handle_path.read_text()))

    async def exists(self, handle: ArtifactHandle) -> bool:
        archive = self._run_dir(handle.run_id) / ARCHIVE_NAME
        return archive.exists() and not self._expired(handle)

    async def discard(self, run_id: str) -> None:
        """Drop a run's artifact (cancelled runs)."""
        await asyncio.to_thread(shutil.rmtree, self._run_dir(run_id), True)

    async def purge_expired(self) -> list[str]:
        return await asyncio.to_thread(self._purge_expired)

    def _purge_expired(self) -> list[str]:
        purged = []
        for handle_path in self.root.glob(f"*/{HANDLE_NAME}"):
            try:
                handle = ArtifactHandle.from_dict(json.loads(handle_path.read_text()))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable artifact handle {handle_path}: {e}")
                continue
            if self._expired(handle):
                shutil.rmtree(handle_path.parent)
                purged.append(handle.run_id)
        if purged:
            logger.info(f"Purged {len(purged)} expired artifact(s)")
        return purged


def _sha256(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1 << 16), b""):
            h.update(chunk)
    return h.hexdigest()


def _check_member(member: tarfile.TarInfo) -> None:
    name = member.name
    if name.startswith("/") or ".." in Path(name).parts:
        raise ArtifactCorruptedError(f"Unsafe path in artifact: {name}")
    if not (member.isfile() or member.isdir()):
        raise ArtifactCorruptedError(f"Unsupported entry in artifact: {name}")
