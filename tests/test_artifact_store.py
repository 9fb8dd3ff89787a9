"""Tests for the local artifact store."""

import io
import json
import tarfile
from datetime import datetime, timedelta, timezone

import pytest
from slipway.artifacts.store import ArtifactHandle, LocalArtifactStore
from slipway.core.errors import ArtifactCorruptedError, ArtifactNotFoundError, ArtifactUploadError


@pytest.fixture
def site(tmp_path):
    d = tmp_path / "dist"
    (d / "assets").mkdir(parents=True)
    (d / "index.html").write_text("<html>deck</html>")
    (d / "assets" / "theme.css").write_text("body {}")
    return d


class TestPut:
    @pytest.mark.asyncio
    async def test_put_returns_handle(self, store, site):
        handle = await store.put("run-1", site)
        assert handle.run_id == "run-1"
        assert handle.name == "site"
        assert handle.file_count == 2
        assert len(handle.digest) == 64
        assert await store.exists(handle)
        assert await store.find("run-1") == handle

    @pytest.mark.asyncio
    async def test_artifacts_are_immutable(self, store, site):
        await store.put("run-1", site)
        with pytest.raises(ArtifactUploadError, match="immutable"):
            await store.put("run-1", site)

    @pytest.mark.asyncio
    async def test_empty_directory_refused(self, store, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        with pytest.raises(ArtifactUploadError, match="empty"):
            await store.put("run-1", empty)

    @pytest.mark.asyncio
    async def test_missing_directory_refused(self, store, tmp_path):
        with pytest.raises(ArtifactUploadError):
            await store.put("run-1", tmp_path / "nope")

    @pytest.mark.asyncio
    async def test_invalid_run_id(self, store, site):
        with pytest.raises(ArtifactUploadError):
            await store.put("../escape", site)


class TestGet:
    @pytest.mark.asyncio
    async def test_get_restores_files(self, store, site, tmp_path):
        handle = await store.put("run-1", site)
        out = await store.get(handle, tmp_path / "restored")
        assert (out / "index.html").read_text() == "<html>deck</html>"
        assert (out / "assets" / "theme.css").read_text() == "body {}"

    @pytest.mark.asyncio
    async def test_get_unknown_run(self, store, site, tmp_path):
        handle = await store.put("run-1", site)
        other = ArtifactHandle.from_dict({**handle.to_dict(), "run_id": "run-2"})
        with pytest.raises(ArtifactNotFoundError):
            await store.get(other, tmp_path / "out")

    @pytest.mark.asyncio
    async def test_get_expired(self, tmp_path, site):
        store = LocalArtifactStore(tmp_path / "artifacts", retention_seconds=60)
        handle = await store.put("run-1", site)
        old = ArtifactHandle.from_dict({
            **handle.to_dict(),
            "created_at": (datetime.now(tz=timezone.utc) - timedelta(minutes=5)).isoformat(),
        })
        assert not await store.exists(old)
        with pytest.raises(ArtifactNotFoundError, match="expired"):
            await store.get(old, tmp_path / "out")

    @pytest.mark.asyncio
    async def test_digest_mismatch(self, store, site, tmp_path):
        handle = await store.put("run-1", site)
        archive = store.root / "run-1" / "artifact.tar"
        archive.write_bytes(archive.read_bytes() + b"\0" * 512)
        with pytest.raises(ArtifactCorruptedError):
            await store.get(handle, tmp_path / "out")

    @pytest.mark.asyncio
    async def test_unsafe_member_rejected(self, store, site, tmp_path):
        handle = await store.put("run-1", site)

        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            data = b"owned"
            info = tarfile.TarInfo("../outside.txt")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
        archive = store.root / "run-1" / "artifact.tar"
        archive.write_bytes(buf.getvalue())

        import hashlib
        forged = ArtifactHandle.from_dict({
            **handle.to_dict(),
            "digest": hashlib.sha256(buf.getvalue()).hexdigest(),
        })
        with pytest.raises(ArtifactCorruptedError, match="Unsafe"):
            await store.get(forged, tmp_path / "out")
        assert not (tmp_path / "outside.txt").exists()


class TestRetention:
    @pytest.mark.asyncio
    async def test_purge_expired(self, tmp_path, site):
        store = LocalArtifactStore(tmp_path / "artifacts", retention_seconds=60)
        await store.put("old", site)
        await store.put("fresh", site)

        handle_path = store.root / "old" / "handle.json"
        data = json.loads(handle_path.read_text())
        data["created_at"] = (datetime.now(tz=timezone.utc) - timedelta(hours=1)).isoformat()
        handle_path.write_text(json.dumps(data))

        assert await store.purge_expired() == ["old"]
        assert not (store.root / "old").exists()
        assert (store.root / "fresh").exists()

    @pytest.mark.asyncio
    async def test_discard(self, store, site):
        await store.put("run-1", site)
        await store.discard("run-1")
        with pytest.raises(ArtifactNotFoundError):
            await store.find("run-1")
