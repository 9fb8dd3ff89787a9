"""Shared test fixtures for Slipway tests."""

import asyncio
import os
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from slipway.artifacts.store import LocalArtifactStore
from slipway.connectors.publisher import Publisher, PublishResult
from slipway.connectors.renderer import Renderer, RenderResult
from slipway.core import database
from slipway.core.config import get_settings
from slipway.core.database import init_engine, create_tables, get_session_factory, Base
from slipway.daemon.executor import RunManager, set_manager
from slipway.daemon.main import create_app
from slipway.daemon.webhooks import clear_webhooks
from slipway.pipeline.environment import InMemoryEnvironment
from slipway.pipeline.permissions import IdentityProvider

DECK = """---
marp: true
---

# Release notes

---

# Thanks
"""


class FakeRenderer(Renderer):
    """Writes ``files`` into the output directory and exits with ``exit_code``."""

    def __init__(self, files: dict | None = None, exit_code: int = 0, delay: float = 0.0):
        self.files = {"index.html": "<html><body>deck</body></html>"} if files is None else files
        self.exit_code = exit_code
        self.delay = delay
        self.calls = 0
        self.started = asyncio.Event()

    async def render(self, source, output, emit_html=True):
        self.calls += 1
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        for name, content in self.files.items():
            path = output / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return RenderResult(exit_code=self.exit_code, output=f"rendered {source}")


class RecordingPublisher(Publisher):
    """Publisher double that records every call and returns a URL per run."""

    def __init__(self, base_url: str = "https://pages.example.test", error: Exception | None = None, delay: float = 0.0):
        self.base_url = base_url
        self.error = error
        self.delay = delay
        self.calls: list[dict] = []
        self.started = asyncio.Event()

    async def publish(self, environment, site_dir, credential):
        self.started.set()
        files = sorted(p.relative_to(site_dir).as_posix() for p in site_dir.rglob("*") if p.is_file())
        self.calls.append({
            "environment": environment,
            "run_id": credential.run_id,
            "credential_environment": credential.environment,
            "files": files,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return PublishResult(url=f"{self.base_url}/{credential.run_id}/", deployment_id=credential.run_id)


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def recording_publisher():
    return RecordingPublisher()


@pytest.fixture
def renderer_factory():
    return FakeRenderer


@pytest.fixture
def publisher_factory():
    return RecordingPublisher


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "slides.md"
    path.write_text(DECK)
    return path


@pytest.fixture
def store(tmp_path):
    return LocalArtifactStore(root=tmp_path / "artifacts", retention_seconds=3600)


@pytest.fixture
def identity():
    return IdentityProvider(ttl_seconds=60)


@pytest.fixture
def environment():
    return InMemoryEnvironment("github-pages")


@pytest.fixture
def slipway_env(tmp_path, source, monkeypatch):
    """Point every daemon setting at the test's temp directory."""
    monkeypatch.chdir(tmp_path)
    values = {
        "SLIPWAY_HOME": str(tmp_path / "home"),
        "SLIPWAY_DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'slipway.db'}",
        "SLIPWAY_API_KEY": "test_key",
        "SLIPWAY_SOURCE_PATH": str(source),
        "SLIPWAY_WORKSPACE_DIR": str(tmp_path / "runs"),
        "SLIPWAY_ARTIFACTS_DIR": str(tmp_path / "artifacts"),
        "SLIPWAY_PUBLISH_DIR": str(tmp_path / "public"),
        "SLIPWAY_PUBLISH_BASE_URL": "http://test/site",
    }
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    return values


@pytest_asyncio.fixture(scope="function")
async def manager(slipway_env, fake_renderer):
    """A run manager on a fresh SQLite file, rendering with FakeRenderer."""
    settings = get_settings()
    init_engine(settings.database_url)
    await create_tables()

    _manager = RunManager.from_settings(settings, get_session_factory())
    _manager.renderer = fake_renderer
    set_manager(_manager)

    yield _manager

    for run_id in _manager.active_runs:
        await _manager.cancel(run_id)
    set_manager(None)
    clear_webhooks()
    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await database.engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def app(manager):
    yield create_app()


@pytest_asyncio.fixture(scope="function")
async def client(app):
    """Async HTTP client pointed at the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": "Bearer test_key"},
    ) as c:
        yield c


@pytest_asyncio.fixture(scope="function")
async def unauthed_client(app):
    """Async HTTP client without auth."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
