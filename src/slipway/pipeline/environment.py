"""Environment handles — the narrow resource a deploy stage writes its URL through."""

from __future__ import annotations
from abc import ABC, abstractmethod

from slipway.pipeline.permissions import CapabilityToken
from slipway.pipeline.types import Capability
from slipway.repositories.environment_repo import EnvironmentRepository


class EnvironmentHandle(ABC):
    """A named deployment target carrying the currently published URL.

    Writes require a capability token holding ``write-environment`` for this
    environment, so a handle passed to the wrong stage is inert.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def current_url(self) -> str | None:
        ...

    async def set_url(self, url: str, token: CapabilityToken) -> None:
        token.require(Capability.WRITE_ENVIRONMENT, self.name)
        await self._write(url, token.run_id)

    @abstractmethod
    async def _write(self, url: str, run_id: str) -> None:
        ...


class InMemoryEnvironment(EnvironmentHandle):
    def __init__(self, name: str, url: str | None = None):
        super().__init__(name)
        self._url = url
        self.last_run_id: str | None = None
        self.history: list[tuple[str, str]] = []

    async def current_url(self) -> str | None:
        return self._url

    async def _write(self, url: str, run_id: str) -> None:
        self._url, self.last_run_id = url, run_id
        self.history.append((run_id, url))


class DatabaseEnvironment(EnvironmentHandle):
    """Environment record in the ``environments`` table."""

    def __init__(self, name: str, session_factory):
        super().__init__(name)
        self._session_factory = session_factory

    async def current_url(self) -> str | None:
        async with self._session_factory() as session:
            env = await EnvironmentRepository(session).get_by_name(self.name)
            return env.current_url if env else None

    async def _write(self, url: str, run_id: str) -> None:
        async with self._session_factory() as session:
            await EnvironmentRepository(session).set_current_url(self.name, url, run_id)

