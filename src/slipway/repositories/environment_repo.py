"""Environment repository — the only writer of an environment's live URL."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from slipway.models.environment import Environment


class EnvironmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_name(self, name: str) -> Environment | None:
        result = await self.session.execute(select(Environment).where(Environment.name == name))
        return result.scalar_one_or_none()

    async def list_all(self) -> list[Environment]:
        result = await self.session.execute(select(Environment).order_by(Environment.name))
        return list(result.scalars().all())

    async def ensure(self, name: str) -> Environment:
        """Get an environment, creating an empty record on first use."""
        env = await self.get_by_name(name)
        if env is not None:
            return env
        env = Environment(name=name)
        self.session.add(env)
        try:
            await self.session.commit()
        except IntegrityError:
            # Another run created it first
            await self.session.rollback()
            return await self.get_by_name(name)
        await self.session.refresh(env)
        return env

    async def set_current_url(self, name: str, url: str, run_id: str) -> None:
        """Replace the live URL in a single UPDATE statement (last write wins)."""
        await self.ensure(name)
        await self.session.execute(
            update(Environment)
            .where(Environment.name == name)
            .values(current_url=url, last_run_id=run_id, updated_at=datetime.utcnow())
        )
        await self.session.commit()
