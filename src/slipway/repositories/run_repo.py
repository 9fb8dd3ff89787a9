"""Pipeline run repository."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from slipway.models.run import PipelineRun, RunStatus

IN_FLIGHT = (RunStatus.PENDING.value, RunStatus.RUNNING.value)


class RunRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> PipelineRun:
        run = PipelineRun(**kwargs)
        self.session.add(run)
        await self.session.commit()
        await self.session.refresh(run)
        return run

    async def get_by_id(self, id: str) -> PipelineRun | None:
        result = await self.session.execute(select(PipelineRun).where(PipelineRun.id == id))
        return result.scalar_one_or_none()

    async def list_recent(self, limit: int = 20, environment: str | None = None) -> list[PipelineRun]:
        query = select(PipelineRun)
        if environment:
            query = query.where(PipelineRun.environment == environment)
        result = await self.session.execute(
            query.order_by(PipelineRun.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def list_errors(self, limit: int = 20) -> list[PipelineRun]:
        result = await self.session.execute(
            select(PipelineRun)
            .where(PipelineRun.status == RunStatus.FAILED.value)
            .order_by(PipelineRun.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def update(self, run: PipelineRun, **kwargs) -> PipelineRun:
        """Set the given columns; ``None`` values are left untouched."""
        for key, value in kwargs.items():
            if value is not None:
                setattr(run, key, value)
        await self.session.commit()
        await self.session.refresh(run)
        return run

    async def fail_in_flight(self, reason: str) -> int:
        """Mark every pending/running run failed. Returns how many were touched."""
        result = await self.session.execute(
            update(PipelineRun)
            .where(PipelineRun.status.in_(IN_FLIGHT))
            .values(
                status=RunStatus.FAILED.value,
                finished_at=datetime.utcnow(),
                error=reason,
            )
        )
        await self.session.commit()
        return result.rowcount
