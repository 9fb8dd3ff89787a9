"""Run API endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from slipway.api.events import require_manager
from slipway.core.database import get_session
from slipway.core.auth import verify_api_key
from slipway.daemon.executor import RunManager
from slipway.repositories.run_repo import RunRepository
from slipway.schemas.run import RunResponse, RunListResponse, RunLogsResponse, RunOutcomeResponse

router = APIRouter(prefix="/runs", tags=["runs"])


@router.get("", response_model=RunListResponse)
async def list_runs(
    limit: int = 20,
    environment: str | None = None,
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
):
    """List recent runs, optionally for one environment."""
    repo = RunRepository(session)
    runs = await repo.list_recent(limit=limit, environment=environment)
    return RunListResponse(runs=runs, total=len(runs))


@router.get("/errors", response_model=RunListResponse)
async def list_errors(
    limit: int = 20,
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
):
    """List recent failed runs."""
    repo = RunRepository(session)
    runs = await repo.list_errors(limit=limit)
    return RunListResponse(runs=runs, total=len(runs))


@router.get("/{run_id}", response_model=RunResponse)
async def get_run(
    run_id: str,
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
):
    repo = RunRepository(session)
    run = await repo.get_by_id(run_id)
    if not run:
        raise HTTPException(404, f"Run '{run_id}' not found")
    return run


@router.get("/{run_id}/outcome", response_model=RunOutcomeResponse)
async def get_run_outcome(
    run_id: str,
    manager: RunManager = Depends(require_manager),
    _: str = Depends(verify_api_key),
):
    """The observable outcome: status per stage, published URL, first error."""
    outcome = await manager.outcome(run_id)
    if outcome is None:
        raise HTTPException(404, f"Run '{run_id}' not found")
    return outcome.to_dict()


@router.get("/{run_id}/logs", response_model=RunLogsResponse)
async def get_run_logs(
    run_id: str,
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
):
    """Get logs for a specific run."""
    repo = RunRepository(session)
    run = await repo.get_by_id(run_id)
    if not run:
        raise HTTPException(404, f"Run '{run_id}' not found")
    return RunLogsResponse(id=run.id, status=run.status, logs=run.logs)


@router.post("/{run_id}/cancel")
async def cancel_run(
    run_id: str,
    manager: RunManager = Depends(require_manager),
    _: str = Depends(verify_api_key),
):
    """Cancel an in-flight run. A publish already issued still completes."""
    if not await manager.cancel(run_id):
        raise HTTPException(409, f"Run '{run_id}' is not in flight")
    outcome = await manager.outcome(run_id)
    if outcome is None:
        raise HTTPException(404, f"Run '{run_id}' not found")
    return {"status": outcome.status, "run": outcome.to_dict()}
