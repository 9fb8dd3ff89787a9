"""Environment API endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from slipway.core.database import get_session
from slipway.core.auth import verify_api_key
from slipway.repositories.environment_repo import EnvironmentRepository
from slipway.schemas.environment import EnvironmentListResponse, EnvironmentResponse

router = APIRouter(prefix="/environments", tags=["environments"])


@router.get("", response_model=EnvironmentListResponse)
async def list_environments(
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
):
    repo = EnvironmentRepository(session)
    environments = await repo.list_all()
    return EnvironmentListResponse(environments=environments, total=len(environments))


@router.get("/{name}", response_model=EnvironmentResponse)
async def get_environment(
    name: str,
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
):
    """Get an environment and the URL it currently serves."""
    repo = EnvironmentRepository(session)
    env = await repo.get_by_name(name)
    if not env:
        raise HTTPException(404, f"Environment '{name}' not found")
    return env
