"""Main API router."""

from fastapi import APIRouter
from slipway.api.events import router as events_router
from slipway.api.runs import router as runs_router
from slipway.api.environments import router as environments_router
from slipway.api.webhooks import router as webhooks_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(events_router)
api_router.include_router(runs_router)
api_router.include_router(environments_router)
api_router.include_router(webhooks_router)
