"""Pydantic schemas for pipeline runs."""

from datetime import datetime
from pydantic import BaseModel


class RunResponse(BaseModel):
    id: str
    event: str
    branch: str
    commit_ref: str
    environment: str
    status: str
    build_status: str
    deploy_status: str
    artifact_handle: dict | None
    published_url: str | None
    started_at: datetime | None
    finished_at: datetime | None
    duration_ms: int | None
    error: str | None
    trace: dict | None
    created_at: datetime

    model_config = {"from_attributes": True}


class RunListResponse(BaseModel):
    runs: list[RunResponse]
    total: int


class RunLogsResponse(BaseModel):
    id: str
    status: str
    logs: str | None


class RunOutcomeResponse(BaseModel):
    run_id: str
    status: str
    build_status: str
    deploy_status: str
    published_url: str | None = None
    error: dict | None = None
