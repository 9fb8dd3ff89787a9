"""Pydantic schemas for deployment environments."""

from datetime import datetime
from pydantic import BaseModel


class EnvironmentResponse(BaseModel):
    name: str
    current_url: str | None
    last_run_id: str | None
    created_at: datetime
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class EnvironmentListResponse(BaseModel):
    environments: list[EnvironmentResponse]
    total: int
