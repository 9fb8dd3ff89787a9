"""Pydantic schemas for webhook subscriptions."""

from pydantic import BaseModel, Field


class WebhookCreate(BaseModel):
    url: str
    events: list[str] = Field(default_factory=lambda: ["run.failed"])
    secret: str | None = None


class WebhookResponse(BaseModel):
    url: str
    events: list[str]


class WebhookListResponse(BaseModel):
    webhooks: list[WebhookResponse]
