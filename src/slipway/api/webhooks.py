"""Webhook subscription endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from slipway.core.auth import verify_api_key
from slipway.daemon.webhooks import register_webhook, list_webhooks, remove_webhook
from slipway.schemas.webhook import WebhookCreate, WebhookListResponse, WebhookResponse

router = APIRouter(prefix="/webhooks", tags=["webhooks"], dependencies=[Depends(verify_api_key)])


@router.post("", response_model=WebhookResponse, status_code=201)
async def add_webhook(data: WebhookCreate):
    """Subscribe a URL to run.succeeded, run.failed, run.cancelled or *."""
    try:
        sub = register_webhook(url=data.url, events=data.events, secret=data.secret)
    except ValueError as e:
        raise HTTPException(422, str(e))
    return sub.to_dict()


@router.get("", response_model=WebhookListResponse)
async def get_webhooks():
    return {"webhooks": list_webhooks()}


@router.delete("", status_code=204)
async def delete_webhook(url: str):
    if not remove_webhook(url):
        raise HTTPException(404, f"No webhook registered for {url}")
