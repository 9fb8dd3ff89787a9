"""Outbound notifications when a run finishes.

Subscribers register a URL and the events they want (``run.succeeded``,
``run.failed``, ``run.cancelled`` or ``*``). A subscriber with a secret gets
an ``X-Slipway-Signature: sha256=<hex>`` header, the HMAC of the request body.
"""

from __future__ import annotations
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

logger = logging.getLogger("slipway.webhooks")

RUN_EVENTS = ("run.succeeded", "run.failed", "run.cancelled")


@dataclass
class Subscription:
    url: str
    events: list[str] = field(default_factory=lambda: ["run.failed"])
    secret: str | None = None

    def wants(self, event: str) -> bool:
        return "*" in self.events or event in self.events

    def to_dict(self) -> dict:
        return {"url": self.url, "events": list(self.events)}


_subscriptions: dict[str, Subscription] = {}


def register_webhook(url: str, events: list[str] | None = None, secret: str | None = None) -> Subscription:
    """Subscribe *url* to run events, replacing an earlier subscription for it."""
    events = list(events or ["run.failed"])
    unknown = [e for e in events if e != "*" and e not in RUN_EVENTS]
    if unknown:
        raise ValueError(f"Unknown webhook events: {', '.join(unknown)}")
    sub = Subscription(url=url, events=events, secret=secret)
    _subscriptions[url] = sub
    logger.info(f"Registered webhook: {url} for events: {events}")
    return sub


def list_webhooks() -> list[dict]:
    return [s.to_dict() for s in _subscriptions.values()]


def remove_webhook(url: str) -> bool:
    return _subscriptions.pop(url, None) is not None


def clear_webhooks():
    _subscriptions.clear()


def sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


async def fire_webhook(event: str, payload: dict, transport: httpx.AsyncBaseTransport | None = None):
    """Deliver *event* to every subscriber that wants it. Failures are logged, never raised."""
    targets = [s for s in _subscriptions.values() if s.wants(event)]
    if not targets:
        return

    body = json.dumps({
        "event": event,
        "sent_at": datetime.now(tz=timezone.utc).isoformat(),
        "payload": payload,
    }).encode()

    async with httpx.AsyncClient(timeout=10, transport=transport) as client:
        for sub in targets:
            headers = {"Content-Type": "application/json", "X-Slipway-Event": event}
            if sub.secret:
                headers["X-Slipway-Signature"] = sign(sub.secret, body)
            try:
                resp = await client.post(sub.url, content=body, headers=headers)
                logger.info(f"Webhook fired: {sub.url} → {resp.status_code}")
            except httpx.HTTPError as e:
                logger.error(f"Webhook failed: {sub.url} → {e}")


async def notify_run_complete(outcome: dict, transport: httpx.AsyncBaseTransport | None = None):
    """Fire ``run.<status>`` for a finished run's outcome."""
    await fire_webhook(f"run.{outcome['status']}", outcome, transport=transport)
