"""Tests for webhook notifications."""

import hashlib
import hmac
import json

import httpx
import pytest
from slipway.daemon.webhooks import (
    clear_webhooks, fire_webhook, list_webhooks, notify_run_complete, register_webhook, remove_webhook,
)


@pytest.fixture(autouse=True)
def reset_webhooks():
    clear_webhooks()
    yield
    clear_webhooks()


class TestRegistry:
    def test_register_replaces_same_url(self):
        register_webhook("http://hooks.test/a")
        register_webhook("http://hooks.test/a", events=["*"])
        assert list_webhooks() == [{"url": "http://hooks.test/a", "events": ["*"]}]

    def test_default_events(self):
        register_webhook("http://hooks.test/a")
        assert list_webhooks()[0]["events"] == ["run.failed"]

    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError, match="pipeline.done"):
            register_webhook("http://hooks.test/a", events=["pipeline.done"])
        assert list_webhooks() == []

    def test_remove(self):
        register_webhook("http://hooks.test/a")
        assert remove_webhook("http://hooks.test/a")
        assert not remove_webhook("http://hooks.test/a")


class TestDelivery:
    @pytest.mark.asyncio
    async def test_matching_event_delivered_and_signed(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(200)

        register_webhook("http://hooks.test/failed", events=["run.failed"], secret="s3cret")
        register_webhook("http://hooks.test/ok", events=["run.succeeded"])

        outcome = {"run_id": "r1", "status": "failed", "build_status": "failed", "deploy_status": "skipped"}
        await notify_run_complete(outcome, transport=httpx.MockTransport(handler))

        assert [str(r.url) for r in received] == ["http://hooks.test/failed"]
        request = received[0]
        body = request.read()
        assert json.loads(body)["payload"] == outcome
        assert request.headers["x-slipway-event"] == "run.failed"
        expected = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
        assert request.headers["x-slipway-signature"] == expected

    @pytest.mark.asyncio
    async def test_wildcard_without_secret(self):
        received = []

        def handler(request):
            received.append(request)
            return httpx.Response(204)

        register_webhook("http://hooks.test/all", events=["*"])
        await fire_webhook("run.cancelled", {}, transport=httpx.MockTransport(handler))
        assert json.loads(received[0].read())["event"] == "run.cancelled"
        assert "x-slipway-signature" not in received[0].headers

    @pytest.mark.asyncio
    async def test_delivery_failure_is_logged_not_raised(self, caplog):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        register_webhook("http://hooks.test/down", events=["*"])
        await fire_webhook("run.failed", {}, transport=httpx.MockTransport(handler))
        assert "Webhook failed" in caplog.text
