"""
Tests for WebhookNotifier delivery against an httpx MockTransport.
"""
import asyncio
import json
import logging

import httpx
import pytest

from tillpoint_bridge.services.webhook_notifier import WebhookNotifier

from conftest import API_KEY, make_settings

WEBHOOK_URL = "http://pos.local/api/whatsapp/webhook"


@pytest.fixture
def received():
    return []


@pytest.fixture
def use_transport(monkeypatch):
    """Route every httpx.AsyncClient the notifier opens through ``handler``."""
    real_client = httpx.AsyncClient

    def install(handler):
        def client_factory(**kwargs):
            return real_client(transport=httpx.MockTransport(handler), **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", client_factory)

    return install


@pytest.fixture
def notifier():
    return WebhookNotifier(make_settings(BASE_WEBHOOK_URL=WEBHOOK_URL))


def test_disabled_without_url():
    notifier = WebhookNotifier(make_settings())

    assert notifier.enabled is False
    assert notifier.notify("ready", {"me": {"user": None}}) is None


async def test_posts_envelope_with_api_key(notifier, use_transport, received, caplog):
    def handler(request):
        received.append(request)
        return httpx.Response(200, json={"ok": True})

    use_transport(handler)

    with caplog.at_level(logging.INFO, logger="tillpoint_bridge.services.Webhook"):
        await notifier.notify("ready", {"me": {"user": "5215512345678"}})

    assert len(received) == 1
    request = received[0]
    assert request.method == "POST"
    assert str(request.url) == WEBHOOK_URL
    assert request.headers["x-api-key"] == API_KEY
    assert request.headers["content-type"] == "application/json"
    assert json.loads(request.content) == {
        "event": "ready",
        "session": "tillpoint_main",
        "data": {"me": {"user": "5215512345678"}},
    }
    assert "Webhook sent: ready" in caplog.text


async def test_qr_payload_is_the_raw_string(notifier, use_transport, received):
    use_transport(lambda request: received.append(request) or httpx.Response(204))

    await notifier.notify("qr", "2@abc,def,ghi")

    assert json.loads(received[0].content)["data"] == "2@abc,def,ghi"


async def test_notify_does_not_wait_for_delivery(notifier, use_transport):
    release = asyncio.Event()

    async def handler(request):
        await release.wait()
        return httpx.Response(200)

    use_transport(handler)

    task = notifier.notify("disconnected", "LOGOUT")
    await asyncio.sleep(0)
    assert not task.done()

    release.set()
    await task


async def test_error_status_is_logged_and_dropped(notifier, use_transport, received, caplog):
    def handler(request):
        received.append(request)
        return httpx.Response(500, text="boom")

    use_transport(handler)

    with caplog.at_level(logging.ERROR, logger="tillpoint_bridge.services.Webhook"):
        await notifier.notify("auth_failure", "Unable to log in")

    # Single attempt, no retry
    assert len(received) == 1
    assert "Failed to send webhook: auth_failure" in caplog.text


async def test_connection_error_is_logged_and_dropped(notifier, use_transport, caplog):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    use_transport(handler)

    with caplog.at_level(logging.ERROR, logger="tillpoint_bridge.services.Webhook"):
        task = notifier.notify("ready", {"me": {"user": None}})
        assert await task is None

    assert "connection refused" in caplog.text


async def test_aclose_waits_for_pending_deliveries(notifier, use_transport, received):
    async def handler(request):
        await asyncio.sleep(0.01)
        received.append(request)
        return httpx.Response(200)

    use_transport(handler)

    notifier.notify("qr", "2@one")
    notifier.notify("qr", "2@two")
    await notifier.aclose()

    assert len(received) == 2
    assert not notifier._pending
