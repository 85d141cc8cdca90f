"""
Tests for the application factory, health check and process entry point.
"""
import logging
import re
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from tillpoint_bridge import __main__ as entrypoint
from tillpoint_bridge.core.config import get_settings
from tillpoint_bridge.main import create_app, utc_timestamp

from conftest import AUTH, make_settings


# =========================================================================
# Health / Middleware
# =========================================================================


@pytest.mark.parametrize("headers", [None, AUTH, {"x-api-key": "wrong"}])
async def test_health_needs_no_key(api, messaging_client, headers):
    response = await api.get("/health", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert datetime.fromisoformat(body["timestamp"].replace("Z", "+00:00")).tzinfo is not None
    messaging_client.get_state.assert_not_awaited()


def test_utc_timestamp_format():
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z", utc_timestamp())


async def test_oversized_body_is_rejected(api, messaging_client):
    response = await api.post(
        "/client/sendMessage/tillpoint_main",
        headers={**AUTH, "content-type": "application/json"},
        content=b"x" * (50 * 1024 + 1),
    )

    assert response.status_code == 413
    assert response.json() == {"success": False, "error": "request entity too large"}
    messaging_client.send_message.assert_not_awaited()


async def test_unknown_route_is_404(api):
    response = await api.get("/client/unknown", headers=AUTH)
    assert response.status_code == 404


# =========================================================================
# Lifespan
# =========================================================================


def test_lifespan_starts_and_stops_session(messaging_client):
    app = create_app(make_settings(), client=messaging_client)

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        messaging_client.initialize.assert_awaited_once()
        messaging_client.destroy.assert_not_awaited()

    messaging_client.destroy.assert_awaited_once()


def test_lifespan_warns_without_webhook(messaging_client, caplog):
    app = create_app(make_settings(), client=messaging_client)

    with caplog.at_level(logging.WARNING, logger="tillpoint_bridge.main"):
        with TestClient(app):
            pass

    assert "BASE_WEBHOOK_URL not set" in caplog.text


def test_docs_hidden_in_production(messaging_client):
    app = create_app(make_settings(ENVIRONMENT="production"), client=messaging_client)
    assert app.docs_url is None


# =========================================================================
# Entry Point
# =========================================================================


@pytest.fixture
def entry_env(monkeypatch, tmp_path):
    # No stray .env, and logging stays under caplog's control
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(entrypoint, "configure_logging", lambda level="INFO": None)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_main_exits_without_api_key(entry_env, caplog):
    entry_env.delenv("API_KEY", raising=False)

    with caplog.at_level(logging.ERROR, logger="tillpoint_bridge"):
        with pytest.raises(SystemExit) as excinfo:
            entrypoint.main()

    assert excinfo.value.code == 1
    assert "API_KEY environment variable is not set" in caplog.text


def test_main_exits_on_empty_api_key(entry_env):
    entry_env.setenv("API_KEY", "")

    with pytest.raises(SystemExit) as excinfo:
        entrypoint.main()

    assert excinfo.value.code == 1


def test_main_serves_on_configured_port(entry_env):
    calls = []
    entry_env.setenv("API_KEY", "secret")
    entry_env.setenv("PORT", "4010")
    entry_env.setattr(entrypoint.uvicorn, "run", lambda app, **kwargs: calls.append(kwargs))

    entrypoint.main()

    assert calls == [{"host": "0.0.0.0", "port": 4010, "log_config": None}]
