"""Shared fixtures for the bridge test-suite."""
import os

# The module-level app in tillpoint_bridge.main needs a key at import time
os.environ.setdefault("API_KEY", "test-api-key")

from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from tillpoint_bridge.core.config import Settings
from tillpoint_bridge.main import create_app
from tillpoint_bridge.services.messaging_client import BaseMessagingClient, SentMessage
from tillpoint_bridge.services.session_lifecycle import SessionLifecycle
from tillpoint_bridge.services.webhook_notifier import WebhookNotifier

API_KEY = "test-api-key"
AUTH = {"x-api-key": API_KEY}


def make_settings(**overrides) -> Settings:
    values = {
        "API_KEY": API_KEY,
        "BASE_WEBHOOK_URL": None,
        "LOGOUT_REINIT_DELAY": 0.01,
        "RESTART_REINIT_DELAY": 0.01,
        "LOG_QR_TERMINAL": False,
        "RELAY_INBOUND_MESSAGES": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


class FakeMessagingClient(BaseMessagingClient):
    """In-memory messaging client whose capabilities are AsyncMocks."""

    service_name = "FakeMessagingClient"

    def __init__(self, settings=None):
        super().__init__(settings)
        self.initialize = AsyncMock()
        self.destroy = AsyncMock()
        self.logout = AsyncMock()
        self.get_state = AsyncMock(return_value="CONNECTED")
        self.send_message = AsyncMock(
            return_value=SentMessage(id="ABCD", chat_id="1234567890@c.us")
        )

    async def initialize(self):
        pass

    async def destroy(self):
        pass

    async def logout(self):
        pass

    async def get_state(self):
        return None

    async def send_message(self, chat_id, content, *, send_seen=False):
        raise NotImplementedError


@pytest.fixture
def messaging_client(settings):
    return FakeMessagingClient(settings)


@pytest.fixture
def notifier():
    return Mock(spec=WebhookNotifier)


@pytest.fixture
def lifecycle(messaging_client, notifier, settings):
    return SessionLifecycle(messaging_client, notifier, settings)


@pytest.fixture
def api_app(messaging_client):
    # Long delays keep the restart window open for the duration of a test
    app_settings = make_settings(LOGOUT_REINIT_DELAY=60, RESTART_REINIT_DELAY=60)
    return create_app(app_settings, client=messaging_client)


@pytest.fixture
async def api(api_app):
    """HTTP client bound to the app on the test's own event loop (no lifespan)."""
    transport = httpx.ASGITransport(app=api_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://bridge") as client:
        yield client
    await api_app.state.lifecycle.stop()
