"""
TillPoint Bridge — Shared Dependencies
FastAPI dependency injectors for settings, session lifecycle and API-key auth.
"""

import hmac
from typing import Annotated

from fastapi import Depends, Header, Request, status

from tillpoint_bridge.core.config import Settings
from tillpoint_bridge.core.errors import ApiError
from tillpoint_bridge.services.session_lifecycle import SessionLifecycle


# ── App State ────────────────────────────────────────────────────────────────


def get_app_settings(request: Request) -> Settings:
    """Settings the running app was created with."""
    return request.app.state.settings


def get_lifecycle(request: Request) -> SessionLifecycle:
    """The process-wide session lifecycle owned by the app."""
    return request.app.state.lifecycle


# ── API Key ──────────────────────────────────────────────────────────────────


async def require_api_key(
    x_api_key: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Reject the request unless ``x-api-key`` matches the configured secret."""
    if x_api_key is None or not hmac.compare_digest(
        x_api_key.encode("utf-8"), settings.API_KEY.encode("utf-8")
    ):
        raise ApiError(status.HTTP_401_UNAUTHORIZED, "Unauthorized")


# ── Type aliases for cleaner endpoint signatures ─────────────────────────────

AppSettings = Annotated[Settings, Depends(get_app_settings)]
Lifecycle = Annotated[SessionLifecycle, Depends(get_lifecycle)]
