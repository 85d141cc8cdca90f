"""
TillPoint Bridge — Pydantic Schemas
Request/response models for the HTTP API and the outbound webhook.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict


class BridgeBase(BaseModel):
    """Shared model config for all schemas."""

    model_config = ConfigDict(extra="ignore")


# ============================================================================
# Client
# ============================================================================


class SendMessageRequest(BridgeBase):
    # Presence is checked by the handler so a missing field yields the
    # bridge's own 400 message instead of a schema error.
    chatId: Any = None
    content: Any = None
    contentType: str | None = None


class SendMessageResponse(BridgeBase):
    success: bool = True
    id: Any


# ============================================================================
# Session
# ============================================================================


class SessionStatusResponse(BridgeBase):
    success: bool = True
    state: str | None


class SessionActionResponse(BridgeBase):
    success: bool = True
    message: str


class ErrorResponse(BridgeBase):
    success: bool = False
    error: str


# ============================================================================
# System
# ============================================================================


class HealthResponse(BridgeBase):
    status: str = "ok"
    timestamp: str


# ============================================================================
# Webhook
# ============================================================================


class WebhookEnvelope(BridgeBase):
    event: str
    session: str
    data: Any = None
