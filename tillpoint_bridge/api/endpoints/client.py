"""
TillPoint Bridge — Client API Endpoints
Outbound messaging through the linked WhatsApp account.
"""

import logging
import re
from typing import Any

from fastapi import APIRouter, Depends, status

from tillpoint_bridge.core.dependencies import Lifecycle, require_api_key
from tillpoint_bridge.core.errors import ApiError
from tillpoint_bridge.models.enums import ConnectionState
from tillpoint_bridge.models.schemas import ErrorResponse, SendMessageRequest, SendMessageResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/client", tags=["client"], dependencies=[Depends(require_api_key)])

_MASK_DIGIT = re.compile(r"\d(?=\d{4})")


def mask_chat_id(chat_id: Any) -> str:
    """Hide all but the last four digits of a destination for logging."""
    if not isinstance(chat_id, str):
        return "unknown"
    return _MASK_DIGIT.sub("*", chat_id)


@router.post(
    "/sendMessage/{session_id}",
    response_model=SendMessageResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Send a WhatsApp message",
)
async def send_message(
    session_id: str,
    lifecycle: Lifecycle,
    payload: SendMessageRequest | None = None,
) -> dict[str, Any]:
    """
    Send ``content`` to ``chatId``.
    The session id in the path is accepted for compatibility; there is
    only one session.
    """
    data = payload or SendMessageRequest()
    if not data.chatId or not data.content:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "Missing chatId or content")

    try:
        state = await lifecycle.state_for_send()
        if state != ConnectionState.CONNECTED:
            raise ApiError(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                f"WhatsApp client not ready. Current state: {state or ConnectionState.INITIALIZING}",
            )

        logger.info("Attempting to send message to %s...", mask_chat_id(data.chatId))
        sent = await lifecycle.client.send_message(data.chatId, data.content, send_seen=False)
    except ApiError:
        raise
    except Exception as exc:
        logger.error("Error sending message: %s", exc)
        raise ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc)) from exc

    logger.info("Message sent %s", sent.id)
    return {"success": True, "id": sent.id}
