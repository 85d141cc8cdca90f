"""
TillPoint Bridge — Session API Endpoints
Status, logout and forced restart of the WhatsApp session.
"""

from typing import Any

from fastapi import APIRouter, Depends, Response, status

from tillpoint_bridge.core.dependencies import Lifecycle, require_api_key
from tillpoint_bridge.core.errors import ApiError
from tillpoint_bridge.models.schemas import ErrorResponse, SessionActionResponse, SessionStatusResponse
from tillpoint_bridge.services.session_lifecycle import LifecycleResult

router = APIRouter(prefix="/session", tags=["session"], dependencies=[Depends(require_api_key)])


def _action_response(result: LifecycleResult, response: Response) -> dict[str, Any]:
    if not result.accepted:
        response.status_code = status.HTTP_202_ACCEPTED
    return {"success": True, "message": result.message}


# ── Status ───────────────────────────────────────────────────────────────────


@router.get(
    "/status/{session_id}",
    response_model=SessionStatusResponse | ErrorResponse,
    summary="Live WhatsApp connection state",
)
async def get_session_status(session_id: str, lifecycle: Lifecycle) -> dict[str, Any]:
    """
    Query the client for its current state and refresh the cache.
    Client errors are reported in the body with HTTP 200.
    """
    try:
        state = await lifecycle.refresh_state()
    except Exception as exc:
        return {"success": False, "error": str(exc)}
    return {"success": True, "state": state}


# ── Logout ───────────────────────────────────────────────────────────────────


@router.post(
    "/logout/{session_id}",
    response_model=SessionActionResponse,
    responses={202: {"model": SessionActionResponse}, 500: {"model": ErrorResponse}},
    summary="Log out and force a new QR code",
)
async def logout_session(session_id: str, lifecycle: Lifecycle, response: Response) -> dict[str, Any]:
    try:
        result = await lifecycle.logout()
    except Exception as exc:
        raise ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc)) from exc
    return _action_response(result, response)


# ── Restart ──────────────────────────────────────────────────────────────────


@router.post(
    "/restart/{session_id}",
    response_model=SessionActionResponse,
    responses={202: {"model": SessionActionResponse}, 500: {"model": ErrorResponse}},
    summary="Destroy and re-initialize the client",
)
async def restart_session(session_id: str, lifecycle: Lifecycle, response: Response) -> dict[str, Any]:
    try:
        result = await lifecycle.restart()
    except Exception as exc:
        raise ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc)) from exc
    return _action_response(result, response)
