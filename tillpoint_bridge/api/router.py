"""
TillPoint Bridge — API Router
Aggregates all endpoint routers into a single router.
"""

from fastapi import APIRouter

from tillpoint_bridge.api.endpoints.client import router as client_router
from tillpoint_bridge.api.endpoints.session import router as session_router

api_router = APIRouter()

api_router.include_router(client_router)
api_router.include_router(session_router)
