"""Profile and platform settings endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import (
    extract_bearer_token,
    read_body_token,
    require_component,
)

router = APIRouter()


@router.post("/profiles")
async def upsert_profile(request: Request) -> JSONResponse:
    """Create or update the caller's profile."""
    token = await read_body_token(request)
    profile_manager = require_component(get_app_state().profile_manager, "ProfileManager")
    result = await profile_manager.upsert_profile(token)
    return JSONResponse(status_code=200, content=result)


@router.get("/profiles/{user_id}")
async def get_profile(user_id: str, request: Request) -> dict[str, Any]:
    """Public profile; private fields for the owner."""
    token = extract_bearer_token(request.headers.get("authorization"), required=False)
    profile_manager = require_component(get_app_state().profile_manager, "ProfileManager")
    return await profile_manager.get_profile(user_id, token)


@router.post("/settings")
async def update_settings(request: Request) -> JSONResponse:
    """Change the platform fee percent (platform agent)."""
    token = await read_body_token(request)
    payout_engine = require_component(get_app_state().payout_engine, "PayoutEngine")
    result = await payout_engine.update_platform_fee(token)
    return JSONResponse(status_code=200, content=result)
