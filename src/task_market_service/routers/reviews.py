"""Review endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import (
    read_body_token,
    require_bearer_token,
    require_component,
)

router = APIRouter()


@router.get("/tasks/{task_id}/reviews")
async def list_reviews(task_id: str) -> dict[str, Any]:
    """Reviews left on a task."""
    review_gate = require_component(get_app_state().review_gate, "ReviewGate")
    return review_gate.list_reviews(task_id)


@router.post("/tasks/{task_id}/reviews", status_code=201)
async def submit_review(task_id: str, request: Request) -> JSONResponse:
    """Review the counterparty of a completed task."""
    token = await read_body_token(request)
    review_gate = require_component(get_app_state().review_gate, "ReviewGate")
    result = await review_gate.submit_review(task_id, token)
    return JSONResponse(status_code=201, content=result)


@router.get("/users/{user_id}/pending-reviews")
async def pending_reviews(user_id: str, request: Request) -> dict[str, Any]:
    """Completed tasks the user has yet to review."""
    token = require_bearer_token(request)
    review_gate = require_component(get_app_state().review_gate, "ReviewGate")
    return await review_gate.pending_reviews(user_id, token)
