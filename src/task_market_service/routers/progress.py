"""Progress timeline and revision endpoints."""

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


@router.get("/tasks/{task_id}/progress")
async def list_progress(task_id: str, request: Request) -> dict[str, Any]:
    """Progress timeline of a task, for its participants."""
    token = require_bearer_token(request)
    tracker = require_component(get_app_state().fulfillment_tracker, "FulfillmentTracker")
    return await tracker.list_updates(task_id, token)


@router.post("/tasks/{task_id}/progress", status_code=201)
async def post_progress(task_id: str, request: Request) -> JSONResponse:
    """Post a progress update."""
    token = await read_body_token(request)
    tracker = require_component(get_app_state().fulfillment_tracker, "FulfillmentTracker")
    result = await tracker.post_update(task_id, token)
    return JSONResponse(status_code=201, content=result)


@router.post("/tasks/{task_id}/revisions", status_code=201)
async def request_revision(task_id: str, request: Request) -> JSONResponse:
    """Poster asks for a revision."""
    token = await read_body_token(request)
    tracker = require_component(get_app_state().fulfillment_tracker, "FulfillmentTracker")
    result = await tracker.request_revision(task_id, token)
    return JSONResponse(status_code=201, content=result)


@router.post("/tasks/{task_id}/revisions/complete", status_code=201)
async def complete_revision(task_id: str, request: Request) -> JSONResponse:
    """Helper reports the revision as done."""
    token = await read_body_token(request)
    tracker = require_component(get_app_state().fulfillment_tracker, "FulfillmentTracker")
    result = await tracker.mark_revision_complete(task_id, token)
    return JSONResponse(status_code=201, content=result)


@router.post("/tasks/{task_id}/work-complete", status_code=201)
async def work_complete(task_id: str, request: Request) -> JSONResponse:
    """Helper signals the work is finished."""
    token = await read_body_token(request)
    tracker = require_component(get_app_state().fulfillment_tracker, "FulfillmentTracker")
    result = await tracker.mark_work_complete(task_id, token)
    return JSONResponse(status_code=201, content=result)
