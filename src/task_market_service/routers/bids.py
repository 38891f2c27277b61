"""Bid submission, listing, acceptance and streaming endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from task_market_service.config import get_settings
from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import (
    read_body_token,
    require_bearer_token,
    require_component,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Stream route MUST be registered before any /bids/{bid_id} route
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}/bids/stream")
async def stream_bids(task_id: str, request: Request) -> EventSourceResponse:
    """Server-Sent Events stream of the bids visible to the caller."""
    token = require_bearer_token(request)
    bid_registry = require_component(get_app_state().bid_registry, "BidRegistry")
    viewer_id = await bid_registry.authorize_stream(task_id, token)
    settings = get_settings()
    return EventSourceResponse(
        bid_registry.stream_bids(
            task_id,
            viewer_id,
            settings.streams.keepalive_interval_seconds,
        ),
        headers={"X-Accel-Buffering": "no"},
    )


@router.post("/tasks/{task_id}/bids", status_code=201)
async def submit_bid(task_id: str, request: Request) -> JSONResponse:
    """Place a bid on an open task."""
    token = await read_body_token(request)
    bid_registry = require_component(get_app_state().bid_registry, "BidRegistry")
    result = await bid_registry.submit_bid(task_id, token)
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks/{task_id}/bids")
async def list_bids(task_id: str, request: Request) -> dict[str, Any]:
    """List the bids on a task visible to the caller."""
    token = require_bearer_token(request)
    bid_registry = require_component(get_app_state().bid_registry, "BidRegistry")
    return await bid_registry.list_bids(task_id, token)


@router.post("/tasks/{task_id}/bids/{bid_id}/accept")
async def accept_bid(task_id: str, bid_id: str, request: Request) -> JSONResponse:
    """Accept a bid and assign the helper."""
    token = await read_body_token(request)
    lifecycle = require_component(get_app_state().lifecycle, "TaskLifecycleController")
    result = await lifecycle.accept_bid(task_id, bid_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/assignment/cancel")
async def cancel_assignment(task_id: str, request: Request) -> JSONResponse:
    """Assigned helper backs out; the task reopens."""
    token = await read_body_token(request)
    lifecycle = require_component(get_app_state().lifecycle, "TaskLifecycleController")
    result = await lifecycle.cancel_assignment(task_id, token)
    return JSONResponse(status_code=200, content=result)
