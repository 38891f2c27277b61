"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_market_service.core.exceptions import ValidationError
from task_market_service.core.state import get_app_state
from task_market_service.routers.validation import read_body_token, require_component
from task_market_service.services.task_states import TaskStatus

router = APIRouter()


def _parse_non_negative_int(raw: str | None, name: str, minimum: int) -> int | None:
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError("INVALID_PAYLOAD", f"{name} must be an integer") from exc
    if value < minimum:
        raise ValidationError("INVALID_PAYLOAD", f"{name} must be >= {minimum}")
    return value


# ---------------------------------------------------------------------------
# POST /tasks: create task (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Publish a new open task."""
    token = await read_body_token(request)
    lifecycle = require_component(get_app_state().lifecycle, "TaskLifecycleController")
    result = await lifecycle.create_task(token)
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """List tasks with optional filters."""
    status = request.query_params.get("status")
    if status is not None and status not in {str(value) for value in TaskStatus}:
        raise ValidationError("INVALID_PAYLOAD", f"Unknown task status '{status}'")

    include_archived_raw = request.query_params.get("include_archived", "false").lower()
    if include_archived_raw not in ("true", "false"):
        raise ValidationError("INVALID_PAYLOAD", "include_archived must be true or false")

    limit = _parse_non_negative_int(request.query_params.get("limit"), "limit", 1)
    offset = _parse_non_negative_int(request.query_params.get("offset"), "offset", 0)

    lifecycle = require_component(get_app_state().lifecycle, "TaskLifecycleController")
    tasks = lifecycle.list_tasks(
        status,
        request.query_params.get("created_by"),
        request.query_params.get("assigned_to"),
        include_archived=include_archived_raw == "true",
        limit=limit,
        offset=offset,
    )
    return {"tasks": tasks}


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> dict[str, Any]:
    """Task detail with bid count and fulfillment flags."""
    lifecycle = require_component(get_app_state().lifecycle, "TaskLifecycleController")
    return lifecycle.get_task(task_id)


# ---------------------------------------------------------------------------
# Transitions and housekeeping
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/complete")
async def complete_task(task_id: str, request: Request) -> JSONResponse:
    """Poster confirms completion; the helper payout follows."""
    token = await read_body_token(request)
    lifecycle = require_component(get_app_state().lifecycle, "TaskLifecycleController")
    result = await lifecycle.mark_completed(task_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/archive")
async def archive_task(task_id: str, request: Request) -> JSONResponse:
    """Archive a task."""
    token = await read_body_token(request)
    lifecycle = require_component(get_app_state().lifecycle, "TaskLifecycleController")
    result = await lifecycle.archive_task(task_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/unarchive")
async def unarchive_task(task_id: str, request: Request) -> JSONResponse:
    """Restore an archived task."""
    token = await read_body_token(request)
    lifecycle = require_component(get_app_state().lifecycle, "TaskLifecycleController")
    result = await lifecycle.unarchive_task(task_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/delete")
async def delete_task(task_id: str, request: Request) -> JSONResponse:
    """Delete an open task."""
    token = await read_body_token(request)
    lifecycle = require_component(get_app_state().lifecycle, "TaskLifecycleController")
    result = await lifecycle.delete_task(task_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/hide")
async def hide_task(task_id: str, request: Request) -> JSONResponse:
    """Hide or unhide a task (platform agent)."""
    token = await read_body_token(request)
    lifecycle = require_component(get_app_state().lifecycle, "TaskLifecycleController")
    result = await lifecycle.hide_task(task_id, token)
    return JSONResponse(status_code=200, content=result)
