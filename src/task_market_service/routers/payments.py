"""Payment, payout and gateway webhook endpoints."""

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


@router.get("/tasks/{task_id}/payment")
async def payment_summary(task_id: str, request: Request) -> dict[str, Any]:
    """Payment and payout state with fee breakdowns."""
    token = require_bearer_token(request)
    orchestrator = require_component(get_app_state().payment_orchestrator, "PaymentOrchestrator")
    return await orchestrator.payment_summary(task_id, token)


@router.post("/tasks/{task_id}/payment/checkout", status_code=201)
async def create_checkout(task_id: str, request: Request) -> JSONResponse:
    """Open a gateway checkout for the poster."""
    token = await read_body_token(request)
    orchestrator = require_component(get_app_state().payment_orchestrator, "PaymentOrchestrator")
    result = await orchestrator.initiate_checkout(task_id, token)
    return JSONResponse(status_code=201, content=result)


@router.post("/tasks/{task_id}/payment/reconcile")
async def reconcile_payment(task_id: str, request: Request) -> JSONResponse:
    """Wait briefly for the gateway to confirm the payment."""
    token = await read_body_token(request)
    orchestrator = require_component(get_app_state().payment_orchestrator, "PaymentOrchestrator")
    result = await orchestrator.reconcile(task_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/payment/status")
async def override_payment_status(task_id: str, request: Request) -> JSONResponse:
    """Set the payment status manually (platform agent)."""
    token = await read_body_token(request)
    orchestrator = require_component(get_app_state().payment_orchestrator, "PaymentOrchestrator")
    result = await orchestrator.override_payment_status(task_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/payout")
async def retry_payout(task_id: str, request: Request) -> JSONResponse:
    """Re-run the helper payout (platform agent)."""
    token = await read_body_token(request)
    payout_engine = require_component(get_app_state().payout_engine, "PayoutEngine")
    result = await payout_engine.retry_payout(task_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/payments/webhook")
async def payment_webhook(request: Request) -> JSONResponse:
    """Payment confirmation from the gateway."""
    token = await read_body_token(request)
    orchestrator = require_component(get_app_state().payment_orchestrator, "PaymentOrchestrator")
    result = await orchestrator.confirm_payment(token)
    return JSONResponse(status_code=200, content=result)
