"""Checkout creation and payment-status reconciliation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import StateError, ValidationError
from task_market_service.logging import get_logger
from task_market_service.services.money import from_cents, quantize, to_json_number
from task_market_service.services.records import (
    load_task,
    now_iso,
    require_participant,
    require_poster,
)
from task_market_service.services.task_states import PaymentStatus, TaskStatus, require_status
from task_market_service.services.token_validator import require_fields, require_path_match

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from decimal import Decimal

    from task_market_service.clients.payment_gateway_client import PaymentGatewayClient
    from task_market_service.services.market_store import MarketStore
    from task_market_service.services.payout_engine import PayoutEngine
    from task_market_service.services.token_validator import TokenValidator

_WEBHOOK_ACTIONS: dict[str, PaymentStatus] = {
    "payment_succeeded": PaymentStatus.PAID,
    "payment_failed": PaymentStatus.FAILED,
}


@dataclass(frozen=True)
class CheckoutBreakdown:
    """What the poster pays: the task budget plus the fixed service fee."""

    budget: Decimal
    service_fee: Decimal
    total: Decimal

    def to_response(self) -> dict[str, Any]:
        return {
            "budget": to_json_number(self.budget),
            "service_fee": to_json_number(self.service_fee),
            "total": to_json_number(self.total),
        }


@dataclass(frozen=True)
class ReconcileOutcome:
    """Result of polling for payment confirmation."""

    status: str
    attempts: int


def compute_checkout_total(budget: Decimal, service_fee: Decimal) -> CheckoutBreakdown:
    """total = budget + service fee, rounded to cents."""
    return CheckoutBreakdown(
        budget=quantize(budget),
        service_fee=quantize(service_fee),
        total=quantize(budget + service_fee),
    )


class PaymentOrchestrator:
    """
    Drives a task's payment from 'none' to 'paid'.

    Checkout creation is synchronous with the gateway; capture is confirmed
    later by the gateway webhook. `await_payment` bridges the gap with a
    bounded, cancellable polling schedule and falls back to 'processing'.
    """

    def __init__(
        self,
        store: MarketStore,
        payment_gateway_client: PaymentGatewayClient,
        token_validator: TokenValidator,
        payout_engine: PayoutEngine,
        *,
        service_fee: Decimal,
        currency: str,
        gateway_agent_id: str,
        platform_agent_id: str,
        reconcile_backoff_seconds: Sequence[float],
        return_url_template: str,
        cancel_url_template: str,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._payment_gateway_client = payment_gateway_client
        self._token_validator = token_validator
        self._payout_engine = payout_engine
        self._service_fee = service_fee
        self._currency = currency
        self._gateway_agent_id = gateway_agent_id
        self._platform_agent_id = platform_agent_id
        self._reconcile_backoff_seconds = tuple(reconcile_backoff_seconds)
        self._return_url_template = return_url_template
        self._cancel_url_template = cancel_url_template
        self._sleep = sleep
        self._logger = get_logger(__name__)

    def checkout_breakdown(self, task: dict[str, Any]) -> CheckoutBreakdown | None:
        """Poster total for a task, from its budget or else its accepted bid."""
        budget_cents = task["budget_cents"]
        if budget_cents is None:
            accepted = self._store.get_accepted_bid(task["task_id"])
            if accepted is None:
                return None
            budget_cents = accepted["amount_cents"]
        if budget_cents <= 0:
            return None
        return compute_checkout_total(from_cents(budget_cents), self._service_fee)

    async def payment_summary(self, task_id: str, auth_token: str) -> dict[str, Any]:
        """Payment and payout state with fee breakdowns. Participants only."""
        payload = await self._token_validator.validate_jws_token(auth_token, "view_payment")
        signer_id: str = payload["_signer_id"]

        task = load_task(self._store, task_id)
        if signer_id != self._platform_agent_id:
            require_participant(task, signer_id, "view payment details")

        checkout = self.checkout_breakdown(task)
        payout = self._payout_engine.quote(task)
        return {
            "task_id": task_id,
            "currency": self._currency,
            "payment_status": task["payment_status"],
            "payment_intent_id": task["payment_intent_id"],
            "payout_status": task["payout_status"],
            "payout_id": task["payout_id"],
            "checkout": None if checkout is None else checkout.to_response(),
            "payout": None if payout is None else payout.to_response(),
        }

    async def initiate_checkout(self, task_id: str, token: str) -> dict[str, Any]:
        """
        Create a checkout session for the poster.

        Error precedence:
        1-4. JWS verification
        5.   INVALID_PAYLOAD: task_id mismatch
        6.   TASK_NOT_FOUND
        7.   INVALID_STATUS: task not in progress
        8.   FORBIDDEN: signer is not the poster
        9.   PAYMENT_ALREADY_COMPLETED
        10.  INVALID_AMOUNT: no positive budget
        11.  PAYMENT_GATEWAY_REJECTED / PAYMENT_GATEWAY_UNAVAILABLE
        """
        payload = await self._token_validator.validate_jws_token(token, "create_checkout")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)
        return await self.start_checkout(task_id, signer_id)

    async def start_checkout(self, task_id: str, poster_id: str) -> dict[str, Any]:
        """Create the gateway checkout for an already-authenticated poster."""
        task = load_task(self._store, task_id)
        require_status(task, TaskStatus.IN_PROGRESS, "start a checkout")
        require_poster(task, poster_id, "pay for this task")

        if task["payment_status"] == PaymentStatus.PAID:
            raise StateError("PAYMENT_ALREADY_COMPLETED", "This task has already been paid")

        breakdown = self.checkout_breakdown(task)
        if breakdown is None:
            raise ValidationError("INVALID_AMOUNT", "Task has no positive budget to charge")

        session = await self._payment_gateway_client.create_checkout(
            amount=breakdown.total,
            currency=self._currency,
            return_url=self._return_url_template.format(task_id=task_id),
            cancel_url=self._cancel_url_template.format(task_id=task_id),
            metadata={
                "task_id": task_id,
                "poster_id": poster_id,
                "helper_id": str(task["assigned_to"]),
            },
        )
        intent_id = str(session["intent_id"])

        self._store.update_task(
            task_id,
            {
                "payment_intent_id": intent_id,
                "payment_status": str(PaymentStatus.PENDING),
                "updated_at": now_iso(),
            },
            expected_status=str(TaskStatus.IN_PROGRESS),
        )
        self._logger.info(
            "Checkout created",
            extra={"task_id": task_id, "intent_id": intent_id, "total": str(breakdown.total)},
        )

        return {
            "task_id": task_id,
            "intent_id": intent_id,
            "redirect_url": session.get("redirect_url"),
            "client_secret": session.get("client_secret"),
            "payment_status": str(PaymentStatus.PENDING),
            "currency": self._currency,
            "breakdown": breakdown.to_response(),
        }

    def _payment_status(self, task_id: str) -> str:
        return str(load_task(self._store, task_id)["payment_status"])

    async def await_payment(self, task_id: str) -> ReconcileOutcome:
        """
        Poll the stored payment status on the backoff schedule.

        Returns 'paid' or 'failed' as soon as either is observed, and
        'processing' once the schedule is exhausted. Cancelling the caller
        stops the loop at the current sleep.
        """
        status = self._payment_status(task_id)
        attempts = 0
        try:
            for delay in self._reconcile_backoff_seconds:
                if status in (PaymentStatus.PAID, PaymentStatus.FAILED):
                    break
                await self._sleep(delay)
                attempts += 1
                status = self._payment_status(task_id)
        except asyncio.CancelledError:
            self._logger.info(
                "Payment reconciliation cancelled",
                extra={"task_id": task_id, "attempts": attempts},
            )
            raise

        if status in (PaymentStatus.PAID, PaymentStatus.FAILED):
            return ReconcileOutcome(status=status, attempts=attempts)
        self._logger.info(
            "Payment still processing after reconciliation",
            extra={"task_id": task_id, "attempts": attempts},
        )
        return ReconcileOutcome(status="processing", attempts=attempts)

    async def reconcile(self, task_id: str, token: str) -> dict[str, Any]:
        """Wait for gateway confirmation after the poster returns from checkout."""
        payload = await self._token_validator.validate_jws_token(token, "reconcile_payment")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)

        task = load_task(self._store, task_id)
        require_poster(task, signer_id, "reconcile payment")
        if task["payment_status"] == PaymentStatus.NONE:
            raise StateError("PAYMENT_NOT_STARTED", "No checkout has been started for this task")

        outcome = await self.await_payment(task_id)
        return {"task_id": task_id, "status": outcome.status, "attempts": outcome.attempts}

    async def confirm_payment(self, token: str) -> dict[str, Any]:
        """
        Apply a gateway webhook event. Signed by the configured gateway agent.

        Idempotent: replays and events for a superseded intent are
        acknowledged without changing the task, and a paid task is never
        downgraded.
        """
        payload = await self._token_validator.validate_jws_token(
            token, tuple(_WEBHOOK_ACTIONS)
        )
        if payload["_signer_id"] != self._gateway_agent_id:
            raise StateError(
                "FORBIDDEN",
                "Only the payment gateway can confirm payments",
                status_code=403,
            )
        require_fields(payload, "task_id", "intent_id")
        task_id = str(payload["task_id"])
        intent_id = str(payload["intent_id"])
        target = _WEBHOOK_ACTIONS[payload["action"]]

        task = load_task(self._store, task_id)

        reason: str | None = None
        if task["payment_intent_id"] != intent_id:
            reason = "intent_mismatch"
        elif task["payment_status"] == target:
            reason = "already_applied"
        elif task["payment_status"] == PaymentStatus.PAID:
            reason = "already_paid"

        if reason is None:
            changed = self._store.update_task(
                task_id,
                {"payment_status": str(target), "updated_at": now_iso()},
                expected_status=None,
                expected={"payment_intent_id": intent_id},
            )
            if changed == 0:
                reason = "intent_mismatch"

        if reason is not None:
            self._logger.warning(
                "Payment event not applied",
                extra={"task_id": task_id, "intent_id": intent_id, "reason": reason},
            )
            return {"task_id": task_id, "applied": False, "reason": reason}

        self._logger.info(
            "Payment status updated from gateway",
            extra={"task_id": task_id, "intent_id": intent_id, "payment_status": str(target)},
        )
        return {"task_id": task_id, "applied": True, "payment_status": str(target)}

    async def override_payment_status(self, task_id: str, token: str) -> dict[str, Any]:
        """Manually set a task's payment status. Platform agent only."""
        payload = await self._token_validator.validate_jws_token(token, "override_payment_status")
        require_path_match(payload, "task_id", task_id)
        if payload["_signer_id"] != self._platform_agent_id:
            raise StateError(
                "FORBIDDEN",
                "Only the platform agent can override payment status",
                status_code=403,
            )
        require_fields(payload, "payment_status")
        try:
            status = PaymentStatus(payload["payment_status"])
        except ValueError as exc:
            raise ValidationError(
                "INVALID_PAYLOAD",
                f"payment_status must be one of {[str(value) for value in PaymentStatus]}",
            ) from exc

        task = load_task(self._store, task_id)
        if task["status"] == TaskStatus.COMPLETED and status != PaymentStatus.PAID:
            raise StateError(
                "INVALID_STATUS",
                "A completed task must stay paid",
                {"current_status": task["status"]},
            )

        self._store.update_task(
            task_id,
            {"payment_status": str(status), "updated_at": now_iso()},
            expected_status=None,
        )
        self._logger.warning(
            "Payment status overridden by platform",
            extra={
                "task_id": task_id,
                "previous_status": task["payment_status"],
                "payment_status": str(status),
            },
        )
        return {"task_id": task_id, "payment_status": str(status)}
