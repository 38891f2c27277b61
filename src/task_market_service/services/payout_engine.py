"""Platform-fee computation and helper payout disbursement."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import ServiceError, StateError, ValidationError
from task_market_service.logging import get_logger
from task_market_service.services.money import from_cents, quantize, to_json_number
from task_market_service.services.notifier import NotificationType
from task_market_service.services.records import load_task, make_progress_update, now_iso
from task_market_service.services.task_states import PaymentStatus, PayoutStatus, UpdateType
from task_market_service.services.token_validator import require_path_match

if TYPE_CHECKING:
    from task_market_service.clients.payout_gateway_client import PayoutGatewayClient
    from task_market_service.services.market_store import MarketStore
    from task_market_service.services.notifier import Notifier
    from task_market_service.services.token_validator import TokenValidator

PLATFORM_FEE_SETTING = "platform_fee_percent"

_SETTLED_PAYOUT_STATUSES = frozenset(
    {PayoutStatus.PROCESSING, PayoutStatus.COMPLETED, PayoutStatus.SIMULATED}
)
_GATEWAY_STATUS_MAP: dict[str, PayoutStatus] = {
    "completed": PayoutStatus.COMPLETED,
    "paid": PayoutStatus.COMPLETED,
    "simulated": PayoutStatus.SIMULATED,
}


@dataclass(frozen=True)
class PayoutBreakdown:
    """How a task budget splits between the platform and the helper."""

    budget: Decimal
    fee_percent: Decimal
    platform_fee: Decimal
    payout: Decimal

    def to_response(self) -> dict[str, Any]:
        return {
            "budget": to_json_number(self.budget),
            "fee_percent": float(self.fee_percent),
            "platform_fee": to_json_number(self.platform_fee),
            "payout": to_json_number(self.payout),
        }


@dataclass(frozen=True)
class PayoutResult:
    """Outcome of one disbursement attempt."""

    outcome: str
    payout_status: PayoutStatus
    payout_id: str | None = None
    breakdown: PayoutBreakdown | None = None
    error: str | None = None

    def to_response(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "payout_status": str(self.payout_status),
            "payout_id": self.payout_id,
            "breakdown": None if self.breakdown is None else self.breakdown.to_response(),
            "error": self.error,
        }


def parse_fee_percent(value: object) -> Decimal:
    """
    Parse a platform fee percentage in [0, 100].

    Raises:
        ValidationError: INVALID_FEE_PERCENT
    """
    if isinstance(value, bool) or not isinstance(value, int | float | str | Decimal):
        raise ValidationError("INVALID_FEE_PERCENT", "Fee percent must be a number")
    try:
        percent = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError("INVALID_FEE_PERCENT", "Fee percent must be a number") from exc
    if not percent.is_finite() or percent < 0 or percent > 100:
        raise ValidationError("INVALID_FEE_PERCENT", "Fee percent must be between 0 and 100")
    return percent


def compute_payout(budget: Decimal, fee_percent: Decimal) -> PayoutBreakdown:
    """
    Split a budget into platform fee and helper payout, rounded to cents.

    fee = budget * fee_percent / 100; payout = budget - fee.
    """
    percent = parse_fee_percent(fee_percent)
    platform_fee = quantize(budget * percent / Decimal(100))
    return PayoutBreakdown(
        budget=quantize(budget),
        fee_percent=percent,
        platform_fee=platform_fee,
        payout=quantize(budget - platform_fee),
    )


def payout_idempotency_key(task_id: str) -> str:
    """Stable key so every retry for a task maps to the same gateway payout."""
    return f"payout-{task_id}"


def payout_destination(profile: dict[str, Any] | None) -> dict[str, str] | None:
    """Pick the helper's payout method: IBAN first, then PayPal."""
    if profile is None:
        return None
    if profile.get("iban"):
        return {"method": "iban", "value": str(profile["iban"])}
    if profile.get("paypal_email"):
        return {"method": "paypal_email", "value": str(profile["paypal_email"])}
    return None


class PayoutEngine:
    """
    Pays the assigned helper once the task is paid and completed.

    Disbursement never raises for gateway trouble: the failure is recorded
    on the task (payout_status, progress log) and returned, and the task
    stays completed.
    """

    def __init__(
        self,
        store: MarketStore,
        payout_gateway_client: PayoutGatewayClient,
        notifier: Notifier,
        token_validator: TokenValidator,
        *,
        platform_agent_id: str,
        currency: str,
        default_fee_percent: Decimal,
    ) -> None:
        self._store = store
        self._payout_gateway_client = payout_gateway_client
        self._notifier = notifier
        self._token_validator = token_validator
        self._platform_agent_id = platform_agent_id
        self._currency = currency
        self._default_fee_percent = default_fee_percent
        self._logger = get_logger(__name__)

    def platform_fee_percent(self) -> Decimal:
        """Current fee percent: the stored setting, else the configured default."""
        stored = self._store.get_setting(PLATFORM_FEE_SETTING)
        if stored is None:
            return self._default_fee_percent
        return parse_fee_percent(stored)

    def quote(self, task: dict[str, Any]) -> PayoutBreakdown | None:
        """Payout breakdown for a task with a budget, else None."""
        if task["budget_cents"] is None:
            return None
        return compute_payout(from_cents(task["budget_cents"]), self.platform_fee_percent())

    async def update_platform_fee(self, token: str) -> dict[str, Any]:
        """Change the platform fee percent. Platform agent only."""
        payload = await self._token_validator.validate_jws_token(token, "update_platform_fee")
        if payload["_signer_id"] != self._platform_agent_id:
            raise StateError(
                "FORBIDDEN",
                "Only the platform agent can change the platform fee",
                status_code=403,
            )
        if "fee_percent" not in payload:
            raise ValidationError("INVALID_PAYLOAD", "Missing required field: fee_percent")
        percent = parse_fee_percent(payload["fee_percent"])
        self._store.set_setting(PLATFORM_FEE_SETTING, str(percent), now_iso())
        self._logger.info("Platform fee updated", extra={"fee_percent": str(percent)})
        return {"fee_percent": float(percent)}

    def _log_payout(self, task_id: str, message: str) -> None:
        self._store.insert_progress_update(
            make_progress_update(
                task_id,
                self._platform_agent_id,
                UpdateType.PAYOUT,
                message=message,
            )
        )

    async def disburse(self, task_id: str) -> PayoutResult:
        """
        Pay the helper for a paid task.

        Skips (payout_status=pending, flagged in the progress log) when the
        helper has no payout method. Gateway failures set payout_status=failed
        and are returned, not raised.

        Raises:
            StateError: payment not captured, no assignee or no budget
        """
        task = load_task(self._store, task_id)

        if task["payment_status"] != PaymentStatus.PAID:
            raise StateError(
                "PAYMENT_NOT_CAPTURED",
                "Payout requires a paid task",
                {"payment_status": task["payment_status"]},
            )
        helper_id = task["assigned_to"]
        if helper_id is None or task["budget_cents"] is None:
            raise StateError("INVALID_STATUS", "Payout requires an assigned helper and a budget")

        if task["payout_status"] in _SETTLED_PAYOUT_STATUSES:
            return PayoutResult(
                outcome="already_disbursed",
                payout_status=PayoutStatus(task["payout_status"]),
                payout_id=task["payout_id"],
                breakdown=self.quote(task),
            )

        breakdown = compute_payout(from_cents(task["budget_cents"]), self.platform_fee_percent())
        destination = payout_destination(self._store.get_profile(helper_id))

        if destination is None:
            self._store.update_task(
                task_id,
                {"payout_status": str(PayoutStatus.PENDING), "updated_at": now_iso()},
                expected_status=None,
            )
            self._log_payout(
                task_id,
                "Payout on hold: the helper has no payout method on file. "
                "Manual resolution required.",
            )
            self._logger.warning(
                "Payout skipped, helper has no payout method",
                extra={"task_id": task_id, "helper_id": helper_id},
            )
            return PayoutResult(
                outcome="skipped",
                payout_status=PayoutStatus.PENDING,
                breakdown=breakdown,
                error="HELPER_NO_PAYOUT_METHOD",
            )

        try:
            result = await self._payout_gateway_client.create_payout(
                task_id=task_id,
                recipient_id=helper_id,
                amount=breakdown.payout,
                currency=self._currency,
                destination=destination,
                idempotency_key=payout_idempotency_key(task_id),
            )
        except ServiceError as exc:
            self._store.update_task(
                task_id,
                {"payout_status": str(PayoutStatus.FAILED), "updated_at": now_iso()},
                expected_status=None,
            )
            self._log_payout(
                task_id,
                f"Payout of {breakdown.payout} {self._currency} failed: {exc.message}",
            )
            self._logger.warning(
                "Payout failed",
                extra={"task_id": task_id, "error_code": exc.error, "error": exc.message},
            )
            return PayoutResult(
                outcome="failed",
                payout_status=PayoutStatus.FAILED,
                breakdown=breakdown,
                error=exc.error,
            )

        payout_status = _GATEWAY_STATUS_MAP.get(
            str(result.get("status", "")).lower(), PayoutStatus.PROCESSING
        )
        payout_id = result.get("payout_id")
        self._store.update_task(
            task_id,
            {
                "payout_status": str(payout_status),
                "payout_id": payout_id,
                "updated_at": now_iso(),
            },
            expected_status=None,
        )
        self._log_payout(
            task_id,
            f"Payout of {breakdown.payout} {self._currency} initiated "
            f"(platform fee {breakdown.platform_fee} {self._currency}, "
            f"{breakdown.fee_percent}%)",
        )
        self._logger.info(
            "Payout initiated",
            extra={
                "task_id": task_id,
                "payout_id": payout_id,
                "payout_status": str(payout_status),
                "amount": str(breakdown.payout),
            },
        )

        await self._notifier.notify(
            NotificationType.PAYOUT_INITIATED,
            helper_id,
            {
                "task_id": task_id,
                "task_title": task["title"],
                "amount": str(breakdown.payout),
                "currency": self._currency,
            },
        )

        return PayoutResult(
            outcome="initiated",
            payout_status=payout_status,
            payout_id=payout_id,
            breakdown=breakdown,
        )

    async def retry_payout(self, task_id: str, token: str) -> dict[str, Any]:
        """
        Re-run disbursement for a completed task. Platform agent only.

        Uses the same idempotency key as the first attempt.
        """
        payload = await self._token_validator.validate_jws_token(token, "retry_payout")
        require_path_match(payload, "task_id", task_id)
        if payload["_signer_id"] != self._platform_agent_id:
            raise StateError(
                "FORBIDDEN",
                "Only the platform agent can retry payouts",
                status_code=403,
            )

        task = load_task(self._store, task_id)
        if task["status"] != "completed":
            raise StateError(
                "INVALID_STATUS",
                f"Cannot retry payout on task in '{task['status']}' status, must be 'completed'",
            )

        result = await self.disburse(task_id)
        return {"task_id": task_id, "payout": result.to_response()}
