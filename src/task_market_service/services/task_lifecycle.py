"""Task lifecycle: the only place a task changes status."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import (
    PaymentRequiredError,
    ServiceError,
    StateError,
    ValidationError,
)
from task_market_service.logging import get_logger
from task_market_service.services.content_filter import ensure_clean
from task_market_service.services.market_store import DuplicateTaskError
from task_market_service.services.money import parse_amount, to_cents
from task_market_service.services.notifier import NotificationType
from task_market_service.services.records import (
    load_task,
    new_id,
    now_iso,
    require_poster,
    task_to_response,
)
from task_market_service.services.task_states import (
    PaymentStatus,
    PayoutStatus,
    TaskStatus,
    ensure_transition,
    require_status,
)
from task_market_service.services.token_validator import optional_text, require_path_match

if TYPE_CHECKING:
    from task_market_service.services.bid_registry import BidRegistry
    from task_market_service.services.fulfillment_tracker import FulfillmentTracker
    from task_market_service.services.market_store import MarketStore
    from task_market_service.services.notifier import Notifier
    from task_market_service.services.payment_orchestrator import PaymentOrchestrator
    from task_market_service.services.payout_engine import PayoutEngine
    from task_market_service.services.token_validator import TokenValidator


def _required_text(payload: dict[str, Any], field_name: str, max_length: int) -> str:
    value = optional_text(payload, field_name, max_length)
    if value is None:
        raise ValidationError("INVALID_PAYLOAD", f"{field_name} must be a non-empty string")
    return value


class TaskLifecycleController:
    """
    Drives a task through open -> in_progress -> completed.

    Bidding, fulfillment, payment and payout are delegated to their
    components; this controller owns the status column and the guards on
    each transition.
    """

    def __init__(
        self,
        store: MarketStore,
        token_validator: TokenValidator,
        notifier: Notifier,
        bid_registry: BidRegistry,
        fulfillment_tracker: FulfillmentTracker,
        payment_orchestrator: PaymentOrchestrator,
        payout_engine: PayoutEngine,
        *,
        platform_agent_id: str,
        checkout_on_accept: bool,
        max_title_length: int,
        max_description_length: int,
    ) -> None:
        self._store = store
        self._token_validator = token_validator
        self._notifier = notifier
        self._bid_registry = bid_registry
        self._fulfillment_tracker = fulfillment_tracker
        self._payment_orchestrator = payment_orchestrator
        self._payout_engine = payout_engine
        self._platform_agent_id = platform_agent_id
        self._checkout_on_accept = checkout_on_accept
        self._max_title_length = max_title_length
        self._max_description_length = max_description_length
        self._logger = get_logger(__name__)

    def _task_detail(self, task: dict[str, Any]) -> dict[str, Any]:
        return {
            **task_to_response(task),
            "bid_count": self._store.count_bids(task["task_id"]),
            **self._fulfillment_tracker.timeline_flags(task),
        }

    def _require_platform_agent(self, signer_id: str, action: str) -> None:
        if signer_id != self._platform_agent_id:
            raise StateError(
                "FORBIDDEN",
                f"Only the platform agent can {action}",
                status_code=403,
            )

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    async def create_task(self, token: str) -> dict[str, Any]:
        """
        Publish a new open task.

        Error precedence:
        1-4. JWS verification
        5.   INVALID_PAYLOAD: missing or over-long title/description
        6.   INVALID_AMOUNT: budget present but not a positive amount
        7.   CONTACT_INFO_DETECTED
        """
        payload = await self._token_validator.validate_jws_token(token, "create_task")
        signer_id: str = payload["_signer_id"]

        title = _required_text(payload, "title", self._max_title_length)
        description = _required_text(payload, "description", self._max_description_length)
        budget = payload.get("budget")
        budget_cents = None if budget is None else to_cents(parse_amount(budget, "budget"))

        ensure_clean(title, "title")
        ensure_clean(description, "description")

        created_at = now_iso()
        task = {
            "task_id": new_id("t"),
            "title": title,
            "description": description,
            "status": str(TaskStatus.OPEN),
            "created_by": signer_id,
            "assigned_to": None,
            "budget_cents": budget_cents,
            "payment_status": str(PaymentStatus.NONE),
            "payment_intent_id": None,
            "payout_status": str(PayoutStatus.NONE),
            "payout_id": None,
            "archived": 0,
            "hidden_by_admin": 0,
            "hidden_reason": None,
            "hidden_at": None,
            "created_at": created_at,
            "updated_at": created_at,
            "accepted_at": None,
            "completed_at": None,
        }
        try:
            self._store.insert_task(task)
        except DuplicateTaskError as exc:
            raise StateError("TASK_ALREADY_EXISTS", "Task already exists") from exc

        self._logger.info(
            "Task created",
            extra={"task_id": task["task_id"], "created_by": signer_id},
        )
        return self._task_detail(task)

    def get_task(self, task_id: str) -> dict[str, Any]:
        """Task detail with bid count and fulfillment flags."""
        return self._task_detail(load_task(self._store, task_id))

    def list_tasks(
        self,
        status: str | None,
        created_by: str | None,
        assigned_to: str | None,
        *,
        include_archived: bool,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List tasks newest first. Tasks hidden by the platform are never listed."""
        tasks = self._store.list_tasks(
            status,
            created_by,
            assigned_to,
            include_archived=include_archived,
            include_hidden=False,
            limit=limit,
            offset=offset,
        )
        return [task_to_response(task) for task in tasks]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def accept_bid(self, task_id: str, bid_id: str, token: str) -> dict[str, Any]:
        """
        open -> in_progress through bid acceptance.

        With immediate checkout enabled, a checkout is opened right away. A
        checkout failure is reported in the response and leaves the
        acceptance in place.
        """
        result = await self._bid_registry.accept_bid(task_id, bid_id, token)
        if not self._checkout_on_accept:
            return {**result, "checkout": None}

        poster_id = str(result["task"]["created_by"])
        try:
            checkout: dict[str, Any] = await self._payment_orchestrator.start_checkout(
                task_id, poster_id
            )
        except ServiceError as exc:
            self._logger.warning(
                "Checkout after acceptance failed",
                extra={"task_id": task_id, "error_code": exc.error, "error": exc.message},
            )
            checkout = {"error": exc.error, "message": exc.message}

        return {
            "task": task_to_response(load_task(self._store, task_id)),
            "bid": result["bid"],
            "checkout": checkout,
        }

    async def cancel_assignment(self, task_id: str, token: str) -> dict[str, Any]:
        """in_progress -> open, initiated by the assigned helper."""
        return await self._bid_registry.cancel_assignment(task_id, token)

    async def mark_completed(self, task_id: str, token: str) -> dict[str, Any]:
        """
        in_progress -> completed, confirmed by the poster once paid.

        Error precedence:
        1-4. JWS verification
        5.   INVALID_PAYLOAD: task_id mismatch
        6.   TASK_NOT_FOUND
        7.   TASK_ALREADY_COMPLETED
        8.   INVALID_STATUS: task not in progress
        9.   FORBIDDEN: signer is not the poster
        10.  PAYMENT_PROCESSING / PAYMENT_REQUIRED
        """
        payload = await self._token_validator.validate_jws_token(token, "complete_task")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)

        task = load_task(self._store, task_id)
        if task["status"] == TaskStatus.COMPLETED:
            raise StateError("TASK_ALREADY_COMPLETED", "This task is already completed")
        ensure_transition(task["status"], TaskStatus.COMPLETED)
        require_poster(task, signer_id, "mark this task as completed")

        payment_status = task["payment_status"]
        if payment_status == PaymentStatus.PENDING:
            raise PaymentRequiredError(
                PaymentRequiredError.PROCESSING,
                "Payment is still being processed, try again shortly",
                {"payment_status": payment_status},
            )
        if payment_status != PaymentStatus.PAID:
            raise PaymentRequiredError(
                PaymentRequiredError.REQUIRED,
                "The task must be paid before it can be completed",
                {"payment_status": payment_status},
            )

        completed_at = now_iso()
        changed = self._store.update_task(
            task_id,
            {
                "status": str(TaskStatus.COMPLETED),
                "completed_at": completed_at,
                "updated_at": completed_at,
            },
            expected_status=str(TaskStatus.IN_PROGRESS),
            expected={"payment_status": str(PaymentStatus.PAID)},
        )
        if changed == 0:
            raise StateError("TASK_ALREADY_COMPLETED", "This task is already completed")

        self._logger.info(
            "Task completed",
            extra={"task_id": task_id, "helper_id": task["assigned_to"]},
        )

        await self._notifier.notify(
            NotificationType.TASK_COMPLETED,
            task["assigned_to"],
            {"task_id": task_id, "task_title": task["title"]},
        )

        payout = await self._payout_engine.disburse(task_id)
        return {
            "task": task_to_response(load_task(self._store, task_id)),
            "payout": payout.to_response(),
        }

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def _set_archived(self, task_id: str, token: str, *, archived: bool) -> dict[str, Any]:
        action = "archive_task" if archived else "unarchive_task"
        payload = await self._token_validator.validate_jws_token(token, action)
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)

        task = load_task(self._store, task_id)
        require_poster(task, signer_id, "archive this task")

        if bool(task["archived"]) != archived:
            self._store.update_task(
                task_id,
                {"archived": int(archived), "updated_at": now_iso()},
                expected_status=None,
            )
            self._logger.info(
                "Task archived" if archived else "Task unarchived",
                extra={"task_id": task_id},
            )
        return self.get_task(task_id)

    async def archive_task(self, task_id: str, token: str) -> dict[str, Any]:
        """Hide a task from default listings. Poster only."""
        return await self._set_archived(task_id, token, archived=True)

    async def unarchive_task(self, task_id: str, token: str) -> dict[str, Any]:
        """Undo archive_task. Poster only."""
        return await self._set_archived(task_id, token, archived=False)

    async def delete_task(self, task_id: str, token: str) -> dict[str, Any]:
        """Hard-delete an open task with its bids. Poster only."""
        payload = await self._token_validator.validate_jws_token(token, "delete_task")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)

        task = load_task(self._store, task_id)
        require_status(task, TaskStatus.OPEN, "delete this task")
        require_poster(task, signer_id, "delete this task")

        deleted = self._store.delete_task(
            task_id,
            created_by=signer_id,
            expected_status=str(TaskStatus.OPEN),
        )
        if deleted == 0:
            raise StateError("INVALID_STATUS", "The task changed before it could be deleted")

        self._logger.info("Task deleted", extra={"task_id": task_id})
        return {"task_id": task_id, "deleted": True}

    async def hide_task(self, task_id: str, token: str) -> dict[str, Any]:
        """Hide or unhide a task platform-wide. Platform agent only."""
        payload = await self._token_validator.validate_jws_token(token, "hide_task")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)
        self._require_platform_agent(signer_id, "hide tasks")

        hidden = payload.get("hidden", True)
        if not isinstance(hidden, bool):
            raise ValidationError("INVALID_PAYLOAD", "hidden must be a boolean")
        reason = optional_text(payload, "reason", self._max_description_length)

        load_task(self._store, task_id)
        self._store.update_task(
            task_id,
            {
                "hidden_by_admin": int(hidden),
                "hidden_reason": reason if hidden else None,
                "hidden_at": now_iso() if hidden else None,
                "updated_at": now_iso(),
            },
            expected_status=None,
        )
        self._logger.warning(
            "Task visibility changed by platform",
            extra={"task_id": task_id, "hidden": hidden, "reason": reason},
        )
        return self.get_task(task_id)

    # ------------------------------------------------------------------
    # Statistics, used by the health endpoint
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return aggregate task statistics for health reporting."""
        counts: dict[str, int] = dict.fromkeys((str(status) for status in TaskStatus), 0)
        for status_value, count in self._store.count_tasks_by_status().items():
            if status_value in counts:
                counts[status_value] = int(count)
        return {"total_tasks": self._store.count_tasks(), "tasks_by_status": counts}
