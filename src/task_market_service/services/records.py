"""Row loading, id generation and response shaping shared by the lifecycle services."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import NotFoundError, StateError
from task_market_service.services.money import from_cents, to_json_number

if TYPE_CHECKING:
    from task_market_service.services.market_store import MarketStore
    from task_market_service.services.task_states import UpdateType


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a stored ISO 8601 timestamp into an aware datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def new_id(prefix: str) -> str:
    """Generate a prefixed uuid4 identifier (t-, bid-, pu-, rev-)."""
    return f"{prefix}-{uuid.uuid4()}"


def load_task(store: MarketStore, task_id: str) -> dict[str, Any]:
    """Fetch a task or raise TASK_NOT_FOUND."""
    task = store.get_task(task_id)
    if task is None:
        raise NotFoundError("TASK_NOT_FOUND", "Task not found")
    return task


def require_poster(task: dict[str, Any], user_id: str, action: str) -> None:
    """Raise FORBIDDEN unless `user_id` created the task."""
    if user_id != task["created_by"]:
        raise StateError("FORBIDDEN", f"Only the task poster can {action}", status_code=403)


def require_helper(task: dict[str, Any], user_id: str, action: str) -> None:
    """Raise FORBIDDEN unless `user_id` is the assigned helper."""
    if task["assigned_to"] is None or user_id != task["assigned_to"]:
        raise StateError("FORBIDDEN", f"Only the assigned helper can {action}", status_code=403)


def require_participant(task: dict[str, Any], user_id: str, action: str) -> None:
    """Raise FORBIDDEN unless `user_id` is the poster or the assigned helper."""
    if user_id not in (task["created_by"], task["assigned_to"]):
        raise StateError(
            "FORBIDDEN",
            f"Only the poster or the assigned helper can {action}",
            status_code=403,
        )


def make_progress_update(
    task_id: str,
    user_id: str,
    update_type: UpdateType,
    *,
    message: str | None,
    image_url: str | None = None,
    created_at: str | None = None,
) -> dict[str, Any]:
    """Build a progress_updates row."""
    return {
        "update_id": new_id("pu"),
        "task_id": task_id,
        "user_id": user_id,
        "message": message,
        "image_url": image_url,
        "update_type": str(update_type),
        "created_at": created_at if created_at is not None else now_iso(),
    }


def _money(cents: int | None) -> float | None:
    return None if cents is None else to_json_number(from_cents(cents))


def task_to_response(task: dict[str, Any]) -> dict[str, Any]:
    """Convert a task row to its API representation."""
    return {
        "task_id": task["task_id"],
        "title": task["title"],
        "description": task["description"],
        "status": task["status"],
        "created_by": task["created_by"],
        "assigned_to": task["assigned_to"],
        "budget": _money(task["budget_cents"]),
        "payment_status": task["payment_status"],
        "payment_intent_id": task["payment_intent_id"],
        "payout_status": task["payout_status"],
        "payout_id": task["payout_id"],
        "archived": bool(task["archived"]),
        "hidden_by_admin": bool(task["hidden_by_admin"]),
        "hidden_reason": task["hidden_reason"],
        "created_at": task["created_at"],
        "updated_at": task["updated_at"],
        "accepted_at": task["accepted_at"],
        "completed_at": task["completed_at"],
    }


def bid_to_response(bid: dict[str, Any]) -> dict[str, Any]:
    """Convert a bid row to its API representation."""
    return {
        "bid_id": bid["bid_id"],
        "task_id": bid["task_id"],
        "user_id": bid["user_id"],
        "amount": _money(bid["amount_cents"]),
        "message": bid["message"],
        "status": bid["status"],
        "created_at": bid["created_at"],
        "updated_at": bid["updated_at"],
    }


def progress_to_response(update: dict[str, Any]) -> dict[str, Any]:
    """Convert a progress_updates row to its API representation."""
    return {
        "update_id": update["update_id"],
        "task_id": update["task_id"],
        "user_id": update["user_id"],
        "message": update["message"],
        "image_url": update["image_url"],
        "update_type": update["update_type"],
        "created_at": update["created_at"],
    }


def review_to_response(review: dict[str, Any]) -> dict[str, Any]:
    """Convert a review row to its API representation."""
    return {
        "review_id": review["review_id"],
        "task_id": review["task_id"],
        "reviewer_id": review["reviewer_id"],
        "reviewee_id": review["reviewee_id"],
        "rating": review["rating"],
        "comment": review["comment"],
        "created_at": review["created_at"],
    }
