"""Task, bid, payment and payout states with the task transition table."""

from __future__ import annotations

from enum import StrEnum

from task_market_service.core.exceptions import StateError


class TaskStatus(StrEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    # Kept for stored data; no operation moves a task here.
    CANCELLED = "cancelled"


class BidStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class PaymentStatus(StrEnum):
    NONE = "none"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PayoutStatus(StrEnum):
    NONE = "none"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SIMULATED = "simulated"


class UpdateType(StrEnum):
    GENERIC = "generic"
    BID_ACCEPTED = "bid_accepted"
    WORK_COMPLETE = "work_complete"
    REVISION_REQUESTED = "revision_requested"
    REVISION_COMPLETED = "revision_completed"
    PAYOUT = "payout"


TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.OPEN: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.OPEN, TaskStatus.COMPLETED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


def can_transition(current: str, target: TaskStatus) -> bool:
    """Return True if the transition table allows current -> target."""
    try:
        current_status = TaskStatus(current)
    except ValueError:
        return False
    return target in TASK_TRANSITIONS[current_status]


def ensure_transition(current: str, target: TaskStatus) -> None:
    """Raise StateError unless current -> target is a legal task transition."""
    if not can_transition(current, target):
        raise StateError(
            "INVALID_STATUS",
            f"Cannot move task from '{current}' to '{target}'",
            {"current_status": current, "target_status": str(target)},
        )


def require_status(task: dict[str, object], expected: TaskStatus, action: str) -> None:
    """Raise StateError when the task is not in the expected status."""
    if task["status"] != expected:
        raise StateError(
            "INVALID_STATUS",
            f"Cannot {action} on task in '{task['status']}' status, must be '{expected}'",
            {"current_status": task["status"]},
        )
