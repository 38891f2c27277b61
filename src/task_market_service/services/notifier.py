"""Fire-and-forget delivery of lifecycle notifications."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from task_market_service.clients.notification_client import NotificationClient


class NotificationType(StrEnum):
    NEW_BID = "new_bid"
    BID_ACCEPTED = "bid_accepted"
    BID_REJECTED = "bid_rejected"
    TASK_CANCELLED = "task_cancelled"
    TASK_COMPLETED = "task_completed"
    TASK_PROGRESS_UPDATE = "task_progress_update"
    REVISION_REQUESTED = "revision_requested"
    REVISION_COMPLETED = "revision_completed"
    HELPER_FINISHED = "helper_finished"
    PAYOUT_INITIATED = "payout_initiated"


class Notifier:
    """
    Sends notifications after a state change has been committed.

    Delivery failures are logged and dropped; they never propagate to the
    caller and never undo the transition that triggered them.
    """

    def __init__(self, notification_client: NotificationClient) -> None:
        self._notification_client = notification_client
        self._logger = get_logger(__name__)

    async def notify(
        self,
        notification_type: NotificationType,
        recipient_id: str | None,
        fields: dict[str, Any],
    ) -> bool:
        """Attempt delivery and report whether it succeeded."""
        if not recipient_id:
            return False
        try:
            await self._notification_client.send(str(notification_type), recipient_id, fields)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "Notification delivery failed",
                extra={
                    "notification_type": str(notification_type),
                    "recipient_id": recipient_id,
                    "task_id": fields.get("task_id"),
                    "error": str(exc),
                },
            )
            return False
        return True
