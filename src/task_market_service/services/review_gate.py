"""Bilateral reviews on completed tasks, poster first."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import ConflictError, StateError, ValidationError
from task_market_service.logging import get_logger
from task_market_service.services.content_filter import ensure_clean
from task_market_service.services.market_store import DuplicateReviewError, ReviewGateClosedError
from task_market_service.services.records import (
    load_task,
    new_id,
    now_iso,
    require_participant,
    review_to_response,
    task_to_response,
)
from task_market_service.services.task_states import TaskStatus, require_status
from task_market_service.services.token_validator import (
    optional_text,
    require_fields,
    require_path_match,
)

if TYPE_CHECKING:
    from task_market_service.services.market_store import MarketStore
    from task_market_service.services.token_validator import TokenValidator

MIN_RATING = 1
MAX_RATING = 5


def parse_rating(value: object) -> int:
    """Ratings are whole numbers from 1 to 5."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("INVALID_RATING", "Rating must be an integer")
    if not MIN_RATING <= value <= MAX_RATING:
        raise ValidationError(
            "INVALID_RATING",
            f"Rating must be between {MIN_RATING} and {MAX_RATING}",
        )
    return value


class ReviewGate:
    """
    One review per participant per completed task.

    The helper may only review after the poster has; the store checks the
    poster review and inserts the helper review in one transaction.
    """

    def __init__(
        self,
        store: MarketStore,
        token_validator: TokenValidator,
        *,
        max_comment_length: int,
    ) -> None:
        self._store = store
        self._token_validator = token_validator
        self._max_comment_length = max_comment_length
        self._logger = get_logger(__name__)

    async def submit_review(self, task_id: str, token: str) -> dict[str, Any]:
        """
        Review the counterparty of a completed task.

        Error precedence:
        1-4. JWS verification
        5.   INVALID_PAYLOAD: task_id mismatch, missing rating, bad comment
        6.   INVALID_RATING
        7.   TASK_NOT_FOUND
        8.   INVALID_STATUS: task not completed
        9.   FORBIDDEN: signer is not a participant
        10.  CONTACT_INFO_DETECTED
        11.  REVIEW_GATE_CLOSED: helper reviewing before the poster
        12.  REVIEW_ALREADY_EXISTS
        """
        payload = await self._token_validator.validate_jws_token(token, "submit_review")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)
        require_fields(payload, "rating")
        rating = parse_rating(payload["rating"])
        comment = optional_text(payload, "comment", self._max_comment_length)

        task = load_task(self._store, task_id)
        require_status(task, TaskStatus.COMPLETED, "review this task")
        require_participant(task, signer_id, "review this task")
        ensure_clean(comment, "comment")

        is_poster = signer_id == task["created_by"]
        review = {
            "review_id": new_id("rev"),
            "task_id": task_id,
            "reviewer_id": signer_id,
            "reviewee_id": task["assigned_to"] if is_poster else task["created_by"],
            "rating": rating,
            "comment": comment,
            "created_at": now_iso(),
        }

        try:
            self._store.insert_review(
                review,
                requires_review_by=None if is_poster else task["created_by"],
            )
        except ReviewGateClosedError as exc:
            raise StateError(
                "REVIEW_GATE_CLOSED",
                "The helper can review once the poster has left a review",
            ) from exc
        except DuplicateReviewError as exc:
            raise ConflictError(
                "REVIEW_ALREADY_EXISTS",
                "You already reviewed this task",
            ) from exc

        self._logger.info(
            "Review submitted",
            extra={
                "task_id": task_id,
                "review_id": review["review_id"],
                "reviewer_role": "poster" if is_poster else "helper",
            },
        )
        return review_to_response(review)

    def list_reviews(self, task_id: str) -> dict[str, Any]:
        """Public list of the reviews on one task."""
        load_task(self._store, task_id)
        return {
            "task_id": task_id,
            "reviews": [
                review_to_response(review) for review in self._store.get_reviews_for_task(task_id)
            ],
        }

    async def pending_reviews(self, user_id: str, auth_token: str) -> dict[str, Any]:
        """Completed tasks on which the user still owes a review. Self only."""
        signer_id = await self._token_validator.signer_for(auth_token, "list_pending_reviews")
        if signer_id != user_id:
            raise StateError(
                "FORBIDDEN",
                "You can only list your own pending reviews",
                status_code=403,
            )
        tasks = self._store.list_tasks_awaiting_review(user_id)
        return {
            "user_id": user_id,
            "tasks": [task_to_response(task) for task in tasks],
        }
