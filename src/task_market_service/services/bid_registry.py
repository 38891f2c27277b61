"""Bid submission, visibility and one-winner resolution."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import (
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from task_market_service.logging import get_logger
from task_market_service.services.content_filter import ensure_clean
from task_market_service.services.market_store import DuplicateBidError, TaskStateConflictError
from task_market_service.services.money import parse_amount, to_cents
from task_market_service.services.notifier import NotificationType
from task_market_service.services.records import (
    bid_to_response,
    load_task,
    make_progress_update,
    new_id,
    now_iso,
    require_helper,
    require_poster,
    task_to_response,
)
from task_market_service.services.task_states import (
    BidStatus,
    PaymentStatus,
    TaskStatus,
    UpdateType,
    require_status,
)
from task_market_service.services.token_validator import (
    optional_text,
    require_fields,
    require_path_match,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from task_market_service.services.change_feed import ChangeFeed
    from task_market_service.services.market_store import MarketStore
    from task_market_service.services.notifier import Notifier
    from task_market_service.services.token_validator import TokenValidator

BID_ACCEPTED_MESSAGE = "Bid accepted, work can start"


class BidRegistry:
    """
    Holds the bids placed on open tasks and resolves them to one winner.

    Acceptance is a single store transaction conditioned on the task still
    being open, so of several concurrent accepts exactly one succeeds.
    """

    def __init__(
        self,
        store: MarketStore,
        token_validator: TokenValidator,
        notifier: Notifier,
        change_feed: ChangeFeed,
        *,
        max_message_length: int,
    ) -> None:
        self._store = store
        self._token_validator = token_validator
        self._notifier = notifier
        self._change_feed = change_feed
        self._max_message_length = max_message_length
        self._logger = get_logger(__name__)

    def _visible_bids(self, task: dict[str, Any], viewer_id: str) -> list[dict[str, Any]]:
        if viewer_id == task["created_by"]:
            return self._store.get_bids_for_task(task["task_id"])
        return self._store.get_bids_for_task(task["task_id"], user_id=viewer_id)

    async def submit_bid(self, task_id: str, token: str) -> dict[str, Any]:
        """
        Place a bid on an open task.

        Error precedence:
        1-4. JWS verification
        5.   INVALID_PAYLOAD: task_id mismatch, missing amount, bad message
        6.   TASK_NOT_FOUND
        7.   INVALID_STATUS: task not open, archived or hidden
        8.   SELF_BID: bidder is the poster
        9.   NOT_A_HELPER: bidder has no helper profile
        10.  CONTACT_INFO_DETECTED
        11.  INVALID_AMOUNT
        12.  BID_ALREADY_EXISTS
        """
        payload = await self._token_validator.validate_jws_token(token, "submit_bid")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)
        require_fields(payload, "amount")
        message = optional_text(payload, "message", self._max_message_length)

        task = load_task(self._store, task_id)
        require_status(task, TaskStatus.OPEN, "bid on this task")
        if task["archived"] or task["hidden_by_admin"]:
            raise StateError("INVALID_STATUS", "This task is no longer accepting bids")

        if signer_id == task["created_by"]:
            raise ValidationError("SELF_BID", "Cannot bid on your own task")

        profile = self._store.get_profile(signer_id)
        if profile is None or not profile["is_helper"]:
            raise ValidationError("NOT_A_HELPER", "Only registered helpers can place bids")

        ensure_clean(message, "message")
        amount = parse_amount(payload["amount"])

        created_at = now_iso()
        bid = {
            "bid_id": new_id("bid"),
            "task_id": task_id,
            "user_id": signer_id,
            "amount_cents": to_cents(amount),
            "message": message or "",
            "status": str(BidStatus.PENDING),
            "created_at": created_at,
            "updated_at": created_at,
        }
        try:
            self._store.insert_bid(bid)
        except DuplicateBidError as exc:
            raise ConflictError(
                "BID_ALREADY_EXISTS",
                "You already placed a bid on this task",
            ) from exc

        self._logger.info(
            "Bid submitted",
            extra={"task_id": task_id, "bid_id": bid["bid_id"], "amount": str(amount)},
        )

        await self._notifier.notify(
            NotificationType.NEW_BID,
            task["created_by"],
            {
                "task_id": task_id,
                "task_title": task["title"],
                "bid_id": bid["bid_id"],
                "amount": str(amount),
            },
        )
        return bid_to_response(bid)

    async def list_bids(self, task_id: str, auth_token: str) -> dict[str, Any]:
        """Bids on a task: all of them for the poster, only their own for anyone else."""
        signer_id = await self._token_validator.signer_for(auth_token, "list_bids")
        task = load_task(self._store, task_id)
        return {
            "task_id": task_id,
            "bids": [bid_to_response(bid) for bid in self._visible_bids(task, signer_id)],
        }

    async def accept_bid(self, task_id: str, bid_id: str, token: str) -> dict[str, Any]:
        """
        Accept one pending bid and reject the others.

        Error precedence:
        1-4. JWS verification
        5.   INVALID_PAYLOAD: task_id or bid_id mismatch
        6.   TASK_NOT_FOUND
        7.   INVALID_STATUS: task not open
        8.   FORBIDDEN: signer is not the poster
        9.   BID_NOT_FOUND
        10.  BID_NOT_PENDING
        11.  ACCEPTANCE_CONFLICT: another acceptance committed first
        """
        payload = await self._token_validator.validate_jws_token(token, "accept_bid")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)
        require_path_match(payload, "bid_id", bid_id)

        task = load_task(self._store, task_id)
        require_status(task, TaskStatus.OPEN, "accept a bid")
        require_poster(task, signer_id, "accept bids")

        bid = self._store.get_bid(bid_id, task_id)
        if bid is None:
            raise NotFoundError("BID_NOT_FOUND", "Bid not found")
        if bid["status"] != BidStatus.PENDING:
            raise StateError(
                "BID_NOT_PENDING",
                f"Cannot accept a bid in '{bid['status']}' status",
            )

        accepted_at = now_iso()
        try:
            losers = self._store.accept_bid(
                task_id,
                bid_id,
                accepted_at=accepted_at,
                progress_update=make_progress_update(
                    task_id,
                    signer_id,
                    UpdateType.BID_ACCEPTED,
                    message=BID_ACCEPTED_MESSAGE,
                    created_at=accepted_at,
                ),
            )
        except TaskStateConflictError as exc:
            raise StateError(
                "ACCEPTANCE_CONFLICT",
                "Another bid was accepted for this task first",
            ) from exc

        helper_id = str(bid["user_id"])
        self._logger.info(
            "Bid accepted",
            extra={
                "task_id": task_id,
                "bid_id": bid_id,
                "helper_id": helper_id,
                "rejected_bids": len(losers),
            },
        )

        await self._notifier.notify(
            NotificationType.BID_ACCEPTED,
            helper_id,
            {"task_id": task_id, "task_title": task["title"], "bid_id": bid_id},
        )
        for loser in losers:
            await self._notifier.notify(
                NotificationType.BID_REJECTED,
                loser["user_id"],
                {"task_id": task_id, "task_title": task["title"], "bid_id": loser["bid_id"]},
            )

        updated = load_task(self._store, task_id)
        accepted = self._store.get_bid(bid_id, task_id)
        return {
            "task": task_to_response(updated),
            "bid": bid_to_response(accepted if accepted is not None else bid),
        }

    async def cancel_assignment(self, task_id: str, token: str) -> dict[str, Any]:
        """
        Let the assigned helper back out before a checkout is pending or paid.

        The task returns to open with its payment fields cleared, and the
        accepted bid becomes rejected.
        """
        payload = await self._token_validator.validate_jws_token(token, "cancel_assignment")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)

        task = load_task(self._store, task_id)
        require_status(task, TaskStatus.IN_PROGRESS, "cancel the assignment")
        require_helper(task, signer_id, "cancel the assignment")
        if task["payment_status"] == PaymentStatus.PAID:
            raise StateError(
                "PAYMENT_ALREADY_COMPLETED",
                "The assignment cannot be cancelled after payment",
            )
        if task["payment_status"] == PaymentStatus.PENDING:
            raise StateError(
                "PAYMENT_PROCESSING",
                "The assignment cannot be cancelled while a payment is being processed",
                {"payment_status": task["payment_status"]},
            )

        try:
            self._store.revert_assignment(task_id, signer_id, reverted_at=now_iso())
        except TaskStateConflictError as exc:
            raise StateError(
                "ASSIGNMENT_CHANGED",
                "The task assignment changed before the cancellation was applied",
            ) from exc

        self._logger.info(
            "Assignment cancelled by helper",
            extra={"task_id": task_id, "helper_id": signer_id},
        )

        await self._notifier.notify(
            NotificationType.TASK_CANCELLED,
            task["created_by"],
            {"task_id": task_id, "task_title": task["title"], "helper_id": signer_id},
        )
        return task_to_response(load_task(self._store, task_id))

    async def authorize_stream(self, task_id: str, auth_token: str) -> str:
        """Verify a bid-stream subscriber and return their id."""
        signer_id = await self._token_validator.signer_for(auth_token, "stream_bids")
        load_task(self._store, task_id)
        return signer_id

    async def stream_bids(
        self,
        task_id: str,
        viewer_id: str,
        keepalive_interval: float,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Async generator that yields SSE events for bids on one task.

        Starts with the bids already visible to the viewer, then follows new
        inserts from the change feed with the same visibility rule.
        """
        yield {"retry": 3000}

        with self._change_feed.subscribe("bids", task_id) as queue:
            task = load_task(self._store, task_id)
            is_poster = viewer_id == task["created_by"]
            seen: set[str] = set()

            for bid in self._visible_bids(task, viewer_id):
                seen.add(bid["bid_id"])
                yield {
                    "event": "bid",
                    "data": json.dumps(bid_to_response(bid)),
                    "id": bid["bid_id"],
                }

            while True:
                try:
                    change = await asyncio.wait_for(queue.get(), timeout=keepalive_interval)
                except TimeoutError:
                    yield {"comment": "keepalive"}
                    continue

                record = change.record
                if record["bid_id"] in seen:
                    continue
                if not is_poster and record["user_id"] != viewer_id:
                    continue
                seen.add(record["bid_id"])
                yield {
                    "event": "bid",
                    "data": json.dumps(bid_to_response(record)),
                    "id": record["bid_id"],
                }
