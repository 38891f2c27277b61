"""Progress timeline and revision cycle for tasks in progress."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from task_market_service.core.exceptions import ValidationError
from task_market_service.logging import get_logger
from task_market_service.services.content_filter import ensure_clean
from task_market_service.services.notifier import NotificationType
from task_market_service.services.records import (
    load_task,
    make_progress_update,
    parse_timestamp,
    progress_to_response,
    require_helper,
    require_participant,
    require_poster,
)
from task_market_service.services.task_states import TaskStatus, UpdateType, require_status
from task_market_service.services.token_validator import optional_text, require_path_match

if TYPE_CHECKING:
    from collections.abc import Iterable

    from task_market_service.services.market_store import MarketStore
    from task_market_service.services.notifier import Notifier
    from task_market_service.services.token_validator import TokenValidator

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

REVISION_COMPLETED_DEFAULT_MESSAGE = "Revision completed"
WORK_COMPLETE_MESSAGE = "Work marked as complete"


def latest_timestamp(updates: Iterable[dict[str, Any]], update_type: UpdateType) -> datetime | None:
    """Most recent created_at among updates of one type, or None."""
    stamps = [
        parse_timestamp(update["created_at"])
        for update in updates
        if update["update_type"] == update_type
    ]
    return max(stamps) if stamps else None


def has_outstanding_revision(updates: Iterable[dict[str, Any]]) -> bool:
    """
    True iff the latest revision request is strictly newer than the latest
    revision completion (epoch when there is none).

    Decided purely by timestamps, independent of the order of `updates`.
    """
    update_list = list(updates)
    requested = latest_timestamp(update_list, UpdateType.REVISION_REQUESTED)
    if requested is None:
        return False
    completed = latest_timestamp(update_list, UpdateType.REVISION_COMPLETED) or _EPOCH
    return requested > completed


def has_signaled_work_complete(updates: Iterable[dict[str, Any]], helper_id: str | None) -> bool:
    """True if the helper has posted a work_complete entry."""
    if helper_id is None:
        return False
    return any(
        update["update_type"] == UpdateType.WORK_COMPLETE and update["user_id"] == helper_id
        for update in updates
    )


def should_notify_progress(
    updates: Iterable[dict[str, Any]],
    author_id: str,
    *,
    window_seconds: int,
    now: datetime | None = None,
) -> bool:
    """
    False if `author_id` already posted a generic update inside the window.

    `updates` is the timeline before the new update is appended.
    """
    current = now if now is not None else datetime.now(UTC)
    threshold = current - timedelta(seconds=window_seconds)
    return not any(
        update["user_id"] == author_id
        and update["update_type"] == UpdateType.GENERIC
        and parse_timestamp(update["created_at"]) > threshold
        for update in updates
    )


def _optional_image_url(payload: dict[str, Any], max_length: int) -> str | None:
    image_url = optional_text(payload, "image_url", max_length)
    if image_url is not None and not image_url.startswith(("https://", "http://")):
        raise ValidationError("INVALID_PAYLOAD", "image_url must be an http(s) URL")
    return image_url


class FulfillmentTracker:
    """
    Append-only progress log for in-progress tasks.

    The poster and the assigned helper post updates; revision requests and
    completions are ordinary log entries, and the outstanding-revision
    state is always re-derived from their timestamps.
    """

    def __init__(
        self,
        store: MarketStore,
        token_validator: TokenValidator,
        notifier: Notifier,
        *,
        max_message_length: int,
        max_image_url_length: int,
        progress_throttle_seconds: int,
    ) -> None:
        self._store = store
        self._token_validator = token_validator
        self._notifier = notifier
        self._max_message_length = max_message_length
        self._max_image_url_length = max_image_url_length
        self._progress_throttle_seconds = progress_throttle_seconds
        self._logger = get_logger(__name__)

    def _read_content(self, payload: dict[str, Any]) -> tuple[str | None, str | None]:
        message = optional_text(payload, "message", self._max_message_length)
        image_url = _optional_image_url(payload, self._max_image_url_length)
        return message, image_url

    def timeline_flags(self, task: dict[str, Any]) -> dict[str, bool]:
        """Derived fulfillment flags for a task response."""
        updates = self._store.get_progress_updates(task["task_id"])
        return {
            "has_outstanding_revision": has_outstanding_revision(updates),
            "helper_signaled_complete": has_signaled_work_complete(updates, task["assigned_to"]),
        }

    async def list_updates(self, task_id: str, auth_token: str) -> dict[str, Any]:
        """
        Return the progress timeline. Poster or assigned helper only.

        Error precedence:
        1-4. JWS verification
        5.   TASK_NOT_FOUND
        6.   FORBIDDEN: signer is not a participant
        """
        payload = await self._token_validator.validate_jws_token(auth_token, "list_progress")
        signer_id: str = payload["_signer_id"]
        if "task_id" in payload:
            require_path_match(payload, "task_id", task_id)

        task = load_task(self._store, task_id)
        require_participant(task, signer_id, "view progress updates")

        updates = self._store.get_progress_updates(task_id)
        return {
            "task_id": task_id,
            "updates": [progress_to_response(update) for update in updates],
            "has_outstanding_revision": has_outstanding_revision(updates),
            "helper_signaled_complete": has_signaled_work_complete(updates, task["assigned_to"]),
        }

    async def post_update(self, task_id: str, token: str) -> dict[str, Any]:
        """
        Post a generic progress update.

        Every update is persisted. The counterparty notification is skipped
        when the same author already posted within the throttle window.

        Error precedence:
        1-4. JWS verification
        5.   INVALID_PAYLOAD: task_id mismatch, bad fields, nothing to post
        6.   TASK_NOT_FOUND
        7.   INVALID_STATUS: task not in progress
        8.   FORBIDDEN: signer is not a participant
        9.   CONTACT_INFO_DETECTED
        """
        payload = await self._token_validator.validate_jws_token(token, "post_progress_update")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)
        message, image_url = self._read_content(payload)
        if message is None and image_url is None:
            raise ValidationError("EMPTY_UPDATE", "A progress update needs a message or an image")

        task = load_task(self._store, task_id)
        require_status(task, TaskStatus.IN_PROGRESS, "post a progress update")
        require_participant(task, signer_id, "post progress updates")
        ensure_clean(message, "message")

        previous = self._store.get_progress_updates(task_id)
        notify = should_notify_progress(
            previous,
            signer_id,
            window_seconds=self._progress_throttle_seconds,
        )

        update = make_progress_update(
            task_id,
            signer_id,
            UpdateType.GENERIC,
            message=message,
            image_url=image_url,
        )
        self._store.insert_progress_update(update)

        notified = False
        if notify:
            recipient = (
                task["assigned_to"] if signer_id == task["created_by"] else task["created_by"]
            )
            notified = await self._notifier.notify(
                NotificationType.TASK_PROGRESS_UPDATE,
                recipient,
                {"task_id": task_id, "task_title": task["title"], "author_id": signer_id},
            )
        else:
            self._logger.info(
                "Progress notification throttled",
                extra={"task_id": task_id, "author_id": signer_id},
            )

        return {**progress_to_response(update), "notified": notified}

    async def request_revision(self, task_id: str, token: str) -> dict[str, Any]:
        """
        Ask the helper to revise the work. Poster only, in_progress only.

        Error precedence:
        1-4. JWS verification
        5.   INVALID_PAYLOAD / EMPTY_UPDATE
        6.   TASK_NOT_FOUND
        7.   INVALID_STATUS
        8.   FORBIDDEN: signer is not the poster
        9.   CONTACT_INFO_DETECTED
        """
        payload = await self._token_validator.validate_jws_token(token, "request_revision")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)
        message, image_url = self._read_content(payload)
        if message is None and image_url is None:
            raise ValidationError("EMPTY_UPDATE", "A revision request needs a message or an image")

        task = load_task(self._store, task_id)
        require_status(task, TaskStatus.IN_PROGRESS, "request a revision")
        require_poster(task, signer_id, "request a revision")
        ensure_clean(message, "message")

        update = make_progress_update(
            task_id,
            signer_id,
            UpdateType.REVISION_REQUESTED,
            message=message,
            image_url=image_url,
        )
        self._store.insert_progress_update(update)
        self._logger.info("Revision requested", extra={"task_id": task_id})

        await self._notifier.notify(
            NotificationType.REVISION_REQUESTED,
            task["assigned_to"],
            {"task_id": task_id, "task_title": task["title"], "message": message},
        )

        return {**progress_to_response(update), "has_outstanding_revision": True}

    async def mark_revision_complete(self, task_id: str, token: str) -> dict[str, Any]:
        """
        Record that the helper addressed the latest revision request.

        Helper only, in_progress only.
        """
        payload = await self._token_validator.validate_jws_token(token, "complete_revision")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)
        message, image_url = self._read_content(payload)

        task = load_task(self._store, task_id)
        require_status(task, TaskStatus.IN_PROGRESS, "complete a revision")
        require_helper(task, signer_id, "complete a revision")
        ensure_clean(message, "message")

        update = make_progress_update(
            task_id,
            signer_id,
            UpdateType.REVISION_COMPLETED,
            message=message if message is not None else REVISION_COMPLETED_DEFAULT_MESSAGE,
            image_url=image_url,
        )
        self._store.insert_progress_update(update)
        self._logger.info("Revision completed", extra={"task_id": task_id})

        await self._notifier.notify(
            NotificationType.REVISION_COMPLETED,
            task["created_by"],
            {"task_id": task_id, "task_title": task["title"]},
        )

        updates = self._store.get_progress_updates(task_id)
        return {
            **progress_to_response(update),
            "has_outstanding_revision": has_outstanding_revision(updates),
        }

    async def mark_work_complete(self, task_id: str, token: str) -> dict[str, Any]:
        """
        Helper signals the work is finished. Only the poster can complete the task.

        Repeat signals are recorded again; `already_signaled` tells the caller.
        """
        payload = await self._token_validator.validate_jws_token(token, "mark_work_complete")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "task_id", task_id)

        task = load_task(self._store, task_id)
        require_status(task, TaskStatus.IN_PROGRESS, "mark work complete")
        require_helper(task, signer_id, "mark work complete")

        already_signaled = has_signaled_work_complete(
            self._store.get_progress_updates(task_id), signer_id
        )
        update = make_progress_update(
            task_id,
            signer_id,
            UpdateType.WORK_COMPLETE,
            message=WORK_COMPLETE_MESSAGE,
        )
        self._store.insert_progress_update(update)
        self._logger.info(
            "Helper marked work complete",
            extra={"task_id": task_id, "helper_id": signer_id},
        )

        await self._notifier.notify(
            NotificationType.HELPER_FINISHED,
            task["created_by"],
            {"task_id": task_id, "task_title": task["title"], "helper_id": signer_id},
        )

        return {**progress_to_response(update), "already_signaled": already_signaled}
