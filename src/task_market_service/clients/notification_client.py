"""Async HTTP client for the notification (email) service."""

from __future__ import annotations

from typing import Any

import httpx

from task_market_service.core.exceptions import ExternalServiceError


class NotificationClient:
    """Posts typed notification requests; template rendering happens downstream."""

    def __init__(self, base_url: str, send_path: str, timeout_seconds: int) -> None:
        self._base_url = base_url
        self._send_path = send_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def send(
        self,
        notification_type: str,
        recipient_id: str,
        fields: dict[str, Any],
    ) -> None:
        """
        Request delivery of one notification.

        Raises:
            ExternalServiceError: NOTIFICATION_SERVICE_UNAVAILABLE on any failure
        """
        try:
            response = await self._client.post(
                self._send_path,
                json={"type": notification_type, "recipient_id": recipient_id, "fields": fields},
            )
        except httpx.HTTPError as exc:
            raise ExternalServiceError(
                "NOTIFICATION_SERVICE_UNAVAILABLE",
                "Notification service request failed",
            ) from exc

        if response.status_code not in (200, 201, 202):
            raise ExternalServiceError(
                "NOTIFICATION_SERVICE_UNAVAILABLE",
                "Notification service returned unexpected status",
                {"status_code": response.status_code},
            )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
