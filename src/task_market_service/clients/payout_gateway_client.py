"""Async HTTP client for the payout gateway."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from task_market_service.core.exceptions import ExternalServiceError
from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from task_market_service.clients.platform_signer import PlatformSigner


class PayoutGatewayClient:
    """
    Client for disbursing helper payouts.

    Each payout instruction is signed by the platform agent and carries an
    idempotency key; resubmitting the same key never pays twice.
    """

    def __init__(
        self,
        base_url: str,
        payout_path: str,
        timeout_seconds: int,
        platform_signer: PlatformSigner,
    ) -> None:
        self._base_url = base_url
        self._payout_path = payout_path
        self._platform_signer = platform_signer
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def create_payout(
        self,
        task_id: str,
        recipient_id: str,
        amount: Decimal,
        currency: str,
        destination: dict[str, str],
        idempotency_key: str,
    ) -> dict[str, Any]:
        """
        Ask the gateway to pay `amount` to the helper's payout destination.

        Args:
            destination: {"method": "iban" | "paypal_email", "value": ...}

        Returns:
            dict with keys: payout_id, status

        Raises:
            ExternalServiceError: PAYOUT_GATEWAY_REJECTED or PAYOUT_GATEWAY_UNAVAILABLE
        """
        logger = get_logger(__name__)

        signed_token = self._platform_signer.sign(
            {
                "action": "create_payout",
                "task_id": task_id,
                "recipient_id": recipient_id,
                "amount": f"{amount:.2f}",
                "currency": currency,
                "destination": destination,
                "idempotency_key": idempotency_key,
            }
        )

        try:
            response = await self._client.post(
                self._payout_path,
                json={"token": signed_token},
                headers={"Idempotency-Key": idempotency_key},
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Payout gateway connection failed",
                extra={"error": str(exc), "task_id": task_id, "base_url": self._base_url},
            )
            raise ExternalServiceError(
                "PAYOUT_GATEWAY_UNAVAILABLE",
                "Cannot connect to payout gateway",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Payout gateway HTTP error",
                extra={"error": str(exc), "task_id": task_id, "base_url": self._base_url},
            )
            raise ExternalServiceError(
                "PAYOUT_GATEWAY_UNAVAILABLE",
                "Payout gateway request failed",
            ) from exc

        if response.status_code in (200, 201):
            try:
                result = response.json()
            except ValueError:
                result = None
            if not isinstance(result, dict) or not isinstance(
                result.get("payout_id"), (str, type(None))
            ):
                logger.warning(
                    "Payout gateway returned a malformed body",
                    extra={"task_id": task_id, "base_url": self._base_url},
                )
                raise ExternalServiceError(
                    "PAYOUT_GATEWAY_UNAVAILABLE",
                    "Payout gateway returned an invalid response",
                )
            return result

        if 400 <= response.status_code < 500:
            message = "Payout gateway rejected the payout"
            try:
                body = response.json()
            except ValueError:
                body = {}
            if isinstance(body, dict) and isinstance(body.get("message"), str):
                message = body["message"]
            raise ExternalServiceError(
                "PAYOUT_GATEWAY_REJECTED",
                message,
                {"gateway_status": response.status_code},
            )

        logger.warning(
            "Payout gateway unexpected status",
            extra={
                "status_code": response.status_code,
                "task_id": task_id,
                "base_url": self._base_url,
            },
        )
        raise ExternalServiceError(
            "PAYOUT_GATEWAY_UNAVAILABLE",
            "Payout gateway returned unexpected status",
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
