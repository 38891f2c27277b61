"""Async HTTP client for the payment gateway (checkout sessions)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from task_market_service.core.exceptions import ExternalServiceError
from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from decimal import Decimal


class PaymentGatewayClient:
    """
    Client for creating hosted checkout sessions.

    The gateway answers with a payment intent id and a redirect target.
    Capture is confirmed asynchronously through the payment webhook.
    """

    def __init__(self, base_url: str, checkout_path: str, timeout_seconds: int) -> None:
        self._base_url = base_url
        self._checkout_path = checkout_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def create_checkout(
        self,
        amount: Decimal,
        currency: str,
        return_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> dict[str, Any]:
        """
        Create a checkout session for `amount`.

        Returns:
            dict with keys: intent_id, and optionally redirect_url, client_secret

        Raises:
            ExternalServiceError: PAYMENT_GATEWAY_REJECTED when the gateway refuses
                the request, PAYMENT_GATEWAY_UNAVAILABLE on transport failures or
                unexpected responses
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._checkout_path,
                json={
                    "amount": f"{amount:.2f}",
                    "currency": currency,
                    "return_url": return_url,
                    "cancel_url": cancel_url,
                    "metadata": metadata,
                },
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Payment gateway connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ExternalServiceError(
                "PAYMENT_GATEWAY_UNAVAILABLE",
                "Cannot connect to payment gateway",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Payment gateway HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ExternalServiceError(
                "PAYMENT_GATEWAY_UNAVAILABLE",
                "Payment gateway request failed",
            ) from exc

        if response.status_code in (200, 201):
            try:
                result = response.json()
            except ValueError:
                result = None
            if not isinstance(result, dict):
                logger.warning(
                    "Payment gateway returned a malformed body",
                    extra={"base_url": self._base_url},
                )
                raise ExternalServiceError(
                    "PAYMENT_GATEWAY_UNAVAILABLE",
                    "Payment gateway returned an invalid response",
                )
            if not isinstance(result.get("intent_id"), str) or not result["intent_id"]:
                raise ExternalServiceError(
                    "PAYMENT_GATEWAY_UNAVAILABLE",
                    "Payment gateway response is missing intent_id",
                )
            return result

        if 400 <= response.status_code < 500:
            message = "Payment gateway rejected the checkout"
            try:
                body = response.json()
            except ValueError:
                body = {}
            if isinstance(body, dict) and isinstance(body.get("message"), str):
                message = body["message"]
            raise ExternalServiceError(
                "PAYMENT_GATEWAY_REJECTED",
                message,
                {"gateway_status": response.status_code},
            )

        logger.warning(
            "Payment gateway unexpected status",
            extra={"status_code": response.status_code, "base_url": self._base_url},
        )
        raise ExternalServiceError(
            "PAYMENT_GATEWAY_UNAVAILABLE",
            "Payment gateway returned unexpected status",
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
