"""Async HTTP client for the Identity service."""

from __future__ import annotations

from typing import Any

import httpx

from task_market_service.core.exceptions import ExternalServiceError, ServiceError
from task_market_service.logging import get_logger


class IdentityClient:
    """
    Client for Identity service JWS verification.

    Every acting user signs their request; the marketplace never sees
    public keys and delegates verification to POST /agents/verify-jws.
    """

    def __init__(
        self,
        base_url: str,
        verify_jws_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._verify_jws_path = verify_jws_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def verify_jws(self, token: str) -> dict[str, Any]:
        """
        Verify a JWS compact token via the Identity service.

        Returns:
            dict with keys: valid (bool), agent_id (str), payload (dict)

        Raises:
            ServiceError: FORBIDDEN (403) if the Identity service says valid=false
            ExternalServiceError: IDENTITY_SERVICE_UNAVAILABLE on connection/timeout/
                unexpected responses
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._verify_jws_path,
                json={"token": token},
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Identity service connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ExternalServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Cannot connect to Identity service",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity service HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ExternalServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Identity service request failed",
            ) from exc

        if response.status_code != 200:
            logger.warning(
                "Identity service unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise ExternalServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Identity service returned unexpected status",
            )

        result: dict[str, Any] = response.json()

        if not result.get("valid", False):
            raise ServiceError("FORBIDDEN", "JWS signature verification failed", 403)

        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
