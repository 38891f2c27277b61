"""Token validation for signed marketplace actions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from task_market_service.core.exceptions import ValidationError

if TYPE_CHECKING:
    from task_market_service.clients.identity_client import IdentityClient


def require_fields(payload: dict[str, Any], *field_names: str) -> None:
    """Raise INVALID_PAYLOAD for the first missing field."""
    for field_name in field_names:
        if field_name not in payload:
            raise ValidationError("INVALID_PAYLOAD", f"Missing required field: {field_name}")


def require_path_match(payload: dict[str, Any], field_name: str, path_value: str) -> None:
    """Raise INVALID_PAYLOAD when a signed id disagrees with the URL path."""
    require_fields(payload, field_name)
    if payload[field_name] != path_value:
        raise ValidationError(
            "INVALID_PAYLOAD",
            f"{field_name} in payload does not match URL path",
        )


def optional_text(payload: dict[str, Any], field_name: str, max_length: int) -> str | None:
    """Read an optional string field; blank strings count as absent."""
    value = payload.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("INVALID_PAYLOAD", f"{field_name} must be a string")
    stripped = value.strip()
    if not stripped:
        return None
    if len(stripped) > max_length:
        raise ValidationError(
            "INVALID_PAYLOAD",
            f"{field_name} must be at most {max_length} characters",
        )
    return stripped


class TokenValidator:
    """Verifies signed action tokens through the Identity service."""

    def __init__(self, identity_client: IdentityClient) -> None:
        self._identity_client = identity_client

    async def validate_jws_token(
        self,
        token: str,
        expected_action: str | tuple[str, ...],
    ) -> dict[str, Any]:
        """
        Verify a JWS token via the Identity service and validate the action field.

        Returns the verified payload dict with "_signer_id" added.

        Error precedence handled here:
        1. INVALID_JWS: token is not a three-part compact JWS
        2. IDENTITY_SERVICE_UNAVAILABLE: Identity service unreachable
        3. FORBIDDEN: signature invalid
        4. INVALID_PAYLOAD: wrong or missing action
        """
        if not token:
            raise ValidationError("INVALID_JWS", "Token must be a non-empty string")

        if len(token.split(".")) != 3:
            raise ValidationError(
                "INVALID_JWS",
                "Token must be in JWS compact serialization format (header.payload.signature)",
            )

        result = await self._identity_client.verify_jws(token)

        agent_id = result.get("agent_id")
        if not isinstance(agent_id, str) or len(agent_id) < 1:
            raise ValidationError("INVALID_JWS", "Token signer is missing")

        raw_payload = result.get("payload")
        if not isinstance(raw_payload, dict):
            raise ValidationError("INVALID_JWS", "Token payload must be a JSON object")
        payload = dict(cast("dict[str, Any]", raw_payload))

        if "action" not in payload:
            raise ValidationError("INVALID_PAYLOAD", "JWS payload must include an 'action' field")

        allowed_actions = (
            {expected_action} if isinstance(expected_action, str) else set(expected_action)
        )
        action = payload["action"]
        if not isinstance(action, str):
            raise ValidationError("INVALID_PAYLOAD", "JWS action must be a string")
        if action not in allowed_actions:
            expected_actions_text = ", ".join(sorted(allowed_actions))
            raise ValidationError(
                "INVALID_PAYLOAD",
                f"Expected action in [{expected_actions_text}], got '{action}'",
            )

        payload["_signer_id"] = agent_id
        return payload

    async def signer_for(self, token: str, expected_action: str | tuple[str, ...]) -> str:
        """Verify a token and return only the signer id."""
        payload = await self.validate_jws_token(token, expected_action)
        signer_id: str = payload["_signer_id"]
        return signer_id
