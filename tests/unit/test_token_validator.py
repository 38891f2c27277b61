"""Unit tests for TokenValidator."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from task_market_service.core.exceptions import ExternalServiceError, ServiceError
from task_market_service.services.token_validator import (
    TokenValidator,
    optional_text,
    require_fields,
    require_path_match,
)
from tests.helpers import generate_keypair, make_jws_token


def _validator(verify_result: object = None, side_effect: Exception | None = None):
    mock_identity = AsyncMock()
    mock_identity.verify_jws = AsyncMock(return_value=verify_result, side_effect=side_effect)
    return TokenValidator(identity_client=mock_identity), mock_identity


def _token(payload: dict) -> str:
    private_key, _public_key = generate_keypair()
    return make_jws_token(private_key, "a-agent", payload)


@pytest.mark.unit
async def test_validate_jws_token_empty_token() -> None:
    """Empty token raises INVALID_JWS."""
    validator, identity = _validator()

    with pytest.raises(ServiceError) as exc_info:
        await validator.validate_jws_token("", "create_task")

    assert exc_info.value.error == "INVALID_JWS"
    identity.verify_jws.assert_not_awaited()


@pytest.mark.unit
async def test_validate_jws_token_wrong_format() -> None:
    """Non-three-part token raises INVALID_JWS."""
    validator, _ = _validator()

    with pytest.raises(ServiceError) as exc_info:
        await validator.validate_jws_token("only.two", "create_task")

    assert exc_info.value.error == "INVALID_JWS"


@pytest.mark.unit
async def test_validate_jws_token_identity_error_propagates() -> None:
    """Errors from the Identity client are propagated unchanged."""
    expected = ExternalServiceError("IDENTITY_SERVICE_UNAVAILABLE", "down")
    validator, _ = _validator(side_effect=expected)

    with pytest.raises(ServiceError) as exc_info:
        await validator.validate_jws_token(_token({"action": "create_task"}), "create_task")

    assert exc_info.value is expected
    assert exc_info.value.status_code == 502


@pytest.mark.unit
async def test_validate_jws_token_adds_signer() -> None:
    """The verified payload is returned with the signer id attached."""
    validator, _ = _validator(
        {"valid": True, "agent_id": "a-agent", "payload": {"action": "create_task", "x": 1}}
    )

    payload = await validator.validate_jws_token(_token({"action": "create_task"}), "create_task")

    assert payload == {"action": "create_task", "x": 1, "_signer_id": "a-agent"}


@pytest.mark.unit
async def test_validate_jws_token_accepts_any_listed_action() -> None:
    """A tuple of actions allows each of them."""
    validator, _ = _validator(
        {"valid": True, "agent_id": "a-gw", "payload": {"action": "payment_failed"}}
    )
    payload = await validator.validate_jws_token(
        _token({"action": "payment_failed"}), ("payment_succeeded", "payment_failed")
    )
    assert payload["action"] == "payment_failed"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("result", "error"),
    [
        ({"valid": True, "payload": {"action": "create_task"}}, "INVALID_JWS"),
        ({"valid": True, "agent_id": "", "payload": {"action": "create_task"}}, "INVALID_JWS"),
        ({"valid": True, "agent_id": "a-agent", "payload": "not-a-dict"}, "INVALID_JWS"),
        ({"valid": True, "agent_id": "a-agent", "payload": {}}, "INVALID_PAYLOAD"),
        (
            {"valid": True, "agent_id": "a-agent", "payload": {"action": "delete_task"}},
            "INVALID_PAYLOAD",
        ),
        (
            {"valid": True, "agent_id": "a-agent", "payload": {"action": ["create_task"]}},
            "INVALID_PAYLOAD",
        ),
        (
            {"valid": True, "agent_id": "a-agent", "payload": {"action": {"name": "x"}}},
            "INVALID_PAYLOAD",
        ),
    ],
)
async def test_validate_jws_token_rejects_bad_results(result: dict, error: str) -> None:
    """Missing signer, non-object payloads and wrong actions are rejected."""
    validator, _ = _validator(result)

    with pytest.raises(ServiceError) as exc_info:
        await validator.validate_jws_token(_token({"action": "create_task"}), "create_task")

    assert exc_info.value.error == error
    assert exc_info.value.status_code == 400


@pytest.mark.unit
async def test_signer_for_returns_agent_id() -> None:
    validator, _ = _validator(
        {"valid": True, "agent_id": "a-agent", "payload": {"action": "list_bids"}}
    )
    assert await validator.signer_for(_token({"action": "list_bids"}), "list_bids") == "a-agent"


@pytest.mark.unit
def test_require_fields_and_path_match() -> None:
    """Missing or mismatched path fields raise INVALID_PAYLOAD."""
    require_fields({"task_id": "t-1", "bid_id": "b-1"}, "task_id", "bid_id")
    with pytest.raises(ServiceError, match="bid_id"):
        require_fields({"task_id": "t-1"}, "task_id", "bid_id")

    require_path_match({"task_id": "t-1"}, "task_id", "t-1")
    with pytest.raises(ServiceError, match="does not match URL path"):
        require_path_match({"task_id": "t-2"}, "task_id", "t-1")


@pytest.mark.unit
def test_optional_text() -> None:
    """Blank text is absent; long or non-string text is rejected."""
    assert optional_text({}, "message", 10) is None
    assert optional_text({"message": "   "}, "message", 10) is None
    assert optional_text({"message": "  hi  "}, "message", 10) == "hi"

    with pytest.raises(ServiceError) as exc_info:
        optional_text({"message": 42}, "message", 10)
    assert exc_info.value.error == "INVALID_PAYLOAD"

    with pytest.raises(ServiceError, match="at most 10 characters"):
        optional_text({"message": "x" * 11}, "message", 10)
