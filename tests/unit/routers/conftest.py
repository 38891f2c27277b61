"""Router test fixtures with mocked Identity, gateway and notification services."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from task_market_service.app import create_app
from task_market_service.config import clear_settings_cache
from task_market_service.core.exceptions import ExternalServiceError, ServiceError
from task_market_service.core.lifespan import lifespan
from task_market_service.core.state import get_app_state, reset_app_state
from tests.helpers import generate_keypair, make_jws_token, token_payload, token_signer

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

    Keypair = tuple[Ed25519PrivateKey, str]

# ---------------------------------------------------------------------------
# Fixed agent IDs
# ---------------------------------------------------------------------------
PLATFORM_AGENT_ID = "a-platform-test-id"
GATEWAY_AGENT_ID = "a-gateway-test-id"
ALICE_AGENT_ID = "a-alice-uuid"
BOB_AGENT_ID = "a-bob-uuid"
CAROL_AGENT_ID = "a-carol-uuid"

TEST_IBAN = "DE89370400440532013000"


# ---------------------------------------------------------------------------
# Keypair fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def platform_keypair() -> Keypair:
    """Generate a platform keypair."""
    return generate_keypair()


@pytest.fixture
def gateway_keypair() -> Keypair:
    """Generate the payment gateway's keypair."""
    return generate_keypair()


@pytest.fixture
def alice_keypair() -> Keypair:
    """Generate Alice's keypair (poster)."""
    return generate_keypair()


@pytest.fixture
def bob_keypair() -> Keypair:
    """Generate Bob's keypair (helper)."""
    return generate_keypair()


@pytest.fixture
def carol_keypair() -> Keypair:
    """Generate Carol's keypair (second helper)."""
    return generate_keypair()


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
def _write_config(tmp_path: Path, *, checkout_on_accept: bool) -> Path:
    db_path = tmp_path / "test.db"
    config_content = f"""\
service:
  name: "task-market"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{tmp_path / "logs"}"
database:
  path: "{db_path}"
identity:
  base_url: "http://localhost:8001"
  verify_jws_path: "/agents/verify-jws"
  timeout_seconds: 10
platform:
  agent_id: "{PLATFORM_AGENT_ID}"
  private_key_path: "{tmp_path / "platform.pem"}"
payment_gateway:
  base_url: "http://localhost:8020"
  checkout_path: "/checkout/sessions"
  agent_id: "{GATEWAY_AGENT_ID}"
  timeout_seconds: 10
payout_gateway:
  base_url: "http://localhost:8021"
  payout_path: "/payouts"
  timeout_seconds: 10
notifications:
  base_url: "http://localhost:8022"
  send_path: "/notifications"
  timeout_seconds: 5
  progress_throttle_seconds: 300
fees:
  service_fee: "2.00"
  default_platform_fee_percent: "10"
  currency: "EUR"
payments:
  checkout_on_accept: {"true" if checkout_on_accept else "false"}
  reconcile_backoff_seconds: [0, 0]
  return_url_template: "https://example.com/tasks/{{task_id}}?payment=success"
  cancel_url_template: "https://example.com/tasks/{{task_id}}?payment=cancelled"
streams:
  max_queue_size: 100
  keepalive_interval_seconds: 15
request:
  max_body_size: 1048576
limits:
  max_title_length: 200
  max_description_length: 10000
  max_message_length: 2000
  max_comment_length: 2000
  max_image_url_length: 2048
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return config_path


def _verify_without_signature_check(token: str) -> dict[str, Any]:
    return {"valid": True, "agent_id": token_signer(token), "payload": token_payload(token)}


@pytest.fixture
def checkout_on_accept() -> bool:
    """Override in a test module to open checkouts immediately on acceptance."""
    return False


@pytest.fixture
async def app(tmp_path: Path, checkout_on_accept: bool) -> AsyncIterator[Any]:
    """Create a test app with temp database and mocked external services."""
    config_path = _write_config(tmp_path, checkout_on_accept=checkout_on_accept)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()
        assert state.identity_client is not None
        assert state.payment_gateway_client is not None
        assert state.payout_gateway_client is not None
        assert state.notification_client is not None

        # Services share these client objects, so patching methods is enough
        state.identity_client.verify_jws = AsyncMock(  # type: ignore[method-assign]
            side_effect=_verify_without_signature_check
        )
        state.payment_gateway_client.create_checkout = AsyncMock(  # type: ignore[method-assign]
            return_value={
                "intent_id": "pi_test_1",
                "redirect_url": "https://pay.example.com/session/pi_test_1",
                "client_secret": "pi_test_1_secret",
            }
        )
        state.payout_gateway_client.create_payout = AsyncMock(  # type: ignore[method-assign]
            return_value={"payout_id": "po_test_1", "status": "processing"}
        )
        state.notification_client.send = AsyncMock(  # type: ignore[method-assign]
            return_value=None
        )

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Mock override fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_identity_rejects(_app: Any) -> None:
    """Identity says the signature is invalid."""
    get_app_state().identity_client.verify_jws = AsyncMock(  # type: ignore[union-attr]
        side_effect=ServiceError("FORBIDDEN", "JWS signature verification failed", 403)
    )


@pytest.fixture
def mock_identity_unavailable(_app: Any) -> None:
    """Identity cannot be reached."""
    get_app_state().identity_client.verify_jws = AsyncMock(  # type: ignore[union-attr]
        side_effect=ExternalServiceError(
            "IDENTITY_SERVICE_UNAVAILABLE", "Cannot connect to Identity service"
        )
    )


@pytest.fixture
def mock_payment_gateway_rejects(_app: Any) -> None:
    """The payment gateway refuses to open a checkout."""
    get_app_state().payment_gateway_client.create_checkout = AsyncMock(  # type: ignore[union-attr]
        side_effect=ExternalServiceError(
            "PAYMENT_GATEWAY_REJECTED", "Card declined", {"gateway_status": 402}
        )
    )


@pytest.fixture
def mock_payout_gateway_unavailable(_app: Any) -> None:
    """The payout gateway cannot be reached."""
    get_app_state().payout_gateway_client.create_payout = AsyncMock(  # type: ignore[union-attr]
        side_effect=ExternalServiceError(
            "PAYOUT_GATEWAY_UNAVAILABLE", "Cannot connect to payout gateway"
        )
    )


@pytest.fixture
def mock_notifications_down(_app: Any) -> None:
    """Every notification delivery fails."""
    get_app_state().notification_client.send = AsyncMock(  # type: ignore[union-attr]
        side_effect=ExternalServiceError(
            "NOTIFICATION_SERVICE_UNAVAILABLE", "Notification service request failed"
        )
    )


def sent_notifications() -> list[tuple[str, str]]:
    """(type, recipient) of every notification sent so far."""
    send = get_app_state().notification_client.send  # type: ignore[union-attr]
    return [(call.args[0], call.args[1]) for call in send.await_args_list]


# ---------------------------------------------------------------------------
# Signing helpers
# ---------------------------------------------------------------------------
def sign(keypair: Keypair, agent_id: str, action: str, **fields: Any) -> str:
    """Token for `action` signed by `agent_id`."""
    return make_jws_token(keypair[0], agent_id, {"action": action, **fields})


def bearer(keypair: Keypair, agent_id: str, action: str, **fields: Any) -> dict[str, str]:
    """Authorization header for a read endpoint."""
    return {"Authorization": f"Bearer {sign(keypair, agent_id, action, **fields)}"}


# ---------------------------------------------------------------------------
# Task lifecycle helper functions
# ---------------------------------------------------------------------------
async def register_helper(
    client: AsyncClient,
    keypair: Keypair,
    agent_id: str,
    *,
    is_helper: bool = True,
    iban: str | None = TEST_IBAN,
    paypal_email: str | None = None,
) -> Any:
    """Create a profile via POST /profiles and return the response."""
    fields: dict[str, Any] = {"is_helper": is_helper, "full_name": "Test Helper"}
    if iban is not None:
        fields["iban"] = iban
    if paypal_email is not None:
        fields["paypal_email"] = paypal_email
    token = sign(keypair, agent_id, "update_profile", **fields)
    return await client.post("/profiles", json={"token": token})


async def create_task(
    client: AsyncClient,
    poster_keypair: Keypair,
    poster_id: str,
    *,
    title: str = "Assemble a bookshelf",
    description: str = "Flat-pack bookshelf, tools provided.",
    budget: Any = None,
) -> Any:
    """Create a task via POST /tasks and return the response."""
    fields: dict[str, Any] = {"title": title, "description": description}
    if budget is not None:
        fields["budget"] = budget
    token = sign(poster_keypair, poster_id, "create_task", **fields)
    return await client.post("/tasks", json={"token": token})


async def submit_bid(
    client: AsyncClient,
    bidder_keypair: Keypair,
    bidder_id: str,
    task_id: str,
    *,
    amount: Any = 100,
    message: str | None = "I can do this tomorrow",
) -> Any:
    """Submit a bid via POST /tasks/{task_id}/bids and return the response."""
    fields: dict[str, Any] = {"task_id": task_id, "amount": amount}
    if message is not None:
        fields["message"] = message
    token = sign(bidder_keypair, bidder_id, "submit_bid", **fields)
    return await client.post(f"/tasks/{task_id}/bids", json={"token": token})


async def accept_bid(
    client: AsyncClient,
    poster_keypair: Keypair,
    poster_id: str,
    task_id: str,
    bid_id: str,
) -> Any:
    """Accept a bid via POST /tasks/{task_id}/bids/{bid_id}/accept."""
    token = sign(poster_keypair, poster_id, "accept_bid", task_id=task_id, bid_id=bid_id)
    return await client.post(f"/tasks/{task_id}/bids/{bid_id}/accept", json={"token": token})


async def start_checkout(
    client: AsyncClient,
    poster_keypair: Keypair,
    poster_id: str,
    task_id: str,
) -> Any:
    """Open a checkout via POST /tasks/{task_id}/payment/checkout."""
    token = sign(poster_keypair, poster_id, "create_checkout", task_id=task_id)
    return await client.post(f"/tasks/{task_id}/payment/checkout", json={"token": token})


async def send_webhook(
    client: AsyncClient,
    task_id: str,
    intent_id: str,
    *,
    action: str = "payment_succeeded",
    signer_id: str = GATEWAY_AGENT_ID,
) -> Any:
    """Deliver a gateway payment event via POST /payments/webhook."""
    private_key, _ = generate_keypair()
    token = make_jws_token(
        private_key,
        signer_id,
        {"action": action, "task_id": task_id, "intent_id": intent_id},
    )
    return await client.post("/payments/webhook", json={"token": token})


async def complete_task(
    client: AsyncClient,
    poster_keypair: Keypair,
    poster_id: str,
    task_id: str,
) -> Any:
    """Mark a task completed via POST /tasks/{task_id}/complete."""
    token = sign(poster_keypair, poster_id, "complete_task", task_id=task_id)
    return await client.post(f"/tasks/{task_id}/complete", json={"token": token})


async def post_progress(
    client: AsyncClient,
    keypair: Keypair,
    agent_id: str,
    task_id: str,
    *,
    message: str | None = "Halfway there",
    image_url: str | None = None,
) -> Any:
    """Post a progress update via POST /tasks/{task_id}/progress."""
    fields: dict[str, Any] = {"task_id": task_id}
    if message is not None:
        fields["message"] = message
    if image_url is not None:
        fields["image_url"] = image_url
    token = sign(keypair, agent_id, "post_progress_update", **fields)
    return await client.post(f"/tasks/{task_id}/progress", json={"token": token})


async def submit_review(
    client: AsyncClient,
    keypair: Keypair,
    agent_id: str,
    task_id: str,
    *,
    rating: Any = 5,
    comment: str | None = "Great work",
) -> Any:
    """Review the counterparty via POST /tasks/{task_id}/reviews."""
    fields: dict[str, Any] = {"task_id": task_id, "rating": rating}
    if comment is not None:
        fields["comment"] = comment
    token = sign(keypair, agent_id, "submit_review", **fields)
    return await client.post(f"/tasks/{task_id}/reviews", json={"token": token})


async def setup_task_in_progress(
    client: AsyncClient,
    alice_keypair: Keypair,
    bob_keypair: Keypair,
    *,
    amount: Any = 100,
) -> tuple[str, str]:
    """Alice posts a task, helper Bob bids, Alice accepts. Returns (task_id, bid_id)."""
    profile_resp = await register_helper(client, bob_keypair, BOB_AGENT_ID)
    assert profile_resp.status_code == 200, profile_resp.json()

    task_resp = await create_task(client, alice_keypair, ALICE_AGENT_ID)
    assert task_resp.status_code == 201, task_resp.json()
    task_id = task_resp.json()["task_id"]

    bid_resp = await submit_bid(client, bob_keypair, BOB_AGENT_ID, task_id, amount=amount)
    assert bid_resp.status_code == 201, bid_resp.json()
    bid_id = bid_resp.json()["bid_id"]

    accept_resp = await accept_bid(client, alice_keypair, ALICE_AGENT_ID, task_id, bid_id)
    assert accept_resp.status_code == 200, accept_resp.json()
    return task_id, bid_id


async def setup_paid_task(
    client: AsyncClient,
    alice_keypair: Keypair,
    bob_keypair: Keypair,
    *,
    amount: Any = 100,
) -> str:
    """An in-progress task whose checkout the gateway has confirmed."""
    task_id, _ = await setup_task_in_progress(client, alice_keypair, bob_keypair, amount=amount)

    checkout_resp = await start_checkout(client, alice_keypair, ALICE_AGENT_ID, task_id)
    assert checkout_resp.status_code == 201, checkout_resp.json()
    intent_id = checkout_resp.json()["intent_id"]

    webhook_resp = await send_webhook(client, task_id, intent_id)
    assert webhook_resp.status_code == 200, webhook_resp.json()
    assert webhook_resp.json()["applied"] is True
    return task_id


async def setup_completed_task(
    client: AsyncClient,
    alice_keypair: Keypair,
    bob_keypair: Keypair,
) -> str:
    """A paid task the poster has marked completed."""
    task_id = await setup_paid_task(client, alice_keypair, bob_keypair)
    complete_resp = await complete_task(client, alice_keypair, ALICE_AGENT_ID, task_id)
    assert complete_resp.status_code == 200, complete_resp.json()
    return task_id
