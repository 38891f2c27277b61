"""End-to-end task lifecycle tests: completion gating and helper payout."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from task_market_service.core.state import get_app_state
from tests.unit.routers.conftest import (
    ALICE_AGENT_ID,
    BOB_AGENT_ID,
    PLATFORM_AGENT_ID,
    TEST_IBAN,
    bearer,
    complete_task,
    create_task,
    register_helper,
    send_webhook,
    sent_notifications,
    setup_completed_task,
    setup_paid_task,
    setup_task_in_progress,
    sign,
    start_checkout,
)


async def _retry_payout(client, keypair, agent_id, task_id):
    token = sign(keypair, agent_id, "retry_payout", task_id=task_id)
    return await client.post(f"/tasks/{task_id}/payout", json={"token": token})


@pytest.mark.unit
class TestCompletion:
    """Category 20: Completion. LIFE-01 to LIFE-07"""

    async def test_full_lifecycle(self, client, alice_keypair, bob_keypair):
        """LIFE-01: open -> in_progress -> paid -> completed -> payout."""
        task_id = await setup_paid_task(client, alice_keypair, bob_keypair, amount=100)

        response = await complete_task(client, alice_keypair, ALICE_AGENT_ID, task_id)
        assert response.status_code == 200
        data = response.json()
        assert data["task"]["status"] == "completed"
        assert data["task"]["completed_at"] is not None
        assert data["task"]["payout_status"] == "processing"
        assert data["task"]["payout_id"] == "po_test_1"
        assert data["payout"]["outcome"] == "initiated"
        assert data["payout"]["breakdown"] == {
            "budget": 100.0,
            "fee_percent": 10.0,
            "platform_fee": 10.0,
            "payout": 90.0,
        }

        payout_call = get_app_state().payout_gateway_client.create_payout.await_args.kwargs
        assert payout_call["recipient_id"] == BOB_AGENT_ID
        assert payout_call["amount"] == Decimal("90.00")
        assert payout_call["currency"] == "EUR"
        assert payout_call["destination"] == {"method": "iban", "value": TEST_IBAN}
        assert payout_call["idempotency_key"] == f"payout-{task_id}"

        notifications = sent_notifications()
        assert ("task_completed", BOB_AGENT_ID) in notifications
        assert ("payout_initiated", BOB_AGENT_ID) in notifications

        timeline = await client.get(
            f"/tasks/{task_id}/progress",
            headers=bearer(bob_keypair, BOB_AGENT_ID, "list_progress"),
        )
        types = [update["update_type"] for update in timeline.json()["updates"]]
        assert types == ["bid_accepted", "payout"]

    async def test_completion_requires_payment(self, client, alice_keypair, bob_keypair):
        """LIFE-02: An unpaid task cannot be completed."""
        task_id, _ = await setup_task_in_progress(client, alice_keypair, bob_keypair)
        response = await complete_task(client, alice_keypair, ALICE_AGENT_ID, task_id)
        assert response.status_code == 402
        assert response.json()["error"] == "PAYMENT_REQUIRED"

    async def test_completion_while_payment_pending(self, client, alice_keypair, bob_keypair):
        """LIFE-03: A pending payment is reported as still processing."""
        task_id, _ = await setup_task_in_progress(client, alice_keypair, bob_keypair)
        await start_checkout(client, alice_keypair, ALICE_AGENT_ID, task_id)

        response = await complete_task(client, alice_keypair, ALICE_AGENT_ID, task_id)
        assert response.status_code == 402
        assert response.json()["error"] == "PAYMENT_PROCESSING"

        task = (await client.get(f"/tasks/{task_id}")).json()
        assert task["status"] == "in_progress"

    async def test_completion_after_failed_payment(self, client, alice_keypair, bob_keypair):
        """LIFE-04: A failed payment still blocks completion."""
        task_id, _ = await setup_task_in_progress(client, alice_keypair, bob_keypair)
        await start_checkout(client, alice_keypair, ALICE_AGENT_ID, task_id)
        await send_webhook(client, task_id, "pi_test_1", action="payment_failed")

        response = await complete_task(client, alice_keypair, ALICE_AGENT_ID, task_id)
        assert response.status_code == 402
        assert response.json()["error"] == "PAYMENT_REQUIRED"

    async def test_completing_twice(self, client, alice_keypair, bob_keypair):
        """LIFE-05: A completed task cannot be completed again."""
        task_id = await setup_completed_task(client, alice_keypair, bob_keypair)
        response = await complete_task(client, alice_keypair, ALICE_AGENT_ID, task_id)
        assert response.status_code == 409
        assert response.json()["error"] == "TASK_ALREADY_COMPLETED"

        create_payout = get_app_state().payout_gateway_client.create_payout
        assert create_payout.await_count == 1

    async def test_helper_cannot_complete(self, client, alice_keypair, bob_keypair):
        """LIFE-06: Completion is the poster's decision."""
        task_id = await setup_paid_task(client, alice_keypair, bob_keypair)
        response = await complete_task(client, bob_keypair, BOB_AGENT_ID, task_id)
        assert response.status_code == 403

    async def test_open_task_cannot_complete(self, client, alice_keypair):
        """LIFE-07: An open task has no path to completed."""
        task_id = (await create_task(client, alice_keypair, ALICE_AGENT_ID)).json()["task_id"]
        response = await complete_task(client, alice_keypair, ALICE_AGENT_ID, task_id)
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATUS"

    async def test_completion_survives_notification_outage(
        self, client, alice_keypair, bob_keypair, mock_notifications_down
    ):
        """LIFE-08: Notification failures never undo the completion."""
        task_id = await setup_paid_task(client, alice_keypair, bob_keypair)
        response = await complete_task(client, alice_keypair, ALICE_AGENT_ID, task_id)
        assert response.status_code == 200
        assert response.json()["task"]["status"] == "completed"


@pytest.mark.unit
class TestPayout:
    """Category 21: Helper payout. OUT-01 to OUT-07"""

    async def test_helper_without_payout_method(self, client, alice_keypair, bob_keypair):
        """OUT-01: Without a payout method the payout is held for manual resolution."""
        task_id = await setup_paid_task(client, alice_keypair, bob_keypair)
        await register_helper(client, bob_keypair, BOB_AGENT_ID, iban=None)

        response = await complete_task(client, alice_keypair, ALICE_AGENT_ID, task_id)
        assert response.status_code == 200
        data = response.json()
        assert data["task"]["status"] == "completed"
        assert data["task"]["payout_status"] == "pending"
        assert data["payout"]["outcome"] == "skipped"
        assert data["payout"]["error"] == "HELPER_NO_PAYOUT_METHOD"
        get_app_state().payout_gateway_client.create_payout.assert_not_awaited()

    async def test_paypal_destination(self, client, alice_keypair, bob_keypair):
        """OUT-02: PayPal is used when no IBAN is on file."""
        task_id = await setup_paid_task(client, alice_keypair, bob_keypair)
        await register_helper(
            client, bob_keypair, BOB_AGENT_ID, iban=None, paypal_email="bob@example.com"
        )

        await complete_task(client, alice_keypair, ALICE_AGENT_ID, task_id)
        payout_call = get_app_state().payout_gateway_client.create_payout.await_args.kwargs
        assert payout_call["destination"] == {"method": "paypal_email", "value": "bob@example.com"}

    async def test_gateway_outage_then_retry(
        self,
        client,
        alice_keypair,
        bob_keypair,
        platform_keypair,
        mock_payout_gateway_unavailable,
    ):
        """OUT-03: A failed payout keeps the task completed and can be retried."""
        task_id = await setup_paid_task(client, alice_keypair, bob_keypair)

        response = await complete_task(client, alice_keypair, ALICE_AGENT_ID, task_id)
        assert response.status_code == 200
        data = response.json()
        assert data["task"]["status"] == "completed"
        assert data["task"]["payout_status"] == "failed"
        assert data["payout"]["outcome"] == "failed"
        assert data["payout"]["error"] == "PAYOUT_GATEWAY_UNAVAILABLE"

        gateway = get_app_state().payout_gateway_client
        gateway.create_payout = AsyncMock(  # type: ignore[method-assign]
            return_value={"payout_id": "po_retry", "status": "completed"}
        )
        retry = await _retry_payout(client, platform_keypair, PLATFORM_AGENT_ID, task_id)
        assert retry.status_code == 200
        assert retry.json()["payout"]["outcome"] == "initiated"
        assert retry.json()["payout"]["payout_status"] == "completed"
        assert gateway.create_payout.await_args.kwargs["idempotency_key"] == f"payout-{task_id}"

    async def test_retry_after_success_is_a_no_op(
        self, client, alice_keypair, bob_keypair, platform_keypair
    ):
        """OUT-04: Retrying a disbursed payout never pays twice."""
        task_id = await setup_completed_task(client, alice_keypair, bob_keypair)
        retry = await _retry_payout(client, platform_keypair, PLATFORM_AGENT_ID, task_id)
        assert retry.status_code == 200
        assert retry.json()["payout"]["outcome"] == "already_disbursed"
        assert get_app_state().payout_gateway_client.create_payout.await_count == 1

    async def test_retry_requires_platform(self, client, alice_keypair, bob_keypair):
        """OUT-05: Only the platform agent retries payouts."""
        task_id = await setup_completed_task(client, alice_keypair, bob_keypair)
        retry = await _retry_payout(client, alice_keypair, ALICE_AGENT_ID, task_id)
        assert retry.status_code == 403

    async def test_retry_on_unfinished_task(
        self, client, alice_keypair, bob_keypair, platform_keypair
    ):
        """OUT-06: Payouts only exist for completed tasks."""
        task_id = await setup_paid_task(client, alice_keypair, bob_keypair)
        retry = await _retry_payout(client, platform_keypair, PLATFORM_AGENT_ID, task_id)
        assert retry.status_code == 409
        assert retry.json()["error"] == "INVALID_STATUS"

    async def test_unreadable_gateway_reply(self, client, alice_keypair, bob_keypair):
        """OUT-07: A non-JSON payout reply is recorded as a failed payout."""
        task_id = await setup_paid_task(client, alice_keypair, bob_keypair)

        gateway = get_app_state().payout_gateway_client
        del gateway.create_payout
        await gateway.close()
        gateway._client = httpx.AsyncClient(
            base_url="http://mock-payout",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="OK")),
        )

        response = await complete_task(client, alice_keypair, ALICE_AGENT_ID, task_id)
        assert response.status_code == 200
        data = response.json()
        assert data["task"]["status"] == "completed"
        assert data["task"]["payout_status"] == "failed"
        assert data["payout"]["outcome"] == "failed"
        assert data["payout"]["error"] == "PAYOUT_GATEWAY_UNAVAILABLE"

        timeline = await client.get(
            f"/tasks/{task_id}/progress",
            headers=bearer(bob_keypair, BOB_AGENT_ID, "list_progress"),
        )
        types = [update["update_type"] for update in timeline.json()["updates"]]
        assert types == ["bid_accepted", "payout"]
