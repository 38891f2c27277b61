"""Profile endpoint tests."""

from __future__ import annotations

import pytest

from tests.unit.routers.conftest import (
    ALICE_AGENT_ID,
    BOB_AGENT_ID,
    PLATFORM_AGENT_ID,
    TEST_IBAN,
    bearer,
    register_helper,
    sign,
)


@pytest.mark.unit
class TestProfiles:
    """Category 19: Profiles. PROF-01 to PROF-07"""

    async def test_register_helper(self, client, bob_keypair):
        """PROF-01: A user registers as a helper with an IBAN."""
        response = await register_helper(
            client, bob_keypair, BOB_AGENT_ID, iban="de89 3704 0044 0532 0130 00"
        )
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == BOB_AGENT_ID
        assert data["is_helper"] is True
        assert data["iban"] == TEST_IBAN
        assert data["has_payout_method"] is True

    async def test_update_replaces_profile(self, client, bob_keypair):
        """PROF-02: Posting again replaces the stored profile."""
        await register_helper(client, bob_keypair, BOB_AGENT_ID)
        response = await register_helper(
            client, bob_keypair, BOB_AGENT_ID, iban=None, paypal_email="bob@example.com"
        )
        data = response.json()
        assert data["iban"] is None
        assert data["paypal_email"] == "bob@example.com"
        assert data["has_payout_method"] is True

    async def test_public_view_hides_private_fields(self, client, bob_keypair):
        """PROF-03: Anonymous readers only see the public profile."""
        await register_helper(client, bob_keypair, BOB_AGENT_ID)
        response = await client.get(f"/profiles/{BOB_AGENT_ID}")
        assert response.status_code == 200
        assert response.json() == {
            "user_id": BOB_AGENT_ID,
            "full_name": "Test Helper",
            "is_helper": True,
        }

    async def test_owner_and_platform_see_private_fields(
        self, client, alice_keypair, bob_keypair, platform_keypair
    ):
        """PROF-04: The owner and the platform see payout details; others do not."""
        await register_helper(client, bob_keypair, BOB_AGENT_ID)

        own = await client.get(
            f"/profiles/{BOB_AGENT_ID}",
            headers=bearer(bob_keypair, BOB_AGENT_ID, "view_profile"),
        )
        platform = await client.get(
            f"/profiles/{BOB_AGENT_ID}",
            headers=bearer(platform_keypair, PLATFORM_AGENT_ID, "view_profile"),
        )
        other = await client.get(
            f"/profiles/{BOB_AGENT_ID}",
            headers=bearer(alice_keypair, ALICE_AGENT_ID, "view_profile"),
        )
        assert own.json()["iban"] == TEST_IBAN
        assert platform.json()["iban"] == TEST_IBAN
        assert "iban" not in other.json()

    async def test_unknown_profile(self, client):
        """PROF-05: Missing profiles are PROFILE_NOT_FOUND."""
        response = await client.get("/profiles/a-nobody")
        assert response.status_code == 404
        assert response.json()["error"] == "PROFILE_NOT_FOUND"

    @pytest.mark.parametrize(
        "fields",
        [
            {"is_helper": "yes"},
            {"iban": "not-an-iban"},
            {"email": "no-at-sign"},
            {"paypal_email": "paypal"},
        ],
    )
    async def test_invalid_profile_fields(self, client, bob_keypair, fields):
        """PROF-06: Malformed profile fields are INVALID_PAYLOAD."""
        token = sign(bob_keypair, BOB_AGENT_ID, "update_profile", **fields)
        response = await client.post("/profiles", json={"token": token})
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PAYLOAD"

    async def test_profile_wrong_action(self, client, bob_keypair):
        """PROF-07: Profile updates need an update_profile token."""
        token = sign(bob_keypair, BOB_AGENT_ID, "create_task", is_helper=True)
        response = await client.post("/profiles", json={"token": token})
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PAYLOAD"
