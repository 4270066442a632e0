"""
Tests for the card lifecycle (admin surface) and card holder self-service.

These tests verify:
  - Issuance creates a NEW card with a 0.00 balance and a masked number
  - The full number is encrypted at rest and never appears in responses
  - Block / activate transitions, including the "already" rejections
  - Request-block by the owner, and that BLOCK_REQUESTED can be acted on
  - Delete is allowed only for NEW and EXPIRED cards
  - Expired cards are reported as EXPIRED and reject every mutation
  - Paging and status filtering on both card listings
"""

import uuid
from datetime import date, timedelta

from sqlalchemy import select

from bankcards.models.card import Card
from bankcards.security import get_card_codec

MASK_PREFIX = "**** **** **** "
LONG_AGO = date(2000, 1, 1)


class TestCardIssuance:
    """Tests for POST /api/admin/cards."""

    async def test_issue_card_success(self, client, user_headers, admin_headers):
        """A new card starts NEW, with 0.00 balance, version 1 and a masked number."""
        owner = await client.get("/api/admin/users/by-username/alice", headers=admin_headers)

        response = await client.post(
            "/api/admin/cards",
            json={"owner_id": owner.json()["id"]},
            headers=admin_headers,
        )
        assert response.status_code == 201
        data = response.json()

        assert data["status"] == "NEW"
        assert data["balance"] == "0.00"
        assert data["version"] == 1
        assert data["owner_username"] == "alice"
        assert data["masked_number"].startswith(MASK_PREFIX)
        assert len(data["masked_number"]) == len(MASK_PREFIX) + 4
        assert data["masked_number"][-4:].isdigit()
        assert date.fromisoformat(data["expiry_date"]) > date.today()

    async def test_issue_card_with_explicit_expiry(self, client, user_headers, card_factory):
        expiry = date.today() + timedelta(days=400)
        card = await card_factory("alice", expiry_date=expiry)
        assert card["expiry_date"] == expiry.isoformat()

    async def test_issue_card_past_expiry_rejected(self, client, user_headers, admin_headers):
        owner = await client.get("/api/admin/users/by-username/alice", headers=admin_headers)
        response = await client.post(
            "/api/admin/cards",
            json={"owner_id": owner.json()["id"], "expiry_date": date.today().isoformat()},
            headers=admin_headers,
        )
        assert response.status_code == 422

    async def test_issue_card_unknown_owner(self, client, admin_headers):
        response = await client.post(
            "/api/admin/cards",
            json={"owner_id": str(uuid.uuid4())},
            headers=admin_headers,
        )
        assert response.status_code == 404
        assert response.json()["error_type"] == "owner_not_found"

    async def test_number_is_encrypted_at_rest(self, client, user_headers, card_factory, session_factory):
        """The stored value is ciphertext that decrypts to a 16-digit number."""
        card = await card_factory("alice")

        async with session_factory() as session:
            stored = (await session.execute(
                select(Card).where(Card.id == uuid.UUID(card["id"]))
            )).scalar_one()
            encrypted = stored.encrypted_number

        plaintext = get_card_codec().decrypt(encrypted)
        assert len(plaintext) == 16 and plaintext.isdigit()
        assert plaintext not in encrypted
        assert card["masked_number"] == MASK_PREFIX + plaintext[-4:]

    async def test_responses_have_no_sensitive_fields(self, client, user_headers, card_factory):
        card = await card_factory("alice")
        for field in ("encrypted_number", "number_fingerprint", "number", "card_number"):
            assert field not in card


class TestBlockAndActivate:
    """Tests for PATCH /api/admin/cards/{id}/block and /activate."""

    async def test_activate_then_activate_again(self, client, user_headers, admin_headers, card_factory):
        """Second activation is rejected and the card stays ACTIVE."""
        card = await card_factory("alice")

        first = await client.patch(f"/api/admin/cards/{card['id']}/activate", headers=admin_headers)
        assert first.status_code == 200
        assert first.json()["status"] == "ACTIVE"
        assert first.json()["version"] == 2

        second = await client.patch(f"/api/admin/cards/{card['id']}/activate", headers=admin_headers)
        assert second.status_code == 400
        assert second.json()["error_type"] == "invalid_operation"
        assert "already ACTIVE" in second.json()["detail"]

        current = await client.get(f"/api/admin/cards/{card['id']}", headers=admin_headers)
        assert current.json()["status"] == "ACTIVE"
        assert current.json()["version"] == 2

    async def test_block_then_block_again(self, client, user_headers, admin_headers, card_factory):
        card = await card_factory("alice", activate=True)

        first = await client.patch(f"/api/admin/cards/{card['id']}/block", headers=admin_headers)
        assert first.status_code == 200
        assert first.json()["status"] == "BLOCKED"

        second = await client.patch(f"/api/admin/cards/{card['id']}/block", headers=admin_headers)
        assert second.status_code == 400

    async def test_blocked_card_can_be_reactivated(self, client, user_headers, admin_headers, card_factory):
        card = await card_factory("alice", activate=True)
        await client.patch(f"/api/admin/cards/{card['id']}/block", headers=admin_headers)

        response = await client.patch(f"/api/admin/cards/{card['id']}/activate", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "ACTIVE"

    async def test_unknown_card(self, client, admin_headers):
        response = await client.patch(f"/api/admin/cards/{uuid.uuid4()}/block", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["error_type"] == "card_not_found"


class TestRequestBlock:
    """Tests for POST /api/cards/{id}/block-request."""

    async def test_owner_requests_block(self, client, user_headers, admin_headers, card_factory):
        card = await card_factory("alice", activate=True)

        response = await client.post(f"/api/cards/{card['id']}/block-request", headers=user_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "BLOCK_REQUESTED"

        # The admin then acts on the request
        blocked = await client.patch(f"/api/admin/cards/{card['id']}/block", headers=admin_headers)
        assert blocked.status_code == 200
        assert blocked.json()["status"] == "BLOCKED"

    async def test_repeated_request_is_idempotent(self, client, user_headers, card_factory):
        card = await card_factory("alice", activate=True)

        first = await client.post(f"/api/cards/{card['id']}/block-request", headers=user_headers)
        second = await client.post(f"/api/cards/{card['id']}/block-request", headers=user_headers)
        assert second.status_code == 200
        assert second.json()["status"] == "BLOCK_REQUESTED"
        assert second.json()["version"] == first.json()["version"]

    async def test_request_on_blocked_card_rejected(self, client, user_headers, admin_headers, card_factory):
        card = await card_factory("alice", activate=True)
        await client.patch(f"/api/admin/cards/{card['id']}/block", headers=admin_headers)

        response = await client.post(f"/api/cards/{card['id']}/block-request", headers=user_headers)
        assert response.status_code == 400

    async def test_pending_request_can_be_reactivated(self, client, user_headers, admin_headers, card_factory):
        card = await card_factory("alice", activate=True)
        await client.post(f"/api/cards/{card['id']}/block-request", headers=user_headers)

        response = await client.patch(f"/api/admin/cards/{card['id']}/activate", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "ACTIVE"


class TestDeleteCard:
    """Tests for DELETE /api/admin/cards/{id}."""

    async def test_delete_new_card(self, client, user_headers, admin_headers, card_factory):
        card = await card_factory("alice")

        response = await client.delete(f"/api/admin/cards/{card['id']}", headers=admin_headers)
        assert response.status_code == 204

        gone = await client.get(f"/api/admin/cards/{card['id']}", headers=admin_headers)
        assert gone.status_code == 404

    async def test_delete_active_card_rejected(self, client, user_headers, admin_headers, card_factory):
        card = await card_factory("alice", activate=True)

        response = await client.delete(f"/api/admin/cards/{card['id']}", headers=admin_headers)
        assert response.status_code == 400
        assert "EXPIRED or NEW" in response.json()["detail"]

        still_there = await client.get(f"/api/admin/cards/{card['id']}", headers=admin_headers)
        assert still_there.json()["status"] == "ACTIVE"

    async def test_delete_expired_card(
        self, client, user_headers, admin_headers, card_factory, set_card_columns
    ):
        """An ACTIVE card past its expiry date is EXPIRED, so it can be deleted."""
        card = await card_factory("alice", activate=True)
        await set_card_columns(card["id"], expiry_date=LONG_AGO)

        response = await client.delete(f"/api/admin/cards/{card['id']}", headers=admin_headers)
        assert response.status_code == 204


class TestExpiry:
    """Expired cards are reported as EXPIRED and nothing can change them."""

    async def test_expired_card_is_reported_expired(
        self, client, user_headers, admin_headers, card_factory, set_card_columns
    ):
        card = await card_factory("alice", activate=True)
        await set_card_columns(card["id"], expiry_date=LONG_AGO)

        response = await client.get(f"/api/admin/cards/{card['id']}", headers=admin_headers)
        assert response.json()["status"] == "EXPIRED"
        assert response.json()["version"] == card["version"] + 1

    async def test_expired_card_rejects_every_mutation(
        self, client, user_headers, admin_headers, card_factory, set_card_columns
    ):
        card = await card_factory("alice", activate=True)
        other = await card_factory("alice", activate=True, balance="10.00")
        await set_card_columns(card["id"], expiry_date=LONG_AGO)

        block = await client.patch(f"/api/admin/cards/{card['id']}/block", headers=admin_headers)
        activate = await client.patch(f"/api/admin/cards/{card['id']}/activate", headers=admin_headers)
        request = await client.post(f"/api/cards/{card['id']}/block-request", headers=user_headers)
        transfer_in = await client.post(
            "/api/cards/transfer",
            json={"from_card_id": other["id"], "to_card_id": card["id"], "amount": "1.00"},
            headers=user_headers,
        )

        for response in (block, activate, request, transfer_in):
            assert response.status_code == 400
            assert response.json()["error_type"] == "invalid_operation"

        current = await client.get(f"/api/admin/cards/{card['id']}", headers=admin_headers)
        assert current.json()["status"] == "EXPIRED"

    async def test_listing_sweeps_expired_cards(
        self, client, user_headers, card_factory, set_card_columns
    ):
        card = await card_factory("alice", activate=True)
        await set_card_columns(card["id"], expiry_date=LONG_AGO)

        response = await client.get("/api/cards/user", headers=user_headers)
        assert [c["status"] for c in response.json()["items"]] == ["EXPIRED"]


class TestListings:
    """Tests for GET /api/cards/user and GET /api/admin/cards."""

    async def test_user_sees_only_own_cards(
        self, client, user_headers, second_user_headers, card_factory
    ):
        mine = [await card_factory("alice") for _ in range(2)]
        await card_factory("bob")

        response = await client.get("/api/cards/user", headers=user_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert {c["id"] for c in data["items"]} == {c["id"] for c in mine}

    async def test_paging(self, client, user_headers, card_factory):
        created = [await card_factory("alice") for _ in range(3)]

        first = await client.get("/api/cards/user?page=0&size=2", headers=user_headers)
        second = await client.get("/api/cards/user?page=1&size=2", headers=user_headers)

        assert first.json()["total"] == 3
        assert first.json()["pages"] == 2
        ids = [c["id"] for c in first.json()["items"] + second.json()["items"]]
        assert ids == [c["id"] for c in created]

    async def test_page_size_is_bounded(self, client, user_headers):
        response = await client.get("/api/cards/user?size=1000", headers=user_headers)
        assert response.status_code == 422

    async def test_admin_status_filter(self, client, user_headers, admin_headers, card_factory):
        await card_factory("alice")
        active = await card_factory("alice", activate=True)

        response = await client.get("/api/admin/cards?status=ACTIVE", headers=admin_headers)
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == active["id"]

    async def test_balance_is_masked(self, client, user_headers, card_factory):
        card = await card_factory("alice", activate=True, balance="12.34")

        response = await client.get(f"/api/cards/{card['id']}/balance", headers=user_headers)
        assert response.status_code == 200
        assert response.json() == {
            "id": card["id"],
            "masked_number": card["masked_number"],
            "balance": "12.34",
        }
