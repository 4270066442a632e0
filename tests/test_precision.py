"""
Tests for exact decimal money — no floating point anywhere.

Balances are Decimal with two places in Python and integer cents in the
database. These tests verify:
  - Values survive the database round trip exactly
  - Sub-cent precision is refused rather than rounded
  - Repeated small transfers don't accumulate rounding errors
  - Money serializes as a string in JSON, never a float
"""

from decimal import Decimal

import pytest

from bankcards.models.types import Money, to_money


class TestMoneyType:
    @pytest.mark.parametrize(
        "value, expected",
        [("0", Decimal("0.00")), ("0.1", Decimal("0.10")), ("12.34", Decimal("12.34")), (7, Decimal("7.00"))],
    )
    def test_to_money_normalizes(self, value, expected):
        result = to_money(value)
        assert result == expected
        assert result.as_tuple().exponent == -2

    @pytest.mark.parametrize("value", ["0.001", "12.345", "1E-3"])
    def test_to_money_refuses_sub_cent(self, value):
        with pytest.raises(ValueError):
            to_money(value)

    def test_bind_and_result_use_integer_cents(self):
        money = Money()
        assert money.process_bind_param(Decimal("70.00"), None) == 7000
        assert money.process_bind_param(Decimal("0.01"), None) == 1
        assert money.process_result_value(7000, None) == Decimal("70.00")
        assert money.process_bind_param(None, None) is None

    def test_large_values_are_exact(self):
        money = Money()
        big = Decimal("99999999999.99")
        assert money.process_result_value(money.process_bind_param(big, None), None) == big


class TestApiPrecision:
    async def test_balance_is_a_string(self, client, user_headers, card_factory):
        card = await card_factory("alice", activate=True, balance="0.10")

        response = await client.get(f"/api/cards/{card['id']}/balance", headers=user_headers)
        assert response.json()["balance"] == "0.10"
        assert isinstance(response.json()["balance"], str)

    async def test_repeated_small_transfers(self, client, user_headers, card_factory):
        """Three transfers of 0.10 move exactly 0.30, where floats would drift."""
        source = await card_factory("alice", activate=True, balance="0.30")
        dest = await card_factory("alice", activate=True, balance="0.00")

        for _ in range(3):
            response = await client.post(
                "/api/cards/transfer",
                json={"from_card_id": source["id"], "to_card_id": dest["id"], "amount": "0.10"},
                headers=user_headers,
            )
            assert response.status_code == 200

        src = await client.get(f"/api/cards/{source['id']}/balance", headers=user_headers)
        dst = await client.get(f"/api/cards/{dest['id']}/balance", headers=user_headers)
        assert src.json()["balance"] == "0.00"
        assert dst.json()["balance"] == "0.30"

    async def test_float_json_amount_is_accepted_exactly(self, client, user_headers, card_factory):
        source = await card_factory("alice", activate=True, balance="1.00")
        dest = await card_factory("alice", activate=True)

        response = await client.post(
            "/api/cards/transfer",
            json={"from_card_id": source["id"], "to_card_id": dest["id"], "amount": 0.1},
            headers=user_headers,
        )
        assert response.status_code == 200
        dst = await client.get(f"/api/cards/{dest['id']}/balance", headers=user_headers)
        assert dst.json()["balance"] == "0.10"
