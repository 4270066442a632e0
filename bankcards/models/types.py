"""
Column types shared by the ORM models.

Money:
  Balances are stored as integer minor units (cents) so that every backend,
  including SQLite which has no exact decimal type, does exact arithmetic.
  The domain never sees cents: values go in and come out as Decimal with a
  fixed scale of 2 (e.g. Decimal("70.00")).

  A value with more than two decimal places is rejected at bind time, never
  rounded.
"""

from decimal import Decimal

from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator

MONEY_QUANTUM = Decimal("0.01")


def to_money(value: Decimal | int | str) -> Decimal:
    """Normalize a value to a 2-place Decimal, refusing sub-cent precision."""
    amount = Decimal(value)
    quantized = amount.quantize(MONEY_QUANTUM)
    if quantized != amount:
        raise ValueError(f"{value} has more than two decimal places")
    return quantized


class Money(TypeDecorator):
    """Decimal(scale=2) in Python, BIGINT cents in the database."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return int(to_money(value) * 100)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return (Decimal(value) / 100).quantize(MONEY_QUANTUM)
