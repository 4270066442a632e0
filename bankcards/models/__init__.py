"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table before create_all runs
  2. String relationship targets ("User") resolve regardless of import order
"""

from bankcards.models.user import Role, User, UserRole  # noqa: F401
from bankcards.models.card import Card, CardStatus, new_card  # noqa: F401
