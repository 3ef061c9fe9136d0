"""Declarative base and shared column helpers."""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import DateTime, Numeric
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

CENTS = Decimal("0.01")

Money = Numeric(12, 2)
Quantity = Numeric(12, 4)


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so everything is stored naive)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_money(value: Decimal | int | float | None) -> Decimal:
    """Round a monetary value half-up to cents."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class Base(DeclarativeBase):
    """Base class for all entities."""


class TimestampMixin:
    """created_at / updated_at audit columns."""

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )
