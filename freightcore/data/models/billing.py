"""
Billing data models - customer invoices, their line items, and payable lines
owed to drivers and carriers.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from freightcore.data.models.base import Base, Money, Quantity, TimestampMixin
from freightcore.data.models.enums import (
    InvoiceStatus,
    LineItemType,
    PayableSource,
    ProfileType,
)


class Invoice(TimestampMixin, Base):
    """
    Customer-facing bill for a load.

    Stored amounts are only authoritative once the invoice is finalized
    (BILLED, PENDING_PAYMENT or PAID). Before that they are recomputed on read.
    """

    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), index=True)
    load_id: Mapped[int] = mapped_column(
        ForeignKey("loads.id", ondelete="CASCADE"), unique=True
    )
    customer_id: Mapped[Optional[str]] = mapped_column(String(64))
    contract_lane_id: Mapped[Optional[int]] = mapped_column(ForeignKey("contract_lanes.id"))

    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, native_enum=False, length=32), default=InvoiceStatus.DRAFT
    )
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # Snapshot amounts
    subtotal: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    fuel_surcharge: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    accessorials_total: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))

    missing_data_reason: Mapped[Optional[str]] = mapped_column(Text)
    void_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(128))


class InvoiceLineItem(TimestampMixin, Base):
    """Stored invoice detail line (written at promotion and at finalization)."""

    __tablename__ = "invoice_line_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[int] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), index=True
    )
    type: Mapped[LineItemType] = mapped_column(Enum(LineItemType, native_enum=False, length=16))
    description: Mapped[str] = mapped_column(String(255))
    quantity: Mapped[Decimal] = mapped_column(Quantity)
    rate: Mapped[Decimal] = mapped_column(Quantity)
    amount: Mapped[Decimal] = mapped_column(Money)


class LoadPayable(TimestampMixin, Base):
    """
    One compensation line owed to a driver or carrier for a leg.

    SYSTEM lines that are not locked belong to the pay recalculator and are
    replaced wholesale. MANUAL or locked lines are never touched by it.
    """

    __tablename__ = "load_payables"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64))
    load_id: Mapped[int] = mapped_column(ForeignKey("loads.id", ondelete="CASCADE"), index=True)
    leg_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("dispatch_legs.id", ondelete="CASCADE"), index=True
    )

    subject_type: Mapped[ProfileType] = mapped_column(
        Enum(ProfileType, native_enum=False, length=16), default=ProfileType.DRIVER
    )
    driver_id: Mapped[Optional[str]] = mapped_column(String(64))
    carrier_partnership_id: Mapped[Optional[int]] = mapped_column(Integer)

    description: Mapped[str] = mapped_column(String(255))
    quantity: Mapped[Decimal] = mapped_column(Quantity, default=Decimal("0"))
    rate: Mapped[Decimal] = mapped_column(Quantity, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))

    source_type: Mapped[PayableSource] = mapped_column(
        Enum(PayableSource, native_enum=False, length=16), default=PayableSource.SYSTEM
    )
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    rule_id: Mapped[Optional[int]] = mapped_column(Integer)
    warning_message: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(128))

    @property
    def is_replaceable(self) -> bool:
        return self.source_type is PayableSource.SYSTEM and not self.is_locked
