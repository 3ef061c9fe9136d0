"""
Contract lane data model - negotiated customer pricing for an HCR/trip route.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from freightcore.data.models.base import Base, Money, Quantity, TimestampMixin
from freightcore.data.models.enums import WILDCARD_TRIP, FuelSurchargeType, RateType


class ContractLane(TimestampMixin, Base):
    """
    A negotiated price for an (org, HCR, trip) route.

    A ``trip_number`` of ``*`` matches any trip on the HCR.
    """

    __tablename__ = "contract_lanes"
    __table_args__ = (Index("ix_lanes_org_hcr_trip", "org_id", "hcr", "trip_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64))
    customer_id: Mapped[Optional[str]] = mapped_column(String(64))
    customer_name: Mapped[Optional[str]] = mapped_column(String(255))

    # Contract information
    contract_name: Mapped[str] = mapped_column(String(255))
    contract_period_start: Mapped[Optional[date]] = mapped_column(Date)
    contract_period_end: Mapped[Optional[date]] = mapped_column(Date)
    hcr: Mapped[str] = mapped_column(String(64))
    trip_number: Mapped[str] = mapped_column(String(64))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Lane details
    miles: Mapped[Optional[Decimal]] = mapped_column(Quantity)

    # Rate information
    rate: Mapped[Decimal] = mapped_column(Money)
    rate_type: Mapped[RateType] = mapped_column(Enum(RateType, native_enum=False, length=16))
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # Fuel surcharge
    fuel_surcharge_type: Mapped[Optional[FuelSurchargeType]] = mapped_column(
        Enum(FuelSurchargeType, native_enum=False, length=16)
    )
    fuel_surcharge_value: Mapped[Optional[Decimal]] = mapped_column(Money)

    # Stop-off charges
    stop_off_rate: Mapped[Optional[Decimal]] = mapped_column(Money)
    included_stops: Mapped[Optional[int]] = mapped_column(Integer)

    # Import match telemetry
    last_import_match_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    import_match_count: Mapped[int] = mapped_column(Integer, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(128))

    @property
    def is_wildcard(self) -> bool:
        """True if this lane matches any trip on its HCR."""
        return self.trip_number == WILDCARD_TRIP
