"""
Load data model - represents a freight shipment, its stops and dispatch legs.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from freightcore.data.models.base import Base, Quantity, TimestampMixin
from freightcore.data.models.enums import (
    LegStatus,
    LoadStatus,
    LoadType,
    StopType,
    TrackingStatus,
)


class Load(TimestampMixin, Base):
    """
    Represents a freight load/shipment.

    This is the core data model for load operations. Billing classification
    (``load_type``) only moves forward: UNMAPPED -> CONTRACT or SPOT.
    """

    __tablename__ = "loads"
    __table_args__ = (
        Index("ix_loads_org_hcr_trip", "org_id", "parsed_hcr", "parsed_trip_number"),
        Index("ix_loads_external", "external_source", "external_load_id"),
    )

    # Identification
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), index=True)
    internal_id: Mapped[Optional[str]] = mapped_column(String(64))
    order_number: Mapped[Optional[str]] = mapped_column(String(64))
    customer_id: Mapped[Optional[str]] = mapped_column(String(64))
    customer_name: Mapped[Optional[str]] = mapped_column(String(255))

    # External integration
    external_source: Mapped[Optional[str]] = mapped_column(String(32))
    external_load_id: Mapped[Optional[str]] = mapped_column(String(128))
    last_external_updated_at: Mapped[Optional[str]] = mapped_column(String(64))

    # Status
    status: Mapped[LoadStatus] = mapped_column(
        Enum(LoadStatus, native_enum=False, length=32), default=LoadStatus.OPEN
    )
    tracking_status: Mapped[TrackingStatus] = mapped_column(
        Enum(TrackingStatus, native_enum=False, length=32), default=TrackingStatus.PENDING
    )
    is_tracking: Mapped[bool] = mapped_column(Boolean, default=False)

    # Classification
    load_type: Mapped[LoadType] = mapped_column(
        Enum(LoadType, native_enum=False, length=16), default=LoadType.UNMAPPED
    )
    requires_manual_review: Mapped[bool] = mapped_column(Boolean, default=False)
    parsed_hcr: Mapped[Optional[str]] = mapped_column(String(64))
    parsed_trip_number: Mapped[Optional[str]] = mapped_column(String(64))

    # Load details
    commodity_description: Mapped[Optional[str]] = mapped_column(Text)
    weight: Mapped[Optional[Decimal]] = mapped_column(Quantity)
    stop_count: Mapped[int] = mapped_column(Integer, default=0)

    # Distance
    contract_miles: Mapped[Optional[Decimal]] = mapped_column(Quantity)
    imported_miles: Mapped[Optional[Decimal]] = mapped_column(Quantity)
    effective_miles: Mapped[Optional[Decimal]] = mapped_column(Quantity)

    # Special requirements
    is_hazmat: Mapped[bool] = mapped_column(Boolean, default=False)
    requires_tarp: Mapped[bool] = mapped_column(Boolean, default=False)

    # Cached primary subjects (mirror leg 1)
    primary_driver_id: Mapped[Optional[str]] = mapped_column(String(64))
    primary_carrier_partnership_id: Mapped[Optional[int]] = mapped_column(Integer)

    created_by: Mapped[Optional[str]] = mapped_column(String(128))

    def __repr__(self) -> str:
        return f"Load(id={self.id}, type={self.load_type.value}, hcr={self.parsed_hcr}, trip={self.parsed_trip_number})"


class LoadStop(TimestampMixin, Base):
    """A pickup or delivery stop on a load."""

    __tablename__ = "load_stops"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64))
    load_id: Mapped[int] = mapped_column(ForeignKey("loads.id", ondelete="CASCADE"), index=True)
    external_stop_id: Mapped[Optional[str]] = mapped_column(String(128))
    sequence_number: Mapped[int] = mapped_column(Integer)
    stop_type: Mapped[StopType] = mapped_column(
        Enum(StopType, native_enum=False, length=16), default=StopType.PICKUP
    )

    # Location
    city: Mapped[Optional[str]] = mapped_column(String(128))
    state: Mapped[Optional[str]] = mapped_column(String(32))
    postal_code: Mapped[Optional[str]] = mapped_column(String(16))
    latitude: Mapped[Optional[float]] = mapped_column()
    longitude: Mapped[Optional[float]] = mapped_column()
    time_zone: Mapped[Optional[str]] = mapped_column(String(64))

    # Scheduled window
    window_begin: Mapped[Optional[datetime]] = mapped_column(DateTime)
    window_end: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Actuals
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    checked_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    dwell_minutes: Mapped[Optional[int]] = mapped_column(Integer)


class DispatchLeg(TimestampMixin, Base):
    """One driver/carrier-assigned segment of a load."""

    __tablename__ = "dispatch_legs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64))
    load_id: Mapped[int] = mapped_column(ForeignKey("loads.id", ondelete="CASCADE"), index=True)
    sequence: Mapped[int] = mapped_column(Integer, default=1)

    driver_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    carrier_partnership_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("carrier_partnerships.id"), index=True
    )

    start_stop_id: Mapped[Optional[int]] = mapped_column(ForeignKey("load_stops.id"))
    end_stop_id: Mapped[Optional[int]] = mapped_column(ForeignKey("load_stops.id"))

    leg_loaded_miles: Mapped[Decimal] = mapped_column(Quantity, default=Decimal("0"))
    # No ingestion path yet; operators set it through update_leg_miles
    leg_empty_miles: Mapped[Decimal] = mapped_column(Quantity, default=Decimal("0"))

    status: Mapped[LegStatus] = mapped_column(
        Enum(LegStatus, native_enum=False, length=16), default=LegStatus.PENDING
    )
