"""
Organization-scoped records: carrier partnerships, aggregate counters and
external integrations.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from freightcore.data.models.base import Base, TimestampMixin
from freightcore.data.models.enums import PartnershipStatus


class CarrierPartnership(TimestampMixin, Base):
    """A broker's working relationship with an outside carrier."""

    __tablename__ = "carrier_partnerships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), index=True)
    carrier_name: Mapped[str] = mapped_column(String(255))
    mc_number: Mapped[Optional[str]] = mapped_column(String(32))
    status: Mapped[PartnershipStatus] = mapped_column(
        Enum(PartnershipStatus, native_enum=False, length=16), default=PartnershipStatus.ACTIVE
    )


class OrganizationStats(Base):
    """
    Incrementally maintained load and invoice counters for one organization.

    The counters are not authoritative. ``StatsEngine.recalculate_org_stats``
    recomputes them from source rows and reports drift.
    """

    __tablename__ = "organization_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), unique=True)
    # JSON columns are reassigned, never mutated in place
    load_counts: Mapped[dict[str, int]] = mapped_column(JSON, default=dict)
    invoice_counts: Mapped[dict[str, int]] = mapped_column(JSON, default=dict)
    last_recalculated: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class OrgIntegration(TimestampMixin, Base):
    """Connection to an external shipment provider for one organization."""

    __tablename__ = "org_integrations"
    __table_args__ = (UniqueConstraint("org_id", "provider", name="uq_integration_org_provider"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64))
    provider: Mapped[str] = mapped_column(String(32), default="fourkites")
    credentials: Mapped[Optional[Any]] = mapped_column(JSON)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    interval_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    lookback_hours: Mapped[Optional[int]] = mapped_column(Integer)

    sync_cursor: Mapped[Optional[str]] = mapped_column(String(255))
    last_sync_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_sync_stats: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
