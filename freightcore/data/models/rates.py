"""
Rate profile data model - pay policies, their rules, and who they apply to.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from freightcore.data.models.base import Base, Money, Quantity, TimestampMixin
from freightcore.data.models.enums import ProfileType, RuleCategory, TriggerEvent


class RateProfile(TimestampMixin, Base):
    """A named pricing policy for drivers or carriers."""

    __tablename__ = "rate_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    profile_type: Mapped[ProfileType] = mapped_column(
        Enum(ProfileType, native_enum=False, length=16)
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(128))


class RateRule(TimestampMixin, Base):
    """
    One "if trigger then pay" clause inside a profile.

    ``min_threshold`` gates on quantity, ``max_cap`` clips the amount.
    """

    __tablename__ = "rate_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[int] = mapped_column(
        ForeignKey("rate_profiles.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    category: Mapped[RuleCategory] = mapped_column(
        Enum(RuleCategory, native_enum=False, length=32)
    )
    trigger_event: Mapped[TriggerEvent] = mapped_column(
        Enum(TriggerEvent, native_enum=False, length=32)
    )
    rate_amount: Mapped[Decimal] = mapped_column(Money)
    min_threshold: Mapped[Optional[Decimal]] = mapped_column(Quantity)
    max_cap: Mapped[Optional[Decimal]] = mapped_column(Money)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class ProfileAssignment(TimestampMixin, Base):
    """
    Links a driver or carrier partnership to a rate profile.

    At most one assignment per subject holds ``is_default``; only the
    setters in ``freightcore.engines.assignments`` change that flag.
    """

    __tablename__ = "profile_assignments"
    __table_args__ = (
        UniqueConstraint("subject_type", "subject_id", "profile_id", name="uq_assignment_subject_profile"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64))
    subject_type: Mapped[ProfileType] = mapped_column(
        Enum(ProfileType, native_enum=False, length=16)
    )
    # Driver id, or the carrier partnership id rendered as a string
    subject_id: Mapped[str] = mapped_column(String(64), index=True)
    profile_id: Mapped[int] = mapped_column(ForeignKey("rate_profiles.id", ondelete="CASCADE"))
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    assigned_by: Mapped[Optional[str]] = mapped_column(String(128))
