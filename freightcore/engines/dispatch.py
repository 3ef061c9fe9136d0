"""
Dispatch Engine - direct operator mutations on loads and legs.

This engine:
- Assigns drivers and carriers to a load's open legs
- Edits stop times, load attributes and leg miles
- Keeps the load's primary driver/carrier cache consistent
- Triggers pay recalculation after every mutation that can change pay

Invariant violations (canceled load, inactive partnership) are raised to the
caller, since they need an operator to correct them.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from freightcore.core.context import RequestContext
from freightcore.core.errors import InvariantViolation, NotFoundError
from freightcore.data.models.billing import LoadPayable
from freightcore.data.models.enums import (
    LegStatus,
    LoadStatus,
    PartnershipStatus,
    PayableSource,
    ProfileType,
)
from freightcore.data.models.load import DispatchLeg, Load, LoadStop
from freightcore.data.models.organization import CarrierPartnership
from freightcore.engines.base import BaseEngine
from freightcore.engines.pay_calculation import PayCalculationEngine, PayCalculationResult
from freightcore.engines.stats import update_load_count

OPEN_LEG_STATUSES = (LegStatus.PENDING, LegStatus.ACTIVE)


class AssignmentResult(BaseModel):
    """Outcome of assigning a driver or carrier to a load."""

    load_id: int
    legs_updated: int
    pay_results: list[PayCalculationResult] = Field(default_factory=list)


def set_primary_subject(
    load: Load, driver_id: Optional[str] = None, carrier_partnership_id: Optional[int] = None
) -> None:
    """
    Point the load's primary cache at one subject.

    Driver and carrier assignment are exclusive, so setting one clears the other.
    """
    load.primary_driver_id = driver_id
    load.primary_carrier_partnership_id = carrier_partnership_id


def _clear_replaceable_lines(session: Session, leg_id: int, subject_type: Optional[ProfileType] = None) -> None:
    query = delete(LoadPayable).where(
        LoadPayable.leg_id == leg_id,
        LoadPayable.source_type == PayableSource.SYSTEM,
        LoadPayable.is_locked.is_(False),
    )
    if subject_type is not None:
        query = query.where(LoadPayable.subject_type == subject_type)
    session.execute(query)


class DispatchEngine(BaseEngine):
    """Dispatch Engine for leg assignment and pay-affecting edits."""

    def __init__(self, pay_engine: Optional[PayCalculationEngine] = None, **kwargs: Any) -> None:
        """
        Initialize the dispatch engine.

        Args:
            pay_engine: Optional pay calculation engine (built from the same settings by default)
        """
        super().__init__(engine_name="dispatch", **kwargs)
        self.pay_engine = pay_engine or PayCalculationEngine(
            db=self.db, config_manager=self.config_manager, audit_sink=self.audit_sink
        )

    def _get_load(self, session: Session, ctx: RequestContext, load_id: int) -> Load:
        load = session.get(Load, load_id)
        if load is None or load.org_id != ctx.org_id:
            raise NotFoundError("Load", load_id)
        return load

    def _legs_for_assignment(self, session: Session, load: Load) -> list[DispatchLeg]:
        """The load's legs, creating one first-to-last-stop leg if it has none."""
        legs = list(
            session.scalars(
                select(DispatchLeg).where(DispatchLeg.load_id == load.id).order_by(DispatchLeg.sequence)
            ).all()
        )
        if legs:
            return legs

        stops = sorted(
            session.scalars(select(LoadStop).where(LoadStop.load_id == load.id)).all(),
            key=lambda s: s.sequence_number,
        )
        if len(stops) < 2:
            raise InvariantViolation("Load must have at least 2 stops to assign a driver or carrier")

        leg = DispatchLeg(
            org_id=load.org_id,
            load_id=load.id,
            sequence=1,
            start_stop_id=stops[0].id,
            end_stop_id=stops[-1].id,
            leg_loaded_miles=load.effective_miles or Decimal("0"),
            leg_empty_miles=Decimal("0"),
            status=LegStatus.PENDING,
        )
        session.add(leg)
        session.flush()
        return [leg]

    def _mark_assigned(self, session: Session, load: Load) -> None:
        if load.status is LoadStatus.OPEN:
            load.status = LoadStatus.ASSIGNED
            update_load_count(session, load.org_id, LoadStatus.OPEN, LoadStatus.ASSIGNED)

    def assign_driver(self, ctx: RequestContext, load_id: int, driver_id: str) -> AssignmentResult:
        """
        Assign a driver to every open leg of a load and recalculate pay.

        Raises:
            NotFoundError: If the load is not in the caller's organization
            InvariantViolation: If the load is canceled or has fewer than 2 stops
        """
        with self.db.session() as session:
            load = self._get_load(session, ctx, load_id)
            if load.status is LoadStatus.CANCELED:
                raise InvariantViolation("Cannot assign driver to a canceled load")

            updated = 0
            for leg in self._legs_for_assignment(session, load):
                if leg.status not in OPEN_LEG_STATUSES:
                    continue
                _clear_replaceable_lines(session, leg.id)
                leg.driver_id = driver_id
                leg.carrier_partnership_id = None
                updated += 1

            set_primary_subject(load, driver_id=driver_id)
            self._mark_assigned(session, load)

        self.audit(
            ctx,
            "load",
            load_id,
            "assign_driver",
            f"Assigned driver {driver_id} to load {load.order_number or load_id} "
            f"({updated} leg{'' if updated == 1 else 's'} updated)",
        )
        pay_results = self.pay_engine.recalculate_for_load(load_id, ctx.user_id)
        return AssignmentResult(load_id=load_id, legs_updated=updated, pay_results=pay_results)

    def assign_carrier(self, ctx: RequestContext, load_id: int, carrier_partnership_id: int) -> AssignmentResult:
        """
        Assign a carrier partnership to every open leg of a load and recalculate pay.

        Raises:
            NotFoundError: If the load or partnership is not in the caller's organization
            InvariantViolation: If the partnership is inactive or the load is canceled
        """
        with self.db.session() as session:
            load = self._get_load(session, ctx, load_id)
            if load.status is LoadStatus.CANCELED:
                raise InvariantViolation("Cannot assign carrier to a canceled load")

            partnership = session.get(CarrierPartnership, carrier_partnership_id)
            if partnership is None or partnership.org_id != ctx.org_id:
                raise NotFoundError("Carrier partnership", carrier_partnership_id)
            if partnership.status is not PartnershipStatus.ACTIVE:
                raise InvariantViolation("Partnership is not active")

            updated = 0
            for leg in self._legs_for_assignment(session, load):
                if leg.status not in OPEN_LEG_STATUSES:
                    continue
                _clear_replaceable_lines(session, leg.id)
                leg.carrier_partnership_id = carrier_partnership_id
                leg.driver_id = None
                updated += 1

            set_primary_subject(load, carrier_partnership_id=carrier_partnership_id)
            self._mark_assigned(session, load)
            carrier_name = partnership.carrier_name

        self.audit(
            ctx,
            "load",
            load_id,
            "assign_carrier",
            f"Assigned carrier {carrier_name} to load {load.order_number or load_id}",
        )
        pay_results = self.pay_engine.recalculate_for_load(load_id, ctx.user_id)
        return AssignmentResult(load_id=load_id, legs_updated=updated, pay_results=pay_results)

    def remove_driver(self, ctx: RequestContext, leg_id: int) -> int:
        """Take the driver off a leg and drop the leg's generated driver lines."""
        with self.db.session() as session:
            leg = session.get(DispatchLeg, leg_id)
            if leg is None or leg.org_id != ctx.org_id:
                raise NotFoundError("Leg", leg_id)
            old_driver = leg.driver_id
            leg.driver_id = None
            _clear_replaceable_lines(session, leg_id, ProfileType.DRIVER)

            load = session.get(Load, leg.load_id)
            if load is not None and old_driver is not None and load.primary_driver_id == old_driver:
                other = session.scalars(
                    select(DispatchLeg)
                    .where(
                        DispatchLeg.load_id == leg.load_id,
                        DispatchLeg.id != leg_id,
                        DispatchLeg.driver_id.is_not(None),
                    )
                    .order_by(DispatchLeg.sequence)
                ).first()
                set_primary_subject(load, driver_id=other.driver_id if other else None)

        self.audit(ctx, "dispatchLeg", leg_id, "driver_removed", f"Removed driver from leg {leg.sequence}")
        return leg_id

    def remove_carrier(self, ctx: RequestContext, leg_id: int) -> int:
        """Take the carrier off a leg and drop the leg's generated carrier lines."""
        with self.db.session() as session:
            leg = session.get(DispatchLeg, leg_id)
            if leg is None or leg.org_id != ctx.org_id:
                raise NotFoundError("Leg", leg_id)
            old_carrier = leg.carrier_partnership_id
            leg.carrier_partnership_id = None
            _clear_replaceable_lines(session, leg_id, ProfileType.CARRIER)

            load = session.get(Load, leg.load_id)
            if (
                load is not None
                and old_carrier is not None
                and load.primary_carrier_partnership_id == old_carrier
            ):
                other = session.scalars(
                    select(DispatchLeg)
                    .where(
                        DispatchLeg.load_id == leg.load_id,
                        DispatchLeg.id != leg_id,
                        DispatchLeg.carrier_partnership_id.is_not(None),
                    )
                    .order_by(DispatchLeg.sequence)
                ).first()
                set_primary_subject(
                    load, carrier_partnership_id=other.carrier_partnership_id if other else None
                )

        self.audit(ctx, "dispatchLeg", leg_id, "carrier_removed", f"Removed carrier from leg {leg.sequence}")
        return leg_id

    def update_stop_times(
        self,
        ctx: RequestContext,
        stop_id: int,
        checked_in_at: Optional[datetime] = None,
        checked_out_at: Optional[datetime] = None,
        window_begin: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
        dwell_minutes: Optional[int] = None,
    ) -> list[PayCalculationResult]:
        """
        Edit a stop's actual or scheduled times and recalculate the load's pay.

        Arguments left as None are not changed.
        """
        changes = {
            "checked_in_at": checked_in_at,
            "checked_out_at": checked_out_at,
            "window_begin": window_begin,
            "window_end": window_end,
            "dwell_minutes": dwell_minutes,
        }
        changes = {k: v for k, v in changes.items() if v is not None}

        with self.db.session() as session:
            stop = session.get(LoadStop, stop_id)
            if stop is None or stop.org_id != ctx.org_id:
                raise NotFoundError("Stop", stop_id)
            for field, value in changes.items():
                setattr(stop, field, value)
            load_id = stop.load_id

        self.audit(
            ctx,
            "loadStop",
            stop_id,
            "times_updated",
            f"Updated stop {stop_id} times",
            {k: str(v) for k, v in changes.items()},
        )
        return self.pay_engine.recalculate_for_load(load_id, ctx.user_id)

    def update_load_attributes(
        self,
        ctx: RequestContext,
        load_id: int,
        is_hazmat: Optional[bool] = None,
        requires_tarp: Optional[bool] = None,
    ) -> list[PayCalculationResult]:
        """Edit the hazmat/tarp flags of a load and recalculate its pay."""
        changed: dict[str, Any] = {}
        with self.db.session() as session:
            load = self._get_load(session, ctx, load_id)
            if is_hazmat is not None and is_hazmat != load.is_hazmat:
                changed["is_hazmat"] = is_hazmat
                load.is_hazmat = is_hazmat
            if requires_tarp is not None and requires_tarp != load.requires_tarp:
                changed["requires_tarp"] = requires_tarp
                load.requires_tarp = requires_tarp

        if not changed:
            return []
        self.audit(ctx, "load", load_id, "attributes_updated", "Updated load attributes", changed)
        return self.pay_engine.recalculate_for_load(load_id, ctx.user_id)

    def update_leg_miles(
        self,
        ctx: RequestContext,
        leg_id: int,
        loaded_miles: Optional[Decimal] = None,
        empty_miles: Optional[Decimal] = None,
    ) -> list[PayCalculationResult]:
        """
        Edit a leg's loaded or empty miles and recalculate its pay.

        This is the only way empty miles are recorded.
        """
        with self.db.session() as session:
            leg = session.get(DispatchLeg, leg_id)
            if leg is None or leg.org_id != ctx.org_id:
                raise NotFoundError("Leg", leg_id)
            if loaded_miles is not None:
                leg.leg_loaded_miles = loaded_miles
            if empty_miles is not None:
                leg.leg_empty_miles = empty_miles

        self.audit(
            ctx,
            "dispatchLeg",
            leg_id,
            "miles_updated",
            f"Updated miles on leg {leg.sequence}",
            {"leg_loaded_miles": str(leg.leg_loaded_miles), "leg_empty_miles": str(leg.leg_empty_miles)},
        )
        return self.pay_engine.recalculate_leg(leg_id, ctx.user_id)

    def update_load_status(self, ctx: RequestContext, load_id: int, new_status: LoadStatus) -> Load:
        """
        Move a load to a new workflow status.

        Raises:
            InvariantViolation: If the load is already canceled
        """
        with self.db.session() as session:
            load = self._get_load(session, ctx, load_id)
            old_status = load.status
            if old_status is new_status:
                return load
            if old_status is LoadStatus.CANCELED:
                raise InvariantViolation("Canceled loads cannot change status")
            load.status = new_status
            update_load_count(session, load.org_id, old_status, new_status)

        self.audit(
            ctx,
            "load",
            load_id,
            "status_changed",
            f"Load status changed from {old_status.value} to {new_status.value}",
        )
        return load

    def cancel_load(self, ctx: RequestContext, load_id: int) -> Load:
        """Cancel a load."""
        return self.update_load_status(ctx, load_id, LoadStatus.CANCELED)

    def execute(self, ctx: RequestContext, load_id: int, driver_id: str) -> AssignmentResult:
        """Assign a driver to a load."""
        return self.assign_driver(ctx, load_id, driver_id)
