"""
Pay Calculation Engine - regenerates driver and carrier payable lines.

This engine:
- Resolves the subject's profile assignments and distance tiers
- Picks the profile for the leg and evaluates its active rules
- Replaces the leg's SYSTEM, unlocked payable lines in one unit of work
- Leaves MANUAL and locked lines untouched
- Keeps the load's primary driver/carrier cache in step with leg 1

A missing pay profile never blocks dispatch: the leg gets a single $0 line
carrying a warning instead.
"""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from freightcore.core.errors import NotFoundError
from freightcore.data.models.base import to_money
from freightcore.data.models.billing import Invoice, LoadPayable
from freightcore.data.models.enums import PayableSource, ProfileType, RuleCategory
from freightcore.data.models.load import DispatchLeg, Load, LoadStop
from freightcore.data.models.rates import ProfileAssignment, RateProfile, RateRule
from freightcore.engines.base import BaseEngine
from freightcore.engines.invoicing import amounts_for_invoice
from freightcore.engines.profile_selector import AssignmentTier, base_threshold, determine_profile
from freightcore.engines.rule_evaluator import evaluate_rule, get_stops_for_leg

SUBJECT_LABELS = {ProfileType.DRIVER: "Driver", ProfileType.CARRIER: "Carrier"}


class PayCalculationResult(BaseModel):
    """Outcome of recalculating one leg for one subject."""

    leg_id: int
    subject_type: ProfileType
    success: bool
    total: Decimal = Decimal("0.00")
    profile_name: Optional[str] = None
    rules_applied: int = 0
    warnings: list[str] = Field(default_factory=list)
    warning: Optional[str] = None
    reason: Optional[str] = None


class PayBreakdownRow(BaseModel):
    """One rule's contribution in a preview."""

    rule_id: int
    rule_name: str
    category: str
    trigger_event: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal
    warning: Optional[str] = None


class PayPreview(BaseModel):
    """What a recalculation would produce, without writing anything."""

    success: bool
    total: Decimal = Decimal("0.00")
    profile_name: Optional[str] = None
    breakdown: list[PayBreakdownRow] = Field(default_factory=list)
    warning: Optional[str] = None
    reason: Optional[str] = None


def leg_subject_id(leg: DispatchLeg, subject_type: ProfileType) -> Optional[str]:
    """The leg's driver id, or its carrier partnership id as a string."""
    if subject_type is ProfileType.DRIVER:
        return leg.driver_id
    if leg.carrier_partnership_id is None:
        return None
    return str(leg.carrier_partnership_id)


def load_assignment_tiers(session: Session, subject_type: ProfileType, subject_id: str) -> list[AssignmentTier]:
    """The subject's assignments paired with each profile's BASE threshold."""
    assignments = session.scalars(
        select(ProfileAssignment)
        .where(
            ProfileAssignment.subject_type == subject_type,
            ProfileAssignment.subject_id == subject_id,
        )
        .order_by(ProfileAssignment.id)
    ).all()

    tiers = []
    for assignment in assignments:
        rules = session.scalars(
            select(RateRule).where(RateRule.profile_id == assignment.profile_id).order_by(RateRule.id)
        ).all()
        tiers.append(AssignmentTier(assignment=assignment, min_threshold=base_threshold(list(rules))))
    return tiers


def active_rules(session: Session, profile_id: int) -> list[RateRule]:
    """Active rules a recalculation evaluates. MANUAL_TEMPLATE rules are quick-add presets only."""
    return list(
        session.scalars(
            select(RateRule)
            .where(
                RateRule.profile_id == profile_id,
                RateRule.is_active.is_(True),
                RateRule.category != RuleCategory.MANUAL_TEMPLATE,
            )
            .order_by(RateRule.id)
        ).all()
    )


def invoice_total_for_load(session: Session, load_id: int) -> Optional[Decimal]:
    """Current invoice total of a load, or None if there is no positive total."""
    invoice = session.scalars(select(Invoice).where(Invoice.load_id == load_id)).first()
    if invoice is None:
        return None
    total = amounts_for_invoice(session, invoice).total_amount
    return total if total > 0 else None


class PayCalculationEngine(BaseEngine):
    """
    Pay Calculation Engine for driver and carrier legs.

    Both variants share one algorithm and differ only in which subject on
    the leg is paid and which cache field on the load mirrors leg 1.
    """

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the pay calculation engine."""
        super().__init__(engine_name="pay_calculation", **kwargs)
        self.settlement_config = self.config_manager.get_settlement_config()

    def _clear_system_lines(self, session: Session, leg_id: int, subject_type: ProfileType) -> None:
        session.execute(
            delete(LoadPayable).where(
                LoadPayable.leg_id == leg_id,
                LoadPayable.subject_type == subject_type,
                LoadPayable.source_type == PayableSource.SYSTEM,
                LoadPayable.is_locked.is_(False),
            )
        )

    def _new_line(
        self,
        leg: DispatchLeg,
        load: Load,
        subject_type: ProfileType,
        user_id: str,
        **fields: Any,
    ) -> LoadPayable:
        return LoadPayable(
            org_id=load.org_id,
            load_id=load.id,
            leg_id=leg.id,
            subject_type=subject_type,
            driver_id=leg.driver_id if subject_type is ProfileType.DRIVER else None,
            carrier_partnership_id=(
                leg.carrier_partnership_id if subject_type is ProfileType.CARRIER else None
            ),
            source_type=PayableSource.SYSTEM,
            is_locked=False,
            created_by=user_id,
            **fields,
        )

    def _sync_primary_cache(self, leg: DispatchLeg, load: Load, subject_type: ProfileType) -> None:
        if leg.sequence != 1:
            return
        if subject_type is ProfileType.DRIVER:
            if load.primary_driver_id != leg.driver_id:
                load.primary_driver_id = leg.driver_id
        elif load.primary_carrier_partnership_id != leg.carrier_partnership_id:
            load.primary_carrier_partnership_id = leg.carrier_partnership_id

    def calculate_pay(self, leg_id: int, subject_type: ProfileType, user_id: str) -> PayCalculationResult:
        """
        Regenerate the SYSTEM payable lines of one leg for one subject.

        Idempotent: prior SYSTEM, unlocked lines are always replaced in full.

        Args:
            leg_id: Leg to calculate
            subject_type: DRIVER or CARRIER
            user_id: Who triggered the calculation (stamped on new lines)

        Returns:
            PayCalculationResult

        Raises:
            NotFoundError: If the leg or its load does not exist
        """
        label = SUBJECT_LABELS[subject_type]

        with self.db.session() as session:
            leg = session.get(DispatchLeg, leg_id)
            if leg is None:
                raise NotFoundError("Leg", leg_id)

            subject_id = leg_subject_id(leg, subject_type)
            if subject_id is None:
                return PayCalculationResult(
                    leg_id=leg_id,
                    subject_type=subject_type,
                    success=False,
                    reason=f"No {label.lower()} assigned",
                )

            load = session.get(Load, leg.load_id)
            if load is None:
                raise NotFoundError("Load", leg.load_id)

            all_stops = list(session.scalars(select(LoadStop).where(LoadStop.load_id == load.id)).all())
            leg_stops = get_stops_for_leg(all_stops, leg.start_stop_id, leg.end_stop_id)

            tiers = load_assignment_tiers(session, subject_type, subject_id)
            profile_id = determine_profile(tiers, leg.leg_loaded_miles or Decimal("0"))

            if profile_id is None:
                self._clear_system_lines(session, leg_id, subject_type)
                warning_message = self.settlement_config["no_profile_warning"].format(subject=label)
                session.add(
                    self._new_line(
                        leg,
                        load,
                        subject_type,
                        user_id,
                        description=self.settlement_config["no_profile_description"],
                        quantity=Decimal("0"),
                        rate=Decimal("0"),
                        total_amount=Decimal("0.00"),
                        warning_message=warning_message,
                    )
                )
                self._sync_primary_cache(leg, load, subject_type)
                self.logger.warning(
                    "pay_profile_missing",
                    leg_id=leg_id,
                    subject_type=subject_type.value,
                    subject_id=subject_id,
                )
                return PayCalculationResult(
                    leg_id=leg_id,
                    subject_type=subject_type,
                    success=True,
                    warning="No pay profile assigned",
                    warnings=[warning_message],
                )

            profile = session.get(RateProfile, profile_id)
            if profile is None or not profile.is_active:
                return PayCalculationResult(
                    leg_id=leg_id,
                    subject_type=subject_type,
                    success=False,
                    reason="Profile not found or inactive",
                )

            rules = active_rules(session, profile_id)
            invoice_total = invoice_total_for_load(session, load.id)

            self._clear_system_lines(session, leg_id, subject_type)

            total = Decimal("0.00")
            warnings: list[str] = []
            for rule in rules:
                evaluation = evaluate_rule(rule, leg, load, leg_stops, invoice_total)
                if evaluation.warning:
                    warnings.append(evaluation.warning)

                amount = to_money(evaluation.amount)
                if amount > 0:
                    session.add(
                        self._new_line(
                            leg,
                            load,
                            subject_type,
                            user_id,
                            description=rule.name,
                            quantity=evaluation.quantity,
                            rate=rule.rate_amount,
                            total_amount=amount,
                            rule_id=rule.id,
                            warning_message=evaluation.warning,
                        )
                    )
                    total += amount

            if total == 0 and rules:
                session.add(
                    self._new_line(
                        leg,
                        load,
                        subject_type,
                        user_id,
                        description=f"{profile.name} (No applicable charges)",
                        quantity=Decimal("0"),
                        rate=Decimal("0"),
                        total_amount=Decimal("0.00"),
                        warning_message="; ".join(warnings) if warnings else "All rules evaluated to $0",
                    )
                )

            self._sync_primary_cache(leg, load, subject_type)
            profile_name = profile.name

        self.logger.info(
            "pay_calculated",
            leg_id=leg_id,
            subject_type=subject_type.value,
            profile=profile_name,
            total=str(total),
            rules=len(rules),
            warnings=len(warnings),
        )
        return PayCalculationResult(
            leg_id=leg_id,
            subject_type=subject_type,
            success=True,
            total=total,
            profile_name=profile_name,
            rules_applied=len(rules),
            warnings=warnings,
        )

    def calculate_driver_pay(self, leg_id: int, user_id: str = "system") -> PayCalculationResult:
        """Recalculate the driver lines of a leg."""
        return self.calculate_pay(leg_id, ProfileType.DRIVER, user_id)

    def calculate_carrier_pay(self, leg_id: int, user_id: str = "system") -> PayCalculationResult:
        """Recalculate the carrier lines of a leg."""
        return self.calculate_pay(leg_id, ProfileType.CARRIER, user_id)

    def recalculate_leg(self, leg_id: int, user_id: str = "system") -> list[PayCalculationResult]:
        """Recalculate every subject assigned to a leg."""
        with self.db.session() as session:
            leg = session.get(DispatchLeg, leg_id)
            if leg is None:
                raise NotFoundError("Leg", leg_id)
            has_driver = leg.driver_id is not None
            has_carrier = leg.carrier_partnership_id is not None

        results = []
        if has_driver:
            results.append(self.calculate_driver_pay(leg_id, user_id))
        if has_carrier:
            results.append(self.calculate_carrier_pay(leg_id, user_id))
        return results

    def recalculate_for_load(self, load_id: int, user_id: str = "system") -> list[PayCalculationResult]:
        """
        Recalculate every assigned leg of a load.

        Used when load-level data changes (hazmat/tarp flags, stop times).
        """
        with self.db.session() as session:
            leg_ids = session.scalars(
                select(DispatchLeg.id).where(DispatchLeg.load_id == load_id).order_by(DispatchLeg.sequence)
            ).all()

        results = []
        for leg_id in leg_ids:
            results.extend(self.recalculate_leg(leg_id, user_id))
        return results

    def preview_calculation(
        self, leg_id: int, subject_type: ProfileType = ProfileType.DRIVER
    ) -> PayPreview:
        """
        Evaluate a leg without writing anything.

        Returns:
            PayPreview listing each rule that pays or warns
        """
        with self.db.session() as session:
            leg = session.get(DispatchLeg, leg_id)
            subject_id = leg_subject_id(leg, subject_type) if leg else None
            if leg is None or subject_id is None:
                return PayPreview(
                    success=False,
                    reason=f"Leg not found or no {SUBJECT_LABELS[subject_type].lower()}",
                )

            load = session.get(Load, leg.load_id)
            if load is None:
                return PayPreview(success=False, reason="Load not found")

            all_stops = list(session.scalars(select(LoadStop).where(LoadStop.load_id == load.id)).all())
            leg_stops = get_stops_for_leg(all_stops, leg.start_stop_id, leg.end_stop_id)

            tiers = load_assignment_tiers(session, subject_type, subject_id)
            profile_id = determine_profile(tiers, leg.leg_loaded_miles or Decimal("0"))
            if profile_id is None:
                return PayPreview(success=True, warning="No pay profile assigned")

            profile = session.get(RateProfile, profile_id)
            invoice_total = invoice_total_for_load(session, load.id)

            total = Decimal("0.00")
            breakdown = []
            for rule in active_rules(session, profile_id):
                evaluation = evaluate_rule(rule, leg, load, leg_stops, invoice_total)
                amount = to_money(evaluation.amount)
                if amount > 0 or evaluation.warning:
                    breakdown.append(
                        PayBreakdownRow(
                            rule_id=rule.id,
                            rule_name=rule.name,
                            category=rule.category.value,
                            trigger_event=rule.trigger_event.value,
                            quantity=evaluation.quantity,
                            rate=rule.rate_amount,
                            amount=amount,
                            warning=evaluation.warning,
                        )
                    )
                    total += amount

            return PayPreview(
                success=True,
                total=total,
                profile_name=profile.name if profile else None,
                breakdown=breakdown,
            )

    def execute(self, leg_id: int, user_id: str = "system") -> list[PayCalculationResult]:
        """Recalculate every subject on a leg."""
        return self.recalculate_leg(leg_id, user_id)
