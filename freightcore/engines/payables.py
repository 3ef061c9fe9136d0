"""
Payables Engine - operator edits to driver and carrier pay lines.

This engine:
- Adds manual pay lines (always MANUAL and locked)
- Lists MANUAL_TEMPLATE rules as quick-add presets and adds lines from them
- Edits lines, locking them and taking SYSTEM lines out of the recalculator's hands
- Deletes lines the recalculator does not own
- Unlocks lines and triggers recalculation on demand
"""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy import select

from freightcore.core.context import RequestContext
from freightcore.core.errors import InvariantViolation, NotFoundError
from freightcore.data.models.base import to_money
from freightcore.data.models.billing import LoadPayable
from freightcore.data.models.enums import PayableSource, ProfileType, RuleCategory, TriggerEvent
from freightcore.data.models.load import DispatchLeg, Load
from freightcore.data.models.rates import RateProfile, RateRule
from freightcore.engines.base import BaseEngine
from freightcore.engines.pay_calculation import PayCalculationEngine, PayCalculationResult, invoice_total_for_load

RATE_SUFFIXES = {
    TriggerEvent.FLAT_LOAD: "",
    TriggerEvent.FLAT_LEG: "",
    TriggerEvent.TIME_DURATION: "/hour",
    TriggerEvent.TIME_WAITING: "/hour",
    TriggerEvent.MILE_LOADED: "/mile",
    TriggerEvent.MILE_EMPTY: "/mile",
}


class PayTemplate(BaseModel):
    """A quick-add preset backed by a MANUAL_TEMPLATE rule."""

    rule_id: int
    profile_id: int
    profile_name: str
    profile_type: ProfileType
    name: str
    trigger_event: TriggerEvent
    rate_amount: Decimal
    description: str


def template_description(rule: RateRule) -> str:
    """Menu label for a template, e.g. ``Layover - $150.00`` or ``Detention - $50.00/hour``."""
    if rule.trigger_event is TriggerEvent.PCT_OF_LOAD:
        return f"{rule.name} - {rule.rate_amount.normalize():f}%"
    if rule.trigger_event in RATE_SUFFIXES:
        return f"{rule.name} - ${rule.rate_amount:.2f}{RATE_SUFFIXES[rule.trigger_event]}"
    return rule.name


class PayablesEngine(BaseEngine):
    """Payables Engine for manual pay line management."""

    def __init__(self, pay_engine: Optional[PayCalculationEngine] = None, **kwargs: Any) -> None:
        """
        Initialize the payables engine.

        Args:
            pay_engine: Optional pay calculation engine (built from the same settings by default)
        """
        super().__init__(engine_name="payables", **kwargs)
        self.pay_engine = pay_engine or PayCalculationEngine(
            db=self.db, config_manager=self.config_manager, audit_sink=self.audit_sink
        )

    def get_by_load(self, load_id: int) -> list[LoadPayable]:
        """All pay lines of a load, oldest first."""
        with self.db.session() as session:
            return list(
                session.scalars(
                    select(LoadPayable).where(LoadPayable.load_id == load_id).order_by(LoadPayable.id)
                ).all()
            )

    def get_by_leg(self, leg_id: int, subject_type: Optional[ProfileType] = None) -> list[LoadPayable]:
        """Pay lines of a leg, optionally for one subject kind."""
        query = select(LoadPayable).where(LoadPayable.leg_id == leg_id)
        if subject_type is not None:
            query = query.where(LoadPayable.subject_type == subject_type)
        with self.db.session() as session:
            return list(session.scalars(query.order_by(LoadPayable.id)).all())

    def add_manual(
        self,
        ctx: RequestContext,
        load_id: int,
        description: str,
        quantity: Decimal,
        rate: Decimal,
        driver_id: Optional[str] = None,
        carrier_partnership_id: Optional[int] = None,
        leg_id: Optional[int] = None,
    ) -> LoadPayable:
        """
        Add an operator-entered pay line.

        Args:
            ctx: Caller identity
            load_id: Load the line belongs to
            description: Line description
            quantity: Quantity
            rate: Rate per unit
            driver_id: Driver being paid (mutually exclusive with carrier_partnership_id)
            carrier_partnership_id: Carrier partnership being paid
            leg_id: Optional leg the line belongs to

        Returns:
            The new MANUAL, locked line

        Raises:
            NotFoundError: If the load is not in the caller's organization
            InvariantViolation: If neither or both subjects are given
        """
        if (driver_id is None) == (carrier_partnership_id is None):
            raise InvariantViolation("A manual pay line needs exactly one of driver or carrier")
        subject_type = ProfileType.DRIVER if driver_id is not None else ProfileType.CARRIER
        total = to_money(quantity * rate)

        with self.db.session() as session:
            load = session.get(Load, load_id)
            if load is None or load.org_id != ctx.org_id:
                raise NotFoundError("Load", load_id)
            if leg_id is not None and session.get(DispatchLeg, leg_id) is None:
                raise NotFoundError("Leg", leg_id)

            payable = LoadPayable(
                org_id=load.org_id,
                load_id=load_id,
                leg_id=leg_id,
                subject_type=subject_type,
                driver_id=driver_id,
                carrier_partnership_id=carrier_partnership_id,
                description=description,
                quantity=quantity,
                rate=rate,
                total_amount=total,
                source_type=PayableSource.MANUAL,
                is_locked=True,
                created_by=ctx.user_id,
            )
            session.add(payable)
            session.flush()
            payable_id = payable.id

        self.audit(
            ctx,
            "loadPayable",
            payable_id,
            "created",
            f'Added manual pay "{description}" (${total:.2f})',
        )
        return payable

    def list_templates(self, ctx: RequestContext, profile_type: Optional[ProfileType] = None) -> list[PayTemplate]:
        """Active MANUAL_TEMPLATE rules of the organization's active profiles, sorted by name."""
        query = (
            select(RateRule, RateProfile)
            .join(RateProfile, RateRule.profile_id == RateProfile.id)
            .where(
                RateProfile.org_id == ctx.org_id,
                RateProfile.is_active.is_(True),
                RateRule.is_active.is_(True),
                RateRule.category == RuleCategory.MANUAL_TEMPLATE,
            )
        )
        if profile_type is not None:
            query = query.where(RateProfile.profile_type == profile_type)

        with self.db.session() as session:
            rows = session.execute(query.order_by(RateRule.id)).all()

        templates = [
            PayTemplate(
                rule_id=rule.id,
                profile_id=profile.id,
                profile_name=profile.name,
                profile_type=profile.profile_type,
                name=rule.name,
                trigger_event=rule.trigger_event,
                rate_amount=rule.rate_amount,
                description=template_description(rule),
            )
            for rule, profile in rows
        ]
        return sorted(templates, key=lambda template: template.name.lower())

    def add_from_template(
        self,
        ctx: RequestContext,
        load_id: int,
        rule_id: int,
        quantity: Optional[Decimal] = None,
        driver_id: Optional[str] = None,
        carrier_partnership_id: Optional[int] = None,
        leg_id: Optional[int] = None,
    ) -> LoadPayable:
        """
        Quick-add a pay line from a template.

        The line is created through ``add_manual``, so it is MANUAL and locked
        and a later recalculation leaves it alone. Quantity defaults to 1. For
        a PCT_OF_LOAD template the quantity is the load's invoice total and
        the rate is the percentage as a fraction.

        Raises:
            NotFoundError: If the template is not an active template of the caller's organization
            InvariantViolation: If the template pays the other subject kind,
                or a percentage template is used on a load without an invoice total
        """
        if (driver_id is None) == (carrier_partnership_id is None):
            raise InvariantViolation("A manual pay line needs exactly one of driver or carrier")
        subject_type = ProfileType.DRIVER if driver_id is not None else ProfileType.CARRIER

        with self.db.session() as session:
            rule = session.get(RateRule, rule_id)
            profile = session.get(RateProfile, rule.profile_id) if rule is not None else None
            if (
                rule is None
                or profile is None
                or profile.org_id != ctx.org_id
                or rule.category is not RuleCategory.MANUAL_TEMPLATE
                or not rule.is_active
                or not profile.is_active
            ):
                raise NotFoundError("Template", rule_id)
            if profile.profile_type is not subject_type:
                raise InvariantViolation(
                    f"Template {rule.name} is for {profile.profile_type.value} pay, not {subject_type.value}"
                )

            rate = rule.rate_amount
            if rule.trigger_event is TriggerEvent.PCT_OF_LOAD:
                base = invoice_total_for_load(session, load_id)
                if base is None:
                    raise InvariantViolation(f"Template {rule.name} needs an invoice total on the load")
                quantity, rate = base, rate / Decimal("100")
            name = rule.name

        return self.add_manual(
            ctx,
            load_id,
            name,
            quantity if quantity is not None else Decimal("1"),
            rate,
            driver_id=driver_id,
            carrier_partnership_id=carrier_partnership_id,
            leg_id=leg_id,
        )

    def update(
        self,
        ctx: RequestContext,
        payable_id: int,
        description: Optional[str] = None,
        quantity: Optional[Decimal] = None,
        rate: Optional[Decimal] = None,
        total_amount: Optional[Decimal] = None,
    ) -> LoadPayable:
        """
        Edit a pay line. Any edit locks it, and a SYSTEM line becomes MANUAL.

        The total is the explicit override when given, otherwise quantity × rate
        when either changed, otherwise unchanged.
        """
        changed: dict[str, Any] = {}
        with self.db.session() as session:
            payable = session.get(LoadPayable, payable_id)
            if payable is None or payable.org_id != ctx.org_id:
                raise NotFoundError("Payable", payable_id)

            new_total = payable.total_amount
            if total_amount is not None:
                new_total = to_money(total_amount)
            elif quantity is not None or rate is not None:
                new_total = to_money(
                    (quantity if quantity is not None else payable.quantity)
                    * (rate if rate is not None else payable.rate)
                )

            if description is not None:
                changed["description"] = description
                payable.description = description
            if quantity is not None:
                changed["quantity"] = str(quantity)
                payable.quantity = quantity
            if rate is not None:
                changed["rate"] = str(rate)
                payable.rate = rate
            if new_total != payable.total_amount:
                changed["total_amount"] = str(new_total)
            payable.total_amount = new_total

            payable.is_locked = True
            if payable.source_type is PayableSource.SYSTEM:
                payable.source_type = PayableSource.MANUAL
            final_description = payable.description

        self.audit(
            ctx,
            "loadPayable",
            payable_id,
            "updated",
            f'Updated pay "{final_description}" to ${new_total:.2f}',
            changed,
        )
        return payable

    def remove(self, ctx: RequestContext, payable_id: int) -> int:
        """
        Delete a pay line.

        Raises:
            InvariantViolation: If the line is SYSTEM and unlocked
        """
        with self.db.session() as session:
            payable = session.get(LoadPayable, payable_id)
            if payable is None or payable.org_id != ctx.org_id:
                raise NotFoundError("Payable", payable_id)
            if payable.is_replaceable:
                raise InvariantViolation("Cannot delete system-calculated items. Use recalculate instead.")
            description, total = payable.description, payable.total_amount
            session.delete(payable)

        self.audit(
            ctx,
            "loadPayable",
            payable_id,
            "deleted",
            f'Deleted pay "{description}" (${total:.2f})',
        )
        return payable_id

    def unlock(self, ctx: RequestContext, payable_id: int) -> LoadPayable:
        """Clear the lock flag. MANUAL lines stay protected by their source type."""
        with self.db.session() as session:
            payable = session.get(LoadPayable, payable_id)
            if payable is None or payable.org_id != ctx.org_id:
                raise NotFoundError("Payable", payable_id)
            payable.is_locked = False

        self.audit(ctx, "loadPayable", payable_id, "unlocked", f'Unlocked pay "{payable.description}"')
        return payable

    def recalculate(self, ctx: RequestContext, leg_id: int) -> list[PayCalculationResult]:
        """
        Operator-triggered recalculation of a leg.

        Raises:
            InvariantViolation: If nobody is assigned to the leg
        """
        with self.db.session() as session:
            leg = session.get(DispatchLeg, leg_id)
            if leg is None or leg.org_id != ctx.org_id:
                raise NotFoundError("Leg", leg_id)
            if leg.driver_id is None and leg.carrier_partnership_id is None:
                raise InvariantViolation("Cannot recalculate pay: no driver or carrier assigned")

        return self.pay_engine.recalculate_leg(leg_id, ctx.user_id)

    def execute(self, ctx: RequestContext, leg_id: int) -> list[PayCalculationResult]:
        """Recalculate a leg on behalf of an operator."""
        return self.recalculate(ctx, leg_id)
