"""Tests for driver and carrier pay recalculation."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from freightcore.core.errors import NotFoundError
from freightcore.data.models import Load, LoadPayable
from freightcore.data.models.enums import (
    InvoiceStatus,
    PayableSource,
    ProfileType,
    RateType,
    RuleCategory,
    TriggerEvent,
)
from freightcore.engines.pay_calculation import PayCalculationEngine


@pytest.fixture
def pay_engine(engine_kwargs) -> PayCalculationEngine:
    return PayCalculationEngine(**engine_kwargs)


def payables(db, leg_id):
    with db.session() as session:
        return list(
            session.scalars(
                select(LoadPayable).where(LoadPayable.leg_id == leg_id).order_by(LoadPayable.id)
            ).all()
        )


class TestDriverPay:
    def test_generates_lines_for_paying_rules(self, db, seed, pay_engine):
        load = seed.load(is_hazmat=True)
        leg = seed.leg(load, driver_id="drv_1", leg_loaded_miles=Decimal("100"))
        profile = seed.profile()
        seed.rule(profile, TriggerEvent.MILE_LOADED, "0.60", name="Loaded miles")
        seed.rule(profile, TriggerEvent.ATTR_HAZMAT, "50", category=RuleCategory.ACCESSORIAL, name="Hazmat")
        seed.rule(profile, TriggerEvent.ATTR_TARP, "25", category=RuleCategory.ACCESSORIAL, name="Tarp")
        seed.assignment(profile, "drv_1", is_default=True)

        result = pay_engine.calculate_driver_pay(leg.id)

        assert result.success
        assert result.total == Decimal("110.00")
        assert result.profile_name == "Standard"
        lines = payables(db, leg.id)
        assert [line.description for line in lines] == ["Loaded miles", "Hazmat"]
        assert all(line.source_type is PayableSource.SYSTEM and not line.is_locked for line in lines)
        assert all(line.driver_id == "drv_1" for line in lines)

    def test_template_rules_are_not_paid_automatically(self, db, seed, pay_engine):
        load = seed.load()
        leg = seed.leg(load, driver_id="drv_1", leg_loaded_miles=Decimal("100"))
        profile = seed.profile()
        seed.rule(profile, TriggerEvent.MILE_LOADED, "0.60", name="Loaded miles")
        seed.rule(profile, TriggerEvent.FLAT_LOAD, "150", category=RuleCategory.MANUAL_TEMPLATE, name="Layover")
        seed.assignment(profile, "drv_1")

        result = pay_engine.calculate_driver_pay(leg.id)

        assert result.total == Decimal("60.00")
        assert result.rules_applied == 1
        assert [line.description for line in payables(db, leg.id)] == ["Loaded miles"]

    def test_recalculation_is_idempotent(self, db, seed, pay_engine):
        load = seed.load()
        leg = seed.leg(load, driver_id="drv_1")
        profile = seed.profile()
        seed.rule(profile, TriggerEvent.MILE_LOADED, "0.60")
        seed.rule(profile, TriggerEvent.FLAT_LEG, "40", category=RuleCategory.ACCESSORIAL)
        seed.assignment(profile, "drv_1")

        pay_engine.calculate_driver_pay(leg.id)
        first = [(p.description, p.total_amount, p.quantity) for p in payables(db, leg.id)]
        pay_engine.calculate_driver_pay(leg.id)
        second = [(p.description, p.total_amount, p.quantity) for p in payables(db, leg.id)]

        assert first == second
        assert len(second) == 2

    def test_manual_and_locked_lines_survive(self, db, seed, pay_engine):
        load = seed.load()
        leg = seed.leg(load, driver_id="drv_1")
        profile = seed.profile()
        seed.rule(profile, TriggerEvent.FLAT_LEG, "100")
        seed.assignment(profile, "drv_1")
        with db.session() as session:
            session.add_all(
                [
                    LoadPayable(
                        org_id=load.org_id,
                        load_id=load.id,
                        leg_id=leg.id,
                        driver_id="drv_1",
                        description="Lumper",
                        total_amount=Decimal("35.00"),
                        source_type=PayableSource.MANUAL,
                        is_locked=True,
                    ),
                    LoadPayable(
                        org_id=load.org_id,
                        load_id=load.id,
                        leg_id=leg.id,
                        driver_id="drv_1",
                        description="Adjusted flat",
                        total_amount=Decimal("90.00"),
                        source_type=PayableSource.SYSTEM,
                        is_locked=True,
                    ),
                ]
            )

        pay_engine.calculate_driver_pay(leg.id)

        descriptions = sorted(p.description for p in payables(db, leg.id))
        assert descriptions == ["Adjusted flat", "Flat Leg", "Lumper"]

    def test_missing_profile_writes_zero_line_with_warning(self, db, seed, pay_engine):
        load = seed.load()
        leg = seed.leg(load, driver_id="drv_1")

        result = pay_engine.calculate_driver_pay(leg.id)

        assert result.success
        assert result.total == 0
        assert result.warning == "No pay profile assigned"
        lines = payables(db, leg.id)
        assert len(lines) == 1
        assert lines[0].total_amount == 0
        assert lines[0].description == "No Pay Profile"
        assert lines[0].warning_message == "Driver has no pay profile assigned. Pay calculated as $0."

    def test_all_zero_rules_write_summary_line(self, db, seed, pay_engine):
        load = seed.load()
        leg = seed.leg(load, driver_id="drv_1", leg_loaded_miles=Decimal("20"))
        profile = seed.profile(name="Long haul")
        seed.rule(profile, TriggerEvent.MILE_LOADED, "0.60", min_threshold="50")
        seed.assignment(profile, "drv_1")

        result = pay_engine.calculate_driver_pay(leg.id)

        assert result.total == 0
        lines = payables(db, leg.id)
        assert len(lines) == 1
        assert lines[0].description == "Long haul (No applicable charges)"
        assert lines[0].warning_message == "All rules evaluated to $0"

    def test_inactive_profile_fails(self, seed, pay_engine):
        load = seed.load()
        leg = seed.leg(load, driver_id="drv_1")
        profile = seed.profile(is_active=False)
        seed.rule(profile, TriggerEvent.FLAT_LEG, "100")
        seed.assignment(profile, "drv_1")

        result = pay_engine.calculate_driver_pay(leg.id)

        assert not result.success
        assert result.reason == "Profile not found or inactive"

    def test_no_driver_on_leg(self, seed, pay_engine):
        leg = seed.leg(seed.load())
        result = pay_engine.calculate_driver_pay(leg.id)
        assert not result.success
        assert result.reason == "No driver assigned"

    def test_unknown_leg_raises(self, pay_engine):
        with pytest.raises(NotFoundError):
            pay_engine.calculate_driver_pay(999)

    def test_leg_one_updates_primary_driver_cache(self, db, seed, pay_engine):
        load = seed.load()
        leg = seed.leg(load, driver_id="drv_2")

        pay_engine.calculate_driver_pay(leg.id)

        with db.session() as session:
            assert session.get(Load, load.id).primary_driver_id == "drv_2"

    def test_percent_of_load_uses_invoice_total(self, db, seed, pay_engine):
        lane = seed.lane(rate="500", rate_type=RateType.FLAT_RATE)
        load = seed.load()
        seed.invoice(load, status=InvoiceStatus.DRAFT, contract_lane_id=lane.id)
        leg = seed.leg(load, driver_id="drv_1")
        profile = seed.profile()
        seed.rule(profile, TriggerEvent.PCT_OF_LOAD, "20")
        seed.assignment(profile, "drv_1")

        result = pay_engine.calculate_driver_pay(leg.id)

        assert result.total == Decimal("100.00")


class TestCarrierPay:
    def test_carrier_lines_do_not_replace_driver_lines(self, db, seed, pay_engine):
        partnership = seed.partnership()
        load = seed.load()
        leg = seed.leg(load, driver_id="drv_1", carrier_partnership_id=partnership.id)
        driver_profile = seed.profile(name="Driver plan")
        seed.rule(driver_profile, TriggerEvent.FLAT_LEG, "100")
        seed.assignment(driver_profile, "drv_1")
        carrier_profile = seed.profile(name="Carrier plan", profile_type=ProfileType.CARRIER)
        seed.rule(carrier_profile, TriggerEvent.MILE_LOADED, "2.00")
        seed.assignment(carrier_profile, str(partnership.id), subject_type=ProfileType.CARRIER)

        results = pay_engine.recalculate_leg(leg.id)

        assert [r.subject_type for r in results] == [ProfileType.DRIVER, ProfileType.CARRIER]
        lines = payables(db, leg.id)
        by_subject = {line.subject_type: line for line in lines}
        assert by_subject[ProfileType.DRIVER].total_amount == Decimal("100.00")
        assert by_subject[ProfileType.CARRIER].total_amount == Decimal("200.00")
        assert by_subject[ProfileType.CARRIER].carrier_partnership_id == partnership.id

        pay_engine.calculate_carrier_pay(leg.id)
        assert len(payables(db, leg.id)) == 2

    def test_missing_carrier_profile_warning_names_carrier(self, seed, pay_engine):
        partnership = seed.partnership()
        leg = seed.leg(seed.load(), carrier_partnership_id=partnership.id)

        result = pay_engine.calculate_carrier_pay(leg.id)

        assert result.warnings == ["Carrier has no pay profile assigned. Pay calculated as $0."]


class TestPreview:
    def test_preview_writes_nothing(self, db, seed, pay_engine):
        load = seed.load()
        leg = seed.leg(load, driver_id="drv_1")
        profile = seed.profile()
        seed.rule(profile, TriggerEvent.MILE_LOADED, "0.50")
        seed.rule(profile, TriggerEvent.PCT_OF_LOAD, "10", category=RuleCategory.ACCESSORIAL)
        seed.assignment(profile, "drv_1")

        preview = pay_engine.preview_calculation(leg.id)

        assert preview.success
        assert preview.total == Decimal("50.00")
        assert [row.trigger_event for row in preview.breakdown] == ["MILE_LOADED", "PCT_OF_LOAD"]
        assert preview.breakdown[1].warning == "No invoice total available for percentage calculation"
        assert payables(db, leg.id) == []
