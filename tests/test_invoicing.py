"""Tests for invoice amounts, line items and the invoice lifecycle."""

from decimal import Decimal

import pytest

from freightcore.core.context import RequestContext
from freightcore.core.errors import InvariantViolation, NotFoundError
from freightcore.data.models import ContractLane, Invoice
from freightcore.data.models.enums import (
    FuelSurchargeType,
    InvoiceStatus,
    LineItemType,
    RateType,
)
from freightcore.engines.invoicing import InvoiceEngine, calculate_invoice_amounts
from freightcore.engines.stats import StatsEngine


@pytest.fixture
def invoice_engine(engine_kwargs) -> InvoiceEngine:
    return InvoiceEngine(**engine_kwargs)


def lane_for(rate: str, rate_type: RateType, **fields) -> ContractLane:
    return ContractLane(
        org_id="org",
        contract_name="ABC123 Trip 7",
        hcr="ABC123",
        trip_number="7",
        rate=Decimal(rate),
        rate_type=rate_type,
        **fields,
    )


class TestCalculateAmounts:
    def test_per_mile_with_percentage_fuel(self):
        lane = lane_for(
            "2.50",
            RateType.PER_MILE,
            fuel_surcharge_type=FuelSurchargeType.PERCENTAGE,
            fuel_surcharge_value=Decimal("10"),
        )
        amounts = calculate_invoice_amounts(Decimal("120"), 2, lane)

        assert amounts.subtotal == Decimal("300.00")
        assert amounts.fuel_surcharge == Decimal("30.00")
        assert amounts.total_amount == Decimal("330.00")
        assert amounts.breakdown.miles_used == Decimal("120")

    def test_per_mile_without_miles_is_zero(self):
        amounts = calculate_invoice_amounts(None, 2, lane_for("2.50", RateType.PER_MILE))
        assert amounts.subtotal == 0
        assert amounts.breakdown.miles_used is None

    def test_flat_rate_and_flat_fuel(self):
        lane = lane_for(
            "850",
            RateType.FLAT_RATE,
            fuel_surcharge_type=FuelSurchargeType.FLAT,
            fuel_surcharge_value=Decimal("45"),
        )
        amounts = calculate_invoice_amounts(Decimal("999"), 2, lane)
        assert amounts.subtotal == Decimal("850.00")
        assert amounts.total_amount == Decimal("895.00")

    def test_per_stop_with_stop_off_charges(self):
        lane = lane_for("100", RateType.PER_STOP, stop_off_rate=Decimal("25"), included_stops=2)
        amounts = calculate_invoice_amounts(None, 5, lane)
        assert amounts.subtotal == Decimal("500.00")
        assert amounts.accessorials_total == Decimal("75.00")
        assert amounts.breakdown.extra_stops == 3
        assert amounts.total_amount == Decimal("575.00")

    def test_default_included_stops(self):
        lane = lane_for("500", RateType.FLAT_RATE, stop_off_rate=Decimal("40"))
        assert calculate_invoice_amounts(None, 2, lane).accessorials_total == 0
        assert calculate_invoice_amounts(None, 3, lane).accessorials_total == Decimal("40.00")

    def test_doe_index_fuel_contributes_nothing(self):
        lane = lane_for(
            "500",
            RateType.FLAT_RATE,
            fuel_surcharge_type=FuelSurchargeType.DOE_INDEX,
            fuel_surcharge_value=Decimal("12"),
        )
        assert calculate_invoice_amounts(None, 2, lane).fuel_surcharge == 0

    def test_tax_passes_through(self):
        amounts = calculate_invoice_amounts(None, 2, lane_for("100", RateType.FLAT_RATE), Decimal("8.25"))
        assert amounts.total_amount == Decimal("108.25")

    def test_rounds_half_up_to_cents(self):
        amounts = calculate_invoice_amounts(Decimal("10.005"), 2, lane_for("1", RateType.PER_MILE))
        assert amounts.subtotal == Decimal("10.01")


class TestLiveAmounts:
    def test_draft_is_recomputed_on_read(self, db, seed, invoice_engine):
        lane = seed.lane(rate="2.50")
        load = seed.load(effective_miles=Decimal("120"))
        invoice = seed.invoice(load, contract_lane_id=lane.id, total_amount=Decimal("1.00"))

        assert invoice_engine.get_invoice_amounts(invoice.id).total_amount == Decimal("300.00")

        with db.session() as session:
            session.get(ContractLane, lane.id).rate = Decimal("3.00")
        assert invoice_engine.get_invoice_amounts(invoice.id).total_amount == Decimal("360.00")

    def test_missing_lane_is_all_zero(self, seed, invoice_engine):
        invoice = seed.invoice(seed.load(), status=InvoiceStatus.MISSING_DATA)
        assert invoice_engine.get_invoice_amounts(invoice.id).total_amount == 0
        assert invoice_engine.get_line_items(invoice.id) == []

    def test_synthesized_line_items(self, seed, invoice_engine):
        lane = seed.lane(
            rate="2.50",
            fuel_surcharge_type=FuelSurchargeType.PERCENTAGE,
            fuel_surcharge_value=Decimal("10"),
            stop_off_rate=Decimal("25"),
        )
        load = seed.load(effective_miles=Decimal("120"), stop_count=3)
        invoice = seed.invoice(load, contract_lane_id=lane.id)

        items = invoice_engine.get_line_items(invoice.id)

        assert [item.type for item in items] == [
            LineItemType.FREIGHT,
            LineItemType.FUEL,
            LineItemType.ACCESSORIAL,
        ]
        assert items[0].description == "ABC123 Trip 7"
        assert items[1].description == "Fuel Surcharge (PERCENTAGE)"
        assert items[2].description == "Stop-off charges (1 extra stops)"
        assert all(item.id is None for item in items)

    def test_wildcard_lane_freight_description(self, seed, invoice_engine):
        lane = seed.lane(trip_number="*", rate="400", rate_type=RateType.FLAT_RATE)
        load = seed.load(parsed_trip_number="99")
        invoice = seed.invoice(load, contract_lane_id=lane.id)

        items = invoice_engine.get_line_items(invoice.id)

        assert items[0].description == "Extra Trips - ABC123 99"

    def test_unknown_invoice(self, invoice_engine):
        with pytest.raises(NotFoundError):
            invoice_engine.get_invoice_amounts(404)


class TestStatusTransitions:
    def test_billing_freezes_amounts_and_line_items(self, db, seed, ctx, invoice_engine):
        lane = seed.lane(rate="2.50")
        load = seed.load(effective_miles=Decimal("120"))
        invoice = seed.invoice(load, contract_lane_id=lane.id)

        invoice_engine.update_invoice_status(ctx, invoice.id, InvoiceStatus.BILLED)

        with db.session() as session:
            session.get(ContractLane, lane.id).rate = Decimal("9.99")

        amounts = invoice_engine.get_invoice_amounts(invoice.id)
        items = invoice_engine.get_line_items(invoice.id)
        assert amounts.total_amount == Decimal("300.00")
        assert len(items) == 1
        assert items[0].id is not None
        assert items[0].amount == Decimal("300.00")

    def test_snapshot_taken_once(self, db, seed, ctx, invoice_engine):
        lane = seed.lane(rate="2.50")
        load = seed.load(effective_miles=Decimal("100"))
        invoice = seed.invoice(load, contract_lane_id=lane.id)

        invoice_engine.update_invoice_status(ctx, invoice.id, InvoiceStatus.BILLED)
        with db.session() as session:
            session.get(ContractLane, lane.id).rate = Decimal("5.00")
        invoice_engine.update_invoice_status(ctx, invoice.id, InvoiceStatus.PENDING_PAYMENT)
        invoice_engine.update_invoice_status(ctx, invoice.id, InvoiceStatus.PAID)

        assert invoice_engine.get_invoice_amounts(invoice.id).total_amount == Decimal("250.00")

    def test_paid_invoice_cannot_be_voided(self, seed, ctx, invoice_engine):
        invoice = seed.invoice(seed.load(), status=InvoiceStatus.PAID)
        with pytest.raises(InvariantViolation, match="PAID invoices cannot be voided"):
            invoice_engine.update_invoice_status(ctx, invoice.id, InvoiceStatus.VOID)

    def test_void_is_terminal(self, seed, ctx, invoice_engine):
        invoice = seed.invoice(seed.load(), status=InvoiceStatus.VOID)
        with pytest.raises(InvariantViolation):
            invoice_engine.update_invoice_status(ctx, invoice.id, InvoiceStatus.DRAFT)

    def test_void_stores_reason(self, db, seed, ctx, invoice_engine):
        invoice = seed.invoice(seed.load(), status=InvoiceStatus.MISSING_DATA)

        invoice_engine.update_invoice_status(ctx, invoice.id, InvoiceStatus.VOID, reason="Duplicate")

        with db.session() as session:
            assert session.get(Invoice, invoice.id).void_reason == "Duplicate"

    def test_missing_data_needs_a_lane_to_become_draft(self, seed, ctx, invoice_engine):
        invoice = seed.invoice(seed.load(), status=InvoiceStatus.MISSING_DATA)
        with pytest.raises(InvariantViolation):
            invoice_engine.update_invoice_status(ctx, invoice.id, InvoiceStatus.DRAFT)

    def test_other_org_cannot_update(self, seed, invoice_engine):
        invoice = seed.invoice(seed.load())
        outsider = RequestContext(org_id="org_other", user_id="user_9")
        with pytest.raises(NotFoundError):
            invoice_engine.update_invoice_status(outsider, invoice.id, InvoiceStatus.VOID)

    def test_status_change_moves_counters_and_audits(self, seed, ctx, engine_kwargs, audit_sink, invoice_engine):
        lane = seed.lane()
        invoice = seed.invoice(seed.load(), contract_lane_id=lane.id)
        stats = StatsEngine(**engine_kwargs)
        stats.recalculate_org_stats(ctx.org_id)

        invoice_engine.update_invoice_status(ctx, invoice.id, InvoiceStatus.BILLED)

        counts = stats.get_stats(ctx.org_id)["invoice_counts"]
        assert counts["DRAFT"] == 0
        assert counts["BILLED"] == 1
        assert audit_sink.actions() == ["status_changed"]
        assert audit_sink.entries[0].changed_fields == {"status": {"old": "DRAFT", "new": "BILLED"}}

    def test_same_status_is_a_no_op(self, seed, ctx, audit_sink, invoice_engine):
        invoice = seed.invoice(seed.load())
        invoice_engine.update_invoice_status(ctx, invoice.id, InvoiceStatus.DRAFT)
        assert audit_sink.entries == []


class TestBulkStatus:
    def test_failures_do_not_stop_the_batch(self, seed, ctx, invoice_engine):
        lane = seed.lane()
        good = seed.invoice(seed.load(), contract_lane_id=lane.id)
        paid = seed.invoice(seed.load(order_number="ORD-2"), status=InvoiceStatus.PAID)

        result = invoice_engine.bulk_update_status(ctx, [good.id, paid.id, 999], InvoiceStatus.VOID)

        assert result.success == 1
        assert result.failed == 2
        assert result.errors[0].startswith(f"Invoice {paid.id}:")
