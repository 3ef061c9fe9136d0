"""Tests for incremental counters and drift repair."""

import pytest

from freightcore.data.models import OrganizationStats
from freightcore.data.models.enums import InvoiceStatus, LoadStatus
from freightcore.engines.stats import (
    StatsEngine,
    get_or_create_stats,
    update_invoice_count,
    update_load_count,
)


@pytest.fixture
def stats_engine(engine_kwargs) -> StatsEngine:
    return StatsEngine(**engine_kwargs)


class TestIncrementalCounters:
    def test_creation_and_transition(self, db, stats_engine):
        with db.session() as session:
            update_load_count(session, "org_a", None, LoadStatus.OPEN)
            update_load_count(session, "org_a", None, LoadStatus.OPEN)
        with db.session() as session:
            update_load_count(session, "org_a", LoadStatus.OPEN, LoadStatus.ASSIGNED)

        counts = stats_engine.get_stats("org_a")["load_counts"]
        assert counts["Open"] == 1
        assert counts["Assigned"] == 1

    def test_counters_never_go_negative(self, db, stats_engine):
        with db.session() as session:
            update_invoice_count(session, "org_a", InvoiceStatus.DRAFT, InvoiceStatus.BILLED)

        counts = stats_engine.get_stats("org_a")["invoice_counts"]
        assert counts["DRAFT"] == 0
        assert counts["BILLED"] == 1

    def test_same_status_does_nothing(self, db):
        with db.session() as session:
            update_load_count(session, "org_a", LoadStatus.OPEN, LoadStatus.OPEN)
        with db.session() as session:
            assert session.query(OrganizationStats).count() == 0

    def test_rolled_back_with_the_status_change(self, db, stats_engine):
        with pytest.raises(RuntimeError):
            with db.session() as session:
                update_load_count(session, "org_a", None, LoadStatus.OPEN)
                raise RuntimeError("status write failed")

        assert stats_engine.get_stats("org_a")["load_counts"]["Open"] == 0

    def test_zeroed_row_created_on_first_use(self, db):
        with db.session() as session:
            stats = get_or_create_stats(session, "org_new")
            assert stats.load_counts == {"Open": 0, "Assigned": 0, "Completed": 0, "Canceled": 0}
            assert set(stats.invoice_counts) == {s.value for s in InvoiceStatus}


class TestRecalculation:
    def test_repairs_drift(self, db, seed, ctx, stats_engine):
        seed.load(status=LoadStatus.OPEN)
        seed.load(status=LoadStatus.COMPLETED)
        seed.invoice(seed.load(status=LoadStatus.ASSIGNED), status=InvoiceStatus.BILLED)
        with db.session() as session:
            update_load_count(session, ctx.org_id, None, LoadStatus.OPEN, amount=5)

        result = stats_engine.recalculate_org_stats(ctx.org_id)

        assert result.drift_detected
        assert result.load_drift == {"Assigned": 1, "Completed": 1, "Open": -4}
        assert result.invoice_drift == {"BILLED": 1}
        assert result.total_loads == 3
        assert stats_engine.get_stats(ctx.org_id)["load_counts"]["Open"] == 1

    def test_consistent_counters_report_no_drift(self, seed, ctx, stats_engine):
        seed.load()
        stats_engine.recalculate_org_stats(ctx.org_id)

        result = stats_engine.recalculate_org_stats(ctx.org_id)

        assert not result.drift_detected

    def test_counts_across_chunks(self, seed, ctx, engine_kwargs):
        engine = StatsEngine(**engine_kwargs)
        engine.chunk_size = 2
        for n in range(5):
            seed.load(order_number=f"ORD-{n}")

        assert engine.recalculate_org_stats(ctx.org_id).load_counts["Open"] == 5

    def test_all_orgs_isolates_failures(self, db, seed, stats_engine, monkeypatch):
        seed.load()
        seed.load(org_id="org_b")
        original = stats_engine.recalculate_org_stats

        def flaky(org_id):
            if org_id == "org_b":
                raise RuntimeError("database timeout")
            return original(org_id)

        monkeypatch.setattr(stats_engine, "recalculate_org_stats", flaky)

        outcome = stats_engine.execute()

        assert [r.org_id for r in outcome.results] == ["org_test"]
        assert outcome.failed_orgs == {"org_b": "database timeout"}
