"""Tests for the sync scheduler."""

from datetime import datetime, timedelta

import pytest

from conftest import FakeShipmentSource, make_shipment
from freightcore.data.models import OrgIntegration
from freightcore.engines.reconciliation import ShipmentReconciler
from freightcore.engines.scheduler import SyncScheduler

NOW = datetime(2026, 10, 18, 18, 0)


@pytest.fixture
def reconciler(engine_kwargs, fake_source) -> ShipmentReconciler:
    return ShipmentReconciler(source=fake_source, **engine_kwargs)


@pytest.fixture
def scheduler(engine_kwargs, reconciler) -> SyncScheduler:
    return SyncScheduler(reconciler=reconciler, **engine_kwargs)


def get_integration(db, integration_id) -> OrgIntegration:
    with db.session() as session:
        return session.get(OrgIntegration, integration_id)


class TestIsDue:
    def test_never_synced_is_due(self, scheduler):
        assert scheduler.is_due(OrgIntegration(org_id="org"), NOW)

    def test_custom_interval(self, scheduler):
        integration = OrgIntegration(org_id="org", interval_minutes=15, last_sync_time=NOW - timedelta(minutes=15))
        assert scheduler.is_due(integration, NOW)
        assert not scheduler.is_due(integration, NOW - timedelta(minutes=1))

    def test_default_interval(self, scheduler):
        integration = OrgIntegration(org_id="org", last_sync_time=NOW - timedelta(minutes=30))
        assert not scheduler.is_due(integration, NOW)
        assert scheduler.is_due(integration, NOW + timedelta(minutes=30))


class TestDispatch:
    def test_runs_due_and_skips_recent(self, seed, fake_source, scheduler):
        seed.integration()
        seed.integration(org_id="org_recent", last_sync_time=NOW - timedelta(minutes=5))
        fake_source.shipments = [make_shipment(hcr="NEW001")]

        report = scheduler.dispatch(NOW)

        assert [summary.org_id for summary in report.ran] == ["org_test"]
        assert report.not_due == ["org_recent"]
        assert report.failed == {}

    def test_disabled_integration_ignored(self, seed, fake_source, scheduler):
        seed.integration(is_enabled=False)

        report = scheduler.dispatch(NOW)

        assert report.ran == []
        assert report.not_due == []
        assert fake_source.calls == []

    def test_integration_lookback_used(self, seed, fake_source, scheduler):
        seed.integration(lookback_hours=72)

        scheduler.dispatch(NOW)

        assert fake_source.calls[0][1] == NOW - timedelta(hours=72)

    def test_cursor_resumes_on_next_tick(self, db, seed, fake_source, reconciler, scheduler):
        integration = seed.integration()
        reconciler.chunk_size = 1
        fake_source.shipments = [
            make_shipment(shipment_id="1", hcr="NEW001"),
            make_shipment(shipment_id="2", hcr="NEW001"),
        ]

        first = scheduler.dispatch(NOW)
        assert get_integration(db, integration.id).sync_cursor == "2026-10-18T12:00:00|1"

        second = scheduler.dispatch(NOW + timedelta(minutes=60))

        assert first.ran[0].quarantined == 1
        assert second.ran[0].quarantined == 1
        stored = get_integration(db, integration.id)
        assert stored.sync_cursor is None
        assert stored.last_sync_time == NOW + timedelta(minutes=60)
        assert stored.last_sync_stats["lastSyncStatus"] == "success"

    def test_source_failure_recorded_as_partial(self, db, seed, engine_kwargs):
        integration = seed.integration()
        source = FakeShipmentSource(error=RuntimeError("Request timed out"))
        scheduler = SyncScheduler(reconciler=ShipmentReconciler(source=source, **engine_kwargs), **engine_kwargs)

        report = scheduler.dispatch(NOW)

        assert report.ran[0].errors == 1
        stats = get_integration(db, integration.id).last_sync_stats
        assert stats["lastSyncStatus"] == "partial"
        assert stats["errorMessage"].startswith("1 shipment failed to process.")

    def test_failing_integration_does_not_stop_others(self, seed, fake_source, reconciler, scheduler, monkeypatch):
        seed.integration(org_id="org_broken")
        seed.integration()
        original = reconciler.process_shipment_batch

        def flaky(org_id, *args, **kwargs):
            if org_id == "org_broken":
                raise RuntimeError("database is locked")
            return original(org_id, *args, **kwargs)

        monkeypatch.setattr(reconciler, "process_shipment_batch", flaky)

        report = scheduler.dispatch(NOW)

        assert report.failed == {"org_broken": "database is locked"}
        assert [summary.org_id for summary in report.ran] == ["org_test"]
