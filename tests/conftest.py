"""Pytest configuration and shared fixtures."""

from collections.abc import Iterator
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import pytest

from freightcore.core.config import ConfigManager
from freightcore.core.context import RequestContext
from freightcore.core.database import Database
from freightcore.data.models import (
    CarrierPartnership,
    ContractLane,
    DispatchLeg,
    Invoice,
    Load,
    LoadStop,
    OrgIntegration,
    ProfileAssignment,
    RateProfile,
    RateRule,
)
from freightcore.data.models.enums import (
    InvoiceStatus,
    LoadType,
    ProfileType,
    RateType,
    RuleCategory,
    StopType,
    TriggerEvent,
)
from freightcore.tools.audit import MemoryAuditSink
from freightcore.tools.shipment_source import (
    RejectedShipment,
    Shipment,
    ShipmentBatch,
    ShipmentCredentials,
    ShipmentStop,
)

ORG_ID = "org_test"
CONFIG_DIR = Path(__file__).parent.parent / "config"


@pytest.fixture
def db() -> Iterator[Database]:
    """In-memory database with the full schema.

    Yields:
        Database: Fresh database for one test
    """
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def config_manager() -> ConfigManager:
    """Config manager reading the repository's config/config.yaml."""
    return ConfigManager(config_dir=CONFIG_DIR)


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(org_id=ORG_ID, user_id="user_1", user_name="Dana Dispatcher")


@pytest.fixture
def engine_kwargs(db, config_manager, audit_sink) -> dict[str, Any]:
    """Keyword arguments every engine under test is built with."""
    return {"db": db, "config_manager": config_manager, "audit_sink": audit_sink}


class Seeder:
    """Inserts test rows, each in its own unit of work."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def _add(self, obj: Any) -> Any:
        with self.db.session() as session:
            session.add(obj)
        return obj

    def load(self, **fields: Any) -> Load:
        defaults = {
            "org_id": ORG_ID,
            "order_number": "ORD-1",
            "load_type": LoadType.CONTRACT,
            "parsed_hcr": "ABC123",
            "parsed_trip_number": "7",
            "stop_count": 2,
            "effective_miles": Decimal("100"),
        }
        return self._add(Load(**{**defaults, **fields}))

    def stop(self, load: Load, sequence: int, **fields: Any) -> LoadStop:
        defaults = {
            "org_id": load.org_id,
            "load_id": load.id,
            "sequence_number": sequence,
            "stop_type": StopType.PICKUP if sequence == 1 else StopType.DELIVERY,
        }
        return self._add(LoadStop(**{**defaults, **fields}))

    def leg(self, load: Load, **fields: Any) -> DispatchLeg:
        defaults = {
            "org_id": load.org_id,
            "load_id": load.id,
            "sequence": 1,
            "leg_loaded_miles": Decimal("100"),
            "leg_empty_miles": Decimal("0"),
        }
        return self._add(DispatchLeg(**{**defaults, **fields}))

    def profile(
        self,
        name: str = "Standard",
        profile_type: ProfileType = ProfileType.DRIVER,
        is_active: bool = True,
    ) -> RateProfile:
        return self._add(
            RateProfile(org_id=ORG_ID, name=name, profile_type=profile_type, is_active=is_active)
        )

    def rule(
        self,
        profile: RateProfile,
        trigger_event: TriggerEvent,
        rate_amount: str,
        category: RuleCategory = RuleCategory.BASE,
        name: Optional[str] = None,
        min_threshold: Optional[str] = None,
        max_cap: Optional[str] = None,
        is_active: bool = True,
    ) -> RateRule:
        return self._add(
            RateRule(
                profile_id=profile.id,
                name=name or trigger_event.value.replace("_", " ").title(),
                category=category,
                trigger_event=trigger_event,
                rate_amount=Decimal(rate_amount),
                min_threshold=Decimal(min_threshold) if min_threshold is not None else None,
                max_cap=Decimal(max_cap) if max_cap is not None else None,
                is_active=is_active,
            )
        )

    def assignment(
        self,
        profile: RateProfile,
        subject_id: str,
        subject_type: ProfileType = ProfileType.DRIVER,
        is_default: bool = False,
    ) -> ProfileAssignment:
        return self._add(
            ProfileAssignment(
                org_id=ORG_ID,
                subject_type=subject_type,
                subject_id=str(subject_id),
                profile_id=profile.id,
                is_default=is_default,
            )
        )

    def partnership(self, name: str = "Acme Carriers", **fields: Any) -> CarrierPartnership:
        return self._add(CarrierPartnership(org_id=ORG_ID, carrier_name=name, **fields))

    def lane(
        self,
        hcr: str = "ABC123",
        trip_number: str = "7",
        rate: str = "2.50",
        rate_type: RateType = RateType.PER_MILE,
        **fields: Any,
    ) -> ContractLane:
        defaults = {
            "org_id": ORG_ID,
            "customer_id": "cust_1",
            "customer_name": "USPS Chicago",
            "contract_name": f"{hcr} Trip {trip_number}",
        }
        return self._add(
            ContractLane(
                **{**defaults, **fields},
                hcr=hcr,
                trip_number=trip_number,
                rate=Decimal(rate),
                rate_type=rate_type,
            )
        )

    def invoice(self, load: Load, status: InvoiceStatus = InvoiceStatus.DRAFT, **fields: Any) -> Invoice:
        return self._add(Invoice(org_id=load.org_id, load_id=load.id, status=status, **fields))

    def integration(self, **fields: Any) -> OrgIntegration:
        defaults = {"org_id": ORG_ID, "credentials": {"apiKey": "fk_test"}}
        return self._add(OrgIntegration(**{**defaults, **fields}))


@pytest.fixture
def seed(db) -> Seeder:
    return Seeder(db)


class FakeShipmentSource:
    """Shipment source returning fixed shipments and rejected payloads, or raising a fixed error."""

    def __init__(
        self,
        shipments: Optional[list[Shipment]] = None,
        error: Optional[Exception] = None,
        rejected: Optional[list[RejectedShipment]] = None,
    ) -> None:
        self.shipments = shipments or []
        self.rejected = rejected or []
        self.error = error
        self.calls: list[tuple[ShipmentCredentials, datetime]] = []

    def fetch_shipments(self, credentials: ShipmentCredentials, since: datetime) -> ShipmentBatch:
        self.calls.append((credentials, since))
        if self.error is not None:
            raise self.error
        return ShipmentBatch(shipments=list(self.shipments), rejected=list(self.rejected))


@pytest.fixture
def fake_source() -> FakeShipmentSource:
    return FakeShipmentSource()


def make_shipment(
    shipment_id: str = "9000001",
    hcr: Optional[str] = "ABC123",
    trip: Optional[str] = "7",
    updated_at: Optional[str] = "2026-10-18T12:00:00Z",
    status: str = "IN_TRANSIT",
    **fields: Any,
) -> Shipment:
    """Two-stop shipment of roughly 100 miles."""
    defaults: dict[str, Any] = {
        "load_number": f"LN-{shipment_id}",
        "weight": 12000.0,
        "commodity": "Mail",
        "shipper_name": "USPS",
        "total_distance_in_meters": 160934.0,
        "stops": [
            ShipmentStop(
                external_stop_id=f"{shipment_id}-1",
                sequence=1,
                stop_type="PICKUP",
                city="Chicago",
                state="IL",
                appointment_time="2026-10-18T08:00:00Z",
            ),
            ShipmentStop(
                external_stop_id=f"{shipment_id}-2",
                sequence=2,
                stop_type="DELIVERY",
                city="Milwaukee",
                state="WI",
                appointment_time="2026-10-18T11:00:00Z",
            ),
        ],
    }
    return Shipment(
        id=shipment_id,
        hcr=hcr,
        trip=trip,
        updated_at=updated_at,
        status=status,
        **{**defaults, **fields},
    )
