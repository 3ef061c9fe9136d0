"""
External shipment source integration.

Provides:
- Shipment / ShipmentStop models normalized from the provider payload
- ShipmentCredentials with the supported auth modes
- HttpShipmentSource: paginated httpx client for the FourKites shipments API
"""

import base64
import json
import math
import re
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx
import structlog
from pydantic import BaseModel, Field

from freightcore.core.config import ConfigManager, get_config
from freightcore.core.errors import ShipmentSourceError

logger = structlog.get_logger(__name__)

ACCEPT_HEADER = "application/vnd.fourkites.v1+json"
TRIP_PATTERN = re.compile(r"^\d{1,4}$")


class ShipmentStop(BaseModel):
    """One stop on an external shipment."""

    external_stop_id: Optional[str] = None
    sequence: Optional[int] = None
    stop_type: Optional[str] = None
    stop_name: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    time_zone: Optional[str] = None
    appointment_time: Optional[str] = None


class Shipment(BaseModel):
    """Shipment as reported by the external tracking provider."""

    id: str
    hcr: Optional[str] = None
    trip: Optional[str] = None
    status: str = ""
    updated_at: Optional[str] = None
    load_number: Optional[str] = None
    weight: Optional[float] = None
    commodity: Optional[str] = None
    shipper_name: Optional[str] = None
    total_distance_in_meters: Optional[float] = None
    stops: list[ShipmentStop] = Field(default_factory=list)


class ShipmentCredentials(BaseModel):
    """Credentials for the shipment provider. Any one auth mode is enough."""

    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    client_secret: Optional[str] = None
    access_token: Optional[str] = None

    @classmethod
    def resolve(cls, raw: Any) -> Optional["ShipmentCredentials"]:
        """
        Build credentials from an integration record.

        Accepts a bare API key string, a JSON-encoded object, or a dict using
        either camelCase or snake_case keys.

        Returns:
            ShipmentCredentials, or None if nothing usable was supplied
        """
        if not raw:
            return None

        if isinstance(raw, str):
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                value = raw.strip()
                return cls(api_key=value) if value else None
            if not isinstance(parsed, dict):
                return None
            raw = parsed

        if not isinstance(raw, dict):
            return None

        def pick(*keys: str) -> Optional[str]:
            for key in keys:
                value = raw.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
            return None

        credentials = cls(
            api_key=pick("apiKey", "api_key"),
            username=pick("username"),
            password=pick("password"),
            client_secret=pick("clientSecret", "client_secret"),
            access_token=pick("accessToken", "access_token"),
        )
        if not (credentials.api_key or credentials.access_token or credentials.username):
            return None
        return credentials


class RejectedShipment(BaseModel):
    """A provider payload that could not be normalized."""

    shipment_id: Optional[str] = None
    reason: str


class ShipmentBatch(BaseModel):
    """Result of one fetch: usable shipments plus payloads that were rejected."""

    shipments: list[Shipment] = Field(default_factory=list)
    rejected: list[RejectedShipment] = Field(default_factory=list)


class ShipmentSource(Protocol):
    """Anything that can list shipments updated since a point in time."""

    def fetch_shipments(
        self, credentials: ShipmentCredentials, since: datetime
    ) -> ShipmentBatch: ...


def raw_shipment_id(raw: Any) -> Optional[str]:
    """Provider id of a raw payload, or None if it has none."""
    if not isinstance(raw, dict):
        return None
    value = raw.get("fourKitesShipmentID") or raw.get("id")
    return str(value) if value is not None else None


def map_shipment_fields(raw: dict[str, Any]) -> Shipment:
    """
    Normalize a provider shipment payload.

    HCR and trip are read from ``identifiers.referenceNumbers``. Entries
    containing ``:`` are qualifiers and ignored. With two or more values the
    first is the trip and the second the HCR. A lone value is a trip when it
    is a short number, otherwise an HCR.

    Raises:
        ValueError: If the payload has no shipment id or a field fails validation
    """
    shipment_id = raw_shipment_id(raw)
    if shipment_id is None:
        raise ValueError("Shipment payload has no fourKitesShipmentID or id")

    hcr: Optional[str] = raw.get("hcr")
    trip: Optional[str] = raw.get("trip")

    refs = (raw.get("identifiers") or {}).get("referenceNumbers")
    if isinstance(refs, list):
        valid_refs = [
            ref.strip() for ref in refs if isinstance(ref, str) and ref.strip() and ":" not in ref
        ]
        if len(valid_refs) >= 2:
            trip, hcr = valid_refs[0], valid_refs[1]
        elif len(valid_refs) == 1:
            if TRIP_PATTERN.match(valid_refs[0]):
                trip = valid_refs[0]
            else:
                hcr = valid_refs[0]

    stops = []
    for stop in raw.get("stops") or []:
        stop_id = stop.get("fourKitesStopID") or stop.get("id")
        stops.append(
            ShipmentStop(
                external_stop_id=str(stop_id) if stop_id is not None else None,
                sequence=stop.get("sequence"),
                stop_type=stop.get("stopType"),
                stop_name=stop.get("stopName"),
                city=stop.get("city"),
                state=stop.get("state"),
                postal_code=stop.get("postalCode"),
                latitude=stop.get("latitude"),
                longitude=stop.get("longitude"),
                time_zone=stop.get("timeZone"),
                appointment_time=(stop.get("schedule") or {}).get("appointmentTime"),
            )
        )

    return Shipment(
        id=shipment_id,
        hcr=hcr,
        trip=trip,
        status=raw.get("status") or "",
        updated_at=raw.get("updatedAt") or raw.get("updated_at"),
        load_number=raw.get("loadNumber"),
        weight=raw.get("weight"),
        commodity=raw.get("commodity"),
        shipper_name=raw.get("shipper_name") or raw.get("shipperName"),
        total_distance_in_meters=raw.get("totalDistanceInMeters"),
        stops=stops,
    )


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp to naive UTC, or None if it cannot be parsed."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _extract_page(data: Any) -> tuple[list[dict[str, Any]], int]:
    """Pull the shipment list and total count out of any known response shape."""
    if isinstance(data, dict) and isinstance(data.get("data"), dict) and isinstance(
        data["data"].get("shipments"), list
    ):
        return data["data"]["shipments"], int(data["data"].get("totalCount") or 0)
    if isinstance(data, list):
        return data, 0
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        return data["data"], int(data.get("totalCount") or data.get("total") or 0)
    if isinstance(data, dict) and isinstance(data.get("shipments"), list):
        return data["shipments"], int(data.get("totalCount") or data.get("total") or 0)
    logger.warning("unexpected_shipment_payload", payload=str(data)[:500])
    return [], 0


class HttpShipmentSource:
    """
    Shipment source backed by the FourKites REST API.

    The API has no server-side time filter, so every page is fetched and
    shipments are filtered on ``updated_at`` afterwards.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        config_manager: Optional[ConfigManager] = None,
    ) -> None:
        """
        Initialize the shipment source.

        Args:
            base_url: Shipments endpoint. Defaults to SHIPMENT_API_URL.
            client: Optional preconfigured httpx client (tests pass a MockTransport)
            config_manager: Optional config manager (defaults to global instance)
        """
        self.config_manager = config_manager or get_config()
        sync_config = self.config_manager.get_sync_config()

        self.shipments_url = self._normalize_url(base_url or self.config_manager.env.shipment_api_url)
        self.page_size = int(sync_config["page_size"])
        self.max_pages = int(sync_config["max_pages"])
        self.client = client or httpx.Client(timeout=float(sync_config["request_timeout_seconds"]))

    @staticmethod
    def _normalize_url(url: str) -> str:
        base = url.split("#", 1)[0].split("?", 1)[0].rstrip("/")
        if not base.endswith("/shipments"):
            base = f"{base}/shipments"
        return base

    @property
    def token_url(self) -> str:
        return f"{self.shipments_url}/oauth2/token"

    def _base_headers(self) -> dict[str, str]:
        return {"Accept": ACCEPT_HEADER, "Content-Type": "application/json"}

    def _get_oauth_token(self, credentials: ShipmentCredentials) -> str:
        response = self.client.post(
            self.token_url,
            headers={**self._base_headers(), "apikey": credentials.api_key or ""},
            json={
                "grant_type": "client_credentials",
                "client_id": credentials.api_key,
                "client_secret": credentials.client_secret,
            },
        )
        if response.is_error:
            raise ShipmentSourceError(
                f"OAuth Error ({response.status_code}): {response.reason_phrase} - {response.text}",
                status_code=response.status_code,
            )

        access_token = response.json().get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise ShipmentSourceError("OAuth token response missing access_token")
        return access_token

    def build_auth_headers(self, credentials: ShipmentCredentials) -> dict[str, str]:
        """
        Build request headers for the first matching auth mode.

        Order: explicit bearer token, OAuth client credentials, basic auth,
        bare API key.

        Raises:
            ShipmentSourceError: If no auth mode can be satisfied
        """
        headers = self._base_headers()
        if credentials.api_key:
            headers["apikey"] = credentials.api_key

        if credentials.access_token:
            headers["Authorization"] = f"Bearer {credentials.access_token}"
        elif credentials.api_key and credentials.client_secret:
            headers["Authorization"] = f"Bearer {self._get_oauth_token(credentials)}"
        elif credentials.username and credentials.password:
            token = base64.b64encode(
                f"{credentials.username}:{credentials.password}".encode()
            ).decode()
            headers["Authorization"] = f"Basic {token}"
        elif not credentials.api_key:
            raise ShipmentSourceError(
                "Missing credentials. Provide apiKey, username/password, or apiKey + clientSecret."
            )
        return headers

    def _get_page(self, headers: dict[str, str], page: int) -> httpx.Response:
        return self.client.get(
            self.shipments_url,
            headers=headers,
            params={"page": page, "perPage": self.page_size},
        )

    def fetch_shipments(self, credentials: ShipmentCredentials, since: datetime) -> ShipmentBatch:
        """
        Fetch all shipments updated at or after ``since``.

        Args:
            credentials: Provider credentials
            since: Naive UTC lower bound for ``updated_at``

        Returns:
            ShipmentBatch of normalized shipments (those with no ``updated_at``
            are kept) and the payloads that could not be normalized

        Raises:
            ShipmentSourceError: If auth fails or the first page cannot be read
        """
        headers = self.build_auth_headers(credentials)

        try:
            first = self._get_page(headers, 1)
        except httpx.TimeoutException as e:
            raise ShipmentSourceError(f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            raise ShipmentSourceError(f"Request failed: {e}") from e

        if first.is_error:
            raise ShipmentSourceError(
                f"API Error ({first.status_code}): {first.reason_phrase} - {first.text}",
                status_code=first.status_code,
            )

        raw_shipments, total_count = _extract_page(first.json())
        collected = list(raw_shipments)

        if total_count > 0:
            total_pages = math.ceil(total_count / self.page_size)
        else:
            total_pages = 1 if len(raw_shipments) < self.page_size else 10
        total_pages = min(total_pages, self.max_pages)

        logger.info(
            "shipment_page_fetched",
            page=1,
            total_pages=total_pages,
            total_count=total_count,
            fetched=len(raw_shipments),
        )

        for page in range(2, total_pages + 1):
            try:
                response = self._get_page(headers, page)
            except httpx.RequestError as e:
                logger.warning("shipment_page_failed", page=page, error=str(e))
                break
            if response.is_error:
                # Keep what was fetched so far
                logger.warning("shipment_page_failed", page=page, status_code=response.status_code)
                break

            page_shipments, _ = _extract_page(response.json())
            if not page_shipments:
                break
            collected.extend(page_shipments)

        batch = ShipmentBatch()
        for raw in collected:
            try:
                shipment = map_shipment_fields(raw)
            except (ValueError, TypeError, AttributeError) as e:
                # One bad payload must not cost the rest of the batch
                shipment_id = raw_shipment_id(raw)
                logger.warning("shipment_payload_rejected", shipment_id=shipment_id, error=str(e))
                batch.rejected.append(RejectedShipment(shipment_id=shipment_id, reason=str(e)))
                continue

            if not shipment.updated_at:
                batch.shipments.append(shipment)
                continue
            updated_at = parse_timestamp(shipment.updated_at)
            if updated_at is not None and updated_at >= since:
                batch.shipments.append(shipment)

        logger.info(
            "shipments_fetched",
            fetched=len(collected),
            kept=len(batch.shipments),
            rejected=len(batch.rejected),
            filtered_out=len(collected) - len(batch.shipments) - len(batch.rejected),
        )
        return batch
