"""
Async gateway to the CourtReserve API.

Two calls matter to the booking core: the member-expanded scheduler query,
which returns every booking (and empty slot) for a day, and the reservation
POST. Everything else about the wire format stays inside this module.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, time
from typing import Any, Protocol, Sequence

import httpx
import pytz

from courtbot.auth import AuthManager
from courtbot.config import BookingConstants, GatewayCredentials
from courtbot.errors import AuthenticationError, TransientGatewayError
from courtbot.models import BookingResult, ReservationRecord

logger = logging.getLogger(__name__)

AUTH_STATUS_CODES = (401, 403)


class ReservationGateway(Protocol):
    """What the executors need from the reservation API."""

    async def query_bookings(self, day: date) -> list[ReservationRecord]: ...

    async def attempt_booking(
        self, resource_id: str, day: date, start: time, duration: int
    ) -> BookingResult: ...


# --- Request builders ---


def build_scheduler_query(
    day: date,
    credentials: GatewayCredentials,
    resource_ids: Sequence[str],
    timezone: str,
) -> dict[str, str]:
    """
    Build the query parameters for the member-expanded scheduler endpoint.

    Args:
        day: Facility-local date to fetch
        credentials: Account identifiers
        resource_ids: Courts to include
        timezone: Facility timezone name

    Returns:
        Query parameters, with the request body JSON-encoded in "jsonData"
    """
    tz = pytz.timezone(timezone)
    local_midnight = tz.localize(datetime.combine(day, time(0, 0)))
    start_utc = local_midnight.astimezone(pytz.utc)

    json_data = {
        "startDate": start_utc.isoformat(timespec="milliseconds").replace(
            "+00:00", "Z"
        ),
        "orgId": credentials.org_id,
        "TimeZone": timezone,
        "Date": start_utc.strftime("%a, %d %b %Y %H:%M:%S GMT"),
        "KendoDate": {"Year": day.year, "Month": day.month, "Day": day.day},
        "UiCulture": BookingConstants.UI_CULTURE,
        "CostTypeId": credentials.cost_type_id,
        "CustomSchedulerId": credentials.custom_scheduler_id,
        "ReservationMinInterval": BookingConstants.RESERVATION_MIN_INTERVAL,
        "SelectedCourtIds": ",".join(str(r) for r in resource_ids),
        "SelectedInstructorIds": "",
        "MemberIds": credentials.member_id,
        "MemberFamilyId": "",
        "EmbedCodeId": "",
        "HideEmbedCodeReservationDetails": "True",
    }

    return {
        "id": credentials.org_id,
        "RequestData": credentials.scheduler_request_data,
        "sort": "",
        "group": "",
        "filter": "",
        "jsonData": json.dumps(json_data),
    }


def create_reservation_payload(
    credentials: GatewayCredentials,
    resource_id: str,
    day: date,
    start: time,
    duration: int,
) -> dict[str, Any]:
    return {
        "facilityId": credentials.facility_id,
        "court": resource_id,
        "date": day.isoformat(),
        "startTime": start.strftime("%H:%M"),
        "duration": duration,
        "userId": credentials.user_id,
    }


def create_http_client(timeout: float = BookingConstants.DEFAULT_TIMEOUT) -> httpx.AsyncClient:
    """
    Create HTTP client with standard headers.

    Returns:
        Configured HTTP client
    """
    client = httpx.AsyncClient(timeout=timeout)
    client.headers.update(
        {
            "User-Agent": BookingConstants.USER_AGENT,
            "Accept-Language": BookingConstants.ACCEPT_LANGUAGE,
            "Accept": BookingConstants.ACCEPT,
            "Origin": BookingConstants.ORIGIN,
            "Referer": BookingConstants.REFERER,
        }
    )
    return client


# --- Gateway ---


class CourtReserveGateway:
    """ReservationGateway backed by httpx."""

    def __init__(
        self,
        credentials: GatewayCredentials,
        auth: AuthManager,
        *,
        resource_ids: Sequence[str],
        timezone: str = "America/Los_Angeles",
        client: httpx.AsyncClient | None = None,
        timeout: float = BookingConstants.DEFAULT_TIMEOUT,
    ):
        self.credentials = credentials
        self.auth = auth
        self.resource_ids = list(resource_ids)
        self.timezone = timezone
        self.timeout = timeout
        self._client = client or create_http_client(timeout)

    async def __aenter__(self) -> CourtReserveGateway:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    def _auth_headers(self) -> dict[str, str]:
        token = self.auth.get_token()
        if not token:
            raise AuthenticationError("No bearer token available")
        return {"Authorization": f"Bearer {token}"}

    async def query_bookings(self, day: date) -> list[ReservationRecord]:
        """
        Fetch every reservation record for a day.

        Args:
            day: Facility-local date

        Returns:
            Reservation records, including empty-slot entries

        Raises:
            AuthenticationError: On 401/403 or a missing token
            TransientGatewayError: On network errors, timeouts, other HTTP
                failures or an unreadable body
        """
        params = build_scheduler_query(
            day, self.credentials, self.resource_ids, self.timezone
        )

        try:
            response = await self._client.get(
                self.credentials.scheduler_url,
                params=params,
                headers=self._auth_headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code in AUTH_STATUS_CODES:
                logger.error(f"{e.response.status_code} from scheduler - token rejected")
                raise AuthenticationError(
                    f"Scheduler query rejected with HTTP {e.response.status_code}"
                ) from e
            raise TransientGatewayError(
                f"Scheduler query failed: HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise TransientGatewayError(f"Scheduler query timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransientGatewayError(f"Scheduler query failed: {e}") from e
        except ValueError as e:
            raise TransientGatewayError(f"Invalid scheduler response: {e}") from e

        items = payload.get("Data") if isinstance(payload, dict) else None
        if items is None:
            items = []
        if not isinstance(items, list):
            raise TransientGatewayError("Invalid scheduler response: Data is not a list")

        records = [ReservationRecord.from_api(item) for item in items if isinstance(item, dict)]
        logger.debug(f"Fetched {len(records)} scheduler records for {day}")
        return records

    async def attempt_booking(
        self, resource_id: str, day: date, start: time, duration: int
    ) -> BookingResult:
        """
        Create a single reservation.

        Args:
            resource_id: Court to book
            day: Facility-local date
            start: Facility-local start time
            duration: Length in minutes

        Returns:
            Booking result with success status and details

        Raises:
            AuthenticationError: On 401/403 or a missing token
            TransientGatewayError: On network errors, timeouts or an unreadable body
        """
        booking_url = self.credentials.api_base_url.rstrip("/") + "/reservations"
        payload = create_reservation_payload(
            self.credentials, resource_id, day, start, duration
        )

        try:
            response = await self._client.post(
                booking_url,
                json=payload,
                headers=self._auth_headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            resp_json = response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code in AUTH_STATUS_CODES:
                logger.error(f"{e.response.status_code} on reservation - token rejected")
                raise AuthenticationError(
                    f"Reservation rejected with HTTP {e.response.status_code}"
                ) from e

            error_msg = f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            return BookingResult(resource_id=resource_id, success=False, error=error_msg)
        except httpx.TimeoutException as e:
            raise TransientGatewayError(f"Reservation timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransientGatewayError(f"Reservation request failed: {e}") from e
        except ValueError as e:
            raise TransientGatewayError(f"Invalid reservation response: {e}") from e

        logger.debug(f"Reservation response: {resp_json}")

        if isinstance(resp_json, dict) and resp_json.get("success") is False:
            error_msg = resp_json.get("message") or str(resp_json.get("errors"))
            return BookingResult(resource_id=resource_id, success=False, error=error_msg)

        reference_number = None
        if isinstance(resp_json, dict):
            reference = resp_json.get("id") or resp_json.get("referenceNumber")
            reference_number = str(reference) if reference is not None else None

        return BookingResult(
            resource_id=resource_id, success=True, reference_number=reference_number
        )
