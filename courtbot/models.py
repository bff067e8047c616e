"""
Data model for reservation campaigns and the records the API hands back.

Targets are a tagged variant: a PollingTarget searches every court in the
configured range, a BurstTarget fights for one fixed court.
"""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Annotated, Any, Literal, Mapping, Union

import pytz
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from courtbot.errors import TargetValidationError


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end) of aware UTC instants."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("TimeWindow bounds must be timezone-aware")
        if self.end <= self.start:
            raise ValueError("TimeWindow end must be after start")

    @classmethod
    def from_local(
        cls, day: dt.date, start: dt.time, duration_minutes: int, tz: pytz.BaseTzInfo
    ) -> TimeWindow:
        local_start = tz.localize(datetime.combine(day, start))
        start_utc = local_start.astimezone(pytz.utc)
        return cls(start_utc, start_utc + timedelta(minutes=duration_minutes))


class _TargetBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    date: dt.date
    desired_start: dt.time
    duration: int = Field(gt=0, description="Length of the booking in minutes")

    @field_validator("desired_start", mode="before")
    @classmethod
    def _parse_desired_start(cls, value: Any) -> Any:
        # Operators type "18:00"; fall through to pydantic for "18:00:00"
        if isinstance(value, str):
            try:
                return datetime.strptime(value.strip(), "%H:%M").time()
            except ValueError:
                return value
        return value

    def window(self, tz: pytz.BaseTzInfo) -> TimeWindow:
        return TimeWindow.from_local(self.date, self.desired_start, self.duration, tz)

    def starts_at(self, tz: pytz.BaseTzInfo) -> datetime:
        return self.window(tz).start

    def days_until(self, now: datetime, tz: pytz.BaseTzInfo) -> float:
        return (self.starts_at(tz) - now).total_seconds() / 86400

    def is_expired(self, now: datetime, tz: pytz.BaseTzInfo) -> bool:
        return self.starts_at(tz) < now


class PollingTarget(_TargetBase):
    kind: Literal["polling"] = "polling"


class BurstTarget(_TargetBase):
    kind: Literal["burst"] = "burst"
    resource_id: str = Field(min_length=1)

    @field_validator("resource_id", mode="before")
    @classmethod
    def _court_id_to_str(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


Target = PollingTarget | BurstTarget

TargetSchema = Annotated[Union[PollingTarget, BurstTarget], Field(discriminator="kind")]

target_adapter: TypeAdapter[Target] = TypeAdapter(TargetSchema)


def new_target_id(kind: str) -> str:
    return f"{kind}-{uuid.uuid4().hex[:8]}"


def parse_target(raw: Target | Mapping[str, Any]) -> Target:
    """
    Validate raw operator input into a Target.

    Args:
        raw: A target model or a mapping with a "kind" key

    Returns:
        PollingTarget or BurstTarget

    Raises:
        TargetValidationError: Listing every violated constraint
    """
    if isinstance(raw, (PollingTarget, BurstTarget)):
        return raw

    try:
        return target_adapter.validate_python(dict(raw))
    except PydanticValidationError as e:
        raise TargetValidationError(
            [_describe_error(error) for error in e.errors()]
        ) from e


def _describe_error(error: Mapping[str, Any]) -> str:
    # Drop the union tag from locations like ("burst", "duration")
    loc = [str(part) for part in error.get("loc", ()) if part not in ("polling", "burst")]
    where = ".".join(loc) if loc else "target"
    return f"{where}: {error.get('msg', 'invalid value')}"


@dataclass(frozen=True)
class ReservationRecord:
    """One booking (or empty slot) as reported by the reservation API."""

    reservation_id: int | None
    resource_id: str
    start: str | datetime | None
    end: str | datetime | None
    participant_ids: tuple[str, ...] = ()

    @property
    def is_booking(self) -> bool:
        # Unknown ids are treated as real bookings
        return self.reservation_id is None or self.reservation_id > 0

    @classmethod
    def from_api(cls, item: Mapping[str, Any]) -> ReservationRecord:
        raw_id = item.get("ReservationId", 0)
        try:
            reservation_id: int | None = int(raw_id or 0)
        except (TypeError, ValueError):
            reservation_id = None

        member_ids = item.get("MemberIds") or []
        if isinstance(member_ids, str):
            member_ids = [m for m in member_ids.split(",") if m.strip()]

        return cls(
            reservation_id=reservation_id,
            resource_id=str(item.get("CourtId", "")),
            start=item.get("Start"),
            end=item.get("End"),
            participant_ids=tuple(str(m).strip() for m in member_ids),
        )


@dataclass
class BookingResult:
    """Structured booking result."""

    resource_id: str
    success: bool
    error: str | None = None
    reference_number: str | None = None


@dataclass
class BurstSession:
    """In-flight burst state for one target."""

    target_id: str
    started_at: float
    attempt_count: int = 0
    succeeded: bool = False
    last_error: str | None = None
