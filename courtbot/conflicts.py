"""
Availability conflict detection.

Decides, from the raw list of existing bookings, which courts are free for a
desired window. All comparisons happen on aware UTC instants because the API
reports timestamps in UTC while targets are entered in the facility's local
time.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Sequence

import pytz

from courtbot.models import ReservationRecord, TimeWindow

logger = logging.getLogger(__name__)


def to_instant(value: str | datetime | None) -> datetime | None:
    """
    Normalize an API timestamp to an aware UTC datetime.

    Args:
        value: ISO string ("2025-11-13T14:00:00Z", offsets allowed) or datetime

    Returns:
        Aware UTC datetime, or None if the value cannot be parsed
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        # The API reports UTC; naive values are taken as such
        parsed = pytz.utc.localize(parsed)
    return parsed.astimezone(pytz.utc)


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open overlap test: touching at a boundary is not a conflict."""
    return a_start < b_end and a_end > b_start


def has_conflict(window: TimeWindow, records: Iterable[ReservationRecord]) -> bool:
    """
    Check whether any real booking overlaps the desired window.

    Empty-slot records (reservation id <= 0) never conflict. A real booking
    with an unparseable start or end is treated as a conflict.
    """
    for record in records:
        if not record.is_booking:
            continue

        start = to_instant(record.start)
        end = to_instant(record.end)
        if start is None or end is None:
            logger.warning(
                f"Unparseable times on reservation {record.reservation_id} "
                f"(court {record.resource_id}): {record.start!r} - {record.end!r}"
            )
            return True

        if intervals_overlap(window.start, window.end, start, end):
            return True

    return False


def resource_sort_key(resource_id: str | int) -> tuple[int, int, str]:
    text = str(resource_id)
    if text.isdigit():
        return (0, int(text), text)
    return (1, 0, text)


def find_free_resources(
    records: Iterable[ReservationRecord],
    resource_ids: Sequence[str | int],
    window: TimeWindow,
) -> list[str | int]:
    """
    Find courts with no booking overlapping the window.

    Args:
        records: Every reservation record returned for the day
        resource_ids: Courts to consider
        window: Desired booking window

    Returns:
        Conflict-free court ids in ascending order
    """
    by_resource: dict[str, list[ReservationRecord]] = defaultdict(list)
    for record in records:
        by_resource[str(record.resource_id)].append(record)

    candidates = dict.fromkeys(resource_ids)
    free = [
        resource_id
        for resource_id in candidates
        if not has_conflict(window, by_resource.get(str(resource_id), ()))
    ]
    return sorted(free, key=resource_sort_key)
