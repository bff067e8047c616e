"""
Reservation watcher.

Periodically looks at the days the polling targets care about and reports
bookings made by other members since the previous check. Seen ids are kept
per date in the diskcache so restarts do not re-announce old bookings.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Callable

import diskcache
import pytz

from courtbot.errors import AuthenticationError, GatewayError
from courtbot.gateway import ReservationGateway
from courtbot.models import PollingTarget, ReservationRecord
from courtbot.notifier import NewReservations, Notifier
from courtbot.store import CampaignStore

logger = logging.getLogger(__name__)

SEEN_KEY_PREFIX = "reservations:"


class ReservationWatcher:
    def __init__(
        self,
        store: CampaignStore,
        gateway: ReservationGateway,
        notifier: Notifier,
        cache: diskcache.Cache,
        *,
        member_id: str = "",
        timezone: str = "America/Los_Angeles",
        now: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self._cache = cache
        self.member_id = str(member_id).strip()
        self._tz = pytz.timezone(timezone)
        self._now = now or (lambda: datetime.now(pytz.utc))
        self.last_check: datetime | None = None

    def _today(self) -> date:
        return self._now().astimezone(self._tz).date()

    def dates_to_check(self) -> list[date]:
        """Distinct, upcoming dates of the polling targets in ascending order."""
        today = self._today()
        dates = {
            target.date
            for target in self.store.list()
            if isinstance(target, PollingTarget) and target.date >= today
        }
        return sorted(dates)

    def seen_ids(self, day: date) -> set[int]:
        return set(self._cache.get(f"{SEEN_KEY_PREFIX}{day.isoformat()}", ()))

    def is_foreign(self, record: ReservationRecord) -> bool:
        if not record.reservation_id or record.reservation_id <= 0:
            return False
        return not (self.member_id and self.member_id in record.participant_ids)

    def detect_new(self, day: date, records: list[ReservationRecord]) -> list[int]:
        """
        Diff the current reservation ids for a day against the stored set.

        The stored set is replaced with the current one, so cancelled
        bookings drop out of it.
        """
        current = {r.reservation_id for r in records if self.is_foreign(r)}
        new_ids = sorted(current - self.seen_ids(day))
        self._cache.set(f"{SEEN_KEY_PREFIX}{day.isoformat()}", sorted(current))
        return new_ids

    def prune_past_dates(self) -> int:
        today = self._today().isoformat()
        removed = 0
        for key in list(self._cache):
            if not isinstance(key, str) or not key.startswith(SEEN_KEY_PREFIX):
                continue
            if key[len(SEEN_KEY_PREFIX):] < today:
                self._cache.delete(key)
                removed += 1
        if removed:
            logger.info(f"Cleaned up {removed} past date(s) from watcher state")
        return removed

    async def check_once(self) -> dict[str, list[int]]:
        """
        Run one check across every relevant date.

        Returns:
            New reservation ids keyed by ISO date (dates without news omitted)
        """
        self.last_check = self._now()
        self.prune_past_dates()

        dates = self.dates_to_check()
        if not dates:
            logger.debug("No dates to check, skipping reservation check")
            return {}

        found: dict[str, list[int]] = {}
        for day in dates:
            try:
                records = await self.gateway.query_bookings(day)
            except AuthenticationError as e:
                logger.error(f"Reservation check aborted, authentication failed: {e}")
                break
            except GatewayError as e:
                logger.error(f"Failed to check reservations for {day}: {e}")
                continue

            new_ids = self.detect_new(day, records)
            if new_ids:
                logger.info(f"Found {len(new_ids)} new reservation(s) for {day}")
                found[day.isoformat()] = new_ids
                self.notifier.notify(NewReservations(day.isoformat(), tuple(new_ids)))
            else:
                logger.debug(f"No new reservations found for {day}")

        return found

    async def run_forever(self, interval_minutes: float) -> None:
        logger.info(f"Reservation watcher running every {interval_minutes} minute(s)")
        while True:
            try:
                await self.check_once()
            except Exception as e:
                logger.exception(f"Reservation check failed: {e}")
            await asyncio.sleep(interval_minutes * 60)

    def stats(self) -> dict[str, Any]:
        breakdown = {
            key[len(SEEN_KEY_PREFIX):]: len(self._cache.get(key, ()))
            for key in list(self._cache)
            if isinstance(key, str) and key.startswith(SEEN_KEY_PREFIX)
        }
        return {
            "tracked_dates": len(breakdown),
            "tracked_reservations": sum(breakdown.values()),
            "dates": breakdown,
            "last_check": self.last_check.isoformat() if self.last_check else None,
        }
