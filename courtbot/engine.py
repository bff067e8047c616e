"""
Scheduling engine.

Keeps one ticker task per live target id, fires the matching executor on
every tick and owns the completion path that retires a target after a
successful booking. Per target id the lifecycle is:

    Unscheduled -> Scheduled -> (Firing)* -> Removed
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping

import pytz

from courtbot.config import BurstPolicy, EngineSettings, PollingPolicy
from courtbot.errors import PersistenceError, SchedulingInvariantError
from courtbot.executors import BurstExecutor, PollingExecutor
from courtbot.gateway import ReservationGateway
from courtbot.models import BurstTarget, Target
from courtbot.notifier import CampaignExpired, Notifier, TargetAdded, TargetRemoved
from courtbot.store import CampaignStore

logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    target_id: str
    kind: str
    interval: float
    ticker: asyncio.Task | None = None


class SchedulingEngine:
    def __init__(
        self,
        store: CampaignStore,
        gateway: ReservationGateway,
        notifier: Notifier,
        settings: EngineSettings,
        *,
        now: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.notifier = notifier
        self.settings = settings
        self._now = now or (lambda: datetime.now(pytz.utc))
        self._sleep = sleep

        self._jobs: dict[str, ScheduledJob] = {}
        self._completed: set[str] = set()
        # Keyed by target id; outlives re-arming and reloads
        self._firings: dict[str, asyncio.Task] = {}

        self.polling = PollingExecutor(
            gateway,
            notifier,
            settings,
            complete=self.complete,
            is_live=self.is_live,
        )
        self.burst = BurstExecutor(
            gateway,
            notifier,
            settings.burst,
            complete=self.complete,
            is_enabled=lambda: self.store.enabled,
            is_live=self.is_live,
            clock=clock,
            sleep=sleep,
        )

    @property
    def enabled(self) -> bool:
        return self.store.enabled

    @property
    def scheduled_ids(self) -> list[str]:
        return sorted(self._jobs)

    def job(self, target_id: str) -> ScheduledJob | None:
        return self._jobs.get(target_id)

    def firing(self, target_id: str) -> asyncio.Task | None:
        return self._firings.get(target_id)

    def is_firing(self, target_id: str) -> bool:
        task = self._firings.get(target_id)
        return task is not None and not task.done()

    def is_live(self, target_id: str) -> bool:
        return target_id in self.store and target_id not in self._completed

    def _policy_for(self, target: Target) -> PollingPolicy | BurstPolicy:
        if isinstance(target, BurstTarget):
            return self.settings.burst
        return self.settings.polling

    # --- Scheduling ---

    def start(self) -> None:
        self.store.load()
        armed = self.reconcile()
        logger.info(
            f"Scheduling engine started ({'ENABLED' if self.enabled else 'DISABLED'}, "
            f"{armed} job(s) armed)"
        )

    def arm(self, target: Target) -> bool:
        """
        Schedule a ticker for a target that is inside its lead window.

        Arming replaces any existing job for the same id.

        Returns:
            True if a ticker was armed
        """
        if target.id in self._completed:
            logger.debug(f"Target {target.id} already completed, not arming")
            return False

        policy = self._policy_for(target)
        tz = self.settings.tz
        now = self._now()

        if target.is_expired(now, tz):
            logger.info(f"Target {target.id} has expired, not arming")
            return False

        days_until = target.days_until(now, tz)
        if days_until > policy.lead_window_days:
            logger.debug(
                f"Target {target.id} is {days_until:.1f} days out "
                f"(window {policy.lead_window_days}), not arming yet"
            )
            return False

        previous = self._jobs.pop(target.id, None)
        if previous is not None and previous.ticker is not None:
            previous.ticker.cancel()
        job = ScheduledJob(target.id, target.kind, policy.tick_interval_seconds)

        self._jobs[target.id] = job
        job.ticker = asyncio.create_task(self._tick_loop(job), name=f"ticker-{target.id}")
        logger.info(
            f"Armed {target.kind} job for {target.id} every {job.interval}s "
            f"({days_until:.1f} days out)"
        )
        return True

    def unschedule(self, target_id: str) -> bool:
        """Cancel the ticker for a target. An in-flight firing is left to finish."""
        job = self._jobs.pop(target_id, None)
        if job is None:
            return False
        if job.ticker is not None:
            job.ticker.cancel()
        logger.debug(f"Unscheduled {target_id}")
        return True

    def unschedule_all(self) -> None:
        for target_id in list(self._jobs):
            self.unschedule(target_id)

    async def _tick_loop(self, job: ScheduledJob) -> None:
        try:
            while True:
                await self._sleep(job.interval)
                if self._jobs.get(job.target_id) is not job:
                    raise SchedulingInvariantError(
                        f"Ticker for {job.target_id} is no longer the registered job"
                    )
                self.trigger(job.target_id)
        except SchedulingInvariantError as e:
            logger.error(f"{e}; pulling its scheduling")
            self.unschedule(job.target_id)

    def trigger(self, target_id: str) -> bool:
        """
        Start a firing for a target unless the previous one is still running.

        Returns:
            True if a new firing was started
        """
        if target_id not in self._jobs:
            return False
        if self.is_firing(target_id):
            logger.debug(f"Previous firing for {target_id} still running, skipping tick")
            return False

        task = asyncio.create_task(self.fire(target_id), name=f"fire-{target_id}")
        self._firings[target_id] = task
        task.add_done_callback(lambda done: self._forget_firing(target_id, done))
        return True

    def _forget_firing(self, target_id: str, task: asyncio.Task) -> None:
        if self._firings.get(target_id) is task:
            del self._firings[target_id]

    async def fire(self, target_id: str) -> None:
        if not self.store.enabled:
            logger.debug(f"Campaigns disabled, skipping {target_id}")
            return
        if target_id in self._completed:
            return

        target = self.store.get(target_id)
        if target is None:
            logger.debug(f"Target {target_id} is gone, unscheduling")
            self.unschedule(target_id)
            return

        if target.is_expired(self._now(), self.settings.tz):
            logger.info(f"Target {target_id} has expired, unscheduling")
            self.unschedule(target_id)
            return

        try:
            if isinstance(target, BurstTarget):
                await self.burst.run(target)
            else:
                await self.polling.run(target)
        except Exception as e:
            logger.exception(f"Unexpected error firing {target_id}: {e}")

    def complete(self, target_id: str) -> bool:
        """
        Retire a target after a successful booking.

        Only the first caller for an id gets True; later callers (a concurrent
        firing that also succeeded) get False and must not notify.
        """
        if target_id in self._completed:
            return False

        self._completed.add(target_id)
        self.unschedule(target_id)
        try:
            self.store.remove(target_id)
        except PersistenceError as e:
            logger.exception(f"Booked {target_id} but failed to remove it from the store: {e}")
        logger.info(f"Target {target_id} completed")
        return True

    # --- Operator operations ---

    def add_target(self, raw: Target | Mapping[str, Any]) -> Target:
        target = self.store.add(raw)
        self.notifier.notify(TargetAdded.from_target(target))
        if self.store.enabled:
            self.arm(target)
        return target

    def remove_target(self, target_id: str) -> bool:
        removed = self.store.remove(target_id)
        self.unschedule(target_id)
        if removed:
            self.notifier.notify(TargetRemoved(target_id))
        return removed

    def enable(self) -> int:
        self.store.set_enabled(True)
        return self.reconcile()

    def disable(self) -> None:
        # Jobs stay armed; every firing checks the flag
        self.store.set_enabled(False)

    def reload(self) -> int:
        """
        Re-read the store and bring the schedule in line with it.

        Jobs for unchanged targets keep their tickers and in-flight firings;
        a disabled store leaves jobs armed. Changed targets are re-armed.

        Returns:
            Number of newly armed jobs

        Raises:
            PersistenceError: If the store could not be read; the schedule is untouched
        """
        before = {target.id: target for target in self.store.list()}
        self.store.load()

        for target in self.store.list():
            previous = before.get(target.id)
            if target.id in self._jobs and previous is not None and previous != target:
                if not self.arm(target):
                    self.unschedule(target.id)

        armed = self.reconcile()
        logger.info(f"Reloaded campaigns, {armed} job(s) armed")
        return armed

    def reconcile(self) -> int:
        """
        Bring the job map in line with the store.

        Drops jobs whose target is gone and, while enabled, arms every
        eligible target that has no job yet.

        Returns:
            Number of newly armed jobs
        """
        live_ids = {target.id for target in self.store.list()}
        for target_id in list(self._jobs):
            if target_id not in live_ids:
                self.unschedule(target_id)

        if not self.store.enabled:
            return 0

        armed = 0
        for target in self.store.list():
            if target.id not in self._jobs and self.arm(target):
                armed += 1
        return armed

    def cleanup_expired(self) -> int:
        count = self.store.expire_by_date(self._now())
        self.reconcile()
        if count:
            self.notifier.notify(CampaignExpired(count))
        return count

    def cleanup_beyond(self, days: float) -> int:
        count = self.store.expire_by_lead_window(days, self._now())
        self.reconcile()
        if count:
            self.notifier.notify(CampaignExpired(count))
        return count

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.store.enabled,
            "targets": len(self.store.list()),
            "scheduled": self.scheduled_ids,
            "firing": sorted(i for i in self._firings if self.is_firing(i)),
            "active_bursts": sorted(self.burst.active_sessions),
            "completed": len(self._completed),
        }

    async def shutdown(self) -> None:
        tasks = [job.ticker for job in self._jobs.values() if job.ticker is not None]
        tasks.extend(self._firings.values())
        self._jobs.clear()
        self._firings.clear()

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduling engine stopped")
