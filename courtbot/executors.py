"""
Attempt executors: what happens when a target's ticker fires.

PollingExecutor waits for cancellations: one bulk query, conflict check
across the court range, then a booking attempt on every free court.

BurstExecutor races other members the moment a window opens: direct booking
attempts against one court, back to back, for a fixed burst duration.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from courtbot.config import BurstPolicy, EngineSettings
from courtbot.conflicts import find_free_resources
from courtbot.errors import AuthenticationError, GatewayError
from courtbot.gateway import ReservationGateway
from courtbot.models import BookingResult, BurstSession, BurstTarget, PollingTarget
from courtbot.notifier import (
    BurstExhausted,
    Notifier,
    ReservationFailure,
    ReservationSuccess,
)

logger = logging.getLogger(__name__)

CompleteCallback = Callable[[str], bool]
# True while the target is still stored and not yet completed
LivenessCheck = Callable[[str], bool]


class PollingExecutor:
    def __init__(
        self,
        gateway: ReservationGateway,
        notifier: Notifier,
        settings: EngineSettings,
        *,
        complete: CompleteCallback,
        is_live: LivenessCheck | None = None,
    ):
        self.gateway = gateway
        self.notifier = notifier
        self.settings = settings
        self._complete = complete
        self._is_live = is_live or (lambda target_id: True)

    async def run(self, target: PollingTarget) -> list[BookingResult]:
        """
        Check availability for a target and try every free court.

        Args:
            target: The polling target being fired

        Returns:
            One result per attempted court (empty when nothing was attempted)
        """
        window = target.window(self.settings.tz)

        try:
            records = await self.gateway.query_bookings(target.date)
        except AuthenticationError as e:
            logger.error(f"Authentication failed querying {target.date} for {target.id}: {e}")
            self.notifier.notify(
                ReservationFailure(target.id, None, f"Authentication failed: {e}")
            )
            return []
        except GatewayError as e:
            logger.warning(f"Availability query failed for {target.id}: {e}")
            return []

        free_courts = find_free_resources(records, self.settings.resource_ids, window)
        if not free_courts:
            logger.info(f"No free courts for {target.id} ({target.date} {target.desired_start})")
            return []

        logger.info(f"Free courts for {target.id}: {free_courts}")

        results: list[BookingResult] = []
        for resource_id in free_courts:
            resource_id = str(resource_id)
            if not self._is_live(target.id):
                logger.info(f"Target {target.id} was removed or completed, stopping attempts")
                break

            try:
                result = await self.gateway.attempt_booking(
                    resource_id, target.date, target.desired_start, target.duration
                )
            except AuthenticationError as e:
                logger.error(f"Authentication failed booking court {resource_id}: {e}")
                results.append(
                    BookingResult(
                        resource_id=resource_id,
                        success=False,
                        error=f"Authentication failed: {e}",
                    )
                )
                break
            except GatewayError as e:
                result = BookingResult(resource_id=resource_id, success=False, error=str(e))
            except Exception as e:
                logger.exception(f"Unexpected error booking court {resource_id}: {e}")
                result = BookingResult(resource_id=resource_id, success=False, error=str(e))

            if result.success:
                logger.info(f"Reservation successful on court {resource_id} for {target.id}")
            else:
                logger.warning(f"Failed to reserve court {resource_id}: {result.error}")
            results.append(result)

        if not self._is_live(target.id) and not any(r.success for r in results):
            return results

        self._report(target, results)
        return results

    def _report(self, target: PollingTarget, results: list[BookingResult]) -> None:
        successful = [r for r in results if r.success]
        failed = [r for r in results if not r.success]

        if successful:
            if not self._complete(target.id):
                logger.info(f"Target {target.id} was already completed by a concurrent run")
                return
            for result in successful:
                self.notifier.notify(
                    ReservationSuccess(target.id, result.resource_id, result.reference_number)
                )
            return

        if failed:
            summary = "; ".join(f"{r.resource_id}: {r.error}" for r in failed)
            self.notifier.notify(
                ReservationFailure(
                    target.id,
                    None,
                    f"All {len(failed)} attempt(s) failed - {summary}",
                )
            )


class BurstExecutor:
    def __init__(
        self,
        gateway: ReservationGateway,
        notifier: Notifier,
        policy: BurstPolicy,
        *,
        complete: CompleteCallback,
        is_enabled: Callable[[], bool],
        is_live: LivenessCheck | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.notifier = notifier
        self.policy = policy
        self._complete = complete
        self._is_enabled = is_enabled
        self._is_live = is_live or (lambda target_id: True)
        self._clock = clock
        self._sleep = sleep
        self._sessions: dict[str, BurstSession] = {}

    @property
    def active_sessions(self) -> dict[str, BurstSession]:
        return dict(self._sessions)

    def is_active(self, target_id: str) -> bool:
        return target_id in self._sessions

    async def run(self, target: BurstTarget) -> BurstSession | None:
        """
        Fire a burst of booking attempts for one target.

        Returns:
            The finished session, or None if a burst was already running
        """
        if target.id in self._sessions:
            logger.debug(f"Burst already active for {target.id}, skipping tick")
            return None

        session = BurstSession(target_id=target.id, started_at=self._clock())
        self._sessions[target.id] = session

        end = session.started_at + self.policy.burst_duration_seconds
        interval = self.policy.request_interval_seconds
        stopped_early = False

        logger.info(
            f"Starting burst for {target.id} on court {target.resource_id} "
            f"({self.policy.burst_duration_seconds}s @ {self.policy.request_interval_ms}ms)"
        )

        try:
            while self._clock() < end:
                if not self._is_enabled():
                    logger.info(f"Campaigns disabled, stopping burst for {target.id}")
                    stopped_early = True
                    break
                if not self._is_live(target.id):
                    logger.info(f"Target {target.id} was removed or completed, stopping burst")
                    stopped_early = True
                    break

                session.attempt_count += 1
                try:
                    result = await self.gateway.attempt_booking(
                        target.resource_id,
                        target.date,
                        target.desired_start,
                        target.duration,
                    )
                except AuthenticationError as e:
                    session.last_error = str(e)
                    logger.error(f"Authentication failed during burst for {target.id}: {e}")
                    self.notifier.notify(
                        ReservationFailure(
                            target.id, target.resource_id, f"Authentication failed: {e}"
                        )
                    )
                    stopped_early = True
                    break
                except GatewayError as e:
                    session.last_error = str(e)
                    logger.debug(f"Burst attempt {session.attempt_count} failed: {e}")
                except Exception as e:
                    session.last_error = str(e)
                    logger.warning(f"Unexpected error in burst attempt {session.attempt_count}: {e}")
                else:
                    if result.success:
                        session.succeeded = True
                        logger.info(
                            f"Burst won court {target.resource_id} for {target.id} "
                            f"after {session.attempt_count} attempt(s)"
                        )
                        if self._complete(target.id):
                            self.notifier.notify(
                                ReservationSuccess(
                                    target.id, target.resource_id, result.reference_number
                                )
                            )
                        break
                    session.last_error = result.error
                    logger.debug(f"Burst attempt {session.attempt_count} rejected: {result.error}")

                if self._clock() + interval >= end:
                    break
                await self._sleep(interval)

            if not session.succeeded and not stopped_early:
                logger.info(f"Burst for {target.id} exhausted after {session.attempt_count} attempts")
                self.notifier.notify(
                    BurstExhausted(
                        target.id,
                        target.resource_id,
                        session.attempt_count,
                        session.last_error,
                    )
                )
        finally:
            self._sessions.pop(target.id, None)

        return session
