"""
Operator notifications.

The booking core reports outcomes through the Notifier protocol. notify()
must return immediately and never raise; delivery happens elsewhere.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol

import httpx

from courtbot.config import BookingConstants
from courtbot.models import Target

logger = logging.getLogger(__name__)


# --- Events ---


@dataclass(frozen=True)
class TargetAdded:
    target_id: str
    kind: str
    date: str
    desired_start: str
    duration: int
    resource_id: str | None = None

    level = logging.INFO

    @classmethod
    def from_target(cls, target: Target) -> TargetAdded:
        return cls(
            target_id=target.id,
            kind=target.kind,
            date=target.date.isoformat(),
            desired_start=target.desired_start.strftime("%H:%M"),
            duration=target.duration,
            resource_id=getattr(target, "resource_id", None),
        )

    def describe(self) -> str:
        court = f" on court {self.resource_id}" if self.resource_id else ""
        return (
            f"➕ Added {self.kind} target {self.target_id}: {self.date} "
            f"{self.desired_start} ({self.duration} min){court}"
        )


@dataclass(frozen=True)
class TargetRemoved:
    target_id: str

    level = logging.INFO

    def describe(self) -> str:
        return f"➖ Removed target {self.target_id}"


@dataclass(frozen=True)
class ReservationSuccess:
    target_id: str
    resource_id: str
    reference: str | None = None

    level = logging.INFO

    def describe(self) -> str:
        ref = f" (ref {self.reference})" if self.reference else ""
        return f"✅ Reserved court {self.resource_id} for target {self.target_id}{ref}"


@dataclass(frozen=True)
class ReservationFailure:
    target_id: str
    resource_id: str | None
    reason: str

    level = logging.WARNING

    def describe(self) -> str:
        court = f" court {self.resource_id}" if self.resource_id else ""
        return f"❌ Reservation failed for target {self.target_id}{court}: {self.reason}"


@dataclass(frozen=True)
class CampaignExpired:
    count: int

    level = logging.INFO

    def describe(self) -> str:
        return f"🧹 Cleaned up {self.count} target(s)"


@dataclass(frozen=True)
class BurstExhausted:
    target_id: str
    resource_id: str
    attempts: int
    last_error: str | None = None

    level = logging.WARNING

    def describe(self) -> str:
        last = f", last error: {self.last_error}" if self.last_error else ""
        return (
            f"⏱️ Burst for target {self.target_id} on court {self.resource_id} "
            f"ended after {self.attempts} attempt(s){last}"
        )


@dataclass(frozen=True)
class NewReservations:
    date: str
    reservation_ids: tuple[int, ...] = field(default_factory=tuple)

    level = logging.INFO

    def describe(self) -> str:
        ids = ", ".join(str(r) for r in self.reservation_ids)
        return f"🔔 {len(self.reservation_ids)} new reservation(s) on {self.date}: {ids}"


Event = (
    TargetAdded
    | TargetRemoved
    | ReservationSuccess
    | ReservationFailure
    | CampaignExpired
    | BurstExhausted
    | NewReservations
)


class Notifier(Protocol):
    def notify(self, event: Event) -> None: ...


# --- Implementations ---


class LogNotifier:
    """Writes every event to the application log."""

    def __init__(self, name: str = "courtbot.events"):
        self._logger = logging.getLogger(name)

    def notify(self, event: Event) -> None:
        self._logger.log(event.level, event.describe())


class CompositeNotifier:
    """Fans an event out to several notifiers."""

    def __init__(self, notifiers: Iterable[Notifier]):
        self.notifiers = list(notifiers)

    def notify(self, event: Event) -> None:
        for notifier in self.notifiers:
            try:
                notifier.notify(event)
            except Exception as e:
                logger.exception(f"Notifier {type(notifier).__name__} failed: {e}")


class WebhookNotifier:
    """
    Posts events to a chat webhook as {"content": text}.

    Events are queued and delivered by a single worker task, at most one
    message per rate-limit interval. Delivery failures are logged and dropped.
    """

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        rate_limit_seconds: float = BookingConstants.NOTIFIER_RATE_LIMIT_SECONDS,
        timeout: float = BookingConstants.NOTIFIER_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], object] = asyncio.sleep,
    ):
        self.url = url
        self.rate_limit_seconds = rate_limit_seconds
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._clock = clock
        self._sleep = sleep
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._last_sent: float | None = None
        self.sent_count = 0
        self.failed_count = 0

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="webhook-notifier")

    def notify(self, event: Event) -> None:
        self._queue.put_nowait(event.describe())
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; webhook message stays queued")
            return
        self.start()

    async def flush(self) -> None:
        """Wait until every queued message has been handled."""
        if not self._queue.empty():
            self.start()
        await self._queue.join()

    async def aclose(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        if not self._client.is_closed:
            await self._client.aclose()

    async def _run(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                await self._wait_for_rate_limit()
                await self._send(text)
            finally:
                self._last_sent = self._clock()
                self._queue.task_done()

    async def _wait_for_rate_limit(self) -> None:
        if self._last_sent is None:
            return
        elapsed = self._clock() - self._last_sent
        if elapsed < self.rate_limit_seconds:
            await self._sleep(self.rate_limit_seconds - elapsed)

    async def _send(self, text: str) -> None:
        try:
            response = await self._client.post(
                self.url, json={"content": text}, timeout=self.timeout
            )
            response.raise_for_status()
            self.sent_count += 1
        except httpx.HTTPError as e:
            self.failed_count += 1
            logger.warning(f"Failed to deliver webhook notification: {e}")
