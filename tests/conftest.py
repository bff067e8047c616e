"""Shared fakes and fixtures for the booking core tests."""

import asyncio
from datetime import datetime

import pytest
import pytz
from diskcache import Cache

from courtbot.config import BurstPolicy, EngineSettings, PollingPolicy
from courtbot.errors import PersistenceError
from courtbot.models import BookingResult
from courtbot.store import CampaignState, CampaignStore, MemoryCampaignRepository

FACILITY_TZ = "America/Los_Angeles"

# 2025-11-25 04:00 in Los Angeles
NOW = pytz.utc.localize(datetime(2025, 11, 25, 12, 0))


class FakeGateway:
    """
    Scriptable ReservationGateway.

    `outcomes` maps a court id to "ok" (success) or an exception instance to
    raise. Courts without an entry get a rejected BookingResult. When `gate`
    is set, every booking attempt waits on it first.
    """

    def __init__(self, records=None, outcomes=None):
        self.records = list(records or [])
        self.outcomes = dict(outcomes or {})
        self.query_error = None
        self.gate = None
        self.queries = []
        self.attempts = []

    async def query_bookings(self, day):
        self.queries.append(day)
        if self.query_error is not None:
            raise self.query_error
        return list(self.records)

    async def attempt_booking(self, resource_id, day, start, duration):
        self.attempts.append(resource_id)
        if self.gate is not None:
            await self.gate.wait()

        outcome = self.outcomes.get(resource_id)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "ok":
            return BookingResult(
                resource_id=resource_id, success=True, reference_number=f"REF-{resource_id}"
            )
        return BookingResult(resource_id=resource_id, success=False, error="Court unavailable")


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def monotonic(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FlakyRepository(MemoryCampaignRepository):
    """Memory repository whose loads and saves can be switched to fail."""

    def __init__(self, state=None):
        super().__init__(state)
        self.fail_saves = False
        self.fail_loads = False

    def load(self):
        if self.fail_loads:
            raise PersistenceError("file is corrupt")
        return super().load()

    def save(self, state):
        if self.fail_saves:
            raise PersistenceError("disk full")
        super().save(state)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def tz():
    return pytz.timezone(FACILITY_TZ)


@pytest.fixture
def repository():
    return FlakyRepository(CampaignState(enabled=True))


@pytest.fixture
def store(repository):
    campaign_store = CampaignStore(repository, timezone=FACILITY_TZ, now=lambda: NOW)
    campaign_store.load()
    return campaign_store


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine_settings():
    return EngineSettings(
        polling=PollingPolicy(tick_interval_seconds=0.01, lead_window_days=7),
        burst=BurstPolicy(
            tick_interval_seconds=0.01,
            lead_window_days=7,
            burst_duration_seconds=0.05,
            request_interval_ms=10,
        ),
        selected_court_ids=(52667, 52668, 52669),
        timezone=FACILITY_TZ,
    )


@pytest.fixture
def cache(tmp_path):
    disk_cache = Cache(str(tmp_path / "cache"))
    yield disk_cache
    disk_cache.close()


@pytest.fixture
def wait_until():
    async def _wait_until(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait_until
