"""
Service runtime: wires every component from settings and runs until signalled.

SIGHUP reloads campaigns from disk (the CLI sends it after editing them);
SIGINT and SIGTERM shut down in reverse initialisation order.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path

from diskcache import Cache

from courtbot.auth import AuthManager
from courtbot.config import BotSettings, GatewayCredentials
from courtbot.engine import SchedulingEngine
from courtbot.errors import PersistenceError
from courtbot.gateway import CourtReserveGateway, ReservationGateway
from courtbot.notifier import CompositeNotifier, LogNotifier, Notifier, WebhookNotifier
from courtbot.store import CampaignStore, JsonCampaignRepository
from courtbot.watcher import ReservationWatcher

logger = logging.getLogger(__name__)

WEBHOOK_DRAIN_TIMEOUT = 5


# --- PID file helpers ---


def write_pid_file(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(os.getpid()), encoding="utf-8")


def read_pid_file(path: Path) -> int | None:
    """Return the PID of a live service, or None if none is running."""
    try:
        pid = int(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return None
    except PermissionError:
        # Exists but owned by someone else
        return pid
    return pid


def signal_service(path: Path, sig: int = signal.SIGHUP) -> bool:
    pid = read_pid_file(path)
    if pid is None:
        return False
    os.kill(pid, sig)
    logger.debug(f"Sent signal {sig} to service pid {pid}")
    return True


# --- Notifications ---


def build_notifier(settings: BotSettings) -> tuple[Notifier, WebhookNotifier | None]:
    """Log every event, and post it to the webhook when one is configured."""
    webhook = WebhookNotifier(settings.notify_webhook_url) if settings.notify_webhook_url else None
    notifiers: list[Notifier] = [LogNotifier()]
    if webhook is not None:
        notifiers.append(webhook)
    return CompositeNotifier(notifiers), webhook


async def drain_webhook(webhook: WebhookNotifier, timeout: float = WEBHOOK_DRAIN_TIMEOUT) -> None:
    webhook.start()
    try:
        await asyncio.wait_for(webhook.flush(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Dropping undelivered webhook notifications")
    finally:
        await webhook.aclose()


# --- Service ---


class CourtBot:
    def __init__(
        self,
        settings: BotSettings,
        credentials: GatewayCredentials,
        *,
        cache: Cache | None = None,
        gateway: ReservationGateway | None = None,
        notifier: Notifier | None = None,
    ):
        self.settings = settings
        self.credentials = credentials
        self.engine_settings = settings.engine_settings()

        self.cache = cache if cache is not None else Cache(str(settings.token_cache_dir))
        self.auth = AuthManager(self.cache, credentials.auth_bearer_token)
        self.gateway = gateway or CourtReserveGateway(
            credentials,
            self.auth,
            resource_ids=self.engine_settings.resource_ids,
            timezone=self.engine_settings.timezone,
        )

        self.webhook: WebhookNotifier | None = None
        if notifier is None:
            notifier, self.webhook = build_notifier(settings)
        self.notifier = notifier

        self.store = CampaignStore(
            JsonCampaignRepository(
                settings.campaign_state_path, default_enabled=settings.scheduler_enabled
            ),
            timezone=self.engine_settings.tz,
        )
        self.engine = SchedulingEngine(
            self.store, self.gateway, self.notifier, self.engine_settings
        )
        self.watcher = ReservationWatcher(
            self.store,
            self.gateway,
            self.notifier,
            self.cache,
            member_id=credentials.member_id,
            timezone=self.engine_settings.timezone,
        )

        self._tasks: list[asyncio.Task] = []
        self._stop: asyncio.Event | None = None

    def reload(self) -> None:
        try:
            self.engine.reload()
        except PersistenceError as e:
            logger.error(f"Reload failed, keeping current schedule: {e}")

    def housekeeping_once(self) -> None:
        """Expire elapsed targets, then pick up edits and newly eligible targets."""
        try:
            self.engine.cleanup_expired()
        except PersistenceError as e:
            logger.error(f"Housekeeping cleanup failed: {e}")
        self.reload()

    async def _housekeeping_loop(self) -> None:
        interval = self.settings.housekeeping_interval_minutes * 60
        while True:
            await asyncio.sleep(interval)
            try:
                self.housekeeping_once()
            except Exception as e:
                logger.exception(f"Housekeeping failed: {e}")

    def request_stop(self) -> None:
        if self._stop is not None:
            self._stop.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGHUP, self.reload)
            loop.add_signal_handler(signal.SIGINT, self.request_stop)
            loop.add_signal_handler(signal.SIGTERM, self.request_stop)
        except (NotImplementedError, AttributeError):
            logger.warning("Signal handlers not supported on this platform")

    async def run(self) -> None:
        self._stop = asyncio.Event()
        write_pid_file(self.settings.pid_file)
        logger.info(f"Court bot starting (pid {os.getpid()})")

        try:
            self.engine.start()

            if self.webhook is not None:
                self.webhook.start()

            self._tasks.append(
                asyncio.create_task(self._housekeeping_loop(), name="housekeeping")
            )
            if self.settings.reservation_checker_enabled:
                self._tasks.append(
                    asyncio.create_task(
                        self.watcher.run_forever(self.settings.reservation_checker_interval),
                        name="reservation-watcher",
                    )
                )

            self._install_signal_handlers()
            await self._stop.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        logger.info("Shutting down...")

        for task in reversed(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.engine.shutdown()

        if self.webhook is not None:
            await drain_webhook(self.webhook)

        aclose = getattr(self.gateway, "aclose", None)
        if aclose is not None:
            await aclose()

        self.cache.close()

        pid_file = Path(self.settings.pid_file)
        if read_pid_file(pid_file) == os.getpid():
            pid_file.unlink(missing_ok=True)
        logger.info("Court bot stopped")
