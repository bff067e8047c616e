from __future__ import annotations

from pathlib import Path

import pytz
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewayCredentials(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    api_base_url: str = Field(default="", alias="API_BASE_URL")
    auth_bearer_token: str = Field(default="", alias="AUTH_BEARER_TOKEN")
    user_id: str = Field(default="", alias="USER_ID")
    facility_id: str = Field(default="", alias="FACILITY_ID")
    org_id: str = Field(default="7031", alias="ORG_ID")
    member_id: str = Field(default="", alias="MEMBER_ID")
    scheduler_url: str = Field(
        default="https://backend.courtreserve.com/api/scheduler/member-expanded",
        alias="SCHEDULER_URL",
    )
    scheduler_request_data: str = Field(default="", alias="SCHEDULER_REQUEST_DATA")
    cost_type_id: str = Field(default="", alias="COST_TYPE_ID")
    custom_scheduler_id: str = Field(default="", alias="CUSTOM_SCHEDULER_ID")


class BookingConstants:
    """Centralized constants for booking operations."""

    DEFAULT_TIMEOUT = 10
    TOKEN_CACHE_EXPIRY_HOURS = 24 * 14
    NOTIFIER_RATE_LIMIT_SECONDS = 1.0
    NOTIFIER_TIMEOUT = 10
    RESERVATION_MIN_INTERVAL = "60"
    UI_CULTURE = "en-US"

    # HTTP Headers
    USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/142.0.0.0 Safari/537.36"
    ACCEPT_LANGUAGE = "en-US,en;q=0.9"
    ACCEPT = "application/json, text/plain, */*"
    ORIGIN = "https://app.courtreserve.com"
    REFERER = "https://app.courtreserve.com/"


class PollingPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    tick_interval_seconds: float = Field(default=10, gt=0)
    lead_window_days: float = Field(default=7, ge=0)


class BurstPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    tick_interval_seconds: float = Field(default=60, gt=0)
    lead_window_days: float = Field(default=7, ge=0)
    burst_duration_seconds: float = Field(default=20, gt=0)
    request_interval_ms: int = Field(default=100, gt=0)

    @property
    def request_interval_seconds(self) -> float:
        return self.request_interval_ms / 1000


class EngineSettings(BaseModel):
    """Explicit settings handed to the store, engine and executors."""

    model_config = ConfigDict(frozen=True)

    polling: PollingPolicy = PollingPolicy()
    burst: BurstPolicy = BurstPolicy()

    # Court range (inclusive on both ends)
    court_id_start: int = 52667
    court_id_end: int = 52677
    selected_court_ids: tuple[int, ...] = ()

    timezone: str = "America/Los_Angeles"

    @property
    def resource_ids(self) -> list[str]:
        """Get the court IDs to check for availability."""
        if self.selected_court_ids:
            return [str(court_id) for court_id in self.selected_court_ids]
        else:
            # Fallback to the configured range if no specific courts selected
            return [
                str(court_id)
                for court_id in range(self.court_id_start, self.court_id_end + 1)
            ]

    @property
    def tz(self) -> pytz.BaseTzInfo:
        return pytz.timezone(self.timezone)


class BotSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    scheduler_enabled: bool = Field(default=False, alias="SCHEDULER_ENABLED")
    scheduler_check_interval_seconds: float = Field(
        default=10, gt=0, alias="SCHEDULER_CHECK_INTERVAL_SECONDS"
    )
    scheduler_advance_check_days: float = Field(
        default=7, ge=0, alias="SCHEDULER_ADVANCE_CHECK_DAYS"
    )
    court_id_start: int = Field(default=52667, alias="COURT_ID_START")
    court_id_end: int = Field(default=52677, alias="COURT_ID_END")
    # Comma-separated, e.g. "52667,52668"
    selected_court_ids: str = Field(default="", alias="SELECTED_COURT_IDS")

    fighter_check_interval_seconds: float = Field(
        default=60, gt=0, alias="FIGHTER_CHECK_INTERVAL_SECONDS"
    )
    fighter_advance_check_days: float = Field(
        default=7, ge=0, alias="FIGHTER_ADVANCE_CHECK_DAYS"
    )
    fighter_burst_duration_seconds: float = Field(
        default=20, gt=0, alias="FIGHTER_BURST_DURATION_SECONDS"
    )
    fighter_request_interval_ms: int = Field(
        default=100, gt=0, alias="FIGHTER_REQUEST_INTERVAL_MS"
    )

    facility_timezone: str = Field(
        default="America/Los_Angeles", alias="FACILITY_TIMEZONE"
    )
    campaign_state_path: Path = Field(
        default=Path("config/campaigns.json"), alias="CAMPAIGN_STATE_PATH"
    )
    token_cache_dir: Path = Field(default=Path(".cache"), alias="TOKEN_CACHE_DIR")
    pid_file: Path = Field(default=Path("courtbot.pid"), alias="PID_FILE")
    notify_webhook_url: str = Field(default="", alias="NOTIFY_WEBHOOK_URL")
    housekeeping_interval_minutes: float = Field(
        default=60, gt=0, alias="HOUSEKEEPING_INTERVAL_MINUTES"
    )

    reservation_checker_enabled: bool = Field(
        default=False, alias="RESERVATION_CHECKER_ENABLED"
    )
    reservation_checker_interval: float = Field(
        default=5, ge=1, le=60, alias="RESERVATION_CHECKER_INTERVAL"
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Path | None = Field(default=Path("logs/app.log"), alias="LOG_FILE")
    error_log_file: Path | None = Field(
        default=Path("logs/error.log"), alias="ERROR_LOG_FILE"
    )

    def parsed_court_ids(self) -> tuple[int, ...]:
        return tuple(
            int(part) for part in self.selected_court_ids.split(",") if part.strip()
        )

    def engine_settings(self) -> EngineSettings:
        return EngineSettings(
            polling=PollingPolicy(
                tick_interval_seconds=self.scheduler_check_interval_seconds,
                lead_window_days=self.scheduler_advance_check_days,
            ),
            burst=BurstPolicy(
                tick_interval_seconds=self.fighter_check_interval_seconds,
                lead_window_days=self.fighter_advance_check_days,
                burst_duration_seconds=self.fighter_burst_duration_seconds,
                request_interval_ms=self.fighter_request_interval_ms,
            ),
            court_id_start=self.court_id_start,
            court_id_end=self.court_id_end,
            selected_court_ids=self.parsed_court_ids(),
            timezone=self.facility_timezone,
        )
