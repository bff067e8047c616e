"""
Campaign store: the single owner of configured reservation targets.

Every mutation is a small transaction against the repository: reload the
durable state (the operator CLI may have written to it from another process),
apply the change to a copy, save, and only then swap the in-memory state.
A failed save leaves both the file and memory at the previous version.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

import pytz
from pydantic import ValidationError as PydanticValidationError

from courtbot.errors import PersistenceError, TargetValidationError
from courtbot.models import (
    Target,
    new_target_id,
    parse_target,
    target_adapter,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CampaignState:
    enabled: bool = False
    targets: tuple[Target, ...] = field(default_factory=tuple)


class CampaignRepository(Protocol):
    """Durable storage for campaign state (all-or-nothing saves)."""

    def load(self) -> CampaignState: ...
    def save(self, state: CampaignState) -> None: ...


class MemoryCampaignRepository:
    """Keeps state in memory; used by tests and embedders."""

    def __init__(self, state: CampaignState | None = None):
        self._state = state or CampaignState()
        self.save_count = 0

    def load(self) -> CampaignState:
        return self._state

    def save(self, state: CampaignState) -> None:
        self._state = state
        self.save_count += 1


class JsonCampaignRepository:
    """Stores campaign state as a JSON document, replaced atomically on save."""

    def __init__(self, path: str | Path, *, default_enabled: bool = False):
        self.path = Path(path)
        self.default_enabled = default_enabled

    def load(self) -> CampaignState:
        if not self.path.exists():
            logger.warning(f"Campaign file {self.path} not found, creating default")
            state = CampaignState(enabled=self.default_enabled)
            self.save(state)
            return state

        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to load {self.path}: {e}") from e

        if not isinstance(document, dict):
            raise PersistenceError(f"Unexpected campaign file layout in {self.path}")

        targets = []
        for entry in document.get("targets", []):
            try:
                targets.append(target_adapter.validate_python(entry))
            except PydanticValidationError as e:
                logger.warning(f"Skipping invalid stored target {entry!r}: {e}")

        return CampaignState(
            enabled=bool(document.get("enabled", False)), targets=tuple(targets)
        )

    def save(self, state: CampaignState) -> None:
        document = {
            "enabled": state.enabled,
            "targets": [target.model_dump(mode="json") for target in state.targets],
            "last_updated": datetime.now(pytz.utc).isoformat(),
        }

        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                json.dump(document, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"Failed to save {self.path}: {e}") from e

        logger.debug(f"Campaign state saved to {self.path}")


class CampaignStore:
    """Owns the set of reservation targets and the master enabled switch."""

    def __init__(
        self,
        repository: CampaignRepository,
        *,
        timezone: pytz.BaseTzInfo | str = "America/Los_Angeles",
        now: Callable[[], datetime] | None = None,
    ):
        self._repository = repository
        self._tz = pytz.timezone(timezone) if isinstance(timezone, str) else timezone
        self._now = now or (lambda: datetime.now(pytz.utc))
        self._state = CampaignState()

    def load(self) -> None:
        self._state = self._repository.load()
        logger.info(
            f"Loaded {len(self._state.targets)} targets "
            f"({'ENABLED' if self._state.enabled else 'DISABLED'})"
        )

    @property
    def enabled(self) -> bool:
        return self._state.enabled

    def list(self) -> tuple[Target, ...]:
        return self._state.targets

    def get(self, target_id: str) -> Target | None:
        for target in self._state.targets:
            if target.id == target_id:
                return target
        return None

    def __contains__(self, target_id: str) -> bool:
        return self.get(target_id) is not None

    def __len__(self) -> int:
        return len(self._state.targets)

    # --- Mutations ---

    def add(self, target: Target | Mapping[str, Any]) -> Target:
        """
        Validate and persist a new target.

        Raises:
            TargetValidationError: If the input violates any constraint
            PersistenceError: If the state could not be saved
        """
        parsed = parse_target(target)
        if not parsed.id:
            parsed = parsed.model_copy(update={"id": new_target_id(parsed.kind)})

        def mutate(state: CampaignState) -> tuple[CampaignState, Target]:
            if any(existing.id == parsed.id for existing in state.targets):
                raise TargetValidationError([f"id: target {parsed.id} already exists"])
            return replace(state, targets=state.targets + (parsed,)), parsed

        added = self._transaction(mutate)
        logger.info(f"Added {added.kind} target {added.id} for {added.date}")
        return added

    def remove(self, target_id: str) -> bool:
        def mutate(state: CampaignState) -> tuple[CampaignState | None, bool]:
            remaining = tuple(t for t in state.targets if t.id != target_id)
            if len(remaining) == len(state.targets):
                return None, False
            return replace(state, targets=remaining), True

        removed = self._transaction(mutate)
        if removed:
            logger.info(f"Removed target {target_id}")
        else:
            logger.debug(f"Target {target_id} not found")
        return removed

    def set_enabled(self, enabled: bool) -> None:
        def mutate(state: CampaignState) -> tuple[CampaignState | None, None]:
            if state.enabled == enabled:
                return None, None
            return replace(state, enabled=enabled), None

        self._transaction(mutate)
        logger.info(f"Campaigns {'enabled' if enabled else 'disabled'}")

    def expire_by_date(self, now: datetime | None = None) -> int:
        """Remove targets whose start has already passed."""
        now = now or self._now()
        removed = self._remove_where(lambda t: t.is_expired(now, self._tz))
        if removed:
            logger.info(f"Cleaned up {removed} expired targets")
        return removed

    def expire_by_lead_window(self, days: float, now: datetime | None = None) -> int:
        """Remove targets that start farther in the future than `days`."""
        now = now or self._now()
        removed = self._remove_where(lambda t: t.days_until(now, self._tz) > days)
        if removed:
            logger.info(f"Cleaned up {removed} targets beyond {days} days")
        return removed

    def _remove_where(self, predicate: Callable[[Target], bool]) -> int:
        def mutate(state: CampaignState) -> tuple[CampaignState | None, int]:
            remaining = tuple(t for t in state.targets if not predicate(t))
            removed = len(state.targets) - len(remaining)
            if not removed:
                return None, 0
            return replace(state, targets=remaining), removed

        return self._transaction(mutate)

    def _transaction(self, mutate):
        """
        Run a read-modify-write cycle against the repository.

        `mutate` returns (new_state, result); a new_state of None means
        nothing changed and nothing is written.
        """
        current = self._repository.load()
        new_state, result = mutate(current)

        if new_state is None:
            self._state = current
            return result

        try:
            self._repository.save(new_state)
        except PersistenceError:
            logger.error("Failed to persist campaign state; change not applied")
            self._state = current
            raise

        self._state = new_state
        return result
