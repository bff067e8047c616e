"""Tests for the campaign store and its repositories."""

import json
from datetime import date, timedelta

import pytest

from courtbot.errors import PersistenceError, TargetValidationError
from courtbot.store import CampaignState, CampaignStore, JsonCampaignRepository

from conftest import FACILITY_TZ, NOW


def polling(day, start="18:00", duration=60, **extra):
    return {"kind": "polling", "date": day, "desired_start": start, "duration": duration, **extra}


class TestCampaignStore:
    def test_add_assigns_id_and_persists(self, store, repository):
        target = store.add(polling("2025-12-01"))

        assert target.id.startswith("polling-")
        assert store.get(target.id) == target
        assert repository.load().targets == (target,)

    def test_add_keeps_given_id(self, store):
        target = store.add(polling("2025-12-01", id="mine"))
        assert target.id == "mine"

    def test_invalid_target_is_not_stored(self, store, repository):
        with pytest.raises(TargetValidationError):
            store.add(polling("2025-02-30", duration=-5))
        assert store.list() == ()
        assert repository.save_count == 0

    def test_duplicate_id_is_rejected(self, store):
        store.add(polling("2025-12-01", id="dup"))
        with pytest.raises(TargetValidationError, match="already exists"):
            store.add(polling("2025-12-02", id="dup"))
        assert len(store) == 1

    def test_remove_twice(self, store, repository):
        target = store.add(polling("2025-12-01"))
        saves = repository.save_count

        assert store.remove(target.id) is True
        assert store.remove(target.id) is False
        assert store.list() == ()
        assert repository.save_count == saves + 1

    def test_set_enabled_keeps_targets(self, store, repository):
        store.add(polling("2025-12-01"))
        store.set_enabled(False)

        assert not store.enabled
        assert not repository.load().enabled
        assert len(store) == 1

    def test_expire_by_date(self, store):
        """One target yesterday, one tomorrow: only yesterday's goes."""
        yesterday = (NOW - timedelta(days=1)).date().isoformat()
        tomorrow = (NOW + timedelta(days=1)).date().isoformat()
        store.add(polling(yesterday, id="old"))
        store.add(polling(tomorrow, id="new"))

        assert store.expire_by_date() == 1
        assert [t.id for t in store.list()] == ["new"]

    def test_expire_by_lead_window(self, store):
        store.add(polling("2025-11-28", id="soon"))
        store.add(polling("2026-01-15", id="far"))

        assert store.expire_by_lead_window(7) == 1
        assert [t.id for t in store.list()] == ["soon"]

    def test_failed_save_leaves_state_unchanged(self, store, repository):
        kept = store.add(polling("2025-12-01"))
        repository.fail_saves = True

        with pytest.raises(PersistenceError):
            store.add(polling("2025-12-02"))
        with pytest.raises(PersistenceError):
            store.remove(kept.id)

        assert store.list() == (kept,)
        assert repository.load().targets == (kept,)

    def test_mutations_merge_external_edits(self, tmp_path):
        """Two processes editing the same file do not lose each other's targets."""
        path = tmp_path / "campaigns.json"
        first = CampaignStore(JsonCampaignRepository(path), timezone=FACILITY_TZ)
        second = CampaignStore(JsonCampaignRepository(path), timezone=FACILITY_TZ)
        first.load()
        second.load()

        first.add(polling("2025-12-01", id="a"))
        second.add(polling("2025-12-02", id="b"))
        first.load()

        assert {t.id for t in first.list()} == {"a", "b"}


class TestJsonCampaignRepository:
    def test_missing_file_creates_default(self, tmp_path):
        path = tmp_path / "config" / "campaigns.json"
        state = JsonCampaignRepository(path).load()

        assert state == CampaignState(enabled=False, targets=())
        assert json.loads(path.read_text())["enabled"] is False

    def test_missing_file_uses_default_enabled(self, tmp_path):
        repo = JsonCampaignRepository(tmp_path / "c.json", default_enabled=True)
        assert repo.load().enabled is True

    def test_round_trip(self, tmp_path):
        path = tmp_path / "campaigns.json"
        store = CampaignStore(JsonCampaignRepository(path), timezone=FACILITY_TZ)
        store.load()
        store.add(polling("2025-12-01", id="p1"))
        store.add(
            {
                "kind": "burst",
                "id": "b1",
                "date": "2025-12-03",
                "desired_start": "07:00",
                "duration": 90,
                "resource_id": "52670",
            }
        )
        store.set_enabled(True)

        document = json.loads(path.read_text())
        assert document["enabled"] is True
        assert "last_updated" in document
        assert document["targets"][1]["resource_id"] == "52670"

        state = JsonCampaignRepository(path).load()
        assert [t.id for t in state.targets] == ["p1", "b1"]
        assert state.targets[1].date == date(2025, 12, 3)
        assert list(tmp_path.glob("*.tmp")) == []

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "campaigns.json"
        path.write_text("{not json")
        with pytest.raises(PersistenceError):
            JsonCampaignRepository(path).load()

    def test_invalid_entries_are_skipped(self, tmp_path):
        path = tmp_path / "campaigns.json"
        path.write_text(
            json.dumps(
                {
                    "enabled": True,
                    "targets": [
                        {"kind": "polling", "id": "ok", "date": "2025-12-01", "desired_start": "18:00", "duration": 60},
                        {"kind": "burst", "id": "bad", "date": "2025-12-01", "desired_start": "18:00", "duration": 60},
                    ],
                }
            )
        )
        state = JsonCampaignRepository(path).load()
        assert [t.id for t in state.targets] == ["ok"]
