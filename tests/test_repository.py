# -*- coding: utf-8 -*-
"""
Record Repository Tests

Runs the same contract against the in-memory and SQLite repositories:
- Upsert by (user, city, country)
- Conditional saves keyed on the content hash
- Listing order and deletion
- Saved comparisons
"""

from datetime import datetime, timedelta, timezone

import pytest

from cityprosperity.config import CityProsperityConfig
from cityprosperity.engine.records import merge_submission
from cityprosperity.exceptions import ConcurrentUpdateError, StorageError
from cityprosperity.storage import (
    ComparisonSet,
    InMemoryRecordRepository,
    SQLiteRecordRepository,
    create_repository,
)

START = datetime(2025, 1, 1, tzinfo=timezone.utc)
SUFFICIENT_LIVING = {"households_with_sufficient_space": 40, "total_households": 100}
ELECTRICITY = {"households_with_electricity": 90, "total_households": 100}


@pytest.fixture(params=["memory", "sqlite"])
def repository(request, memory_repository, sqlite_repository):
    """Both repository implementations."""
    if request.param == "memory":
        return memory_repository
    return sqlite_repository


def _record(registry, city="Cairo", country="Egypt", user_id="user-1", now=START, existing=None):
    return merge_submission(
        existing, "sufficient_living", SUFFICIENT_LIVING,
        user_id, city, country, registry=registry, now=now,
    )


# ==================== RECORDS ====================

class TestRecordStorage:
    """Plain saves, loads and deletes."""

    def test_save_and_load(self, repository, registry):
        record = _record(registry)
        repository.save_record(record)

        loaded = repository.load_record("user-1", "Cairo", "Egypt")

        assert loaded == record
        assert repository.get_record(record.id) == record

    def test_missing(self, repository):
        assert repository.load_record("user-1", "Cairo", "Egypt") is None
        assert repository.get_record("nope") is None

    def test_one_record_per_location(self, repository, registry):
        first = _record(registry)
        repository.save_record(first)
        updated = merge_submission(
            first, "electricity", ELECTRICITY, "user-1", "Cairo", "Egypt",
            registry=registry, now=START + timedelta(hours=1),
        )
        repository.save_record(updated)

        records = repository.list_records("user-1")

        assert len(records) == 1
        assert records[0].standardized("electricity") is not None

    def test_list_newest_first(self, repository, registry):
        repository.save_record(_record(registry, "Cairo", "Egypt", now=START))
        repository.save_record(_record(registry, "Lagos", "Nigeria", now=START + timedelta(hours=2)))
        repository.save_record(_record(registry, "Quito", "Ecuador", now=START + timedelta(hours=1)))
        repository.save_record(_record(registry, "Lima", "Peru", user_id="user-2"))

        cities = [r.city for r in repository.list_records("user-1")]

        assert cities == ["Lagos", "Quito", "Cairo"]

    def test_delete(self, repository, registry):
        record = _record(registry)
        repository.save_record(record)

        assert repository.delete_record(record.id) is True
        assert repository.delete_record(record.id) is False
        assert repository.load_record("user-1", "Cairo", "Egypt") is None


class TestConditionalSave:
    """Optimistic concurrency on the content hash."""

    def test_insert_when_absent(self, repository, registry):
        record = _record(registry)

        repository.compare_and_save(record, None)

        assert repository.load_record("user-1", "Cairo", "Egypt") == record

    def test_insert_conflicts_with_existing(self, repository, registry):
        repository.save_record(_record(registry))

        with pytest.raises(ConcurrentUpdateError):
            repository.compare_and_save(_record(registry), None)

    def test_update_with_matching_hash(self, repository, registry):
        first = _record(registry)
        repository.save_record(first)
        updated = merge_submission(
            first, "electricity", ELECTRICITY, "user-1", "Cairo", "Egypt", registry=registry,
        )

        repository.compare_and_save(updated, first.content_hash())

        assert repository.load_record("user-1", "Cairo", "Egypt") == updated

    def test_stale_hash_rejected(self, repository, registry):
        first = _record(registry)
        repository.save_record(first)
        concurrent = merge_submission(
            first, "electricity", ELECTRICITY, "user-1", "Cairo", "Egypt", registry=registry,
        )
        repository.save_record(concurrent)
        stale = merge_submission(
            first, "sufficient_living",
            {"households_with_sufficient_space": 10, "total_households": 100},
            "user-1", "Cairo", "Egypt", registry=registry,
        )

        with pytest.raises(ConcurrentUpdateError) as exc_info:
            repository.compare_and_save(stale, first.content_hash())

        assert exc_info.value.context["actual_hash"] == concurrent.content_hash()
        assert repository.load_record("user-1", "Cairo", "Egypt") == concurrent


# ==================== COMPARISONS ====================

class TestSavedComparisons:
    """Named comparison sets."""

    def _comparison(self, name="African capitals", user_id="user-1", hours=0):
        return ComparisonSet(
            user_id=user_id,
            name=name,
            cities=["Cairo:Egypt", "Lagos:Nigeria"],
            created_at=START + timedelta(hours=hours),
        )

    def test_save_and_get(self, repository):
        comparison = self._comparison()
        repository.save_comparison(comparison)

        assert repository.get_comparison(comparison.id) == comparison

    def test_list_newest_first(self, repository):
        repository.save_comparison(self._comparison("old", hours=0))
        repository.save_comparison(self._comparison("new", hours=1))
        repository.save_comparison(self._comparison("other", user_id="user-2"))

        assert [c.name for c in repository.list_comparisons("user-1")] == ["new", "old"]

    def test_delete(self, repository):
        comparison = self._comparison()
        repository.save_comparison(comparison)

        assert repository.delete_comparison(comparison.id) is True
        assert repository.get_comparison(comparison.id) is None


# ==================== SQLITE SPECIFICS ====================

class TestSQLiteRepository:
    """File persistence and error wrapping."""

    def test_survives_reopen(self, tmp_path, registry):
        path = str(tmp_path / "cities.db")
        record = _record(registry)
        first = SQLiteRecordRepository(path)
        first.save_record(record)
        first.close()

        second = SQLiteRecordRepository(path)
        try:
            assert second.load_record("user-1", "Cairo", "Egypt") == record
        finally:
            second.close()

    def test_unopenable_path(self, tmp_path):
        with pytest.raises(StorageError):
            SQLiteRecordRepository(str(tmp_path / "missing" / "dir" / "cities.db"))


class TestCreateRepository:
    def test_memory(self):
        repository = create_repository(CityProsperityConfig(database_path=":memory:"))

        assert isinstance(repository, InMemoryRecordRepository)

    def test_sqlite(self, tmp_path):
        repository = create_repository(
            CityProsperityConfig(database_path=str(tmp_path / "cities.db"))
        )
        try:
            assert isinstance(repository, SQLiteRecordRepository)
        finally:
            repository.close()
