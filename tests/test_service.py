# -*- coding: utf-8 -*-
"""
Calculation Service Tests

Validates:
- Submission end to end (score, merge, persist, provenance)
- Retry of conditional saves that lose a race
- Ownership checks on history, reports, deletes and comparisons
- Saved comparisons
- Concurrent submissions for one city in threads
"""

import threading

import pytest
from prometheus_client import REGISTRY

from cityprosperity.config import CityProsperityConfig
from cityprosperity.engine.records import merge_submission
from cityprosperity.exceptions import (
    ConcurrentUpdateError,
    EmptySelectionError,
    InvalidInputError,
    RecordNotFoundError,
)
from cityprosperity.service import CalculationService, KeyedLock
from cityprosperity.storage import InMemoryRecordRepository

SUFFICIENT_LIVING = {"households_with_sufficient_space": 40, "total_households": 100}
ICT_SUBMISSIONS = [
    ("internet_access", {"households_with_internet": 80, "total_households": 100}),
    ("home_computer_access", {"households_with_computer": 60, "total_households": 100}),
    ("average_broadband_speed", {"average_broadband_speed": 10886}),
]


class RacingRepository(InMemoryRecordRepository):
    """Lets another writer store a record just before the first N conditional saves."""

    def __init__(self, registry, races=1):
        super().__init__()
        self.registry = registry
        self.races = races
        self.attempts = 0

    def compare_and_save(self, record, expected_hash):
        self.attempts += 1
        if self.races > 0:
            self.races -= 1
            current = self.load_record(*record.location_key)
            self.save_record(
                merge_submission(
                    current, "electricity",
                    {"households_with_electricity": 50 + self.races, "total_households": 100},
                    record.user_id, record.city, record.country, registry=self.registry,
                )
            )
        super().compare_and_save(record, expected_hash)


def _accepted(indicator_id):
    return REGISTRY.get_sample_value(
        "cpi_submissions_total", {"indicator": indicator_id, "result": "accepted"},
    ) or 0.0


# ==================== SUBMISSIONS ====================

class TestSubmit:
    """End-to-end submissions."""

    def test_first_submission_creates_record(self, service, memory_repository):
        result = service.submit("user-1", "Cairo", "Egypt", "sufficient_living", SUFFICIENT_LIVING)

        assert result.created is True
        assert result.attempts == 1
        assert result.raw_value == 40.0
        assert result.standardized == 83.84
        assert result.comment == "VERY SOLID"
        assert memory_repository.load_record("user-1", "Cairo", "Egypt") == result.record

    def test_second_submission_merges(self, service):
        first = service.submit("user-1", "Cairo", "Egypt", "sufficient_living", SUFFICIENT_LIVING)
        second = service.submit(
            "user-1", " Cairo ", "Egypt", "electricity",
            {"households_with_electricity": 90, "total_households": 100},
        )

        assert second.created is False
        assert second.record.id == first.record.id
        assert second.record.standardized("sufficient_living") == 83.84

    def test_completed_groups_reported(self, service):
        results = [
            service.submit("user-1", "Cairo", "Egypt", indicator_id, inputs)
            for indicator_id, inputs in ICT_SUBMISSIONS
        ]

        assert [r.completed_groups for r in results] == [[], [], ["ict"]]
        assert results[-1].record.values["ict"] == 80.0

    def test_invalid_submission_stores_nothing(self, service, memory_repository):
        with pytest.raises(InvalidInputError):
            service.submit("user-1", "Cairo", "Egypt", "sufficient_living", {})

        assert memory_repository.list_records("user-1") == []

    def test_missing_location(self, service):
        with pytest.raises(InvalidInputError, match="City and country are required"):
            service.submit("user-1", "", "Egypt", "sufficient_living", SUFFICIENT_LIVING)

    def test_provenance_recorded(self, service):
        result = service.submit("user-1", "Cairo", "Egypt", "sufficient_living", SUFFICIENT_LIVING)

        assert result.provenance_hash == service.provenance.get_latest_hash()
        assert service.provenance.get_chain()[0].metadata == {"record_id": result.record.id}
        assert service.provenance.verify_chain()

    def test_metrics_updated(self, service):
        before = _accepted("electricity")

        service.submit(
            "user-1", "Cairo", "Egypt", "electricity",
            {"households_with_electricity": 90, "total_households": 100},
        )

        assert _accepted("electricity") == before + 1

    def test_provenance_disabled(self, memory_repository, registry):
        config = CityProsperityConfig(database_path=":memory:", enable_provenance=False)
        service = CalculationService(memory_repository, registry, config)

        result = service.submit("user-1", "Cairo", "Egypt", "sufficient_living", SUFFICIENT_LIVING)

        assert service.provenance is None
        assert result.provenance_hash is None


class TestConflictRetry:
    """Conditional saves that lose a race are retried on fresh data."""

    def test_retry_keeps_both_writes(self, registry):
        repository = RacingRepository(registry, races=1)
        service = CalculationService(repository, registry, CityProsperityConfig(database_path=":memory:"))

        result = service.submit("user-1", "Cairo", "Egypt", "sufficient_living", SUFFICIENT_LIVING)

        assert result.attempts == 2
        stored = repository.load_record("user-1", "Cairo", "Egypt")
        assert stored.standardized("sufficient_living") == 83.84
        assert stored.standardized("electricity") is not None

    def test_gives_up_after_retry_budget(self, registry):
        repository = RacingRepository(registry, races=10)
        config = CityProsperityConfig(database_path=":memory:", max_save_retries=3)
        service = CalculationService(repository, registry, config)

        with pytest.raises(ConcurrentUpdateError):
            service.submit("user-1", "Cairo", "Egypt", "sufficient_living", SUFFICIENT_LIVING)

        assert repository.attempts == 3

    def test_threads_do_not_lose_updates(self, service, memory_repository):
        """Concurrent submissions of different indicators all land."""
        errors = []

        def submit(indicator_id, inputs):
            try:
                service.submit("user-1", "Cairo", "Egypt", indicator_id, inputs)
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=submit, args=submission) for submission in ICT_SUBMISSIONS
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        record = memory_repository.load_record("user-1", "Cairo", "Egypt")
        assert record.values["ict"] == 80.0


class TestKeyedLock:
    def test_locks_released(self):
        locks = KeyedLock()

        with locks.hold(("user-1", "Cairo", "Egypt")):
            assert len(locks) == 1

        assert len(locks) == 0


# ==================== HISTORY ====================

class TestHistory:
    """Listing, fetching and deleting records."""

    def test_list_history(self, service):
        service.submit("user-1", "Cairo", "Egypt", "sufficient_living", SUFFICIENT_LIVING)
        service.submit("user-1", "Lagos", "Nigeria", "sufficient_living", SUFFICIENT_LIVING)
        service.submit("user-2", "Lima", "Peru", "sufficient_living", SUFFICIENT_LIVING)

        assert {r.city for r in service.list_history("user-1")} == {"Cairo", "Lagos"}

    def test_get_record_checks_owner(self, service):
        result = service.submit("user-1", "Cairo", "Egypt", "sufficient_living", SUFFICIENT_LIVING)

        assert service.get_record("user-1", result.record.id) == result.record
        with pytest.raises(RecordNotFoundError):
            service.get_record("user-2", result.record.id)

    def test_find_record(self, service):
        service.submit("user-1", "Cairo", "Egypt", "sufficient_living", SUFFICIENT_LIVING)

        assert service.find_record("user-1", "Cairo", "Egypt").city == "Cairo"
        with pytest.raises(RecordNotFoundError, match="No calculation for Lagos, Nigeria"):
            service.find_record("user-1", "Lagos", "Nigeria")

    def test_delete_record(self, service):
        result = service.submit("user-1", "Cairo", "Egypt", "sufficient_living", SUFFICIENT_LIVING)

        with pytest.raises(RecordNotFoundError):
            service.delete_record("user-2", result.record.id)
        service.delete_record("user-1", result.record.id)

        assert service.list_history("user-1") == []

    def test_report(self, service):
        for indicator_id, inputs in ICT_SUBMISSIONS:
            service.submit("user-1", "Cairo", "Egypt", indicator_id, inputs)

        report = service.report("user-1", "Cairo", "Egypt")

        assert report.scored_indicators == 3
        assert not report.complete


# ==================== COMPARISONS ====================

class TestComparisons:
    """Ad-hoc and saved comparisons."""

    @pytest.fixture
    def populated(self, service):
        for city, country in (("Cairo", "Egypt"), ("Lagos", "Nigeria"), ("Quito", "Ecuador")):
            service.submit("user-1", city, country, "sufficient_living", SUFFICIENT_LIVING)
        service.submit("user-2", "Cairo", "Egypt", "sufficient_living", SUFFICIENT_LIVING)
        return service

    def test_compare(self, populated):
        records = populated.compare("user-1", "Cairo:Egypt,Lagos:Nigeria,Lima:Peru")

        assert {r.city for r in records} == {"Cairo", "Lagos"}
        assert all(r.user_id == "user-1" for r in records)

    def test_compare_empty(self, populated):
        with pytest.raises(EmptySelectionError):
            populated.compare("user-1", [])

    def test_save_and_run_comparison(self, populated):
        saved = populated.save_comparison("user-1", " Capitals ", ["Cairo:Egypt", "Quito:Ecuador"])

        assert saved.name == "Capitals"
        assert populated.list_comparisons("user-1") == [saved]
        assert {r.city for r in populated.compare_saved("user-1", saved.id)} == {"Cairo", "Quito"}

    @pytest.mark.parametrize("name, cities", [("", ["Cairo:Egypt"]), ("Capitals", [])])
    def test_save_comparison_requires_name_and_cities(self, service, name, cities):
        with pytest.raises(InvalidInputError, match="Comparison name and cities are required"):
            service.save_comparison("user-1", name, cities)

    def test_saved_comparison_ownership(self, populated):
        saved = populated.save_comparison("user-1", "Capitals", "Cairo:Egypt")

        with pytest.raises(RecordNotFoundError, match="Comparison not found"):
            populated.compare_saved("user-2", saved.id)
        with pytest.raises(RecordNotFoundError):
            populated.delete_comparison("user-2", saved.id)

        populated.delete_comparison("user-1", saved.id)
        assert populated.list_comparisons("user-1") == []
