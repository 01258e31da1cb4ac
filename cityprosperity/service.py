# -*- coding: utf-8 -*-
"""
City Prosperity Calculation Service

Facade wiring the pure scoring engine to a record repository, with
logging, Prometheus metrics and provenance around every operation.

Submissions for the same ``(user_id, city, country)`` are serialized
in-process by a keyed lock, and the read-merge-write cycle ends in a
conditional save keyed on the content hash that was read. A writer in
another process that slips in between is detected and the submission is
retried against the fresh record, up to ``max_save_retries`` times.

Example:
    >>> service = CalculationService()
    >>> result = service.submit(
    ...     "user-1", "Cairo", "Egypt", "sufficient_living",
    ...     {"households_with_sufficient_space": 40, "total_households": 100},
    ... )
    >>> result.standardized, result.comment
    (83.84, 'VERY SOLID')
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterator, List, Optional, Sequence, Union

from cityprosperity import metrics
from cityprosperity.config import CityProsperityConfig, get_config
from cityprosperity.determinism import DeterministicClock
from cityprosperity.engine.comparison import parse_city_pairs, select_for_comparison
from cityprosperity.engine.normalization import RawInputs
from cityprosperity.engine.records import (
    CalculationRecord,
    merge_submission,
    newly_completed,
    normalize_location,
)
from cityprosperity.engine.report import CityReport, build_report
from cityprosperity.exceptions import (
    ConcurrentUpdateError,
    EmptySelectionError,
    InvalidInputError,
    RecordNotFoundError,
)
from cityprosperity.provenance import ProvenanceTracker
from cityprosperity.registry import get_registry
from cityprosperity.registry.registry import IndicatorRegistry
from cityprosperity.storage.models import ComparisonSet
from cityprosperity.storage.repository import RecordRepository, create_repository

logger = logging.getLogger(__name__)


class KeyedLock:
    """One mutex per key, created on demand and dropped when unused."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


@dataclass
class SubmissionResult:
    """Outcome of one accepted indicator submission.

    Attributes:
        record: The merged and persisted record.
        indicator_id: Submitted indicator.
        created: Whether the submission created the record.
        completed_groups: Composites that became complete with this submission.
        attempts: Conditional save attempts used.
        provenance_hash: Chain hash of the provenance entry, if recorded.
    """

    record: CalculationRecord
    indicator_id: str
    created: bool
    completed_groups: List[str] = field(default_factory=list)
    attempts: int = 1
    provenance_hash: Optional[str] = None

    @property
    def raw_value(self) -> float:
        return self.record.raw_value(self.indicator_id)

    @property
    def standardized(self) -> float:
        return self.record.standardized(self.indicator_id)

    @property
    def comment(self) -> str:
        return self.record.comment(self.indicator_id)


class CalculationService:
    """Submissions, history, comparisons and reports for CPI records."""

    def __init__(
        self,
        repository: Optional[RecordRepository] = None,
        registry: Optional[IndicatorRegistry] = None,
        config: Optional[CityProsperityConfig] = None,
        provenance: Optional[ProvenanceTracker] = None,
    ):
        """
        Args:
            repository: Record store (defaults to the one selected by config)
            registry: Indicator registry (defaults to the process-wide one)
            config: Configuration (defaults to the process-wide one)
            provenance: Provenance tracker (created when enabled in config)
        """
        self.config = config or get_config()
        self.registry = registry or get_registry()
        self.repository = repository or create_repository(self.config)
        if provenance is None and self.config.enable_provenance:
            provenance = ProvenanceTracker(self.config.genesis_hash)
        self.provenance = provenance
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def submit(
        self,
        user_id: str,
        city: str,
        country: str,
        indicator_id: str,
        raw_inputs: RawInputs,
    ) -> SubmissionResult:
        """
        Score an indicator for a city and persist the merged record.

        Args:
            user_id: Record owner
            city: City name
            country: Country name
            indicator_id: Indicator being submitted
            raw_inputs: Raw input values

        Returns:
            SubmissionResult with the persisted record

        Raises:
            InvalidInputError: Invalid location, indicator or raw inputs
            ConcurrentUpdateError: Conditional save kept losing races
            StorageError: Persistence failure
        """
        start = time.perf_counter()
        try:
            city, country = normalize_location(city, country)
        except InvalidInputError:
            metrics.record_submission(indicator_id, "invalid")
            logger.warning("Rejected %s submission without city/country", indicator_id)
            raise

        attempts = 0
        with self._locks.hold((user_id, city, country)):
            while True:
                attempts += 1
                existing = self.repository.load_record(user_id, city, country)
                expected_hash = existing.content_hash() if existing is not None else None
                try:
                    record = merge_submission(
                        existing,
                        indicator_id,
                        raw_inputs,
                        user_id,
                        city,
                        country,
                        registry=self.registry,
                        precision=self.config.score_precision,
                    )
                except InvalidInputError as e:
                    metrics.record_submission(indicator_id, "invalid")
                    logger.warning(
                        "Rejected %s submission for %s, %s: %s",
                        indicator_id, city, country, e.message,
                    )
                    raise

                try:
                    self.repository.compare_and_save(record, expected_hash)
                    break
                except ConcurrentUpdateError:
                    metrics.record_save_conflict()
                    if attempts >= self.config.max_save_retries:
                        metrics.record_submission(indicator_id, "conflict")
                        logger.error(
                            "Giving up on %s submission for %s, %s after %d attempts",
                            indicator_id, city, country, attempts,
                        )
                        raise
                    logger.warning(
                        "Record for %s, %s changed concurrently; retrying (%d/%d)",
                        city, country, attempts, self.config.max_save_retries,
                    )

        completed = newly_completed(existing, record, self.registry)
        result = SubmissionResult(
            record=record,
            indicator_id=indicator_id,
            created=existing is None,
            completed_groups=completed,
            attempts=attempts,
        )

        if self.provenance is not None:
            entry = self.provenance.record(
                "submit",
                {
                    "indicator": indicator_id,
                    "inputs": dict(raw_inputs),
                    "user_id": user_id,
                    "city": city,
                    "country": country,
                },
                record.content_hash(),
                metadata={"record_id": record.id},
            )
            result.provenance_hash = entry.chain_hash

        metrics.record_submission(indicator_id, "accepted")
        metrics.observe_score(indicator_id, result.standardized)
        for group_id in completed:
            metrics.record_composite_completed(group_id)
        metrics.observe_duration("submit", time.perf_counter() - start)

        logger.info(
            "Scored %s for %s, %s: %.2f (%s)%s",
            indicator_id,
            city,
            country,
            result.standardized,
            result.comment,
            f"; completed {', '.join(completed)}" if completed else "",
        )
        return result

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def list_history(self, user_id: str) -> List[CalculationRecord]:
        """The user's records with a location, most recently updated first."""
        return [
            record
            for record in self.repository.list_records(user_id)
            if record.city and record.country
        ]

    def get_record(self, user_id: str, record_id: str) -> CalculationRecord:
        """
        Fetch one of the user's records by id.

        Raises:
            RecordNotFoundError: Missing, or owned by someone else
        """
        record = self.repository.get_record(record_id)
        if record is None or record.user_id != user_id:
            raise RecordNotFoundError(record_id=record_id)
        return record

    def find_record(self, user_id: str, city: str, country: str) -> CalculationRecord:
        """
        Fetch the user's record for a location.

        Raises:
            InvalidInputError: Blank city or country
            RecordNotFoundError: No record for the location
        """
        city, country = normalize_location(city, country)
        record = self.repository.load_record(user_id, city, country)
        if record is None:
            raise RecordNotFoundError(
                f"No calculation for {city}, {country}",
                context={"city": city, "country": country},
            )
        return record

    def delete_record(self, user_id: str, record_id: str) -> None:
        """
        Delete one of the user's records.

        Raises:
            RecordNotFoundError: Missing, or owned by someone else
        """
        record = self.get_record(user_id, record_id)
        self.repository.delete_record(record.id)
        if self.provenance is not None:
            self.provenance.record(
                "delete_record",
                {"user_id": user_id, "record_id": record_id},
                record.content_hash(),
            )
        logger.info("Deleted record %s (%s, %s)", record_id, record.city, record.country)

    def report(self, user_id: str, city: str, country: str) -> CityReport:
        """Hierarchical report of the user's record for a location."""
        start = time.perf_counter()
        report = build_report(self.find_record(user_id, city, country), self.registry)
        metrics.observe_duration("report", time.perf_counter() - start)
        return report

    # ------------------------------------------------------------------
    # Comparisons
    # ------------------------------------------------------------------

    def compare(self, user_id: str, cities: Union[str, Sequence[str]]) -> List[CalculationRecord]:
        """
        Records of the user for the requested ``City:Country`` entries.

        Raises:
            EmptySelectionError: No cities requested
            InvalidInputError: Malformed entry
        """
        start = time.perf_counter()
        try:
            pairs = parse_city_pairs(cities)
        except EmptySelectionError:
            metrics.record_comparison("empty")
            raise
        except InvalidInputError as e:
            metrics.record_comparison("invalid")
            logger.warning("Rejected comparison request: %s", e.message)
            raise

        selected = select_for_comparison(
            self.repository.list_records(user_id), user_id, pairs,
        )
        metrics.record_comparison("matched" if selected else "no_match")
        metrics.observe_duration("compare", time.perf_counter() - start)
        logger.info(
            "Comparison for %s: %d of %d cities found",
            user_id, len(selected), len(pairs),
        )
        return selected

    def save_comparison(
        self, user_id: str, name: str, cities: Union[str, Sequence[str]],
    ) -> ComparisonSet:
        """
        Save a named list of cities.

        Raises:
            InvalidInputError: Blank name, no cities, or a malformed entry
        """
        if not isinstance(name, str) or not name.strip() or not cities:
            raise InvalidInputError(
                "Comparison name and cities are required",
                invalid_fields={
                    key: "required"
                    for key, ok in (
                        ("comparisonName", isinstance(name, str) and bool(name.strip())),
                        ("cities", bool(cities)),
                    )
                    if not ok
                },
            )
        pairs = parse_city_pairs(cities)
        comparison = ComparisonSet(
            user_id=user_id,
            name=name,
            cities=[str(pair) for pair in pairs],
            created_at=DeterministicClock.utcnow(),
        )
        self.repository.save_comparison(comparison)
        if self.provenance is not None:
            self.provenance.record(
                "save_comparison", comparison.model_dump(mode="json"), comparison.id,
            )
        logger.info("Saved comparison '%s' with %d cities", comparison.name, len(pairs))
        return comparison

    def list_comparisons(self, user_id: str) -> List[ComparisonSet]:
        return self.repository.list_comparisons(user_id)

    def compare_saved(self, user_id: str, comparison_id: str) -> List[CalculationRecord]:
        """Run a saved comparison against the user's current records."""
        return self.compare(user_id, self._owned_comparison(user_id, comparison_id).cities)

    def delete_comparison(self, user_id: str, comparison_id: str) -> None:
        """
        Delete one of the user's saved comparisons.

        Raises:
            RecordNotFoundError: Missing, or owned by someone else
        """
        comparison = self._owned_comparison(user_id, comparison_id)
        self.repository.delete_comparison(comparison.id)
        if self.provenance is not None:
            self.provenance.record(
                "delete_comparison",
                {"user_id": user_id, "comparison_id": comparison_id},
                comparison.id,
            )
        logger.info("Deleted comparison %s", comparison_id)

    def _owned_comparison(self, user_id: str, comparison_id: str) -> ComparisonSet:
        comparison = self.repository.get_comparison(comparison_id)
        if comparison is None or comparison.user_id != user_id:
            raise RecordNotFoundError("Comparison not found", record_id=comparison_id)
        return comparison

    def close(self) -> None:
        self.repository.close()


__all__ = ["KeyedLock", "SubmissionResult", "CalculationService"]
