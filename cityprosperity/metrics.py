# -*- coding: utf-8 -*-
"""
Prometheus Metrics for the City Prosperity Index engine

Metrics:
    1. cpi_submissions_total (Counter, labels: indicator, result)
    2. cpi_standardized_score (Histogram, labels: indicator)
    3. cpi_composites_completed_total (Counter, labels: group)
    4. cpi_processing_duration_seconds (Histogram, labels: operation)
    5. cpi_comparisons_total (Counter, labels: result)
    6. cpi_save_conflicts_total (Counter)

Helpers check ``CityProsperityConfig.enable_metrics`` so callers never
need to.
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Histogram

from cityprosperity.config import get_config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

# 1. Indicator submissions by indicator and result
cpi_submissions_total = Counter(
    "cpi_submissions_total",
    "Total indicator submissions processed",
    labelnames=["indicator", "result"],
)

# 2. Standardized score distribution by indicator
cpi_standardized_score = Histogram(
    "cpi_standardized_score",
    "Distribution of standardized indicator scores (0 - 100)",
    labelnames=["indicator"],
    buckets=(10.0, 20.0, 30.0, 40.0, 50.0, 60.0, 70.0, 80.0, 90.0, 100.0),
)

# 3. Composites that became complete, by group
cpi_composites_completed_total = Counter(
    "cpi_composites_completed_total",
    "Total composite scores that became complete after a submission",
    labelnames=["group"],
)

# 4. Processing duration by operation
cpi_processing_duration_seconds = Histogram(
    "cpi_processing_duration_seconds",
    "City Prosperity Index processing duration in seconds",
    labelnames=["operation"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)

# 5. Comparison requests by result
cpi_comparisons_total = Counter(
    "cpi_comparisons_total",
    "Total city comparison requests",
    labelnames=["result"],
)

# 6. Conditional save conflicts
cpi_save_conflicts_total = Counter(
    "cpi_save_conflicts_total",
    "Total conditional saves that lost a race to a concurrent writer",
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def _enabled() -> bool:
    return get_config().enable_metrics


def record_submission(indicator: str, result: str) -> None:
    """Record an indicator submission.

    Args:
        indicator: Indicator id.
        result: Outcome (accepted, invalid, conflict, error).
    """
    if _enabled():
        cpi_submissions_total.labels(indicator=indicator, result=result).inc()


def observe_score(indicator: str, score: float) -> None:
    """Record a standardized score observation."""
    if _enabled():
        cpi_standardized_score.labels(indicator=indicator).observe(score)


def record_composite_completed(group: str) -> None:
    """Record a composite that became complete."""
    if _enabled():
        cpi_composites_completed_total.labels(group=group).inc()


def observe_duration(operation: str, seconds: float) -> None:
    """Record processing duration of one operation.

    Args:
        operation: Operation name (submit, compare, report).
        seconds: Wall-clock duration.
    """
    if _enabled():
        cpi_processing_duration_seconds.labels(operation=operation).observe(seconds)


def record_comparison(result: str) -> None:
    """Record a comparison request (matched, empty, invalid)."""
    if _enabled():
        cpi_comparisons_total.labels(result=result).inc()


def record_save_conflict() -> None:
    if _enabled():
        cpi_save_conflicts_total.inc()


__all__ = [
    "cpi_submissions_total",
    "cpi_standardized_score",
    "cpi_composites_completed_total",
    "cpi_processing_duration_seconds",
    "cpi_comparisons_total",
    "cpi_save_conflicts_total",
    "record_submission",
    "observe_score",
    "record_composite_completed",
    "observe_duration",
    "record_comparison",
    "record_save_conflict",
]
