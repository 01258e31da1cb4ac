"""Scoring engine: normalization, classification, aggregation, records, comparison."""

from cityprosperity.engine.aggregation import INCOMPLETE, aggregate, recompute_ancestors
from cityprosperity.engine.classification import classify
from cityprosperity.engine.comparison import CityPair, parse_city_pairs, select_for_comparison
from cityprosperity.engine.normalization import derive_raw_value, score_indicator, standardize
from cityprosperity.engine.records import CalculationRecord, merge_submission
from cityprosperity.engine.report import CityReport, build_report

__all__ = [
    "INCOMPLETE",
    "aggregate",
    "recompute_ancestors",
    "classify",
    "CityPair",
    "parse_city_pairs",
    "select_for_comparison",
    "derive_raw_value",
    "score_indicator",
    "standardize",
    "CalculationRecord",
    "merge_submission",
    "CityReport",
    "build_report",
]
