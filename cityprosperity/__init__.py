"""
City Prosperity Index engine.

Standardizes raw urban indicators to 0-100 scores, bands them into
verdicts, and rolls them up into sub-domain, domain and CPI composites
stored per user and city.
"""

__version__ = "1.0.0"

from cityprosperity.engine import (
    INCOMPLETE,
    CalculationRecord,
    aggregate,
    classify,
    merge_submission,
    select_for_comparison,
    standardize,
)
from cityprosperity.exceptions import (
    CityProsperityException,
    EmptySelectionError,
    InvalidConfigurationError,
    InvalidInputError,
    RecordNotFoundError,
)
from cityprosperity.registry import IndicatorRegistry, get_registry

__all__ = [
    "__version__",
    "INCOMPLETE",
    "CalculationRecord",
    "aggregate",
    "classify",
    "merge_submission",
    "select_for_comparison",
    "standardize",
    "CityProsperityException",
    "EmptySelectionError",
    "InvalidConfigurationError",
    "InvalidInputError",
    "RecordNotFoundError",
    "IndicatorRegistry",
    "get_registry",
]
