# -*- coding: utf-8 -*-
"""
Normalization Engine

Turns the raw inputs of one indicator into its raw indicator value and a
standardized score in [0, 100].

Two table-driven steps, both selected by the indicator definition:

1. Derivation: combines the named raw inputs into the raw indicator value
   (a percentage, a per-capita rate, an HHI, ...).
2. Formula: maps the raw value onto the 0-100 scale against the
   indicator's benchmarks, then clamps.

Formulas never fail on out-of-range values: anything beyond a benchmark
clamps to 0 or 100. Only inputs that cannot be interpreted raise
``InvalidInputError``.

Example:
    >>> from cityprosperity.engine.normalization import standardize
    >>> round(standardize("sufficient_living", {
    ...     "households_with_sufficient_space": 40,
    ...     "total_households": 100,
    ... }), 2)
    83.84
"""

from __future__ import annotations

import logging
import math
import numbers
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Tuple

from cityprosperity.exceptions import InvalidInputError
from cityprosperity.registry import get_registry
from cityprosperity.registry.models import (
    DerivationType,
    FormulaType,
    IndicatorDefinition,
    Saturation,
)
from cityprosperity.registry.registry import IndicatorRegistry

logger = logging.getLogger(__name__)

RawInputs = Mapping[str, Any]

#: Lower and upper bound of every standardized score.
SCORE_MIN: float = 0.0
SCORE_MAX: float = 100.0

#: Inhabitants per required PM10 monitoring station, by PM10 level (ug/m3).
#: Checked in order; the first threshold the concentration reaches applies.
MONITORING_STATION_COVERAGE: Tuple[Tuple[float, float], ...] = (
    (48.0, 125_000.0),
    (32.0, 250_000.0),
    (0.0, 500_000.0),
)

#: HHI value whose normalized form is the specialization benchmark.
HHI_BENCHMARK: float = 0.25


class DerivedValue(NamedTuple):
    """Raw indicator value, plus a benchmark when the derivation supplies one."""

    value: float
    target: Optional[float] = None


class IndicatorScore(NamedTuple):
    """Raw indicator value and its standardized score."""

    raw_value: float
    score: float


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def _as_number(value: Any) -> Tuple[Optional[float], Optional[str]]:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None, "must be a number"
    number = float(value)
    if not math.isfinite(number):
        return None, "must be finite"
    if number < 0:
        return None, "must not be negative"
    return number, None


def _as_vector(value: Any) -> Tuple[Optional[List[float]], Optional[str]]:
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
        return None, "must be a list of numbers"
    if not value:
        return None, "must not be empty"
    vector = []
    for item in value:
        number, reason = _as_number(item)
        if reason:
            return None, f"every element {reason}"
        vector.append(number)
    return vector, None


def _as_sequence(definition: IndicatorDefinition, value: Any) -> Tuple[Any, Optional[str]]:
    if definition.derivation is DerivationType.SHANNON_ENTROPY:
        # One share vector per grid cell; a flat vector is a single cell.
        if isinstance(value, (list, tuple)) and value and all(
            isinstance(cell, (list, tuple)) for cell in value
        ):
            cells = []
            for cell in value:
                vector, reason = _as_vector(cell)
                if reason:
                    return None, f"each cell {reason}"
                cells.append(vector)
            return cells, None
        vector, reason = _as_vector(value)
        return ([vector] if vector is not None else None), reason
    return _as_vector(value)


def _validated_inputs(definition: IndicatorDefinition, raw_inputs: RawInputs) -> Dict[str, Any]:
    if not isinstance(raw_inputs, Mapping):
        raise InvalidInputError(
            "Raw inputs must be a mapping of input name to value",
            indicator_id=definition.id,
        )

    invalid: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    for name in definition.inputs:
        if raw_inputs.get(name) is None:
            invalid[name] = "missing"
            continue
        if definition.takes_sequence:
            value, reason = _as_sequence(definition, raw_inputs[name])
        else:
            value, reason = _as_number(raw_inputs[name])
        if reason:
            invalid[name] = reason
        else:
            values[name] = value

    for name in raw_inputs:
        if name not in definition.inputs:
            invalid[str(name)] = "unexpected input"

    if invalid:
        raise InvalidInputError(
            f"Invalid raw inputs for {definition.id}: "
            + ", ".join(f"{k} {v}" for k, v in invalid.items()),
            indicator_id=definition.id,
            invalid_fields=invalid,
        )
    return values


def _positive(definition: IndicatorDefinition, name: str, value: float) -> float:
    if value <= 0:
        raise InvalidInputError(
            f"{name} must be greater than zero for {definition.id}",
            indicator_id=definition.id,
            invalid_fields={name: "must be greater than zero"},
        )
    return value


def _finite(definition: IndicatorDefinition, name: str, value: float) -> float:
    if not math.isfinite(value):
        raise InvalidInputError(
            f"{name} is out of numeric range for {definition.id}",
            indicator_id=definition.id,
            invalid_fields={name: "out of numeric range"},
        )
    return value


# ---------------------------------------------------------------------------
# Derivations
# ---------------------------------------------------------------------------


def _derive_value(definition: IndicatorDefinition, values: Dict[str, Any]) -> DerivedValue:
    return DerivedValue(values[definition.inputs[0]])


def _derive_percent(definition: IndicatorDefinition, values: Dict[str, Any]) -> DerivedValue:
    num_name, den_name = definition.inputs
    denominator = _positive(definition, den_name, values[den_name])
    return DerivedValue(100.0 * values[num_name] / denominator)


def _derive_rate(definition: IndicatorDefinition, values: Dict[str, Any]) -> DerivedValue:
    num_name, den_name = definition.inputs
    denominator = _positive(definition, den_name, values[den_name])
    return DerivedValue(definition.scale * values[num_name] / denominator)


def _derive_parity_ratio(definition: IndicatorDefinition, values: Dict[str, Any]) -> DerivedValue:
    a, b, c, d = definition.inputs
    first = _finite(definition, a, values[a] / _positive(definition, b, values[b]))
    second = _finite(
        definition, c, _positive(definition, c, values[c]) / _positive(definition, d, values[d])
    )
    return DerivedValue(first / _positive(definition, c, second))


def _derive_hhi(definition: IndicatorDefinition, values: Dict[str, Any]) -> DerivedValue:
    name = definition.inputs[0]
    shares = values[name]
    count = len(shares)
    if count < 2:
        raise InvalidInputError(
            f"{name} needs at least two industries for {definition.id}",
            indicator_id=definition.id,
            invalid_fields={name: "needs at least two shares"},
        )
    total = _finite(definition, name, _positive(definition, name, sum(shares)))
    index = sum((share / total) ** 2 for share in shares)
    floor = 1.0 / count
    normalized = (index - floor) / (1.0 - floor)
    benchmark = (HHI_BENCHMARK - floor) / (1.0 - floor)
    if math.isclose(benchmark, 0.0, abs_tol=1e-12):
        raise InvalidInputError(
            f"Specialization benchmark is undefined for {count} industries",
            indicator_id=definition.id,
            invalid_fields={name: f"benchmark undefined for {count} shares"},
        )
    return DerivedValue(normalized, target=benchmark)


def _derive_shannon_entropy(definition: IndicatorDefinition, values: Dict[str, Any]) -> DerivedValue:
    name = definition.inputs[0]
    indices = []
    for cell in values[name]:
        total = _finite(definition, name, _positive(definition, name, sum(cell)))
        # Shares far below the cell total underflow to zero and drop out.
        fractions = [p / total for p in cell]
        indices.append(-sum(f * math.log(f) for f in fractions if f > 0))
    return DerivedValue(sum(indices) / len(indices))


def _derive_monitoring_coverage(definition: IndicatorDefinition, values: Dict[str, Any]) -> DerivedValue:
    stations_name, population_name, pm10_name = definition.inputs
    population = _positive(definition, population_name, values[population_name])
    pm10 = values[pm10_name]
    per_station = next(
        people for level, people in MONITORING_STATION_COVERAGE if pm10 >= level
    )
    required = population / per_station
    return DerivedValue(100.0 * values[stations_name] / required)


def _derive_growth_ratio(definition: IndicatorDefinition, values: Dict[str, Any]) -> DerivedValue:
    area_start, area_end, pop_start, pop_end, years = (
        _positive(definition, name, values[name]) for name in definition.inputs
    )
    land_rate = (math.log(area_end) - math.log(area_start)) / years
    population_rate = (math.log(pop_end) - math.log(pop_start)) / years
    if population_rate == 0:
        pop_start_name, pop_end_name = definition.inputs[2:4]
        raise InvalidInputError(
            f"Population must change over the period for {definition.id}",
            indicator_id=definition.id,
            invalid_fields={
                pop_start_name: "equal to final population",
                pop_end_name: "equal to initial population",
            },
        )
    return DerivedValue(land_rate / population_rate)


_DERIVATIONS: Dict[DerivationType, Callable[[IndicatorDefinition, Dict[str, Any]], DerivedValue]] = {
    DerivationType.VALUE: _derive_value,
    DerivationType.PERCENT: _derive_percent,
    DerivationType.RATE: _derive_rate,
    DerivationType.PARITY_RATIO: _derive_parity_ratio,
    DerivationType.HHI: _derive_hhi,
    DerivationType.SHANNON_ENTROPY: _derive_shannon_entropy,
    DerivationType.MONITORING_COVERAGE: _derive_monitoring_coverage,
    DerivationType.GROWTH_RATIO: _derive_growth_ratio,
}


def _derive(definition: IndicatorDefinition, raw_inputs: RawInputs) -> DerivedValue:
    values = _validated_inputs(definition, raw_inputs)
    derived = _DERIVATIONS[definition.derivation](definition, values)
    _finite(definition, definition.id, derived.value)
    return derived


# ---------------------------------------------------------------------------
# Formulas
# ---------------------------------------------------------------------------


def clamp_score(score: float) -> float:
    """Clamp a score into [0, 100]."""
    return max(SCORE_MIN, min(SCORE_MAX, score))


def _bounded(definition: IndicatorDefinition, value: float) -> Tuple[float, float, float]:
    low, high = definition.min, definition.max
    return low, high, max(low, min(high, value))


def _ratio(definition: IndicatorDefinition, value: float, target: Optional[float]) -> float:
    return 100.0 * value


def _ratio_percent(definition: IndicatorDefinition, value: float, target: Optional[float]) -> float:
    return value


def _distance_from_target(definition: IndicatorDefinition, value: float, target: Optional[float]) -> float:
    target = definition.target if target is None else target
    if definition.saturate is Saturation.ABOVE and value >= target:
        return SCORE_MAX
    if definition.saturate is Saturation.BELOW and value <= target:
        return SCORE_MAX
    return 100.0 * (1.0 - abs(value - target) / abs(target))


def _power_interpolation(definition: IndicatorDefinition, value: float, target: Optional[float]) -> float:
    low, high, value = _bounded(definition, value)
    exponent = definition.exponent
    return 100.0 * (value ** exponent - low ** exponent) / (high ** exponent - low ** exponent)


def _log_interpolation(definition: IndicatorDefinition, value: float, target: Optional[float]) -> float:
    low, high, value = _bounded(definition, value)
    return 100.0 * (math.log(value) - math.log(low)) / (math.log(high) - math.log(low))


def _direct_proportion(definition: IndicatorDefinition, value: float, target: Optional[float]) -> float:
    low, high, value = _bounded(definition, value)
    return 100.0 * (value - low) / (high - low)


_FORMULAS: Dict[FormulaType, Callable[[IndicatorDefinition, float, Optional[float]], float]] = {
    FormulaType.RATIO: _ratio,
    FormulaType.RATIO_PERCENT: _ratio_percent,
    FormulaType.DISTANCE_FROM_TARGET: _distance_from_target,
    FormulaType.POWER_INTERPOLATION: _power_interpolation,
    FormulaType.LOG_INTERPOLATION: _log_interpolation,
    FormulaType.DIRECT_PROPORTION: _direct_proportion,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def apply_formula(
    definition: IndicatorDefinition,
    value: float,
    target: Optional[float] = None,
) -> float:
    """
    Map a raw indicator value onto the 0-100 scale.

    Args:
        definition: Indicator whose formula and benchmarks apply
        value: Raw indicator value
        target: Benchmark supplied by the derivation, if any

    Returns:
        Standardized score, clamped into [0, 100]
    """
    score = _FORMULAS[definition.formula](definition, value, target)
    if definition.inverted:
        score = SCORE_MAX - score
    return clamp_score(score)


def score_indicator(
    indicator_id: str,
    raw_inputs: RawInputs,
    registry: Optional[IndicatorRegistry] = None,
) -> IndicatorScore:
    """
    Derive the raw indicator value and standardize it.

    Args:
        indicator_id: Indicator to score
        raw_inputs: Input name -> value (numbers, or a list for HHI and
            land-use-mix indicators)
        registry: Registry to use (defaults to the process-wide one)

    Returns:
        IndicatorScore with the raw value and the unrounded score

    Raises:
        InvalidInputError: Unknown indicator or invalid raw inputs
    """
    definition = (registry or get_registry()).indicator(indicator_id)
    derived = _derive(definition, raw_inputs)
    score = apply_formula(definition, derived.value, derived.target)
    logger.debug(
        "Standardized %s: raw=%.6g score=%.4f", indicator_id, derived.value, score
    )
    return IndicatorScore(raw_value=derived.value, score=score)


def derive_raw_value(
    indicator_id: str,
    raw_inputs: RawInputs,
    registry: Optional[IndicatorRegistry] = None,
) -> float:
    """Compute the raw indicator value without standardizing it."""
    definition = (registry or get_registry()).indicator(indicator_id)
    return _derive(definition, raw_inputs).value


def standardize(
    indicator_id: str,
    raw_inputs: RawInputs,
    registry: Optional[IndicatorRegistry] = None,
) -> float:
    """
    Compute the standardized score of one indicator.

    Pure: depends only on the inputs and the immutable registry.

    Args:
        indicator_id: Indicator to score
        raw_inputs: Input name -> value
        registry: Registry to use (defaults to the process-wide one)

    Returns:
        Score in [0, 100], unrounded

    Raises:
        InvalidInputError: Unknown indicator or invalid raw inputs
    """
    return score_indicator(indicator_id, raw_inputs, registry).score


__all__ = [
    "SCORE_MIN",
    "SCORE_MAX",
    "MONITORING_STATION_COVERAGE",
    "DerivedValue",
    "IndicatorScore",
    "apply_formula",
    "clamp_score",
    "derive_raw_value",
    "score_indicator",
    "standardize",
]
