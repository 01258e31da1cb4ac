# -*- coding: utf-8 -*-
"""
Indicator Registry Data Models

Pydantic v2 models describing the City Prosperity Index hierarchy:
indicator definitions (raw inputs, derivation, normalization formula and
benchmarks), composite group definitions, and classification band tables.

Enumerations (5):
    - FormulaType, DerivationType, Saturation, CombinationRule,
      ClassificationBand

Models (4):
    - BandThreshold, ClassificationTable, IndicatorDefinition,
      GroupDefinition

Definitions are immutable once loaded. Structural checks that need the
whole tree (parents, weights, cycles) live in
``cityprosperity.registry.registry.IndicatorRegistry.validate``; per-node
benchmark checks are reported by ``IndicatorDefinition.problems``.
"""

from __future__ import annotations

import math
import re
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Identifier of the root composite (the City Prosperity Index itself).
ROOT_GROUP_ID: str = "city_prosperity_index"

#: Allowed shape of indicator, group and raw input identifiers.
IDENTIFIER_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")

#: Suffix of the stored standardized score key.
STANDARDIZED_SUFFIX: str = "_standardized"

#: Suffix of the stored classification label key.
COMMENT_SUFFIX: str = "_comment"

#: Tolerance used when checking that group weights sum to one.
WEIGHT_SUM_TOLERANCE: float = 1e-6


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class FormulaType(str, Enum):
    """Normalization formula applied to the derived raw value."""

    RATIO = "ratio"
    RATIO_PERCENT = "ratioPercent"
    DISTANCE_FROM_TARGET = "distanceFromTarget"
    POWER_INTERPOLATION = "powerInterpolation"
    LOG_INTERPOLATION = "logInterpolation"
    DIRECT_PROPORTION = "directProportion"


class DerivationType(str, Enum):
    """How the raw indicator value is computed from the raw inputs."""

    VALUE = "value"
    PERCENT = "percent"
    RATE = "rate"
    PARITY_RATIO = "parity_ratio"
    HHI = "hhi"
    SHANNON_ENTROPY = "shannon_entropy"
    MONITORING_COVERAGE = "monitoring_coverage"
    GROWTH_RATIO = "growth_ratio"


#: Number of named raw inputs each derivation consumes.
DERIVATION_ARITY: Dict[DerivationType, int] = {
    DerivationType.VALUE: 1,
    DerivationType.PERCENT: 2,
    DerivationType.RATE: 2,
    DerivationType.PARITY_RATIO: 4,
    DerivationType.HHI: 1,
    DerivationType.SHANNON_ENTROPY: 1,
    DerivationType.MONITORING_COVERAGE: 3,
    DerivationType.GROWTH_RATIO: 5,
}

#: Derivations whose single raw input is a sequence rather than a number.
SEQUENCE_DERIVATIONS = frozenset(
    {DerivationType.HHI, DerivationType.SHANNON_ENTROPY}
)


class Saturation(str, Enum):
    """One-sided target: values past the target on this side score 100."""

    ABOVE = "above"
    BELOW = "below"


class CombinationRule(str, Enum):
    """Rule combining child scores into a composite score."""

    ARITHMETIC_MEAN = "arithmeticMean"
    WEIGHTED_MEAN = "weightedMean"
    GEOMETRIC_MEAN = "geometricMean"


class ClassificationBand(str, Enum):
    """Default qualitative verdicts, weakest first."""

    VERY_WEAK = "VERY WEAK"
    WEAK = "WEAK"
    MODERATELY_WEAK = "MODERATELY WEAK"
    MODERATELY_SOLID = "MODERATELY SOLID"
    SOLID = "SOLID"
    VERY_SOLID = "VERY SOLID"


# ---------------------------------------------------------------------------
# Classification tables
# ---------------------------------------------------------------------------


class BandThreshold(BaseModel):
    """Lower bound of a classification band.

    Attributes:
        threshold: Lower bound on the standardized score.
        label: Verdict stored in ``<indicator>_comment``.
        inclusive: Whether a score equal to the threshold falls in the band.
    """

    model_config = ConfigDict(frozen=True)

    threshold: float = Field(..., ge=0.0, le=100.0)
    label: str = Field(..., min_length=1)
    inclusive: bool = True

    def admits(self, score: float) -> bool:
        if self.inclusive:
            return score >= self.threshold
        return score > self.threshold


class ClassificationTable(BaseModel):
    """Ordered band thresholds, highest first, with a fallback label.

    A score takes the label of the first band that admits it, otherwise
    the fallback, so every table is total over [0, 100].
    """

    model_config = ConfigDict(frozen=True)

    bands: List[BandThreshold] = Field(default_factory=list)
    fallback: str = Field(..., min_length=1)

    def problems(self) -> List[str]:
        issues: List[str] = []
        for upper, lower in zip(self.bands, self.bands[1:]):
            if lower.threshold > upper.threshold or (
                lower.threshold == upper.threshold
                and lower.inclusive == upper.inclusive
            ):
                issues.append(
                    f"band '{lower.label}' ({lower.threshold}) must sit below "
                    f"band '{upper.label}' ({upper.threshold})"
                )
        return issues

    @property
    def labels(self) -> List[str]:
        return [band.label for band in self.bands] + [self.fallback]


#: UN-Habitat six-band verdict table shared by all scores without an override.
DEFAULT_CLASSIFICATION = ClassificationTable(
    bands=[
        BandThreshold(threshold=80.0, label=ClassificationBand.VERY_SOLID.value),
        BandThreshold(threshold=70.0, label=ClassificationBand.SOLID.value),
        BandThreshold(threshold=60.0, label=ClassificationBand.MODERATELY_SOLID.value),
        BandThreshold(threshold=50.0, label=ClassificationBand.MODERATELY_WEAK.value),
        BandThreshold(threshold=40.0, label=ClassificationBand.WEAK.value),
    ],
    fallback=ClassificationBand.VERY_WEAK.value,
)


# ---------------------------------------------------------------------------
# Indicator and group definitions
# ---------------------------------------------------------------------------


class IndicatorDefinition(BaseModel):
    """A leaf of the CPI hierarchy.

    Attributes:
        id: Unique key, also the prefix of the stored record keys.
        name: Display name.
        unit: Unit of the derived raw value.
        description: What the indicator measures.
        parent: Sub-domain group the indicator rolls into.
        inputs: Ordered names of the raw inputs.
        derivation: How the raw value is computed from the inputs.
        scale: Multiplier used by the ``rate`` derivation.
        formula: Normalization formula.
        min: Lower benchmark (interpolation formulas).
        max: Upper benchmark (interpolation formulas).
        target: Benchmark of ``distanceFromTarget``.
        exponent: Exponent of ``powerInterpolation``.
        inverted: Lower raw values are better.
        saturate: One-sided target for ``distanceFromTarget``.
        classification: Optional verdict table replacing the default.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    unit: str = ""
    description: str = ""
    parent: str
    inputs: List[str] = Field(..., min_length=1)
    derivation: DerivationType = DerivationType.VALUE
    scale: float = 1.0
    formula: FormulaType
    min: Optional[float] = None
    max: Optional[float] = None
    target: Optional[float] = None
    exponent: Optional[float] = None
    inverted: bool = False
    saturate: Optional[Saturation] = None
    classification: Optional[ClassificationTable] = None

    @field_validator("id", "parent")
    @classmethod
    def _validate_identifier(cls, value: str) -> str:
        if not IDENTIFIER_PATTERN.match(value):
            raise ValueError(f"'{value}' is not a valid identifier")
        return value

    @field_validator("inputs")
    @classmethod
    def _validate_inputs(cls, value: List[str]) -> List[str]:
        if len(set(value)) != len(value):
            raise ValueError("input names must be unique")
        for name in value:
            if not IDENTIFIER_PATTERN.match(name):
                raise ValueError(f"'{name}' is not a valid input name")
        return value

    @property
    def standardized_key(self) -> str:
        return f"{self.id}{STANDARDIZED_SUFFIX}"

    @property
    def comment_key(self) -> str:
        return f"{self.id}{COMMENT_SUFFIX}"

    @property
    def takes_sequence(self) -> bool:
        return self.derivation in SEQUENCE_DERIVATIONS

    def problems(self) -> List[str]:
        """Return benchmark and arity defects of this definition.

        Returns:
            Human-readable problem descriptions, empty when the definition
            is usable.
        """
        issues: List[str] = []
        prefix = f"indicator '{self.id}'"

        expected = DERIVATION_ARITY[self.derivation]
        if len(self.inputs) != expected:
            issues.append(
                f"{prefix}: derivation '{self.derivation.value}' takes "
                f"{expected} input(s), {len(self.inputs)} declared"
            )
        if self.derivation is DerivationType.RATE and not self.scale > 0:
            issues.append(f"{prefix}: rate scale must be > 0")

        for name in ("min", "max", "target", "exponent"):
            value = getattr(self, name)
            if value is not None and not math.isfinite(value):
                issues.append(f"{prefix}: {name} must be finite")

        formula = self.formula
        if formula in (
            FormulaType.POWER_INTERPOLATION,
            FormulaType.LOG_INTERPOLATION,
            FormulaType.DIRECT_PROPORTION,
        ):
            if self.min is None or self.max is None:
                issues.append(f"{prefix}: {formula.value} requires min and max")
            elif self.max <= self.min:
                issues.append(
                    f"{prefix}: max ({self.max}) must be greater than "
                    f"min ({self.min})"
                )
            elif formula is FormulaType.LOG_INTERPOLATION and self.min <= 0:
                issues.append(f"{prefix}: logInterpolation requires min > 0")
            elif formula is FormulaType.POWER_INTERPOLATION and self.min < 0:
                issues.append(f"{prefix}: powerInterpolation requires min >= 0")

        if formula is FormulaType.POWER_INTERPOLATION:
            if self.exponent is None or not self.exponent > 0:
                issues.append(f"{prefix}: powerInterpolation requires exponent > 0")
        elif self.exponent is not None:
            issues.append(f"{prefix}: exponent is only used by powerInterpolation")

        if formula is FormulaType.DISTANCE_FROM_TARGET:
            if self.derivation is DerivationType.HHI:
                if self.target is not None:
                    issues.append(
                        f"{prefix}: the hhi derivation supplies its own target"
                    )
            elif self.target is None:
                issues.append(f"{prefix}: distanceFromTarget requires a target")
            elif self.target == 0:
                issues.append(f"{prefix}: target must not be zero")
        elif self.saturate is not None:
            issues.append(f"{prefix}: saturate is only used by distanceFromTarget")

        if self.classification is not None:
            issues.extend(
                f"{prefix}: {issue}" for issue in self.classification.problems()
            )
        return issues


class GroupDefinition(BaseModel):
    """A composite node: sub-domain, domain, or the CPI root.

    Attributes:
        id: Unique key, also the stored composite key.
        name: Display name.
        abbreviation: Short label used in reports (e.g. ``QOL``).
        parent: Enclosing group, absent only for the root.
        rule: How child scores are combined.
        weights: Child id -> weight, required by ``weightedMean``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    abbreviation: str = ""
    parent: Optional[str] = None
    rule: CombinationRule = CombinationRule.ARITHMETIC_MEAN
    weights: Optional[Dict[str, float]] = None

    @field_validator("id")
    @classmethod
    def _validate_identifier(cls, value: str) -> str:
        if not IDENTIFIER_PATTERN.match(value):
            raise ValueError(f"'{value}' is not a valid identifier")
        return value


__all__ = [
    "ROOT_GROUP_ID",
    "STANDARDIZED_SUFFIX",
    "COMMENT_SUFFIX",
    "WEIGHT_SUM_TOLERANCE",
    "FormulaType",
    "DerivationType",
    "DERIVATION_ARITY",
    "SEQUENCE_DERIVATIONS",
    "Saturation",
    "CombinationRule",
    "ClassificationBand",
    "BandThreshold",
    "ClassificationTable",
    "DEFAULT_CLASSIFICATION",
    "IndicatorDefinition",
    "GroupDefinition",
]
