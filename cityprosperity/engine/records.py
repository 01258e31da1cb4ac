# -*- coding: utf-8 -*-
"""
Calculation Record Builder

A calculation record holds everything a user has scored for one
``(user_id, city, country)``: per indicator the raw value, the rounded
standardized score and its verdict, plus every composite that is
complete. Records are created on the first submission for a location and
merged on every later one.

Persisted flat shape::

    {
        "id": "...", "userId": "...", "city": "...", "country": "...",
        "createdAt": "...", "updatedAt": "...",
        "sufficient_living": 40.0,
        "sufficient_living_standardized": 83.84,
        "sufficient_living_comment": "VERY SOLID",
        "housing_infrastructure": 71.2,
    }
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cityprosperity.config import get_config
from cityprosperity.determinism import DeterministicClock, new_record_id, round_half_up
from cityprosperity.engine.aggregation import INCOMPLETE, CompositeResult, recompute_ancestors
from cityprosperity.engine.classification import classify
from cityprosperity.engine.normalization import RawInputs, score_indicator
from cityprosperity.exceptions import InvalidInputError
from cityprosperity.provenance import ProvenanceTracker
from cityprosperity.registry import get_registry
from cityprosperity.registry.models import COMMENT_SUFFIX, STANDARDIZED_SUFFIX
from cityprosperity.registry.registry import IndicatorRegistry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Identity keys of the flat persisted shape, in output order.
IDENTITY_KEYS: Tuple[str, ...] = (
    "id", "userId", "city", "country", "createdAt", "updatedAt",
)

#: Decimal places kept for raw indicator values.
RAW_VALUE_PRECISION: int = 6


# ---------------------------------------------------------------------------
# CalculationRecord
# ---------------------------------------------------------------------------


class CalculationRecord(BaseModel):
    """One user's scores for one city.

    Attributes:
        id: Opaque record identifier, stable across merges.
        user_id: Owner, as supplied by the identity provider.
        city: City name.
        country: Country name.
        created_at: Time of the first submission.
        updated_at: Time of the latest submission.
        values: Flat mapping of indicator, score, comment and composite keys.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_record_id)
    user_id: str
    city: str
    country: str
    created_at: datetime
    updated_at: datetime
    values: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("values")
    @classmethod
    def _validate_values(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        for key, item in value.items():
            if key in IDENTITY_KEYS:
                raise ValueError(f"'{key}' is reserved for record identity")
            if isinstance(item, bool) or not isinstance(item, (int, float, str)):
                raise ValueError(f"value of '{key}' must be a number or string")
        return value

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def location_key(self) -> Tuple[str, str, str]:
        return (self.user_id, self.city, self.country)

    def raw_value(self, indicator_id: str) -> Optional[float]:
        return self.values.get(indicator_id)

    def standardized(self, indicator_id: str) -> Optional[float]:
        return self.values.get(f"{indicator_id}{STANDARDIZED_SUFFIX}")

    def comment(self, indicator_id: str) -> Optional[str]:
        return self.values.get(f"{indicator_id}{COMMENT_SUFFIX}")

    def composite(self, group_id: str) -> CompositeResult:
        score = self.values.get(group_id)
        return INCOMPLETE if score is None else score

    def content_hash(self) -> str:
        """SHA-256 over identity and values; timestamps are excluded."""
        return ProvenanceTracker.compute_hash(
            {
                "id": self.id,
                "user_id": self.user_id,
                "city": self.city,
                "country": self.country,
                "values": self.values,
            }
        )

    # ------------------------------------------------------------------
    # Flat persisted shape
    # ------------------------------------------------------------------

    def to_flat(self) -> Dict[str, Any]:
        """Render the record in its persisted flat shape."""
        flat: Dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "city": self.city,
            "country": self.country,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        flat.update(self.values)
        return flat

    @classmethod
    def from_flat(cls, data: Mapping[str, Any]) -> CalculationRecord:
        """Rebuild a record from its persisted flat shape."""
        return cls(
            id=data["id"],
            user_id=data["userId"],
            city=data["city"],
            country=data["country"],
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
            values={k: v for k, v in data.items() if k not in IDENTITY_KEYS},
        )


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def normalize_location(city: Any, country: Any) -> Tuple[str, str]:
    """Strip city and country, rejecting blanks with ``InvalidInputError``."""
    invalid: Dict[str, str] = {}
    clean: List[str] = []
    for name, value in (("city", city), ("country", country)):
        text = value.strip() if isinstance(value, str) else ""
        if not text:
            invalid[name] = "required"
        clean.append(text)
    if invalid:
        raise InvalidInputError(
            "City and country are required", invalid_fields=invalid,
        )
    return clean[0], clean[1]


def merge_submission(
    existing: Optional[CalculationRecord],
    indicator_id: str,
    raw_inputs: RawInputs,
    user_id: str,
    city: str,
    country: str,
    *,
    registry: Optional[IndicatorRegistry] = None,
    now: Optional[datetime] = None,
    precision: Optional[int] = None,
) -> CalculationRecord:
    """
    Score one indicator submission and fold it into a record.

    Normalizes, then classifies, then recomputes the ancestor composites
    of the submitted indicator. ``existing`` is never modified; a new
    record object is returned. Resubmitting identical inputs yields an
    identical record apart from ``updated_at``.

    Args:
        existing: Current record for the location, or None for a new one
        indicator_id: Submitted indicator
        raw_inputs: Raw input values of the indicator
        user_id: Record owner
        city: City name (required, surrounding whitespace is dropped)
        country: Country name (required, surrounding whitespace is dropped)
        registry: Registry to use (defaults to the process-wide one)
        now: Submission time (defaults to the deterministic clock)
        precision: Decimal places of stored scores (defaults to config)

    Returns:
        The merged CalculationRecord

    Raises:
        InvalidInputError: Missing city/country, a record for another
            owner or location, unknown indicator, or invalid raw inputs
    """
    registry = registry or get_registry()
    city, country = normalize_location(city, country)
    if existing is not None and existing.location_key != (user_id, city, country):
        raise InvalidInputError(
            "Existing record belongs to a different user or location",
            indicator_id=indicator_id,
            context={"record_id": existing.id},
        )
    if precision is None:
        precision = get_config().score_precision

    result = score_indicator(indicator_id, raw_inputs, registry)
    standardized = round_half_up(result.score, precision)
    definition = registry.indicator(indicator_id)

    values = dict(existing.values) if existing is not None else {}
    values[indicator_id] = round_half_up(result.raw_value, RAW_VALUE_PRECISION)
    values[definition.standardized_key] = standardized
    values[definition.comment_key] = classify(result.score, indicator_id, registry)
    values = recompute_ancestors(values, indicator_id, registry, precision)

    timestamp = now or DeterministicClock.utcnow()
    if existing is None:
        record = CalculationRecord(
            user_id=user_id,
            city=city,
            country=country,
            created_at=timestamp,
            updated_at=timestamp,
            values=values,
        )
        logger.debug("Created record %s for %s, %s", record.id, city, country)
        return record

    return existing.model_copy(update={"values": values, "updated_at": timestamp})


def newly_completed(
    before: Optional[CalculationRecord],
    after: CalculationRecord,
    registry: Optional[IndicatorRegistry] = None,
) -> List[str]:
    """Groups whose composite exists in ``after`` but not in ``before``."""
    registry = registry or get_registry()
    previous = before.values if before is not None else {}
    return [
        group.id
        for group in registry.groups
        if group.id in after.values and group.id not in previous
    ]


__all__ = [
    "IDENTITY_KEYS",
    "RAW_VALUE_PRECISION",
    "CalculationRecord",
    "merge_submission",
    "newly_completed",
    "normalize_location",
]
