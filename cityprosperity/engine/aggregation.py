# -*- coding: utf-8 -*-
"""
Aggregation Engine

Combines child scores into sub-domain, domain and CPI composites,
strictly bottom-up along the registry tree. A composite exists only when
every child of its group has a score; otherwise the result is the
``INCOMPLETE`` sentinel, never zero.

Example:
    >>> from cityprosperity.engine.aggregation import INCOMPLETE, aggregate
    >>> aggregate("ict", {"internet_access": 80.0})
    INCOMPLETE
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from cityprosperity.determinism import round_half_up
from cityprosperity.engine.normalization import clamp_score
from cityprosperity.registry import get_registry
from cityprosperity.registry.models import STANDARDIZED_SUFFIX, CombinationRule
from cityprosperity.registry.registry import IndicatorRegistry

logger = logging.getLogger(__name__)


class _Incomplete:
    """Marker for a composite whose children are not all scored."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "INCOMPLETE"

    def __reduce__(self):
        return (_Incomplete, ())


INCOMPLETE = _Incomplete()

CompositeResult = Union[float, _Incomplete]


def combine(
    rule: CombinationRule,
    scores: Sequence[float],
    weights: Optional[Sequence[float]] = None,
) -> float:
    """
    Combine child scores with one rule.

    Args:
        rule: Combination rule
        scores: Child scores, at least one
        weights: Per-score weights summing to 1 (``weightedMean`` only)

    Returns:
        Composite score clamped into [0, 100]
    """
    if not scores:
        raise ValueError("combine() needs at least one score")

    if rule is CombinationRule.WEIGHTED_MEAN:
        if weights is None or len(weights) != len(scores):
            raise ValueError("weightedMean needs exactly one weight per score")
        result = sum(w * s for w, s in zip(weights, scores))
    elif rule is CombinationRule.GEOMETRIC_MEAN:
        if any(s <= 0 for s in scores):
            result = 0.0
        else:
            result = math.exp(sum(math.log(s) for s in scores) / len(scores))
    else:
        result = sum(scores) / len(scores)
    return clamp_score(result)


def aggregate(
    group_id: str,
    child_scores: Mapping[str, Any],
    registry: Optional[IndicatorRegistry] = None,
) -> CompositeResult:
    """
    Compute one composite from its children's scores.

    Args:
        group_id: Composite group to compute
        child_scores: Child id -> score; extra keys are ignored
        registry: Registry to use (defaults to the process-wide one)

    Returns:
        Composite score, or ``INCOMPLETE`` when any child is missing

    Raises:
        InvalidInputError: If the group is unknown
    """
    registry = registry or get_registry()
    group = registry.group(group_id)
    children = registry.children(group_id)

    scores: List[float] = []
    for child in children:
        score = child_scores.get(child)
        if score is None or score is INCOMPLETE:
            return INCOMPLETE
        scores.append(float(score))

    weights = None
    if group.rule is CombinationRule.WEIGHTED_MEAN:
        weights = [group.weights[child] for child in children]
    return combine(group.rule, scores, weights)


def child_scores_from_values(
    group_id: str,
    values: Mapping[str, Any],
    registry: Optional[IndicatorRegistry] = None,
) -> Dict[str, float]:
    """
    Collect the stored scores of a group's children from a flat value map.

    Indicator children are read from ``<id>_standardized``; group children
    from ``<id>``.
    """
    registry = registry or get_registry()
    scores: Dict[str, float] = {}
    for child in registry.children(group_id):
        key = child if registry.is_group(child) else f"{child}{STANDARDIZED_SUFFIX}"
        if values.get(key) is not None:
            scores[child] = values[key]
    return scores


def recompute_ancestors(
    values: Mapping[str, Any],
    node_id: str,
    registry: Optional[IndicatorRegistry] = None,
    precision: int = 2,
) -> Dict[str, Any]:
    """
    Recompute only the composites above ``node_id``.

    Walks the precomputed ancestor chain nearest first, so each composite
    sees its freshly recomputed children. Complete composites are stored
    rounded to ``precision``; composites that are no longer complete are
    removed.

    Args:
        values: Flat record values
        node_id: Indicator (or group) whose score changed
        registry: Registry to use (defaults to the process-wide one)
        precision: Decimal places kept for composite scores

    Returns:
        Updated copy of ``values``
    """
    registry = registry or get_registry()
    updated = dict(values)
    for group_id in registry.ancestors(node_id):
        result = aggregate(
            group_id,
            child_scores_from_values(group_id, updated, registry),
            registry,
        )
        if result is INCOMPLETE:
            if updated.pop(group_id, None) is not None:
                logger.debug("Composite %s is no longer complete", group_id)
            continue
        updated[group_id] = round_half_up(result, precision)
        logger.debug("Composite %s = %.4f", group_id, result)
    return updated


__all__ = [
    "INCOMPLETE",
    "CompositeResult",
    "combine",
    "aggregate",
    "child_scores_from_values",
    "recompute_ancestors",
]
