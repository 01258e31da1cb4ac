# -*- coding: utf-8 -*-
"""
Classification Engine

Bands a standardized or composite score into a qualitative verdict. The
default table is the six-band UN-Habitat scale; indicators may carry their
own table in the registry.
"""

from __future__ import annotations

from typing import Optional

from cityprosperity.registry import get_registry
from cityprosperity.registry.models import DEFAULT_CLASSIFICATION, ClassificationTable
from cityprosperity.registry.registry import IndicatorRegistry


def classify_with(table: ClassificationTable, score: float) -> str:
    """Label of the first band in ``table`` that admits ``score``."""
    for band in table.bands:
        if band.admits(score):
            return band.label
    return table.fallback


def classify(
    score: float,
    indicator_id: Optional[str] = None,
    registry: Optional[IndicatorRegistry] = None,
) -> str:
    """
    Band a score into its verdict.

    Total over [0, 100] and deterministic; never raises for a score in
    range. Composite groups and unknown ids use the default table.

    Args:
        score: Standardized or composite score
        indicator_id: Indicator whose override table applies, if any
        registry: Registry to use (defaults to the process-wide one)

    Returns:
        Verdict label, e.g. ``"MODERATELY SOLID"``
    """
    if indicator_id is None:
        return classify_with(DEFAULT_CLASSIFICATION, score)
    table = (registry or get_registry()).classification_for(indicator_id)
    return classify_with(table, score)


__all__ = ["classify", "classify_with"]
