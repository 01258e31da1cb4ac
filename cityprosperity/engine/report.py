# -*- coding: utf-8 -*-
"""
City Report

Hierarchical view of one calculation record: every domain, sub-domain
and indicator of the registry with the values the record holds, and the
verdict of each available composite. Nodes without a score are kept so
the report also shows what is still missing.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from cityprosperity.engine.classification import classify
from cityprosperity.engine.records import CalculationRecord
from cityprosperity.registry import get_registry
from cityprosperity.registry.registry import IndicatorRegistry


class IndicatorRow(BaseModel):
    """One indicator line of the report."""

    id: str
    name: str
    unit: str = ""
    value: Optional[float] = None
    standardized: Optional[float] = None
    comment: Optional[str] = None

    @property
    def scored(self) -> bool:
        return self.standardized is not None


class GroupNode(BaseModel):
    """A composite with its children, recursively."""

    id: str
    name: str
    abbreviation: str = ""
    score: Optional[float] = None
    comment: Optional[str] = None
    children: List[Union[GroupNode, IndicatorRow]] = Field(default_factory=list)


GroupNode.model_rebuild()


class CityReport(BaseModel):
    """Report for one city, rooted at the CPI composite."""

    record_id: str
    city: str
    country: str
    updated_at: datetime
    root: GroupNode
    scored_indicators: int = 0
    total_indicators: int = 0

    @property
    def complete(self) -> bool:
        return self.root.score is not None

    def domains(self) -> List[GroupNode]:
        return [child for child in self.root.children if isinstance(child, GroupNode)]


def _group_node(
    group_id: str, record: CalculationRecord, registry: IndicatorRegistry,
) -> GroupNode:
    group = registry.group(group_id)
    score = record.values.get(group_id)
    children: List[Union[GroupNode, IndicatorRow]] = []
    for child in registry.children(group_id):
        if registry.is_group(child):
            children.append(_group_node(child, record, registry))
            continue
        definition = registry.indicator(child)
        children.append(
            IndicatorRow(
                id=definition.id,
                name=definition.name,
                unit=definition.unit,
                value=record.raw_value(child),
                standardized=record.standardized(child),
                comment=record.comment(child),
            )
        )
    return GroupNode(
        id=group.id,
        name=group.name,
        abbreviation=group.abbreviation,
        score=score,
        comment=classify(score) if score is not None else None,
        children=children,
    )


def build_report(
    record: CalculationRecord, registry: Optional[IndicatorRegistry] = None,
) -> CityReport:
    """
    Build the hierarchical report of a record.

    Args:
        record: Record to report on
        registry: Registry to use (defaults to the process-wide one)

    Returns:
        CityReport rooted at the CPI composite
    """
    registry = registry or get_registry()
    indicators = registry.indicators
    return CityReport(
        record_id=record.id,
        city=record.city,
        country=record.country,
        updated_at=record.updated_at,
        root=_group_node(registry.root_id, record, registry),
        scored_indicators=sum(
            1 for ind in indicators if record.standardized(ind.id) is not None
        ),
        total_indicators=len(indicators),
    )


__all__ = ["IndicatorRow", "GroupNode", "CityReport", "build_report"]
