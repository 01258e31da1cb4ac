# -*- coding: utf-8 -*-
"""Tests for the hierarchical city report."""

import json

from cityprosperity.engine.records import merge_submission
from cityprosperity.engine.report import GroupNode, IndicatorRow, build_report

ICT_SUBMISSIONS = [
    ("internet_access", {"households_with_internet": 80, "total_households": 100}),
    ("home_computer_access", {"households_with_computer": 60, "total_households": 100}),
    ("average_broadband_speed", {"average_broadband_speed": 10886}),
]


def _ict_record(registry):
    record = None
    for indicator_id, inputs in ICT_SUBMISSIONS:
        record = merge_submission(
            record, indicator_id, inputs, "user-1", "Cairo", "Egypt", registry=registry,
        )
    return record


def _find(node, node_id):
    if node.id == node_id:
        return node
    if isinstance(node, GroupNode):
        for child in node.children:
            found = _find(child, node_id)
            if found is not None:
                return found
    return None


class TestBuildReport:
    """Report structure and content."""

    def test_tree_shape(self, registry):
        report = build_report(_ict_record(registry), registry)

        assert report.root.id == "city_prosperity_index"
        assert [d.id for d in report.domains()] == list(registry.domains())
        assert report.total_indicators == len(registry)
        assert report.scored_indicators == 3

    def test_complete_sub_domain(self, registry):
        report = build_report(_ict_record(registry), registry)

        ict = _find(report.root, "ict")
        assert ict.score == 80.0
        assert ict.comment == "VERY SOLID"
        assert [child.id for child in ict.children] == list(registry.children("ict"))

    def test_indicator_rows(self, registry):
        report = build_report(_ict_record(registry), registry)

        row = _find(report.root, "home_computer_access")
        assert isinstance(row, IndicatorRow)
        assert row.value == 60.0
        assert row.standardized == 60.0
        assert row.comment == "MODERATELY SOLID"
        assert row.scored

    def test_missing_values_kept(self, registry):
        """Unscored nodes appear without values."""
        report = build_report(_ict_record(registry), registry)

        electricity = _find(report.root, "electricity")
        infrastructure = _find(report.root, "infrastructure_development")
        assert electricity.standardized is None
        assert not electricity.scored
        assert infrastructure.score is None
        assert infrastructure.comment is None
        assert not report.complete

    def test_serializes_to_json(self, registry):
        report = build_report(_ict_record(registry), registry)

        data = json.loads(report.model_dump_json())

        assert data["city"] == "Cairo"
        assert data["root"]["children"][1]["id"] == "infrastructure_development"
