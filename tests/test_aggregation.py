# -*- coding: utf-8 -*-
"""
Aggregation Engine Tests

Validates:
- Combination rules (arithmetic, weighted, geometric)
- INCOMPLETE whenever a child is missing, never zero
- Bottom-up recomputation of the ancestor chain only
"""

import pickle

import pytest

from cityprosperity.engine.aggregation import (
    INCOMPLETE,
    aggregate,
    child_scores_from_values,
    combine,
    recompute_ancestors,
)
from cityprosperity.registry import CombinationRule, IndicatorRegistry

ICT_SCORES = {
    "internet_access": 80.0,
    "home_computer_access": 60.0,
    "average_broadband_speed": 100.0,
}


class TestIncompleteSentinel:
    """The INCOMPLETE marker."""

    def test_falsy_and_singleton(self):
        assert not INCOMPLETE
        assert repr(INCOMPLETE) == "INCOMPLETE"
        assert pickle.loads(pickle.dumps(INCOMPLETE)) is INCOMPLETE

    def test_distinct_from_zero(self):
        assert INCOMPLETE != 0
        assert INCOMPLETE is not None


class TestCombine:
    """Combination rules."""

    def test_arithmetic_mean(self):
        assert combine(CombinationRule.ARITHMETIC_MEAN, [80.0, 60.0, 100.0]) == pytest.approx(80.0)

    def test_weighted_mean(self):
        result = combine(CombinationRule.WEIGHTED_MEAN, [80.0, 40.0], [0.25, 0.75])

        assert result == pytest.approx(50.0)

    def test_geometric_mean(self):
        assert combine(CombinationRule.GEOMETRIC_MEAN, [25.0, 100.0]) == pytest.approx(50.0)

    def test_geometric_mean_with_zero(self):
        assert combine(CombinationRule.GEOMETRIC_MEAN, [0.0, 100.0]) == 0.0

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            combine(CombinationRule.ARITHMETIC_MEAN, [])

    @pytest.mark.parametrize("weights", [None, [1.0]])
    def test_weighted_mean_needs_one_weight_per_score(self, weights):
        with pytest.raises(ValueError, match="one weight per score"):
            combine(CombinationRule.WEIGHTED_MEAN, [80.0, 40.0], weights)


class TestAggregate:
    """One composite from its children."""

    def test_complete_group(self, registry):
        assert aggregate("ict", ICT_SCORES, registry) == pytest.approx(80.0)

    def test_missing_child_is_incomplete(self, registry):
        partial = dict(ICT_SCORES)
        del partial["home_computer_access"]

        assert aggregate("ict", partial, registry) is INCOMPLETE

    def test_incomplete_child_propagates(self, registry):
        scores = {child: 50.0 for child in registry.children("infrastructure_development")}
        scores["ict"] = INCOMPLETE

        assert aggregate("infrastructure_development", scores, registry) is INCOMPLETE

    def test_extra_keys_ignored(self, registry):
        scores = dict(ICT_SCORES, electricity=0.0)

        assert aggregate("ict", scores, registry) == pytest.approx(80.0)

    def test_weighted_group(self, tiny_catalog):
        tiny_catalog["groups"][2]["rule"] = "weightedMean"
        tiny_catalog["groups"][2]["weights"] = {
            "life_expectancy_at_birth": 0.25,
            "vaccination_coverage": 0.75,
        }
        registry = IndicatorRegistry.from_mapping(tiny_catalog)

        result = aggregate(
            "health",
            {"life_expectancy_at_birth": 100.0, "vaccination_coverage": 60.0},
            registry,
        )

        assert result == pytest.approx(70.0)


class TestRecomputeAncestors:
    """Bottom-up recomputation over a flat record."""

    def _ict_values(self):
        return {
            f"{indicator_id}_standardized": score
            for indicator_id, score in ICT_SCORES.items()
        }

    def test_child_scores_from_values(self, registry):
        values = self._ict_values()
        values["ict"] = 80.0

        assert child_scores_from_values("ict", values, registry) == ICT_SCORES
        assert child_scores_from_values("infrastructure_development", values, registry) == {"ict": 80.0}

    def test_completes_sub_domain_only(self, registry):
        """The domain stays absent while its other sub-domains are unscored."""
        updated = recompute_ancestors(self._ict_values(), "internet_access", registry)

        assert updated["ict"] == 80.0
        assert "infrastructure_development" not in updated
        assert "city_prosperity_index" not in updated

    def test_input_not_modified(self, registry):
        values = self._ict_values()

        recompute_ancestors(values, "internet_access", registry)

        assert "ict" not in values

    def test_composites_rounded(self, registry):
        values = self._ict_values()
        values["home_computer_access_standardized"] = 60.005

        updated = recompute_ancestors(values, "home_computer_access", registry)

        # (80 + 60.005 + 100) / 3 = 80.00166...
        assert updated["ict"] == 80.0

    def test_full_tree(self, registry):
        """With every indicator scored, every composite exists."""
        values = {
            f"{definition.id}_standardized": 50.0 for definition in registry.indicators
        }
        for definition in registry.indicators:
            values = recompute_ancestors(values, definition.id, registry)

        for group in registry.groups:
            assert values[group.id] == pytest.approx(50.0), group.id
