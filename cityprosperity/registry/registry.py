# -*- coding: utf-8 -*-
"""
Indicator Registry

Loads the indicator catalog, validates it once at startup, and answers
structural questions about the CPI tree: which group an indicator rolls
into, what a group's children are, and which composites sit above an
indicator.

The parent-pointer map and the child lists are computed once at load
time; the registry is never mutated afterwards and may be shared freely
between threads.

Example:
    >>> from cityprosperity.registry import get_registry
    >>> registry = get_registry()
    >>> registry.ancestors("sufficient_living")
    ['housing_infrastructure', 'infrastructure_development', 'city_prosperity_index']
"""

from __future__ import annotations

import logging
import math
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from cityprosperity.exceptions import InvalidConfigurationError, InvalidInputError
from cityprosperity.registry.models import (
    DEFAULT_CLASSIFICATION,
    ROOT_GROUP_ID,
    WEIGHT_SUM_TOLERANCE,
    ClassificationTable,
    CombinationRule,
    GroupDefinition,
    IndicatorDefinition,
)

logger = logging.getLogger(__name__)

#: Catalog shipped with the package.
DEFAULT_CATALOG_PATH = Path(__file__).parent / "catalog.yaml"


class IndicatorRegistry:
    """Immutable, validated view of the indicator and group definitions.

    Attributes:
        version: Catalog version string.
        root_id: Identifier of the root composite.
    """

    def __init__(
        self,
        indicators: Iterable[IndicatorDefinition],
        groups: Iterable[GroupDefinition],
        root_id: str = ROOT_GROUP_ID,
        version: str = "",
    ):
        """
        Build the registry and run the self-check.

        Args:
            indicators: Indicator definitions, in display order
            groups: Group definitions, in display order
            root_id: Identifier of the root composite
            version: Catalog version string

        Raises:
            InvalidConfigurationError: If the definitions do not form a
                valid CPI tree
        """
        self.version = version
        self.root_id = root_id
        self._indicator_list: Tuple[IndicatorDefinition, ...] = tuple(indicators)
        self._group_list: Tuple[GroupDefinition, ...] = tuple(groups)
        self._indicators: Dict[str, IndicatorDefinition] = {
            ind.id: ind for ind in self._indicator_list
        }
        self._groups: Dict[str, GroupDefinition] = {
            grp.id: grp for grp in self._group_list
        }

        # Parent pointers for every node, children in declaration order.
        self._parents: Dict[str, str] = {}
        children: Dict[str, List[str]] = {grp.id: [] for grp in self._group_list}
        for grp in self._group_list:
            if grp.parent is not None:
                self._parents[grp.id] = grp.parent
                children.setdefault(grp.parent, []).append(grp.id)
        for ind in self._indicator_list:
            self._parents[ind.id] = ind.parent
            children.setdefault(ind.parent, []).append(ind.id)
        self._children: Dict[str, Tuple[str, ...]] = {
            key: tuple(value) for key, value in children.items()
        }

        self.validate()

        self._ancestors: Dict[str, Tuple[str, ...]] = {
            node_id: tuple(self._walk_up(node_id))
            for node_id in list(self._indicators) + list(self._groups)
        }
        logger.info(
            "Indicator registry loaded: version=%s, groups=%d, indicators=%d",
            version or "<unversioned>",
            len(self._groups),
            len(self._indicators),
        )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> IndicatorRegistry:
        """Build a registry from a parsed catalog document.

        Args:
            data: Mapping with ``groups``, ``indicators`` and optional
                ``root`` / ``version`` keys

        Raises:
            InvalidConfigurationError: On malformed or inconsistent definitions
        """
        if not isinstance(data, Mapping):
            raise InvalidConfigurationError("Catalog document must be a mapping")

        problems: List[str] = []
        groups: List[GroupDefinition] = []
        indicators: List[IndicatorDefinition] = []

        for index, raw in enumerate(data.get("groups") or []):
            try:
                groups.append(GroupDefinition.model_validate(raw))
            except PydanticValidationError as e:
                problems.append(f"group #{index}: {_summarize(e)}")
        for index, raw in enumerate(data.get("indicators") or []):
            try:
                indicators.append(IndicatorDefinition.model_validate(raw))
            except PydanticValidationError as e:
                ident = raw.get("id", f"#{index}") if isinstance(raw, Mapping) else f"#{index}"
                problems.append(f"indicator {ident}: {_summarize(e)}")

        if problems:
            logger.error("Catalog parsing failed: %s", "; ".join(problems))
            raise InvalidConfigurationError(
                f"Catalog contains {len(problems)} malformed definition(s)",
                problems=problems,
            )

        return cls(
            indicators,
            groups,
            root_id=str(data.get("root", ROOT_GROUP_ID)),
            version=str(data.get("version", "")),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> IndicatorRegistry:
        """Load a registry from a YAML catalog file.

        Raises:
            InvalidConfigurationError: If the file cannot be read or parsed,
                or describes an invalid tree
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to read catalog %s: %s", path, e)
            raise InvalidConfigurationError(
                f"Failed to read catalog {path}: {e}",
                context={"path": str(path)},
            ) from e

        logger.debug("Parsed catalog %s", path)
        return cls.from_mapping(data or {})

    # ------------------------------------------------------------------
    # Self-check
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check the whole tree and every definition.

        Collects every defect before raising so a broken catalog is
        reported in one pass.

        Raises:
            InvalidConfigurationError: If any defect is found
        """
        problems: List[str] = []

        seen: Dict[str, str] = {}
        for kind, items in (("group", self._group_list), ("indicator", self._indicator_list)):
            for item in items:
                if item.id in seen:
                    problems.append(
                        f"duplicate id '{item.id}' ({seen[item.id]} and {kind})"
                    )
                else:
                    seen[item.id] = kind

        root = self._groups.get(self.root_id)
        if root is None:
            problems.append(f"root group '{self.root_id}' is not defined")
        elif root.parent is not None:
            problems.append(f"root group '{self.root_id}' must not have a parent")

        for grp in self._group_list:
            if grp.id != self.root_id:
                if grp.parent is None:
                    problems.append(f"group '{grp.id}' has no parent")
                elif grp.parent not in self._groups:
                    problems.append(
                        f"group '{grp.id}' names unknown parent '{grp.parent}'"
                    )
            if not self._children.get(grp.id):
                problems.append(f"group '{grp.id}' has no children")
            problems.extend(self._weight_problems(grp))

        for ind in self._indicator_list:
            if ind.parent not in self._groups:
                problems.append(
                    f"indicator '{ind.id}' names unknown parent group '{ind.parent}'"
                )
            problems.extend(ind.problems())

        if root is not None:
            for grp in self._group_list:
                if grp.id == self.root_id:
                    continue
                path = self._walk_up(grp.id)
                if not path or path[-1] != self.root_id:
                    problems.append(
                        f"group '{grp.id}' is not connected to root '{self.root_id}'"
                    )

        if problems:
            logger.error(
                "Indicator registry self-check failed with %d problem(s): %s",
                len(problems),
                "; ".join(problems),
            )
            raise InvalidConfigurationError(
                f"Indicator registry self-check failed with {len(problems)} problem(s)",
                problems=problems,
            )

    def _weight_problems(self, grp: GroupDefinition) -> List[str]:
        children = set(self._children.get(grp.id, ()))
        if grp.rule is not CombinationRule.WEIGHTED_MEAN:
            if grp.weights:
                return [f"group '{grp.id}': weights are only used by weightedMean"]
            return []

        if not grp.weights:
            return [f"group '{grp.id}': weightedMean requires weights"]
        issues = []
        if set(grp.weights) != children:
            issues.append(
                f"group '{grp.id}': weights must cover exactly the children "
                f"{sorted(children)}"
            )
        if any(not (w > 0 and math.isfinite(w)) for w in grp.weights.values()):
            issues.append(f"group '{grp.id}': weights must be positive")
        total = sum(grp.weights.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            issues.append(f"group '{grp.id}': weights sum to {total}, expected 1")
        return issues

    def _walk_up(self, node_id: str) -> List[str]:
        """Follow parent pointers from ``node_id``; empty list on a cycle."""
        path: List[str] = []
        visited = {node_id}
        current = self._parents.get(node_id)
        while current is not None:
            if current in visited:
                return []
            visited.add(current)
            path.append(current)
            current = self._parents.get(current)
        return path

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def has_indicator(self, indicator_id: str) -> bool:
        return indicator_id in self._indicators

    def has_group(self, group_id: str) -> bool:
        return group_id in self._groups

    def indicator(self, indicator_id: str) -> IndicatorDefinition:
        """Return an indicator definition.

        Raises:
            InvalidInputError: If the indicator is unknown
        """
        try:
            return self._indicators[indicator_id]
        except KeyError:
            raise InvalidInputError(
                f"Unknown indicator: {indicator_id}",
                indicator_id=indicator_id,
            ) from None

    def group(self, group_id: str) -> GroupDefinition:
        """Return a group definition.

        Raises:
            InvalidInputError: If the group is unknown
        """
        try:
            return self._groups[group_id]
        except KeyError:
            raise InvalidInputError(
                f"Unknown group: {group_id}",
                indicator_id=group_id,
            ) from None

    @property
    def indicators(self) -> Tuple[IndicatorDefinition, ...]:
        return self._indicator_list

    @property
    def groups(self) -> Tuple[GroupDefinition, ...]:
        return self._group_list

    def children(self, group_id: str) -> Tuple[str, ...]:
        """Direct children (sub-groups or indicators) of a group, in catalog order."""
        self.group(group_id)
        return self._children.get(group_id, ())

    def parent(self, node_id: str) -> Optional[str]:
        return self._parents.get(node_id)

    def ancestors(self, node_id: str) -> List[str]:
        """Composites above a node, nearest first, ending at the root.

        Raises:
            InvalidInputError: If the node is unknown
        """
        try:
            return list(self._ancestors[node_id])
        except KeyError:
            raise InvalidInputError(
                f"Unknown indicator or group: {node_id}",
                indicator_id=node_id,
            ) from None

    def domains(self) -> Tuple[str, ...]:
        return self._children.get(self.root_id, ())

    def indicators_under(self, group_id: str) -> List[IndicatorDefinition]:
        """All indicators in the subtree of ``group_id``, in catalog order."""
        result: List[IndicatorDefinition] = []
        for child in self.children(group_id):
            if child in self._indicators:
                result.append(self._indicators[child])
            else:
                result.extend(self.indicators_under(child))
        return result

    def classification_for(self, indicator_id: Optional[str]) -> ClassificationTable:
        """Verdict table for an indicator; the default table for composites."""
        if indicator_id is not None and indicator_id in self._indicators:
            override = self._indicators[indicator_id].classification
            if override is not None:
                return override
        return DEFAULT_CLASSIFICATION

    def is_group(self, node_id: str) -> bool:
        return node_id in self._groups

    def __len__(self) -> int:
        return len(self._indicators)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._indicators or node_id in self._groups


def _summarize(error: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in error.errors()
    )


# ---------------------------------------------------------------------------
# Process-wide registry
# ---------------------------------------------------------------------------

_registry_instance: Optional[IndicatorRegistry] = None
_registry_lock = threading.Lock()


def load_registry(catalog_path: Optional[Union[str, Path]] = None) -> IndicatorRegistry:
    """Load and validate a catalog, defaulting to the packaged one."""
    return IndicatorRegistry.from_yaml(catalog_path or DEFAULT_CATALOG_PATH)


def get_registry() -> IndicatorRegistry:
    """Return the process-wide registry, loading it on first use.

    The catalog path comes from ``CityProsperityConfig.catalog_path``.
    """
    global _registry_instance
    if _registry_instance is None:
        with _registry_lock:
            if _registry_instance is None:
                from cityprosperity.config import get_config

                _registry_instance = load_registry(get_config().catalog_path or None)
    return _registry_instance


def set_registry(registry: IndicatorRegistry) -> None:
    global _registry_instance
    with _registry_lock:
        _registry_instance = registry


def reset_registry() -> None:
    global _registry_instance
    with _registry_lock:
        _registry_instance = None


__all__ = [
    "DEFAULT_CATALOG_PATH",
    "IndicatorRegistry",
    "load_registry",
    "get_registry",
    "set_registry",
    "reset_registry",
]
