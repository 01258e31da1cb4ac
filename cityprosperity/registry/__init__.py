"""Indicator registry: definitions, catalog loading, and the CPI tree."""

from cityprosperity.registry.models import (
    DEFAULT_CLASSIFICATION,
    ROOT_GROUP_ID,
    BandThreshold,
    ClassificationBand,
    ClassificationTable,
    CombinationRule,
    DerivationType,
    FormulaType,
    GroupDefinition,
    IndicatorDefinition,
    Saturation,
)
from cityprosperity.registry.registry import (
    DEFAULT_CATALOG_PATH,
    IndicatorRegistry,
    get_registry,
    load_registry,
    reset_registry,
    set_registry,
)

__all__ = [
    "DEFAULT_CLASSIFICATION",
    "ROOT_GROUP_ID",
    "BandThreshold",
    "ClassificationBand",
    "ClassificationTable",
    "CombinationRule",
    "DerivationType",
    "FormulaType",
    "GroupDefinition",
    "IndicatorDefinition",
    "Saturation",
    "DEFAULT_CATALOG_PATH",
    "IndicatorRegistry",
    "get_registry",
    "load_registry",
    "reset_registry",
    "set_registry",
]
