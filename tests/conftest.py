# -*- coding: utf-8 -*-
"""Pytest configuration and shared fixtures."""

import copy
from datetime import datetime, timezone
from typing import Any, Dict

import pytest

from cityprosperity.config import CityProsperityConfig, reset_config, set_config
from cityprosperity.determinism import DeterministicClock
from cityprosperity.provenance import ProvenanceTracker
from cityprosperity.registry import load_registry, reset_registry
from cityprosperity.service import CalculationService
from cityprosperity.storage import InMemoryRecordRepository, SQLiteRecordRepository

FROZEN_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolated_config():
    """Every test runs against in-memory storage and an unfrozen clock."""
    set_config(CityProsperityConfig(database_path=":memory:"))
    yield
    DeterministicClock.unfreeze()
    reset_config()
    reset_registry()


@pytest.fixture(scope="session")
def registry():
    """The packaged indicator registry."""
    return load_registry()


@pytest.fixture
def frozen_clock():
    """Freeze the deterministic clock at FROZEN_TIME."""
    with DeterministicClock.frozen(FROZEN_TIME):
        yield FROZEN_TIME


@pytest.fixture
def memory_repository():
    repository = InMemoryRecordRepository()
    yield repository
    repository.close()


@pytest.fixture
def sqlite_repository(tmp_path):
    """SQLite repository on a temporary database file."""
    repository = SQLiteRecordRepository(str(tmp_path / "cpi_test.db"))
    yield repository
    repository.close()


@pytest.fixture
def service(memory_repository, registry):
    """Calculation service over an in-memory repository."""
    config = CityProsperityConfig(database_path=":memory:")
    return CalculationService(
        repository=memory_repository,
        registry=registry,
        config=config,
        provenance=ProvenanceTracker(config.genesis_hash),
    )


_TINY_CATALOG: Dict[str, Any] = {
    "version": "test",
    "root": "city_prosperity_index",
    "groups": [
        {"id": "city_prosperity_index", "name": "City Prosperity Index"},
        {"id": "quality_of_life", "name": "Quality of Life", "parent": "city_prosperity_index"},
        {"id": "health", "name": "Health", "parent": "quality_of_life"},
    ],
    "indicators": [
        {
            "id": "life_expectancy_at_birth",
            "name": "Life Expectancy at Birth",
            "parent": "health",
            "inputs": ["life_expectancy"],
            "formula": "directProportion",
            "min": 49,
            "max": 83.48,
        },
        {
            "id": "vaccination_coverage",
            "name": "Vaccination Coverage",
            "parent": "health",
            "inputs": ["vaccinated_children", "eligible_children"],
            "derivation": "percent",
            "formula": "ratioPercent",
        },
    ],
}


@pytest.fixture
def tiny_catalog():
    """A minimal valid catalog document; tests may mutate their copy."""
    return copy.deepcopy(_TINY_CATALOG)
