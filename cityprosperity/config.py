# -*- coding: utf-8 -*-
"""
City Prosperity Index Engine Configuration

Centralized configuration for the CPI engine covering:
- Logging level
- Record storage location (SQLite path or in-memory)
- Indicator catalog location
- Stored score precision
- Conditional-save retry budget
- Provenance and metrics feature toggles

All settings can be overridden via environment variables with the
``CPI_`` prefix (e.g. ``CPI_DATABASE_PATH``).

Example:
    >>> from cityprosperity.config import get_config
    >>> cfg = get_config()
    >>> print(cfg.database_path, cfg.score_precision)
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment variable prefix
# ---------------------------------------------------------------------------

_ENV_PREFIX = "CPI_"

#: Special database path that selects the in-memory repository.
MEMORY_DATABASE = ":memory:"


# ---------------------------------------------------------------------------
# CityProsperityConfig
# ---------------------------------------------------------------------------


@dataclass
class CityProsperityConfig:
    """Complete configuration for the City Prosperity Index engine.

    Attributes:
        log_level: Logging level for the engine and CLI. Accepts the
            standard Python logging levels.
        database_path: Path of the SQLite file holding calculation records
            and saved comparisons. ``:memory:`` selects the in-memory
            repository.
        catalog_path: Optional path of an alternative indicator catalog
            YAML file. Empty means the catalog shipped with the package.
        score_precision: Decimal places kept when persisting standardized
            and composite scores.
        max_save_retries: Number of times a submission retries its
            conditional save after losing a race to a concurrent writer.
        enable_provenance: Whether submissions are recorded in the SHA-256
            provenance chain.
        enable_metrics: Whether Prometheus counters and histograms are
            updated.
        genesis_hash: Seed string of the provenance chain.
    """

    # -- Logging -------------------------------------------------------------
    log_level: str = "INFO"

    # -- Storage -------------------------------------------------------------
    database_path: str = "cpi_records.db"

    # -- Registry ------------------------------------------------------------
    catalog_path: str = ""

    # -- Scoring -------------------------------------------------------------
    score_precision: int = 2

    # -- Concurrency ---------------------------------------------------------
    max_save_retries: int = 3

    # -- Feature toggles -----------------------------------------------------
    enable_provenance: bool = True
    enable_metrics: bool = True

    # -- Genesis hash --------------------------------------------------------
    genesis_hash: str = "city-prosperity-index-genesis"

    # ------------------------------------------------------------------
    # Factory helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> CityProsperityConfig:
        """Build a CityProsperityConfig from environment variables.

        Every field can be overridden via ``CPI_<FIELD_UPPER>``.
        Boolean values accept ``true/1/yes`` (case-insensitive).

        Returns:
            Populated CityProsperityConfig instance.
        """
        prefix = _ENV_PREFIX

        def _env(name: str, default: Any = None) -> Optional[str]:
            return os.environ.get(f"{prefix}{name}", default)

        def _bool(name: str, default: bool) -> bool:
            val = _env(name)
            if val is None:
                return default
            return val.lower() in ("true", "1", "yes")

        def _int(name: str, default: int) -> int:
            val = _env(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                logger.warning(
                    "Invalid integer for %s%s=%s, using default %d",
                    prefix, name, val, default,
                )
                return default

        def _str(name: str, default: str) -> str:
            val = _env(name)
            if val is None:
                return default
            return val

        config = cls(
            log_level=_str("LOG_LEVEL", cls.log_level),
            database_path=_str("DATABASE_PATH", cls.database_path),
            catalog_path=_str("CATALOG_PATH", cls.catalog_path),
            score_precision=_int("SCORE_PRECISION", cls.score_precision),
            max_save_retries=_int("MAX_SAVE_RETRIES", cls.max_save_retries),
            enable_provenance=_bool(
                "ENABLE_PROVENANCE", cls.enable_provenance,
            ),
            enable_metrics=_bool("ENABLE_METRICS", cls.enable_metrics),
            genesis_hash=_str("GENESIS_HASH", cls.genesis_hash),
        )

        logger.info(
            "CityProsperityConfig loaded: database=%s, catalog=%s, "
            "precision=%d, retries=%d, provenance=%s, metrics=%s",
            config.database_path,
            config.catalog_path or "<packaged>",
            config.score_precision,
            config.max_save_retries,
            config.enable_provenance,
            config.enable_metrics,
        )
        return config

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def __post_init__(self) -> None:
        """Validate all configuration constraints after initialization.

        Raises:
            ValueError: If any constraint is violated.
        """
        errors: list[str] = []

        if not self.database_path:
            errors.append("database_path must not be empty")

        if not 0 <= self.score_precision <= 10:
            errors.append("score_precision must be between 0 and 10")

        if self.max_save_retries < 1:
            errors.append("max_save_retries must be >= 1")

        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if self.log_level.upper() not in valid_levels:
            errors.append(
                f"log_level must be one of {valid_levels}, "
                f"got '{self.log_level}'"
            )

        if not self.genesis_hash:
            errors.append("genesis_hash must not be empty")

        if errors:
            msg = "; ".join(errors)
            logger.error("CityProsperityConfig validation failed: %s", msg)
            raise ValueError(f"CityProsperityConfig validation failed: {msg}")

        logger.debug("CityProsperityConfig validated successfully")

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @property
    def uses_memory_storage(self) -> bool:
        return self.database_path == MEMORY_DATABASE

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the configuration to a plain dictionary."""
        return {
            "log_level": self.log_level,
            "database_path": self.database_path,
            "catalog_path": self.catalog_path,
            "score_precision": self.score_precision,
            "max_save_retries": self.max_save_retries,
            "enable_provenance": self.enable_provenance,
            "enable_metrics": self.enable_metrics,
            "genesis_hash": self.genesis_hash,
        }


# ---------------------------------------------------------------------------
# Thread-safe singleton access
# ---------------------------------------------------------------------------

_config_instance: Optional[CityProsperityConfig] = None
_config_lock = threading.Lock()


def get_config() -> CityProsperityConfig:
    """Return the process-wide configuration, building it from the environment once."""
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = CityProsperityConfig.from_env()
    return _config_instance


def set_config(config: CityProsperityConfig) -> None:
    """Replace the process-wide configuration (mainly for tests and the CLI)."""
    global _config_instance
    with _config_lock:
        _config_instance = config
    logger.info("CityProsperityConfig replaced programmatically")


def reset_config() -> None:
    """Drop the process-wide configuration so the next access re-reads the environment."""
    global _config_instance
    with _config_lock:
        _config_instance = None


__all__ = [
    "CityProsperityConfig",
    "MEMORY_DATABASE",
    "get_config",
    "set_config",
    "reset_config",
]
