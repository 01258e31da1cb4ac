# -*- coding: utf-8 -*-
"""Tests for CityProsperityConfig and its process-wide accessors."""

import pytest

from cityprosperity.config import (
    CityProsperityConfig,
    get_config,
    reset_config,
    set_config,
)


class TestCityProsperityConfig:
    """Defaults and validation."""

    def test_defaults(self):
        config = CityProsperityConfig()

        assert config.log_level == "INFO"
        assert config.database_path == "cpi_records.db"
        assert config.score_precision == 2
        assert config.max_save_retries == 3
        assert config.enable_provenance is True
        assert not config.uses_memory_storage

    def test_memory_storage(self):
        assert CityProsperityConfig(database_path=":memory:").uses_memory_storage

    @pytest.mark.parametrize(
        "overrides",
        [
            {"score_precision": -1},
            {"max_save_retries": 0},
            {"log_level": "LOUD"},
            {"database_path": ""},
            {"genesis_hash": ""},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        """Invalid settings fail at construction."""
        with pytest.raises(ValueError, match="validation failed"):
            CityProsperityConfig(**overrides)

    def test_to_dict_round_trip(self):
        config = CityProsperityConfig(score_precision=3)

        assert CityProsperityConfig(**config.to_dict()) == config


class TestEnvironmentOverrides:
    """``CPI_`` environment variables."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CPI_DATABASE_PATH", "/tmp/cities.db")
        monkeypatch.setenv("CPI_SCORE_PRECISION", "4")
        monkeypatch.setenv("CPI_ENABLE_METRICS", "no")

        config = CityProsperityConfig.from_env()

        assert config.database_path == "/tmp/cities.db"
        assert config.score_precision == 4
        assert config.enable_metrics is False

    def test_invalid_integer_falls_back_to_default(self, monkeypatch):
        monkeypatch.setenv("CPI_MAX_SAVE_RETRIES", "many")

        assert CityProsperityConfig.from_env().max_save_retries == 3

    def test_singleton_reads_environment_once(self, monkeypatch):
        reset_config()
        monkeypatch.setenv("CPI_LOG_LEVEL", "DEBUG")

        first = get_config()
        monkeypatch.setenv("CPI_LOG_LEVEL", "ERROR")

        assert get_config() is first
        assert first.log_level == "DEBUG"

    def test_set_config_replaces_instance(self):
        config = CityProsperityConfig(database_path=":memory:", max_save_retries=7)
        set_config(config)

        assert get_config() is config
