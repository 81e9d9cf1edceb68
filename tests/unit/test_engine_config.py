"""
Unit tests for engine configuration and logging setup.
"""

import logging

import json_log_formatter
import pytest

from dbaas.tabular_engine.config import (
    EngineConfig,
    ObservabilityConfig,
    SequenceConfig,
    StorageConfig,
)
from dbaas.tabular_engine.engine import setup_logging


class TestEngineConfig:
    """Tests for configuration loading and validation."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.storage.data_dir == "/var/lib/tabular-engine"
        assert config.sequence.max_retries == 3
        assert config.sequence.retry_delay_ms == 100
        assert config.sequence.number_width == 6
        assert config.sequence.default_series == "INV"

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("SEQUENCE_MAX_RETRIES", "5")
        monkeypatch.setenv("SEQUENCE_DEFAULT_SERIES", "FACT")
        monkeypatch.setenv("LOG_FORMAT", "text")

        config = EngineConfig.from_env()

        assert config.storage.data_dir == str(tmp_path)
        assert config.storage.wal_mode is False
        assert config.sequence.max_retries == 5
        assert config.sequence.default_series == "FACT"
        assert config.observability.log_format == "text"

    @pytest.mark.parametrize(
        "config,message",
        [
            (EngineConfig(sequence=SequenceConfig(max_retries=0)), "SEQUENCE_MAX_RETRIES"),
            (EngineConfig(sequence=SequenceConfig(number_width=0)), "SEQUENCE_NUMBER_WIDTH"),
            (EngineConfig(sequence=SequenceConfig(default_series="")), "SEQUENCE_DEFAULT_SERIES"),
            (EngineConfig(storage=StorageConfig(data_dir="")), "DATA_DIR"),
            (EngineConfig(observability=ObservabilityConfig(log_format="xml")), "LOG_FORMAT"),
        ],
    )
    def test_validate_rejects(self, config, message):
        with pytest.raises(ValueError, match=message):
            config.validate()

    def test_storage_config_is_frozen(self):
        config = StorageConfig()
        with pytest.raises(AttributeError):
            config.data_dir = "/elsewhere"


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self, tmp_path):
        config = EngineConfig(
            storage=StorageConfig(data_dir=str(tmp_path)),
            observability=ObservabilityConfig(log_level="DEBUG", log_format="json"),
        )
        setup_logging(config)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_text_format(self, tmp_path):
        config = EngineConfig(
            storage=StorageConfig(data_dir=str(tmp_path)),
            observability=ObservabilityConfig(log_level="WARNING", log_format="text"),
        )
        setup_logging(config)

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
