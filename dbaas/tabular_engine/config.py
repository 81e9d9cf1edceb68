"""
Configuration management for the tabular engine.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set an explicit DATA_DIR

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Never lower SEQUENCE_NUMBER_WIDTH on a live deployment; issued numbers
      would stop sorting lexicographically
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageConfig:
    """Per-tenant SQLite storage configuration.

    Attributes:
        data_dir: Directory for tenant SQLite databases
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: How long a writer waits for the database lock
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "/var/lib/tabular-engine"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/tabular-engine"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class SequenceConfig:
    """Sequence generator configuration.

    Attributes:
        max_retries: Attempts made to issue a number under lock contention
        retry_delay_ms: Base backoff delay, doubled on every retry
        number_width: Zero-padding width of issued numbers
        default_series: Series used when a request names none
    """

    max_retries: int = 3
    retry_delay_ms: int = 100
    number_width: int = 6
    default_series: str = "INV"

    @classmethod
    def from_env(cls) -> SequenceConfig:
        """Load configuration from environment variables."""
        return cls(
            max_retries=int(os.getenv("SEQUENCE_MAX_RETRIES", "3")),
            retry_delay_ms=int(os.getenv("SEQUENCE_RETRY_DELAY_MS", "100")),
            number_width=int(os.getenv("SEQUENCE_NUMBER_WIDTH", "6")),
            default_series=os.getenv("SEQUENCE_DEFAULT_SERIES", "INV"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class EngineConfig:
    """Complete engine configuration.

    Attributes:
        storage: Tenant storage configuration
        sequence: Sequence generator configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    sequence: SequenceConfig = field(default_factory=SequenceConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load complete configuration from environment variables.

        Returns:
            EngineConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            sequence=SequenceConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.data_dir:
            raise ValueError("DATA_DIR must not be empty")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must be >= 0")
        if self.sequence.max_retries < 1:
            raise ValueError("SEQUENCE_MAX_RETRIES must be >= 1")
        if self.sequence.retry_delay_ms < 0:
            raise ValueError("SEQUENCE_RETRY_DELAY_MS must be >= 0")
        if not 1 <= self.sequence.number_width <= 18:
            raise ValueError("SEQUENCE_NUMBER_WIDTH must be between 1 and 18")
        if not self.sequence.default_series:
            raise ValueError("SEQUENCE_DEFAULT_SERIES must not be empty")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Engine configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "wal_mode": self.storage.wal_mode,
                "busy_timeout_ms": self.storage.busy_timeout_ms,
                "sequence_max_retries": self.sequence.max_retries,
                "sequence_number_width": self.sequence.number_width,
                "log_level": self.observability.log_level,
            },
        )
