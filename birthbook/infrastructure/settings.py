"""Application Settings and Configuration.

This module provides application-wide settings that combine configuration
from the configuration manager with import-specific defaults read from
``BB_*`` environment variables.
"""

import os
from typing import Optional

from birthbook.infrastructure.config_manager import DatabaseConfig, get_database_config

# Application metadata
APP_NAME = "Birth-Book"
APP_VERSION = "1.0.0"

# Records per import checkpoint
DEFAULT_CHUNK_SIZE = 100

# Lines per pandas chunk when reading the legacy export
DEFAULT_READ_CHUNK_SIZE = 10000


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in ("1", "true", "yes")


class Settings:
    """Application settings loaded from the configuration manager and environment.

    Environment Variables:
        - BB_APP_NAME: Display name
        - BB_CHUNK_SIZE: Records per import checkpoint (default 100)
        - BB_READ_CHUNK_SIZE: Lines per read chunk of the legacy export
        - BB_DERIVE_RELATIONS: Run relation inference after each import (default true)
        - BB_RELATION_MAX_GROUP_SIZE: Skip relation groups larger than this (default unset)
        - BB_REQUIRE_TRACE_ID: Reject records without a trace_id instead of deriving one
        - BB_SKIP_DUPLICATE_CONTENT: Also skip records whose content fingerprint exists
        - BB_LOG_LEVEL: Logging level (default INFO)
        - BB_LOG_JSON: Emit JSON log lines (default false)
    """

    def __init__(self):
        self._db_config: Optional[DatabaseConfig] = None

        self.app_name = os.getenv("BB_APP_NAME", APP_NAME)
        self.chunk_size = int(os.getenv("BB_CHUNK_SIZE", str(DEFAULT_CHUNK_SIZE)))
        self.read_chunk_size = int(os.getenv("BB_READ_CHUNK_SIZE", str(DEFAULT_READ_CHUNK_SIZE)))

        # Identity and relations
        self.derive_relations = _env_flag("BB_DERIVE_RELATIONS", True)
        max_group_size = os.getenv("BB_RELATION_MAX_GROUP_SIZE")
        self.relation_max_group_size = int(max_group_size) if max_group_size else None
        self.require_trace_id = _env_flag("BB_REQUIRE_TRACE_ID", False)
        self.skip_duplicate_content = _env_flag("BB_SKIP_DUPLICATE_CONTENT", False)

        # Logging
        self.log_level = os.getenv("BB_LOG_LEVEL", "INFO")
        self.log_json = _env_flag("BB_LOG_JSON", False)

    @property
    def db_config(self) -> DatabaseConfig:
        """Database configuration, loaded lazily on first access."""
        if self._db_config is None:
            self._db_config = get_database_config()
        return self._db_config

    def get_db_path(self) -> str:
        """Get database path for DuckDB.

        Returns:
            Database path or ':memory:' for in-memory database
        """
        if self.db_config.db_type == "duckdb":
            return self.db_config.db_path or ":memory:"
        raise ValueError(f"Database type '{self.db_config.db_type}' does not use db_path")


# Global settings instance
settings = Settings()
