"""Storage adapters for Birth-Book.

This module contains storage adapters that implement the StoragePort interface
for persisting canonical birth records and relation edges.
"""

from birthbook.adapters.storage.duckdb_adapter import DuckDBAdapter
from birthbook.adapters.storage.postgresql_adapter import PostgreSQLAdapter

__all__ = ["DuckDBAdapter", "PostgreSQLAdapter"]
