"""Shared fixtures: an initialized in-memory DuckDB store and a fixed-clock resolver."""

import pytest

from birthbook.adapters.storage.duckdb_adapter import DuckDBAdapter
from birthbook.domain.identity import IdentityResolver

FIXED_MILLIS = 1700000000000


@pytest.fixture
def storage():
    """In-memory DuckDB storage with the schema created."""
    adapter = DuckDBAdapter(db_path=":memory:")
    result = adapter.initialize_schema()
    assert result.is_success(), result.error
    yield adapter
    adapter.close()


@pytest.fixture
def resolver():
    """Identity resolver whose clock never moves."""
    return IdentityResolver(clock=lambda: FIXED_MILLIS)
