"""Ingestion adapters for Birth-Book.

This module contains ingestion adapters that implement the IngestionPort interface
for reading External Records from the supported sources (JSON form exports and
the legacy tab-separated export).
"""

from pathlib import Path

from birthbook.adapters.ingesters.json_ingester import JSONIngester
from birthbook.adapters.ingesters.legacy_text_ingester import LegacyTextIngester
from birthbook.domain.ports import IngestionPort, UnsupportedSourceError

__all__ = ["JSONIngester", "LegacyTextIngester", "get_adapter"]


def get_adapter(source: str, **kwargs) -> IngestionPort:
    """Factory function to get the appropriate ingestion adapter for a source.

    Parameters:
        source: Source file path
        **kwargs: Additional arguments passed to the adapter constructor
            - For JSON: max_record_size
            - For the legacy export: chunk_size

    Returns:
        IngestionPort: Appropriate adapter instance

    Raises:
        UnsupportedSourceError: If no adapter can handle the source

    Example Usage:
        ```python
        adapter = get_adapter("datos.txt", chunk_size=5000)
        adapter = get_adapter("partos.json")
        ```
    """
    adapters = [
        (JSONIngester, ("max_record_size",)),
        (LegacyTextIngester, ("chunk_size",)),
    ]

    for adapter_class, accepted in adapters:
        adapter = adapter_class(**{k: v for k, v in kwargs.items() if k in accepted})
        if adapter.can_ingest(source):
            return adapter

    raise UnsupportedSourceError(
        f"No adapter found for source: {source} (extension {Path(source).suffix or 'none'})",
        source=source,
    )
