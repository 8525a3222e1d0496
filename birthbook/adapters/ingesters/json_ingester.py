"""JSON Data Ingestion Adapter.

This adapter implements the IngestionPort contract for JSON exports of form
payloads: either a top-level array of objects, or an object holding the array
under ``records`` (or ``partos``).

Architecture:
    - Implements IngestionPort (Hexagonal Architecture)
    - Fail-safe design: a malformed entry becomes a failure Result,
      it never aborts the read of the remaining entries
"""

import json
import logging
from pathlib import Path
from typing import Any, Iterator, List, Optional

from birthbook.domain.ports import (
    ExternalRecord,
    IngestionPort,
    Result,
    SourceNotFoundError,
    UnsupportedSourceError,
)

logger = logging.getLogger(__name__)

RECORD_CONTAINER_KEYS = ("records", "partos")


class JSONIngester(IngestionPort):
    """Reads External Records from a JSON file.

    Parameters:
        max_record_size: Entries whose serialized size exceeds this many bytes
                         are rejected as failures

    Example Usage:
        ```python
        ingester = JSONIngester()
        for result in ingester.ingest("partos.json"):
            if result.is_success():
                print(result.value["rut"])
        ```
    """

    def __init__(self, max_record_size: int = 1024 * 1024):
        self.max_record_size = max_record_size

    @property
    def adapter_name(self) -> str:
        return "json"

    def can_ingest(self, source: str) -> bool:
        return Path(source).suffix.lower() == ".json"

    def get_source_info(self, source: str) -> Optional[dict]:
        path = Path(source)
        if not path.exists():
            return None
        return {"format": "json", "size": path.stat().st_size, "encoding": "utf-8"}

    def ingest(self, source: str) -> Iterator[Result[ExternalRecord]]:
        """Yield one Result per entry of the JSON source.

        Raises:
            SourceNotFoundError: If the file doesn't exist
            UnsupportedSourceError: If the file isn't valid JSON or has no record array
        """
        path = Path(source)
        if not path.exists():
            raise SourceNotFoundError(f"Source file not found: {source}", source=source)

        try:
            with open(path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise UnsupportedSourceError(
                f"Invalid JSON in {source}: {str(e)}",
                source=source,
                adapter=self.adapter_name,
            )

        records = self._extract_records(raw_data, source)
        logger.info(f"Read {len(records)} entries from {source}")

        for position, entry in enumerate(records):
            if not isinstance(entry, dict):
                logger.warning(f"Entry {position} of {source} is not an object, skipping")
                yield Result.failure_result(
                    f"Entry {position} is {type(entry).__name__}, expected an object",
                    error_type="UnsupportedSourceError",
                    error_details={"source": source, "position": position},
                )
                continue

            if len(json.dumps(entry, default=str)) > self.max_record_size:
                logger.warning(f"Entry {position} of {source} exceeds {self.max_record_size} bytes, skipping")
                yield Result.failure_result(
                    f"Entry {position} exceeds maximum record size",
                    error_type="UnsupportedSourceError",
                    error_details={"source": source, "position": position},
                )
                continue

            yield Result.success_result(entry)

    def _extract_records(self, raw_data: Any, source: str) -> List[Any]:
        if isinstance(raw_data, list):
            return raw_data
        if isinstance(raw_data, dict):
            for key in RECORD_CONTAINER_KEYS:
                if isinstance(raw_data.get(key), list):
                    return raw_data[key]
            # A single object is a single record
            return [raw_data]
        raise UnsupportedSourceError(
            f"Unsupported JSON structure in {source}: {type(raw_data).__name__}",
            source=source,
            adapter=self.adapter_name,
        )
