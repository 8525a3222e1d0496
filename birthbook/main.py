"""Main entry point for the Birth-Book import pipeline.

This module wires the configured storage adapter, the ingestion adapter
selected for a source, and the Batch Importer into a single import run.

Architecture:
    - Follows Hexagonal Architecture principles
    - Adapters are selected automatically based on source format
    - Storage adapter is configured via configuration manager
    - Import options default to the ``BB_*`` settings and can be overridden per run
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Optional

from birthbook.adapters.ingesters import get_adapter
from birthbook.adapters.storage import DuckDBAdapter, PostgreSQLAdapter
from birthbook.domain.batch_importer import BatchImporter, ImportConfig, ImportReport
from birthbook.domain.identity import IdentityResolver
from birthbook.domain.ports import StoragePort
from birthbook.domain.relation_inferencer import RelationInferencer
from birthbook.infrastructure.config_manager import get_database_config
from birthbook.infrastructure.logging_config import setup_logging
from birthbook.infrastructure.settings import settings

logger = logging.getLogger(__name__)


def create_storage_adapter() -> StoragePort:
    """Create storage adapter based on configuration.

    Returns:
        StoragePort: Configured storage adapter instance

    Raises:
        ValueError: If database type is unsupported
    """
    db_config = get_database_config()

    if db_config.db_type == "duckdb":
        logger.info(f"Initializing DuckDB adapter with path: {db_config.db_path or ':memory:'}")
        return DuckDBAdapter(db_config=db_config)
    elif db_config.db_type == "postgresql":
        logger.info(f"Initializing PostgreSQL adapter with host: {db_config.host}")
        return PostgreSQLAdapter(db_config=db_config)
    else:
        raise ValueError(f"Unsupported database type: {db_config.db_type}")


def ensure_schema(storage: StoragePort) -> None:
    """Initialize the storage schema or raise RuntimeError."""
    logger.info("Initializing storage schema...")
    schema_result = storage.initialize_schema()
    if not schema_result.is_success():
        logger.error(f"Failed to initialize schema: {schema_result.error}")
        raise RuntimeError(f"Schema initialization failed: {schema_result.error}")
    logger.info("Schema initialized successfully")


def run_import(
    source: str,
    storage: StoragePort,
    chunk_size: Optional[int] = None,
    derive_relations: Optional[bool] = None,
    created_by: Optional[str] = None,
    on_chunk: Optional[Callable[[ImportReport], None]] = None,
) -> ImportReport:
    """Import every record of ``source`` into ``storage``.

    Parameters:
        source: Source file path (.json, .txt or .tsv)
        storage: Storage adapter instance
        chunk_size: Records per checkpoint (defaults to BB_CHUNK_SIZE)
        derive_relations: Run relation inference afterwards (defaults to BB_DERIVE_RELATIONS)
        created_by: Operator stamped into records that carry no ``creadoPor``
        on_chunk: Optional progress callback invoked after each chunk

    Returns:
        ImportReport: Counts, per-record failures and relation counts

    Raises:
        SourceNotFoundError: If the source file doesn't exist
        UnsupportedSourceError: If no adapter can read the source
        RuntimeError: If the storage schema cannot be initialized
        StorageUnavailableError: If storage is lost mid-run
    """
    adapter = get_adapter(source, chunk_size=settings.read_chunk_size)
    logger.info(f"Selected adapter: {adapter.__class__.__name__}")

    ensure_schema(storage)

    config = ImportConfig(
        chunk_size=chunk_size or settings.chunk_size,
        derive_relations=settings.derive_relations if derive_relations is None else derive_relations,
        created_by=created_by,
        skip_duplicate_content=settings.skip_duplicate_content,
    )
    importer = BatchImporter(
        storage=storage,
        resolver=IdentityResolver(derive_trace_id=not settings.require_trace_id),
        inferencer=RelationInferencer(max_group_size=settings.relation_max_group_size),
        config=config,
        on_chunk=on_chunk,
    )

    return importer.import_results(adapter.ingest(source))


def main():
    """Main entry point for the Birth-Book import pipeline."""
    parser = argparse.ArgumentParser(
        description=f"{settings.app_name} - Birth record import pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Import the legacy export
  python -m birthbook.main --input datos.txt

  # Import a JSON export without deriving relations
  python -m birthbook.main --input partos.json --no-relations

  # Use environment variables for database configuration
  export BB_DB_TYPE=postgresql
  export BB_DB_HOST=localhost
  export BB_DB_NAME=birthbook
  python -m birthbook.main --input datos.txt
        """
    )

    parser.add_argument("--input", "-i", required=True, type=str, help="Input file path (JSON, TXT or TSV)")
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=None,
        help=f"Records per checkpoint (default: {settings.chunk_size})"
    )
    parser.add_argument("--no-relations", action="store_true", help="Skip relation inference")
    parser.add_argument("--created-by", type=str, default=None, help="Operator recorded on imported records")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    setup_logging(use_json=settings.log_json, log_level="DEBUG" if args.verbose else settings.log_level)

    if not Path(args.input).exists():
        logger.error(f"Input file not found: {args.input}")
        sys.exit(1)

    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Database type: {settings.db_config.db_type}")

    try:
        storage = create_storage_adapter()
    except ValueError as e:
        logger.error(f"Failed to create storage adapter: {str(e)}")
        sys.exit(1)

    try:
        report = run_import(
            source=args.input,
            storage=storage,
            chunk_size=args.chunk_size,
            derive_relations=False if args.no_relations else None,
            created_by=args.created_by,
        )
    except Exception as e:
        logger.error(f"Import failed: {str(e)}", exc_info=True)
        sys.exit(1)
    finally:
        storage.close()

    print(json.dumps(report.to_dict(), indent=2, default=str))
    sys.exit(1 if report.failed else 0)


if __name__ == "__main__":
    main()
