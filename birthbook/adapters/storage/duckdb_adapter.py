"""DuckDB Storage Adapter.

This adapter implements the StoragePort contract for persisting canonical birth
records and their relation edges to DuckDB, an in-process database that needs
no server (file-backed or ``:memory:``).

Architecture:
    - Implements StoragePort (Hexagonal Architecture)
    - Isolated from domain core - only depends on ports and models
    - Canonical columns and their CHECK constraints are generated from the
      canonical schema, so the table always matches the model
    - Relation edges are bulk-inserted from a registered pandas DataFrame
"""

import logging
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

import duckdb
import pandas as pd

from birthbook.domain.canonical_schema import (
    CanonicalRecord,
    RelationEdge,
    RelationKind,
    StoredRecord,
    column_definitions,
)
from birthbook.domain.ports import (
    ConstraintViolationError,
    Result,
    StorageError,
    StoragePort,
    StorageUnavailableError,
)
from birthbook.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)

RECORDS_TABLE = "partos"
EDGES_TABLE = "partos_relaciones"
SEQUENCE_NAME = "partos_correlativo_seq"

# Columns callers may never set through update()
PROTECTED_COLUMNS = frozenset({"id", "correlativo", "trace_id", "created_at"})

_DUPLICATE_KEY = re.compile(r'Duplicate key "(\w+):')


class DuckDBAdapter(StoragePort):
    """DuckDB implementation of StoragePort.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        db_path: Path to DuckDB database file (or ':memory:' for in-memory)

    Example Usage:
        ```python
        from birthbook.infrastructure.config_manager import get_database_config

        adapter = DuckDBAdapter(db_config=get_database_config())
        # Or directly
        adapter = DuckDBAdapter(db_path="data/partos.duckdb")

        result = adapter.initialize_schema()
        if result.is_success():
            stored = adapter.insert(canonical_record)
        ```
    """

    def __init__(self, db_config: Optional[DatabaseConfig] = None, db_path: Optional[str] = None):
        if db_config:
            if db_config.db_type != "duckdb":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB adapter",
                    operation="__init__"
                )
            self.db_path = db_config.db_path or ":memory:"
        else:
            self.db_path = db_path or ":memory:"

        self._connection: Optional[duckdb.DuckDBPyConnection] = None

        if self.db_path != ":memory:":
            db_path_obj = Path(self.db_path)
            if not db_path_obj.parent.exists():
                raise StorageError(
                    f"Database directory does not exist: {db_path_obj.parent}",
                    operation="__init__"
                )

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection (created lazily, then reused)."""
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except duckdb.Error as e:
                raise StorageUnavailableError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path}
                )
        return self._connection

    def _execute(self, operation: str, sql: str, params: Optional[list] = None) -> duckdb.DuckDBPyConnection:
        conn = self._get_connection()
        try:
            return conn.execute(sql, params or [])
        except duckdb.Error as e:
            raise self._translate_error(e, operation)

    @staticmethod
    def _translate_error(error: Exception, operation: str) -> StorageError:
        """Map a DuckDB exception onto the storage error hierarchy."""
        message = str(error)
        if isinstance(error, duckdb.ConstraintException):
            match = _DUPLICATE_KEY.search(message)
            return ConstraintViolationError(
                message,
                field=match.group(1) if match else None,
                operation=operation,
            )
        if isinstance(error, (duckdb.ConversionException, duckdb.InvalidInputException)):
            return ConstraintViolationError(message, operation=operation)
        if isinstance(error, (duckdb.IOException, duckdb.ConnectionException)):
            return StorageUnavailableError(message, operation=operation)
        return StorageError(message, operation=operation)

    def initialize_schema(self) -> Result[None]:
        """Create the sequence and tables if they don't exist.

        Creates:
            - partos_correlativo_seq: source of the monotonic ``correlativo``
            - partos: one row per birth event, trace_id unique
            - partos_relaciones: relation edges, unique on (source, target, kind)

        Returns:
            Result[None]: Success or failure result
        """
        columns = ",\n                ".join(column_definitions())
        try:
            conn = self._get_connection()
            conn.execute(f"CREATE SEQUENCE IF NOT EXISTS {SEQUENCE_NAME} START 1")
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {RECORDS_TABLE} (
                id VARCHAR PRIMARY KEY,
                correlativo BIGINT DEFAULT nextval('{SEQUENCE_NAME}'),
                {columns},
                created_at TIMESTAMP DEFAULT current_timestamp,
                updated_at TIMESTAMP DEFAULT current_timestamp
                )
            """)
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {EDGES_TABLE} (
                    parto_id VARCHAR NOT NULL,
                    relacionado_con_id VARCHAR NOT NULL,
                    tipo_relacion VARCHAR NOT NULL,
                    created_at TIMESTAMP DEFAULT current_timestamp,
                    PRIMARY KEY (parto_id, relacionado_con_id, tipo_relacion)
                )
            """)
            logger.info("Database schema initialized successfully")
            return Result.success_result(None)

        except (duckdb.Error, StorageError) as e:
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _fetch_one(self, operation: str, sql: str, params: list) -> Optional[StoredRecord]:
        cursor = self._execute(operation, sql, params)
        row = cursor.fetchone()
        if row is None:
            return None
        return _to_stored_record(cursor.description, row)

    def lookup(self, trace_id: str) -> Optional[StoredRecord]:
        return self._fetch_one("lookup", f"SELECT * FROM {RECORDS_TABLE} WHERE trace_id = ?", [trace_id])

    def find_by_data_hash(self, data_hash: str) -> Optional[StoredRecord]:
        return self._fetch_one(
            "find_by_data_hash",
            f"SELECT * FROM {RECORDS_TABLE} WHERE data_hash = ? ORDER BY correlativo LIMIT 1",
            [data_hash],
        )

    def get(self, key: str) -> Optional[StoredRecord]:
        return self._fetch_one(
            "get",
            f"SELECT * FROM {RECORDS_TABLE} WHERE id = ? OR trace_id = ? LIMIT 1",
            [key, key],
        )

    def insert(self, record: CanonicalRecord) -> StoredRecord:
        """Insert a canonical record; storage assigns ``id`` and ``correlativo``.

        Raises:
            ConstraintViolationError: Duplicate trace_id or CHECK constraint failure
        """
        row = record.to_row()
        row["id"] = str(uuid.uuid4())
        columns = list(row)
        placeholders = ", ".join("?" for _ in columns)
        stored = self._fetch_one(
            "insert",
            f"INSERT INTO {RECORDS_TABLE} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
            [row[column] for column in columns],
        )
        logger.debug(f"Inserted record {stored.id} (trace_id {stored.trace_id})")
        return stored

    def update(self, record_id: str, changes: Dict[str, Any]) -> Optional[StoredRecord]:
        changes = dict(changes)
        changes.setdefault("updated_at", datetime.now())
        forbidden = PROTECTED_COLUMNS.intersection(changes)
        if forbidden:
            raise StorageError(f"Cannot update protected columns: {sorted(forbidden)}", operation="update")

        assignments = ", ".join(f"{column} = ?" for column in changes)
        return self._fetch_one(
            "update",
            f"UPDATE {RECORDS_TABLE} SET {assignments} WHERE id = ? RETURNING *",
            list(changes.values()) + [record_id],
        )

    def delete(self, record_id: str) -> bool:
        conn = self._get_connection()
        try:
            conn.begin()
            conn.execute(
                f"DELETE FROM {EDGES_TABLE} WHERE parto_id = ? OR relacionado_con_id = ?",
                [record_id, record_id],
            )
            deleted = conn.execute(
                f"DELETE FROM {RECORDS_TABLE} WHERE id = ? RETURNING id", [record_id]
            ).fetchall()
            conn.commit()
        except duckdb.Error as e:
            conn.rollback()
            raise self._translate_error(e, "delete")
        return bool(deleted)

    def all_records(self) -> Iterator[StoredRecord]:
        cursor = self._execute("all_records", f"SELECT * FROM {RECORDS_TABLE} ORDER BY correlativo")
        description = cursor.description
        for row in cursor.fetchall():
            yield _to_stored_record(description, row)

    def count_records(self) -> int:
        return self._execute("count_records", f"SELECT COUNT(*) FROM {RECORDS_TABLE}").fetchone()[0]

    # ------------------------------------------------------------------
    # Relation edges
    # ------------------------------------------------------------------

    def upsert_edge(self, edge: RelationEdge) -> bool:
        return self.upsert_edges([edge]) == 1

    def upsert_edges(self, edges: Iterable[RelationEdge]) -> int:
        """Bulk-insert edges that don't exist yet. Returns the number inserted."""
        frame = pd.DataFrame(
            [(edge.source_id, edge.target_id, edge.kind.value) for edge in edges],
            columns=["parto_id", "relacionado_con_id", "tipo_relacion"],
        )
        if frame.empty:
            return 0

        conn = self._get_connection()
        conn.register("edges_batch", frame)
        try:
            inserted = self._execute("upsert_edges", f"""
                INSERT INTO {EDGES_TABLE} (parto_id, relacionado_con_id, tipo_relacion)
                SELECT DISTINCT b.parto_id, b.relacionado_con_id, b.tipo_relacion
                FROM edges_batch b
                WHERE NOT EXISTS (
                    SELECT 1 FROM {EDGES_TABLE} r
                    WHERE r.parto_id = b.parto_id
                      AND r.relacionado_con_id = b.relacionado_con_id
                      AND r.tipo_relacion = b.tipo_relacion
                )
            """).fetchone()[0]
        finally:
            conn.unregister("edges_batch")

        logger.debug(f"Inserted {inserted} of {len(frame)} relation edges")
        return inserted

    def list_edges(self, record_id: Optional[str] = None, kind: Optional[str] = None) -> List[RelationEdge]:
        clauses, params = [], []
        if record_id is not None:
            clauses.append("parto_id = ?")
            params.append(record_id)
        if kind is not None:
            clauses.append("tipo_relacion = ?")
            params.append(RelationKind(kind).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        rows = self._execute("list_edges", f"""
            SELECT parto_id, relacionado_con_id, tipo_relacion, created_at
            FROM {EDGES_TABLE} {where}
            ORDER BY tipo_relacion, parto_id, relacionado_con_id
        """, params).fetchall()
        return [
            RelationEdge(source_id=source_id, target_id=target_id, kind=RelationKind(kind_value), created_at=created_at)
            for source_id, target_id, kind_value, created_at in rows
        ]

    def count_edges(self, kind: Optional[str] = None) -> int:
        if kind is None:
            return self._execute("count_edges", f"SELECT COUNT(*) FROM {EDGES_TABLE}").fetchone()[0]
        return self._execute(
            "count_edges",
            f"SELECT COUNT(*) FROM {EDGES_TABLE} WHERE tipo_relacion = ?",
            [RelationKind(kind).value],
        ).fetchone()[0]

    def clear_edges(self) -> int:
        removed = self.count_edges()
        self._execute("clear_edges", f"DELETE FROM {EDGES_TABLE}")
        return removed

    def close(self) -> None:
        """Close the DuckDB connection."""
        if self._connection is not None:
            try:
                self._connection.close()
                self._connection = None
                logger.info("Closed DuckDB connection")
            except duckdb.Error as e:
                logger.warning(f"Error closing connection: {str(e)}")


def _to_stored_record(description, row) -> StoredRecord:
    columns = [column[0] for column in description]
    return StoredRecord.model_validate(dict(zip(columns, row)))
