"""PostgreSQL Storage Adapter.

This adapter implements the StoragePort contract for persisting canonical birth
records and their relation edges to PostgreSQL, the production database of the
birth book.

Security Impact:
    - Connection credentials come from DatabaseConfig and are never logged
    - SSL connections supported for secure network communication

Architecture:
    - Implements StoragePort (Hexagonal Architecture)
    - Connection pooling (psycopg2 ThreadedConnectionPool) for performance
    - One transaction per operation: a rejected record never leaves partial state
    - Driver errors are translated into the domain's storage error hierarchy,
      using the server's diagnostics to name the offending column
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, TypeVar

import psycopg2
from psycopg2 import pool
from psycopg2.extras import execute_values

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

T = TypeVar('T')

RECORDS_TABLE = "partos"
EDGES_TABLE = "partos_relaciones"
SEQUENCE_NAME = "partos_correlativo_seq"

PROTECTED_COLUMNS = frozenset({"id", "correlativo", "trace_id", "created_at"})

# Server-side cursor batch size when scanning all records
SCAN_ITERSIZE = 2000


def _field_from_constraint(constraint_name: Optional[str]) -> Optional[str]:
    """Recover the column from a default constraint name (``partos_<column>_check|key``)."""
    if not constraint_name:
        return None
    name = constraint_name
    if name.startswith(f"{RECORDS_TABLE}_"):
        name = name[len(RECORDS_TABLE) + 1:]
    for suffix in ("_check", "_key", "_not_null"):
        if name.endswith(suffix):
            return name[:-len(suffix)]
    return None


class PostgreSQLAdapter(StoragePort):
    """PostgreSQL implementation of StoragePort.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        connection_string: Full PostgreSQL connection string
        host: Database host (required if no connection_string or db_config)
        port: Database port (default: 5432)
        database: Database name (required if no connection_string or db_config)
        username: Database username
        password: Database password
        ssl_mode: SSL mode (require, prefer, disable)
        pool_size: Connection pool size (default: 5)
        max_overflow: Maximum connection pool overflow (default: 10)

    Example Usage:
        ```python
        adapter = PostgreSQLAdapter(db_config=get_database_config())
        adapter.initialize_schema()
        stored = adapter.insert(canonical_record)
        adapter.close()
        ```
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        connection_string: Optional[str] = None,
        host: Optional[str] = None,
        port: int = 5432,
        database: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        ssl_mode: Optional[str] = None,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        self._connection_pool: Optional[pool.ThreadedConnectionPool] = None

        if db_config:
            if db_config.db_type != "postgresql":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match PostgreSQL adapter",
                    operation="__init__"
                )
            if db_config.connection_string:
                self.connection_params = {"dsn": db_config.connection_string.get_secret_value()}
            else:
                if not all([db_config.host, db_config.database]):
                    raise StorageError(
                        "PostgreSQL DatabaseConfig requires host and database",
                        operation="__init__"
                    )
                self.connection_params = {
                    "host": db_config.host,
                    "port": db_config.port or 5432,
                    "database": db_config.database,
                    "user": db_config.username,
                    "sslmode": db_config.ssl_mode or "prefer",
                }
                if db_config.password:
                    self.connection_params["password"] = db_config.password.get_secret_value()
            self.pool_size = db_config.pool_size
            self.max_overflow = db_config.max_overflow

        elif connection_string:
            self.connection_params = {"dsn": connection_string}
            self.pool_size = pool_size
            self.max_overflow = max_overflow

        else:
            if not all([host, database]):
                raise StorageError(
                    "PostgreSQL adapter requires either db_config, connection_string, or (host and database)",
                    operation="__init__"
                )
            self.connection_params = {
                "host": host,
                "port": port,
                "database": database,
                "user": username,
                "password": password,
                "sslmode": ssl_mode or "prefer",
            }
            self.pool_size = pool_size
            self.max_overflow = max_overflow

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _get_connection_pool(self) -> pool.ThreadedConnectionPool:
        """Get or create the connection pool (created lazily, then reused)."""
        if self._connection_pool is None:
            try:
                self._connection_pool = pool.ThreadedConnectionPool(
                    minconn=1,
                    maxconn=self.pool_size + self.max_overflow,
                    **self.connection_params
                )
                logger.info("Created PostgreSQL connection pool")
            except psycopg2.Error as e:
                raise StorageUnavailableError(
                    f"Failed to create PostgreSQL connection pool: {str(e)}",
                    operation="connect",
                    details={"host": self.connection_params.get("host", "N/A")}
                )
        return self._connection_pool

    def _get_connection(self):
        try:
            return self._get_connection_pool().getconn()
        except psycopg2.Error as e:
            raise StorageUnavailableError(
                f"Failed to get connection from pool: {str(e)}",
                operation="get_connection"
            )

    def _return_connection(self, conn) -> None:
        try:
            self._get_connection_pool().putconn(conn)
        except psycopg2.Error as e:
            logger.warning(f"Error returning connection to pool: {str(e)}")

    def _in_transaction(self, operation: str, work: Callable[[Any], T]) -> T:
        """Run ``work(cursor)`` in its own transaction; translate driver errors."""
        conn = self._get_connection()
        try:
            with conn.cursor() as cursor:
                result = work(cursor)
            conn.commit()
            return result
        except psycopg2.Error as e:
            conn.rollback()
            raise self._translate_error(e, operation)
        except Exception:
            conn.rollback()
            raise
        finally:
            self._return_connection(conn)

    @staticmethod
    def _translate_error(error: psycopg2.Error, operation: str) -> StorageError:
        """Map a psycopg2 exception onto the storage error hierarchy."""
        message = str(error).strip()
        details = {"pgcode": getattr(error, "pgcode", None)}
        if isinstance(error, (psycopg2.IntegrityError, psycopg2.DataError)):
            diag = getattr(error, "diag", None)
            constraint = getattr(diag, "constraint_name", None)
            field = getattr(diag, "column_name", None) or _field_from_constraint(constraint)
            return ConstraintViolationError(
                message,
                field=field,
                constraint=constraint,
                operation=operation,
                details=details,
            )
        if isinstance(error, (psycopg2.OperationalError, psycopg2.InterfaceError)):
            return StorageUnavailableError(message, operation=operation, details=details)
        return StorageError(message, operation=operation, details=details)

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def initialize_schema(self) -> Result[None]:
        """Create the sequence, tables and indexes if they don't exist.

        Returns:
            Result[None]: Success or failure result
        """
        columns = ",\n                ".join(column_definitions())

        def create(cursor) -> None:
            cursor.execute(f"CREATE SEQUENCE IF NOT EXISTS {SEQUENCE_NAME} START 1")
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {RECORDS_TABLE} (
                id VARCHAR(36) PRIMARY KEY,
                correlativo BIGINT NOT NULL DEFAULT nextval('{SEQUENCE_NAME}'),
                {columns},
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {EDGES_TABLE} (
                    parto_id VARCHAR(36) NOT NULL REFERENCES {RECORDS_TABLE}(id) ON DELETE CASCADE,
                    relacionado_con_id VARCHAR(36) NOT NULL REFERENCES {RECORDS_TABLE}(id) ON DELETE CASCADE,
                    tipo_relacion VARCHAR(32) NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (parto_id, relacionado_con_id, tipo_relacion)
                )
            """)
            cursor.execute(f"CREATE INDEX IF NOT EXISTS idx_partos_rut_normalized ON {RECORDS_TABLE} (rut_normalized)")
            cursor.execute(f"CREATE INDEX IF NOT EXISTS idx_partos_consultorio ON {RECORDS_TABLE} (consultorio)")
            cursor.execute(f"CREATE INDEX IF NOT EXISTS idx_partos_periodo ON {RECORDS_TABLE} (mes_parto, fecha_parto)")
            cursor.execute(f"CREATE INDEX IF NOT EXISTS idx_partos_data_hash ON {RECORDS_TABLE} (data_hash)")

        try:
            self._in_transaction("initialize_schema", create)
            logger.info("Database schema initialized successfully")
            return Result.success_result(None)
        except StorageError as e:
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _fetch_one(self, operation: str, query: str, params: list) -> Optional[StoredRecord]:
        def work(cursor) -> Optional[StoredRecord]:
            cursor.execute(query, params)
            row = cursor.fetchone()
            return _to_stored_record(cursor.description, row) if row is not None else None

        return self._in_transaction(operation, work)

    def lookup(self, trace_id: str) -> Optional[StoredRecord]:
        return self._fetch_one("lookup", f"SELECT * FROM {RECORDS_TABLE} WHERE trace_id = %s", [trace_id])

    def find_by_data_hash(self, data_hash: str) -> Optional[StoredRecord]:
        return self._fetch_one(
            "find_by_data_hash",
            f"SELECT * FROM {RECORDS_TABLE} WHERE data_hash = %s ORDER BY correlativo LIMIT 1",
            [data_hash],
        )

    def get(self, key: str) -> Optional[StoredRecord]:
        return self._fetch_one(
            "get",
            f"SELECT * FROM {RECORDS_TABLE} WHERE id = %s OR trace_id = %s LIMIT 1",
            [key, key],
        )

    def insert(self, record: CanonicalRecord) -> StoredRecord:
        """Insert a canonical record; storage assigns ``id`` and ``correlativo``.

        Raises:
            ConstraintViolationError: unique (23505), not-null (23502) or CHECK (23514) violation
        """
        row = record.to_row()
        row["id"] = str(uuid.uuid4())
        columns = list(row)
        placeholders = ", ".join(["%s"] * len(columns))
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

        assignments = ", ".join(f"{column} = %s" for column in changes)
        return self._fetch_one(
            "update",
            f"UPDATE {RECORDS_TABLE} SET {assignments} WHERE id = %s RETURNING *",
            list(changes.values()) + [record_id],
        )

    def delete(self, record_id: str) -> bool:
        def work(cursor) -> bool:
            cursor.execute(
                f"DELETE FROM {EDGES_TABLE} WHERE parto_id = %s OR relacionado_con_id = %s",
                [record_id, record_id],
            )
            cursor.execute(f"DELETE FROM {RECORDS_TABLE} WHERE id = %s", [record_id])
            return cursor.rowcount > 0

        return self._in_transaction("delete", work)

    def all_records(self) -> Iterator[StoredRecord]:
        """Stream every record through a server-side cursor."""
        conn = self._get_connection()
        try:
            with conn.cursor(name="partos_scan") as cursor:
                cursor.itersize = SCAN_ITERSIZE
                cursor.execute(f"SELECT * FROM {RECORDS_TABLE} ORDER BY correlativo")
                for row in cursor:
                    yield _to_stored_record(cursor.description, row)
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            raise self._translate_error(e, "all_records")
        finally:
            self._return_connection(conn)

    def count_records(self) -> int:
        def work(cursor) -> int:
            cursor.execute(f"SELECT COUNT(*) FROM {RECORDS_TABLE}")
            return cursor.fetchone()[0]

        return self._in_transaction("count_records", work)

    # ------------------------------------------------------------------
    # Relation edges
    # ------------------------------------------------------------------

    def upsert_edge(self, edge: RelationEdge) -> bool:
        return self.upsert_edges([edge]) == 1

    def upsert_edges(self, edges: Iterable[RelationEdge]) -> int:
        """Bulk-insert edges with ``ON CONFLICT DO NOTHING``. Returns the number inserted."""
        values = [(edge.source_id, edge.target_id, edge.kind.value) for edge in edges]
        if not values:
            return 0

        def work(cursor) -> int:
            inserted = execute_values(
                cursor,
                f"""
                INSERT INTO {EDGES_TABLE} (parto_id, relacionado_con_id, tipo_relacion)
                VALUES %s
                ON CONFLICT DO NOTHING
                RETURNING 1
                """,
                values,
                page_size=1000,
                fetch=True,
            )
            return len(inserted)

        inserted = self._in_transaction("upsert_edges", work)
        logger.debug(f"Inserted {inserted} of {len(values)} relation edges")
        return inserted

    def list_edges(self, record_id: Optional[str] = None, kind: Optional[str] = None) -> List[RelationEdge]:
        clauses, params = [], []
        if record_id is not None:
            clauses.append("parto_id = %s")
            params.append(record_id)
        if kind is not None:
            clauses.append("tipo_relacion = %s")
            params.append(RelationKind(kind).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        def work(cursor) -> list:
            cursor.execute(f"""
                SELECT parto_id, relacionado_con_id, tipo_relacion, created_at
                FROM {EDGES_TABLE} {where}
                ORDER BY tipo_relacion, parto_id, relacionado_con_id
            """, params)
            return cursor.fetchall()

        return [
            RelationEdge(source_id=source_id, target_id=target_id, kind=RelationKind(kind_value), created_at=created_at)
            for source_id, target_id, kind_value, created_at in self._in_transaction("list_edges", work)
        ]

    def count_edges(self, kind: Optional[str] = None) -> int:
        def work(cursor) -> int:
            if kind is None:
                cursor.execute(f"SELECT COUNT(*) FROM {EDGES_TABLE}")
            else:
                cursor.execute(
                    f"SELECT COUNT(*) FROM {EDGES_TABLE} WHERE tipo_relacion = %s",
                    [RelationKind(kind).value],
                )
            return cursor.fetchone()[0]

        return self._in_transaction("count_edges", work)

    def clear_edges(self) -> int:
        def work(cursor) -> int:
            cursor.execute(f"DELETE FROM {EDGES_TABLE}")
            return cursor.rowcount

        return self._in_transaction("clear_edges", work)

    def close(self) -> None:
        """Close the connection pool and release resources."""
        if self._connection_pool is not None:
            try:
                self._connection_pool.closeall()
                self._connection_pool = None
                logger.info("Closed PostgreSQL connection pool")
            except psycopg2.Error as e:
                logger.warning(f"Error closing connection pool: {str(e)}")


def _to_stored_record(description, row) -> StoredRecord:
    columns = [column[0] for column in description]
    return StoredRecord.model_validate(dict(zip(columns, row)))
