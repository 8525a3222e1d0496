"""Domain Ports - Abstract Contracts for Birth Record Import.

This module defines the Port interfaces (abstract contracts) that adapters must implement,
together with the error hierarchy shared by the domain core and its adapters.
Following Hexagonal Architecture, the domain core defines what it needs, not how it's provided.

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Ingestion adapters (JSON, legacy text export) implement IngestionPort
    - Storage adapters (DuckDB, PostgreSQL) implement StoragePort
    - Iterator pattern enables memory-efficient streaming ingestion
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Generic, Iterable, Iterator, Optional, TypeVar, Union

from birthbook.domain.canonical_schema import CanonicalRecord, RelationEdge, StoredRecord

# Type variable for Result generic
T = TypeVar('T')

# External records are loosely-typed key/value mappings from form clients or exports
ExternalRecord = Dict[str, Any]


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Ingesters yield Result objects so that a single malformed line or
    entry never aborts the read of the whole source.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error information (only present if success=False)
        error_type: Type of error (UnsupportedSourceError, ValueError, etc.)
        error_details: Additional error context (source, position, etc.)

    Example:
        ```python
        result = Result.success_result({"rut": "12.345.678-9"})
        if result.is_success():
            importer.import_records([result.value])

        result = Result.failure_result(
            "Entry is not an object",
            error_type="TransformationError",
            error_details={"source": "partos.json", "position": 5}
        )
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result.

        Parameters:
            value: The successful result value

        Returns:
            Result: Success result with the value
        """
        return cls(success=True, value=value)

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (defaults to the exception class name)
            error_details: Additional context (source, position, etc.)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class BirthBookError(Exception):
    """Base exception for all import-related errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class IdentityValidationError(BirthBookError):
    """Raised when a record has no usable dedup key (trace_id).

    Fatal for the record, never for the batch.
    """

    def __init__(self, message: str, rut: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details)
        self.rut = rut


class StorageError(BirthBookError):
    """Raised when a storage operation fails.

    Attributes:
        operation: Name of the storage operation that failed (insert, lookup, ...)
        details: Additional error context (never contains credentials)
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details)
        self.operation = operation


class ConstraintViolationError(StorageError):
    """Raised when storage rejects a record (unique key, CHECK or NOT NULL constraint).

    Attributes:
        field: Column that violated the constraint, when the driver exposes it
        constraint: Constraint name, when the driver exposes it
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        constraint: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message, operation=operation, details=details)
        self.field = field
        self.constraint = constraint


class StorageUnavailableError(StorageError):
    """Raised when storage cannot be reached at all. Aborts the batch."""
    pass


class RecordNotFoundError(BirthBookError):
    """Raised when a single-record operation targets a key that does not exist."""

    def __init__(self, key: str):
        super().__init__(f"Record not found: {key}", {"key": key})
        self.key = key


class IngestionError(BirthBookError):
    """Base exception for source-reading errors."""
    pass


class SourceNotFoundError(IngestionError):
    """Raised when the source file cannot be found or accessed."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message, {"source": source})
        self.source = source


class UnsupportedSourceError(IngestionError):
    """Raised when the source format is not supported by the adapter.

    Attributes:
        source: The source identifier that is unsupported
        adapter: The adapter that cannot handle the source
    """

    def __init__(self, message: str, source: Optional[str] = None, adapter: Optional[str] = None):
        super().__init__(message, {"source": source, "adapter": adapter})
        self.source = source
        self.adapter = adapter


# ============================================================================
# Ingestion Port
# ============================================================================

class IngestionPort(ABC):
    """Abstract contract for source-reading adapters.

    Adapters turn a source (file path) into a stream of External Records.
    They do not map, coerce or validate: that is the Field Mapper's job,
    so every source flows through exactly the same normalization.

    Example Usage:
        ```python
        adapter = get_adapter("datos.txt")
        for result in adapter.ingest("datos.txt"):
            if result.is_success():
                external_record = result.value
        ```
    """

    @property
    @abstractmethod
    def adapter_name(self) -> str:
        """Short adapter identifier used in logs and failure reports."""
        pass

    @abstractmethod
    def ingest(self, source: str) -> Iterator[Result[ExternalRecord]]:
        """Read a source and yield one Result per External Record.

        Parameters:
            source: Source identifier (file path)

        Yields:
            Result[ExternalRecord]: Success with the raw record, or failure
            with the position of the entry that could not be read

        Raises:
            SourceNotFoundError: If the source doesn't exist
            UnsupportedSourceError: If the source cannot be parsed at all

        Note:
            Errors in individual entries are returned as Result.failure_result(),
            not raised, so the importer can count them and keep going.
        """
        pass

    @abstractmethod
    def can_ingest(self, source: str) -> bool:
        """Check if this adapter can handle the given source."""
        pass

    def get_source_info(self, source: str) -> Optional[dict]:
        """Get metadata about the source (optional, adapter-specific).

        Returns:
            Optional[dict]: format/size metadata, or None when unknown
        """
        return None


# ============================================================================
# Storage Port
# ============================================================================

class StoragePort(ABC):
    """Abstract contract for canonical record persistence.

    The storage layer owns two things the domain never computes itself:
    the primary key ``id`` and the monotonic ``correlativo`` sequence number.
    It also enforces uniqueness of ``trace_id`` and the 0/1 and enumeration
    code constraints.

    Error contract:
        - ConstraintViolationError: the record was rejected (fatal for the record)
        - StorageUnavailableError: storage cannot be reached (fatal for the batch)
        - StorageError: any other failure of a single operation
    """

    @abstractmethod
    def initialize_schema(self) -> Result[None]:
        """Create tables, sequences and constraints if they don't exist."""
        pass

    @abstractmethod
    def lookup(self, trace_id: str) -> Optional[StoredRecord]:
        """Return the stored record with this trace_id, or None."""
        pass

    @abstractmethod
    def find_by_data_hash(self, data_hash: str) -> Optional[StoredRecord]:
        """Return the first stored record with this content fingerprint, or None."""
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[StoredRecord]:
        """Return the stored record whose id or trace_id equals ``key``, or None."""
        pass

    @abstractmethod
    def insert(self, record: CanonicalRecord) -> StoredRecord:
        """Persist a new record, assigning ``id`` and ``correlativo``.

        Raises:
            ConstraintViolationError: duplicate trace_id or CHECK/NOT NULL failure
        """
        pass

    @abstractmethod
    def update(self, record_id: str, changes: Dict[str, Any]) -> Optional[StoredRecord]:
        """Apply ``changes`` to the record with primary key ``record_id``.

        Returns:
            The updated record, or None if no record has that id
        """
        pass

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        """Delete a record and every relation edge that touches it."""
        pass

    @abstractmethod
    def all_records(self) -> Iterator[StoredRecord]:
        """Iterate over every stored record in correlativo order."""
        pass

    @abstractmethod
    def count_records(self) -> int:
        """Return the number of stored records."""
        pass

    @abstractmethod
    def upsert_edge(self, edge: RelationEdge) -> bool:
        """Insert an edge unless the same (source, target, kind) triple exists.

        Returns:
            True if a new edge was inserted
        """
        pass

    def upsert_edges(self, edges: Iterable[RelationEdge]) -> int:
        """Insert many edges idempotently. Returns the number actually inserted.

        Adapters override this with a bulk statement; the default falls back
        to one upsert_edge call per edge.
        """
        return sum(1 for edge in edges if self.upsert_edge(edge))

    @abstractmethod
    def list_edges(self, record_id: Optional[str] = None, kind: Optional[str] = None) -> list[RelationEdge]:
        """List edges, optionally restricted to a source record and/or a kind."""
        pass

    @abstractmethod
    def count_edges(self, kind: Optional[str] = None) -> int:
        """Return the number of stored edges, optionally of a single kind."""
        pass

    @abstractmethod
    def clear_edges(self) -> int:
        """Delete every relation edge. Returns the number deleted."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release connections and other resources."""
        pass
