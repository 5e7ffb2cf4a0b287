"""Domain Ports - Abstract Contracts for the Synchronization Pipeline.

This module defines the Port interfaces (abstract contracts) that adapters must
implement, the Result type used to report per-record outcomes, and the error
taxonomy shared by every stage of the pipeline.

Security Impact:
    - Errors carry business identifiers and operation names, never PII
    - Store failures are surfaced verbatim and never retried silently
    - A failing stage aborts the pipeline before any remote write

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Store adapters (FHIR REST, in-memory) implement ResourceStorePort
    - Domain Core is isolated from transport specifics
    - All store operations are coroutines; parsing, validation and
      conversion never suspend
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union


# Type variables for Result generic and resource-typed store calls
T = TypeVar('T')
R = TypeVar('R', bound='Resource')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    The orchestrator uses Result to collect the outcome of each remote write
    so that one failed create does not hide the outcome of the others.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error message (only present if success=False)
        error_type: Type of error (StoreError, ConversionError, etc.)
        error_details: Additional error context (operation, identifier, etc.)

    Example:
        ```python
        result = Result.success_result(patient)
        if result.is_success():
            created.append(result.value)

        result = Result.failure_result(
            StoreError("timeout", operation="create", identifier="PAT0001")
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

        If ``error`` is a PipelineError its own details are used when no
        explicit ``error_details`` are given.

        Parameters:
            error: Error message or exception
            error_type: Type of error (defaults to the exception class name)
            error_details: Additional context

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (
            type(error).__name__ if isinstance(error, Exception) else "UnknownError"
        )
        if error_details is None and isinstance(error, PipelineError):
            error_details = error.details()

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

class PipelineError(Exception):
    """Base exception for all synchronization pipeline errors."""

    def details(self) -> dict[str, Any]:
        """Structured context for reports and logs (no PII)."""
        return {}


class ParseError(PipelineError):
    """Raised when inbound delimited bytes cannot be turned into records.

    Fatal: the whole parse fails and no partial batch is returned.

    Attributes:
        line: 1-based line number in the source (header is line 1)
        column: Column (header name) involved, if known
    """

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[str] = None):
        super().__init__(message)
        self.line = line
        self.column = column

    def details(self) -> dict[str, Any]:
        return {"line": self.line, "column": self.column}


@dataclass(frozen=True)
class Violation:
    """A single row-level rule violation.

    Attributes:
        row_index: 0-based position of the record in the batch
        field: Field name as it appears in the tabular header (e.g. ``LastName``)
        message: Human-readable description of the violation
    """
    row_index: int
    field: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"rowIndex": self.row_index, "field": self.field, "message": self.message}


class ValidationError(PipelineError):
    """Raised when one or more rows violate their rule set.

    Attributes:
        violations: Every violation found across the batch
    """

    def __init__(self, message: str, violations: Optional[list[Violation]] = None):
        super().__init__(message)
        self.violations = list(violations or [])

    def details(self) -> dict[str, Any]:
        return {"violations": [v.to_dict() for v in self.violations]}


class ConversionError(PipelineError):
    """Raised when a resource graph does not have the expected shape.

    Typical causes are a non-quantity observation value, an effective time
    that is not a point in time, or a missing coding.

    Attributes:
        resource_type: FHIR resource type being converted
        resource_id: Resource id or business identifier of the source
        field: Element that had the unexpected shape
    """

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        field: Optional[str] = None
    ):
        super().__init__(message)
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.field = field

    def details(self) -> dict[str, Any]:
        return {
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "field": self.field,
        }


class StoreError(PipelineError):
    """Raised when a remote store call fails or times out.

    Surfaced verbatim to the caller; retry policy belongs to the store.

    Attributes:
        operation: Store operation that failed (search, read, create, ...)
        identifier: Business identifier or resource id involved
        status: HTTP status code when the store answered with an error
    """

    def __init__(
        self,
        message: str,
        operation: str,
        identifier: Optional[str] = None,
        status: Optional[int] = None
    ):
        super().__init__(message)
        self.operation = operation
        self.identifier = identifier
        self.status = status

    def details(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "identifier": self.identifier,
            "status": self.status,
        }


# ============================================================================
# Store Port
# ============================================================================

class ResourceStorePort(ABC):
    """Abstract contract for the remote clinical resource store.

    The pipeline receives an explicitly constructed instance of this port;
    it never creates or lazily initializes one itself.

    Key Principles:
        - Resource-typed: calls take the resource class, results are models
        - Not-found is ``None``, never an exception
        - Every other failure is a StoreError naming operation and identifier
        - Implementations must be safe for concurrent use

    Example Usage:
        ```python
        async with FhirRestStore(config) as store:
            patient = await store.search_by_identifier(Patient, "PAT0001")
            if patient is None:
                patient = await store.create(new_patient)
        ```
    """

    async def __aenter__(self) -> 'ResourceStorePort':
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and verify the store is reachable.

        Raises:
            StoreError: If the store cannot be reached (fatal at start-up)
        """
        pass

    async def close(self) -> None:
        """Release connections. Default implementation does nothing."""
        return None

    @abstractmethod
    async def search_by_identifier(self, resource_cls: type[R], identifier: str) -> Optional[R]:
        """Find a resource by business identifier.

        Parameters:
            resource_cls: Resource model class (Patient, Organization, ...)
            identifier: Business identifier value

        Returns:
            The first matching resource, or None if nothing matches
        """
        pass

    @abstractmethod
    async def read(self, resource_cls: type[R], resource_id: str) -> Optional[R]:
        """Fetch a resource by its store-assigned id, or None if absent."""
        pass

    @abstractmethod
    async def create(self, resource: R) -> R:
        """Create a resource and return it with its assigned id."""
        pass

    @abstractmethod
    async def update(self, resource_id: str, resource: R) -> R:
        """Replace the resource stored under ``resource_id``."""
        pass

    @abstractmethod
    async def list_resources(self, resource_cls: type[R], page_size: int = 10) -> list[R]:
        """Return the first page of resources of a type."""
        pass

    @abstractmethod
    async def search(self, resource_cls: type[R], params: dict[str, str]) -> list[R]:
        """Search resources with FHIR search parameters."""
        pass

    @abstractmethod
    async def delete(self, resource_cls: type[R], resource_id: str) -> bool:
        """Delete a resource; returns False when it did not exist."""
        pass
