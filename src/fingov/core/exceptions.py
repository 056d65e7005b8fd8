"""Core exceptions for Fingov governance operations."""

from fingov.utils.exceptions import FingovError


class ValidationError(FingovError):
    """Raised when caller input is missing or invalid.

    Attributes:
        field: Name of the offending input field, if known
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def __str__(self) -> str:
        if self.field:
            return f"ValidationError({self.field}): {self.args[0]}"
        return f"ValidationError: {self.args[0]}"


class NotFoundError(FingovError):
    """Raised when an id does not resolve to a row owned by the caller.

    Attributes:
        table: Table that was searched
        record_id: Identifier that could not be resolved
    """

    def __init__(self, table: str, record_id: str):
        super().__init__(f"Record not found in {table}: {record_id}")
        self.table = table
        self.record_id = record_id

    def __str__(self) -> str:
        return f"NotFoundError: {self.args[0]}"


class ConflictError(FingovError):
    """Raised when a state transition is not allowed from the current state.

    Attributes:
        entity_type: Kind of entity whose state was guarded
        current_status: Status the entity is in
        requested_status: Status the caller asked for, if any
    """

    def __init__(
        self,
        message: str,
        entity_type: str,
        current_status: str,
        requested_status: str | None = None,
    ):
        super().__init__(message)
        self.entity_type = entity_type
        self.current_status = current_status
        self.requested_status = requested_status

    def __str__(self) -> str:
        return (
            f"ConflictError({self.entity_type}): {self.args[0]} "
            f"(current={self.current_status}, requested={self.requested_status})"
        )


class UnsupportedFormatError(FingovError):
    """Raised when an export format has no serializer.

    Attributes:
        format: The requested export format
    """

    def __init__(self, message: str, format: str):
        super().__init__(message)
        self.format = format

    def __str__(self) -> str:
        return f"UnsupportedFormatError({self.format}): {self.args[0]}"


class TransientStorageError(FingovError):
    """Raised when a single row or blob operation fails inside a batch.

    Batch loops catch this and record it instead of aborting.

    Attributes:
        table: Table (or "storage") the operation targeted
        record_id: Row id or storage id
    """

    def __init__(self, message: str, table: str, record_id: str):
        super().__init__(message)
        self.table = table
        self.record_id = record_id

    def __str__(self) -> str:
        return f"TransientStorageError({self.table}/{self.record_id}): {self.args[0]}"


class AuthenticationError(FingovError):
    """Raised when no caller identity can be resolved."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)

    def __str__(self) -> str:
        return f"AuthenticationError: {self.args[0]}"
