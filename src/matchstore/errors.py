"""Structured error types for matchstore."""

from __future__ import annotations


class MatchStoreError(Exception):
    """Base error for all matchstore errors."""


class NotOpenError(MatchStoreError):
    """Raised when an operation needs an open store."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Cannot {operation}: database is not open")


class FieldExistsError(MatchStoreError):
    """Raised when adding a field whose name is already taken."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Field '{name}' already exists")


class FieldNotFoundError(MatchStoreError):
    """Raised when a field operation names a field that does not exist."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Field '{name}' does not exist")


class InvalidFieldError(MatchStoreError):
    """Raised for malformed field names or unsupported SQL types."""


class InvalidDescriptorError(MatchStoreError):
    """Raised when a connection target cannot be resolved to a descriptor."""

    def __init__(self, target: str, detail: str) -> None:
        self.target = target
        self.detail = detail
        super().__init__(f"Invalid connection descriptor '{target}': {detail}")


class QueryFailedError(MatchStoreError):
    """Raised when the engine rejects a statement.

    Always carries the engine diagnostic and the statement that failed.
    """

    def __init__(self, statement: str, detail: str) -> None:
        self.statement = statement
        self.detail = detail
        super().__init__(f"{detail}\nQuery executed: {statement}")


class CapabilityMissing(UserWarning):
    """Degraded-mode notice for a driver lacking a capability.

    Logged on open, never raised.
    """

    def __init__(self, driver: str, capability: str) -> None:
        self.driver = driver
        self.capability = capability
        super().__init__(f"{driver} does not support {capability}, certain methods may fail")
