"""Errors raised by the authoritative repository store."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for store errors."""


class TenantNotFoundError(StoreError):
    """Raised when a tenant key has no row in the store."""

    def __init__(self, tenant_key: str) -> None:
        """Initialise with the missing tenant key."""
        self.tenant_key = tenant_key
        super().__init__(f"Tenant not found: {tenant_key}")


class StoreOperationError(StoreError):
    """Raised when a single store operation fails.

    The underlying SQLAlchemy error is chained as ``__cause__``.
    """

    def __init__(self, operation: str, key: str, reason: str) -> None:
        """Initialise with the operation, record key and failure reason."""
        self.operation = operation
        self.key = key
        self.reason = reason
        super().__init__(f"Store {operation} failed for {key}: {reason}")


class NaiveDatetimeError(ValueError):
    """Raised when a timestamp column is bound to a naive datetime."""

    def __init__(self, column: str = "timestamp") -> None:
        """Name the column that received the naive value."""
        self.column = column
        super().__init__(f"{column} must be timezone aware")
