"""Errors raised by the reconciliation engine.

Phase-level errors (:class:`RemoteUnavailable`, :class:`IntegrityViolation`,
:class:`TenantMismatchError`) abort a run before any mutation and propagate
to the caller. :class:`ResourceOperationFailed` describes a single record or
policy action that failed; it is recorded in run reports and never escapes a
run.
"""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from .models import RecordIdentity


class ReconcileError(Exception):
    """Base class for reconciliation errors."""


class RemoteUnavailable(ReconcileError):
    """Raised when the remote collection could not be listed completely."""

    def __init__(self, tenant_key: str, reason: str) -> None:
        """Initialise with the tenant key and failure reason."""
        self.tenant_key = tenant_key
        self.reason = reason
        super().__init__(f"Remote listing failed for tenant {tenant_key}: {reason}")


class IntegrityViolation(ReconcileError):
    """Raised when two records share a match key."""

    def __init__(self, tenant_key: str, duplicates: typ.Iterable[str]) -> None:
        """Initialise with the tenant key and the duplicated match keys."""
        self.tenant_key = tenant_key
        self.duplicates = tuple(sorted(set(duplicates)))
        keys = ", ".join(self.duplicates)
        super().__init__(f"Duplicate match keys for tenant {tenant_key}: {keys}")


class TenantMismatchError(ReconcileError):
    """Raised when a record from another tenant reaches a tenant's run."""

    def __init__(self, tenant_id: str, record_tenant_id: str, key: str) -> None:
        """Initialise with the expected tenant and the offending record."""
        self.tenant_id = tenant_id
        self.record_tenant_id = record_tenant_id
        self.key = key
        super().__init__(
            f"Record {key} belongs to tenant {record_tenant_id}, "
            f"not {tenant_id}"
        )


class ResourceOperationFailed(ReconcileError):
    """A single record operation failed; the run continues."""

    def __init__(self, identity: RecordIdentity, operation: str, reason: str) -> None:
        """Initialise with the record identity, operation name and reason."""
        self.identity = identity
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed for {identity}: {reason}")


class ExpectedEmptyState(ReconcileError):
    """The repository has no history yet, so it has no default branch."""

    def __init__(self, resource: str) -> None:
        """Initialise with the repository name."""
        self.resource = resource
        super().__init__(f"Repository {resource} has no history yet")
