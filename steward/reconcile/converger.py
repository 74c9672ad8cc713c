"""Converge a tenant's stored repositories to a complete remote listing.

The converger is a fold over the remote records followed by a fold over the
unmatched remainder of the identity index:

1. every remote record is upserted (created or overwritten) and mirrored;
2. every persisted record whose key was not seen is deleted and unmirrored.

The working copy of the index is owned by a single :meth:`Converger.converge`
call. Keys are removed from it as remote records are processed, whether or
not their upsert succeeded, so a failed upsert never turns into a delete.
"""

from __future__ import annotations

import typing as typ

from steward.mirror.errors import MirrorSyncError
from steward.mirror.sink import MirrorRecord
from steward.store.errors import StoreOperationError
from steward.store.repository import UpsertOutcome

from .errors import (
    IntegrityViolation,
    ResourceOperationFailed,
    TenantMismatchError,
)
from .identity import find_duplicate_keys
from .models import MatchKey, RecordIdentity, identity_of
from .observability import ReconcileEventLogger, categorize_error
from .reports import (
    ConvergeReport,
    Operation,
    RecordFailure,
    RecordOutcome,
    RecordStatus,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from steward.mirror.sink import MirrorSink
    from steward.store.repository import RepositoryStore

    from .models import PersistedRecord, RemoteRecord, TenantInfo


def _failure(
    identity: RecordIdentity, operation: Operation, error: Exception
) -> RecordFailure:
    wrapped = ResourceOperationFailed(identity, operation, str(error))
    wrapped.__cause__ = error
    return RecordFailure(
        identity=identity,
        operation=operation,
        reason=wrapped.reason,
        category=categorize_error(wrapped),
    )


def validate_remote_records(
    tenant: TenantInfo,
    records: cabc.Sequence[RemoteRecord],
    *,
    match_on: MatchKey,
    persisted_index: typ.Mapping[str, PersistedRecord] | None = None,
) -> None:
    """Reject inputs that would make the diff ambiguous or cross tenants.

    Raises
    ------
    TenantMismatchError
        If a remote or persisted record belongs to another tenant.
    IntegrityViolation
        If two remote records share a match key.

    """
    for record in records:
        if record.tenant_id != tenant.id:
            raise TenantMismatchError(tenant.id, record.tenant_id, record.natural_key)
    for key, stored in (persisted_index or {}).items():
        if stored.tenant_id != tenant.id:
            raise TenantMismatchError(tenant.id, stored.tenant_id, key)
    duplicates = find_duplicate_keys(records, match_on=match_on)
    if duplicates:
        raise IntegrityViolation(tenant.key, duplicates)


class Converger:
    """Apply the upsert/delete diff for one tenant and report per record."""

    def __init__(
        self,
        store: RepositoryStore,
        mirror: MirrorSink,
        *,
        match_on: MatchKey = MatchKey.NATURAL_KEY,
        event_logger: ReconcileEventLogger | None = None,
    ) -> None:
        """Bind the store, mirror and match key used by every run."""
        self._store = store
        self._mirror = mirror
        self._match_on = match_on
        self._events = event_logger or ReconcileEventLogger()

    async def converge(
        self,
        tenant: TenantInfo,
        remote_records: cabc.Sequence[RemoteRecord],
        persisted_index: typ.Mapping[str, PersistedRecord],
    ) -> ConvergeReport:
        """Make the tenant's stored records equal the remote listing.

        Parameters
        ----------
        tenant
            Tenant being converged; every record must belong to it.
        remote_records
            The complete, fully drained remote listing.
        persisted_index
            Identity index of the tenant's stored records. It is copied and
            never mutated.

        Returns
        -------
        ConvergeReport
            Counters and per-record failures. Record-level failures never
            raise.

        Raises
        ------
        TenantMismatchError, IntegrityViolation
            Before any mutation, when the listing is unusable.

        """
        validate_remote_records(
            tenant,
            remote_records,
            match_on=self._match_on,
            persisted_index=persisted_index,
        )

        report = ConvergeReport(tenant_key=tenant.key)
        working = dict(persisted_index)

        for record in remote_records:
            identity = identity_of(record, self._match_on)
            working.pop(identity.key, None)
            outcome = await self._upsert(tenant, record, identity, report)
            report.record(outcome)

        for key in working:
            identity = RecordIdentity(
                tenant_id=tenant.id, key=key, match_on=self._match_on
            )
            outcome = await self._delete(tenant, identity, report)
            report.record(outcome)

        return report

    async def _upsert(
        self,
        tenant: TenantInfo,
        record: RemoteRecord,
        identity: RecordIdentity,
        report: ConvergeReport,
    ) -> RecordOutcome:
        try:
            result = await self._store.upsert(record, match_on=self._match_on)
        except StoreOperationError as exc:
            failure = _failure(identity, Operation.UPSERT, exc)
            self._events.log_record_failed(tenant.key, failure)
            return RecordOutcome(
                identity, Operation.UPSERT, RecordStatus.FAILED, failure
            )

        try:
            await self._mirror.upsert(MirrorRecord.from_remote(tenant, record, identity))
        except MirrorSyncError as exc:
            self._mirror_failed(tenant, identity, Operation.UPSERT, exc, report)

        status = (
            RecordStatus.CREATED
            if result is UpsertOutcome.CREATED
            else RecordStatus.UPDATED
        )
        return RecordOutcome(identity, Operation.UPSERT, status)

    async def _delete(
        self,
        tenant: TenantInfo,
        identity: RecordIdentity,
        report: ConvergeReport,
    ) -> RecordOutcome:
        try:
            await self._store.delete(identity)
        except StoreOperationError as exc:
            failure = _failure(identity, Operation.DELETE, exc)
            self._events.log_record_failed(tenant.key, failure)
            return RecordOutcome(
                identity, Operation.DELETE, RecordStatus.FAILED, failure
            )

        try:
            await self._mirror.delete(tenant.key, identity)
        except MirrorSyncError as exc:
            self._mirror_failed(tenant, identity, Operation.DELETE, exc, report)

        return RecordOutcome(identity, Operation.DELETE, RecordStatus.DELETED)

    def _mirror_failed(
        self,
        tenant: TenantInfo,
        identity: RecordIdentity,
        operation: Operation,
        error: MirrorSyncError,
        report: ConvergeReport,
    ) -> None:
        failure = RecordFailure(
            identity=identity,
            operation=operation,
            reason=str(error),
            category=categorize_error(error),
        )
        report.mirror_failures.append(failure)
        self._events.log_mirror_failed(tenant.key, failure)


__all__ = ["Converger", "validate_remote_records"]
