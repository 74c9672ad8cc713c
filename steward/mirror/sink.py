"""MirrorSink protocol for the secondary, read-optimised copy of the store.

The authoritative store is the source of truth. Sinks receive a write only
after the corresponding store write succeeded, and their failures are
reported without rolling anything back.

The protocol is ``runtime_checkable`` so adapters can be verified with
``isinstance``:

>>> isinstance(DisabledMirrorSink(), MirrorSink)
True

"""

from __future__ import annotations

import dataclasses
import typing as typ

if typ.TYPE_CHECKING:
    from steward.reconcile.models import (
        RecordIdentity,
        RemoteRecord,
        RepositoryAttributes,
        TenantInfo,
    )


@dataclasses.dataclass(frozen=True, slots=True)
class MirrorRecord:
    """Denormalised copy of a stored repository destined for the mirror."""

    tenant_key: str
    identity: RecordIdentity
    remote_id: str
    name: str
    attributes: RepositoryAttributes

    @classmethod
    def from_remote(
        cls, tenant: TenantInfo, record: RemoteRecord, identity: RecordIdentity
    ) -> MirrorRecord:
        """Build the mirror copy of a record that was just stored."""
        return cls(
            tenant_key=tenant.key,
            identity=identity,
            remote_id=record.remote_id,
            name=record.natural_key,
            attributes=record.attributes,
        )


@typ.runtime_checkable
class MirrorSink(typ.Protocol):
    """Secondary store kept eventually consistent with the authoritative one.

    Both operations raise :class:`~steward.mirror.errors.MirrorSyncError` on
    failure.
    """

    async def upsert(self, record: MirrorRecord) -> None:
        """Create or overwrite the mirror row for ``record``."""
        ...

    async def delete(self, tenant_key: str, identity: RecordIdentity) -> None:
        """Remove the mirror row for ``identity``; absent rows are a no-op."""
        ...


class DisabledMirrorSink:
    """Mirror sink used when no secondary store is configured."""

    async def upsert(self, record: MirrorRecord) -> None:
        """Discard the write."""

    async def delete(self, tenant_key: str, identity: RecordIdentity) -> None:
        """Discard the delete."""


__all__ = ["DisabledMirrorSink", "MirrorRecord", "MirrorSink"]
