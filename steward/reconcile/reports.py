"""Outcome and report types produced by converge and enforce runs.

Reports are the only externally observable artefact of a run besides store
mutations. A run that returns a report *completed*; whether every resource
converged cleanly is a separate question answered by ``is_clean``.
"""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

if typ.TYPE_CHECKING:
    from .models import PersistedRecord, RecordIdentity


class Operation(enum.StrEnum):
    """Store operations attempted by the converger."""

    UPSERT = "upsert"
    DELETE = "delete"


class RecordStatus(enum.StrEnum):
    """Outcome of a single converger step."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    FAILED = "failed"


@dataclasses.dataclass(frozen=True, slots=True)
class RecordFailure:
    """A record-level failure captured in a report."""

    identity: RecordIdentity
    operation: Operation
    reason: str
    category: str

    def describe(self) -> str:
        """Return a one-line description for operator output."""
        return f"{self.operation} {self.identity}: {self.reason} ({self.category})"


@dataclasses.dataclass(frozen=True, slots=True)
class RecordOutcome:
    """Result of applying one upsert or delete to the store."""

    identity: RecordIdentity
    operation: Operation
    status: RecordStatus
    failure: RecordFailure | None = None


@dataclasses.dataclass(slots=True)
class ConvergeReport:
    """Aggregated outcome of converging one tenant.

    Mirror failures are tracked separately and never alter the authoritative
    counters.
    """

    tenant_key: str
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failures: list[RecordFailure] = dataclasses.field(default_factory=list)
    mirror_failures: list[RecordFailure] = dataclasses.field(default_factory=list)

    @property
    def failed(self) -> int:
        """Return the number of failed store operations."""
        return len(self.failures)

    @property
    def is_clean(self) -> bool:
        """Return True when every store operation succeeded."""
        return not self.failures

    def record(self, outcome: RecordOutcome) -> None:
        """Fold a single record outcome into the counters."""
        match outcome.status:
            case RecordStatus.CREATED:
                self.created += 1
            case RecordStatus.UPDATED:
                self.updated += 1
            case RecordStatus.DELETED:
                self.deleted += 1
            case RecordStatus.FAILED:
                if outcome.failure is not None:
                    self.failures.append(outcome.failure)

    def summary(self) -> str:
        """Return a compact human-readable summary."""
        return (
            f"{self.tenant_key}: created={self.created} updated={self.updated} "
            f"deleted={self.deleted} failed={self.failed} "
            f"mirror_failed={len(self.mirror_failures)}"
        )


class ActionKind(enum.StrEnum):
    """Policy actions taken against a single repository."""

    SKIP = "skip"
    READ_PROTECTION = "read_protection"
    APPLY_PROTECTION = "apply_protection"
    LIST_GRANTS = "list_grants"
    GRANT_ACCESS = "grant_access"


class ActionStatus(enum.StrEnum):
    """Result of a policy action."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    SUPPRESSED = "suppressed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclasses.dataclass(frozen=True, slots=True)
class ActionOutcome:
    """Outcome of one action for one repository (and team, for grants)."""

    resource: str
    action: ActionKind
    status: ActionStatus
    group: str | None = None
    detail: str | None = None
    category: str | None = None


class ProtectionStatus(enum.StrEnum):
    """Observed protection state of a default branch."""

    PROTECTED = "protected"
    UNPROTECTED = "unprotected"
    EMPTY = "empty"
    UNKNOWN = "unknown"


@dataclasses.dataclass(frozen=True, slots=True)
class PolicyTarget:
    """A persisted repository plus its live configuration snapshot.

    ``grants`` maps team slug to permission. It is ``None`` when the grant
    listing failed for a reason other than a missing grant state, in which
    case grants are not evaluated for the repository.
    """

    record: PersistedRecord
    protection: ProtectionStatus
    grants: typ.Mapping[str, str] | None


@dataclasses.dataclass(slots=True)
class EnforceReport:
    """Per-resource, per-action outcome of an enforcement run."""

    tenant_key: str
    outcomes: list[ActionOutcome] = dataclasses.field(default_factory=list)
    unresolved_groups: tuple[str, ...] = ()

    def add(self, outcome: ActionOutcome) -> None:
        """Append an action outcome."""
        self.outcomes.append(outcome)

    @property
    def mutations(self) -> int:
        """Return the number of corrective actions that were applied."""
        return sum(1 for o in self.outcomes if o.status is ActionStatus.APPLIED)

    @property
    def failures(self) -> list[ActionOutcome]:
        """Return every failed action."""
        return [o for o in self.outcomes if o.status is ActionStatus.FAILED]

    @property
    def is_clean(self) -> bool:
        """Return True when no action failed and every team resolved."""
        return not self.failures and not self.unresolved_groups

    def for_resource(self, resource: str) -> list[ActionOutcome]:
        """Return the outcomes recorded for ``resource`` in order."""
        return [o for o in self.outcomes if o.resource == resource]

    def summary(self) -> str:
        """Return a compact human-readable summary."""
        resources = {o.resource for o in self.outcomes}
        return (
            f"{self.tenant_key}: resources={len(resources)} "
            f"mutations={self.mutations} failures={len(self.failures)} "
            f"unresolved_groups={len(self.unresolved_groups)}"
        )
