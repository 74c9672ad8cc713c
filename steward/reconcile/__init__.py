"""Reconciliation engine: listing, converging and policy enforcement.

Service wiring lives in :mod:`steward.reconcile.service` and
:mod:`steward.reconcile.factory`; this package exports the value types,
errors and policy structures they exchange.
"""

from __future__ import annotations

from .config import ReconcileConfig
from .errors import (
    ExpectedEmptyState,
    IntegrityViolation,
    ReconcileError,
    RemoteUnavailable,
    ResourceOperationFailed,
    TenantMismatchError,
)
from .identity import build_identity_index, find_duplicate_keys
from .models import (
    ListingOptions,
    MatchKey,
    PersistedRecord,
    RecordIdentity,
    RemoteRecord,
    RepositoryAttributes,
    TenantInfo,
    identity_of,
    match_key_for,
)
from .policy import (
    EnforcementPolicy,
    PolicyDocument,
    PolicyValidationError,
    load_policy,
)
from .reports import (
    ActionKind,
    ActionOutcome,
    ActionStatus,
    ConvergeReport,
    EnforceReport,
    Operation,
    PolicyTarget,
    ProtectionStatus,
    RecordFailure,
    RecordOutcome,
    RecordStatus,
)

__all__ = [
    "ActionKind",
    "ActionOutcome",
    "ActionStatus",
    "ConvergeReport",
    "EnforceReport",
    "EnforcementPolicy",
    "ExpectedEmptyState",
    "IntegrityViolation",
    "ListingOptions",
    "MatchKey",
    "Operation",
    "PersistedRecord",
    "PolicyDocument",
    "PolicyTarget",
    "PolicyValidationError",
    "ProtectionStatus",
    "ReconcileConfig",
    "ReconcileError",
    "RecordFailure",
    "RecordIdentity",
    "RecordOutcome",
    "RecordStatus",
    "RemoteRecord",
    "RemoteUnavailable",
    "RepositoryAttributes",
    "ResourceOperationFailed",
    "TenantInfo",
    "TenantMismatchError",
    "build_identity_index",
    "find_duplicate_keys",
    "identity_of",
    "load_policy",
    "match_key_for",
]
