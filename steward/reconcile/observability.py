"""Structured observability events for reconciliation runs.

Events are emitted through femtologging as ``[event] key=value`` messages so
log aggregators can parse run outcomes. Errors are classified with
:func:`categorize_error` so alerts can be routed by failure kind.

Usage
-----
>>> event_logger = ReconcileEventLogger()
>>> context = RunContext(tenant_key="acme", phase="sync", started_at=utcnow())
>>> event_logger.log_run_started(context)

"""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from steward.common.time import utcnow
from steward.github.errors import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubResponseShapeError,
)
from steward.logging import SupportsLog, get_logger, log_event
from steward.mirror.errors import AirtableConfigError, MirrorSyncError
from steward.store.errors import StoreOperationError, TenantNotFoundError

from .errors import (
    IntegrityViolation,
    RemoteUnavailable,
    ResourceOperationFailed,
    TenantMismatchError,
)
from .reports import ActionStatus

if typ.TYPE_CHECKING:
    import datetime as dt

    from .reports import ActionOutcome, ConvergeReport, EnforceReport, RecordFailure

_HTTP_SERVER_ERROR_THRESHOLD = 500


class ReconcileEventType(enum.StrEnum):
    """Structured log event types for reconciliation runs."""

    RUN_STARTED = "reconcile.run.started"
    RUN_COMPLETED = "reconcile.run.completed"
    RUN_FAILED = "reconcile.run.failed"
    RUN_CANCELLED = "reconcile.run.cancelled"
    RECORD_FAILED = "reconcile.record.failed"
    MIRROR_FAILED = "reconcile.mirror.failed"
    ACTION_APPLIED = "enforce.action.applied"
    ACTION_FAILED = "enforce.action.failed"
    ACTION_SUPPRESSED = "enforce.action.suppressed"
    GROUPS_UNRESOLVED = "enforce.groups.unresolved"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts and reports."""

    TRANSIENT = "transient"
    CLIENT_ERROR = "client_error"
    SCHEMA_DRIFT = "schema_drift"
    CONFIGURATION = "configuration"
    DATABASE_CONNECTIVITY = "database_connectivity"
    DATA_INTEGRITY = "data_integrity"
    DATABASE_ERROR = "database_error"
    MIRROR = "mirror"
    UNKNOWN = "unknown"


@dataclasses.dataclass(frozen=True, slots=True)
class RunContext:
    """Shared context for a single tenant phase."""

    tenant_key: str
    phase: str
    started_at: dt.datetime

    def elapsed(self) -> dt.timedelta:
        """Return the time elapsed since the phase started."""
        return utcnow() - self.started_at


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (GitHubResponseShapeError, ErrorCategory.SCHEMA_DRIFT),
    (GitHubConfigError, ErrorCategory.CONFIGURATION),
    (AirtableConfigError, ErrorCategory.CONFIGURATION),
    (TenantNotFoundError, ErrorCategory.CONFIGURATION),
    (MirrorSyncError, ErrorCategory.MIRROR),
    (IntegrityViolation, ErrorCategory.DATA_INTEGRITY),
    (TenantMismatchError, ErrorCategory.DATA_INTEGRITY),
    (OperationalError, ErrorCategory.DATABASE_CONNECTIVITY),
    (InterfaceError, ErrorCategory.DATABASE_CONNECTIVITY),
    (IntegrityError, ErrorCategory.DATA_INTEGRITY),
    (SQLAlchemyError, ErrorCategory.DATABASE_ERROR),
)

# Wrappers take the category of the error they wrap.
_WRAPPER_DEFAULTS: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (StoreOperationError, ErrorCategory.DATABASE_ERROR),
    (RemoteUnavailable, ErrorCategory.TRANSIENT),
    (ResourceOperationFailed, ErrorCategory.UNKNOWN),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting and report entries.

    Returns
    -------
    ErrorCategory
        The failure kind. Wrapping errors defer to their ``__cause__``.

    """
    if isinstance(exc, GitHubAPIError):
        if (
            exc.status_code is None
            or exc.status_code >= _HTTP_SERVER_ERROR_THRESHOLD
            or exc.status_code == 429  # noqa: PLR2004
        ):
            return ErrorCategory.TRANSIENT
        return ErrorCategory.CLIENT_ERROR

    for wrapper_type, default in _WRAPPER_DEFAULTS:
        if isinstance(exc, wrapper_type):
            cause = exc.__cause__
            return categorize_error(cause) if cause is not None else default

    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category

    return ErrorCategory.UNKNOWN


class ReconcileEventLogger:
    """Emit structured reconciliation events via femtologging.

    Successful runs and applied actions log at INFO, record and mirror
    failures at WARNING, and phase failures at ERROR. Suppressed empty
    repository states log at DEBUG only.
    """

    def __init__(self, logger: SupportsLog | None = None) -> None:
        """Use ``logger`` or the module's femtologging logger."""
        self._logger = logger if logger is not None else get_logger(__name__)

    def log_run_started(self, context: RunContext) -> None:
        """Log a phase start."""
        log_event(
            self._logger,
            "INFO",
            ReconcileEventType.RUN_STARTED,
            tenant=context.tenant_key,
            phase=context.phase,
            started_at=context.started_at.isoformat(),
        )

    def log_converge_completed(
        self, context: RunContext, report: ConvergeReport
    ) -> None:
        """Log converge completion with its counters."""
        log_event(
            self._logger,
            "INFO",
            ReconcileEventType.RUN_COMPLETED,
            tenant=context.tenant_key,
            phase=context.phase,
            duration_seconds=f"{context.elapsed().total_seconds():.3f}",
            created=report.created,
            updated=report.updated,
            deleted=report.deleted,
            failed=report.failed,
            mirror_failed=len(report.mirror_failures),
        )

    def log_enforce_completed(self, context: RunContext, report: EnforceReport) -> None:
        """Log enforcement completion with its counters."""
        log_event(
            self._logger,
            "INFO",
            ReconcileEventType.RUN_COMPLETED,
            tenant=context.tenant_key,
            phase=context.phase,
            duration_seconds=f"{context.elapsed().total_seconds():.3f}",
            mutations=report.mutations,
            failures=len(report.failures),
            unresolved_groups=len(report.unresolved_groups),
        )

    def log_run_failed(self, context: RunContext, error: BaseException) -> None:
        """Log a phase-level failure with its category."""
        log_event(
            self._logger,
            "ERROR",
            ReconcileEventType.RUN_FAILED,
            exc_info=error,
            tenant=context.tenant_key,
            phase=context.phase,
            duration_seconds=f"{context.elapsed().total_seconds():.3f}",
            error_type=type(error).__name__,
            error_category=categorize_error(error),
            error_message=str(error),
        )

    def log_run_cancelled(self, context: RunContext) -> None:
        """Log a cancelled phase."""
        log_event(
            self._logger,
            "WARNING",
            ReconcileEventType.RUN_CANCELLED,
            tenant=context.tenant_key,
            phase=context.phase,
            duration_seconds=f"{context.elapsed().total_seconds():.3f}",
        )

    def log_record_failed(self, tenant_key: str, failure: RecordFailure) -> None:
        """Log a store operation that failed for one record."""
        log_event(
            self._logger,
            "WARNING",
            ReconcileEventType.RECORD_FAILED,
            tenant=tenant_key,
            key=failure.identity.key,
            operation=failure.operation,
            error_category=failure.category,
            error_message=failure.reason,
        )

    def log_mirror_failed(self, tenant_key: str, failure: RecordFailure) -> None:
        """Log a mirror write that failed after a successful store write."""
        log_event(
            self._logger,
            "WARNING",
            ReconcileEventType.MIRROR_FAILED,
            tenant=tenant_key,
            key=failure.identity.key,
            operation=failure.operation,
            error_message=failure.reason,
        )

    def log_action(self, tenant_key: str, outcome: ActionOutcome) -> None:
        """Log an applied, failed or suppressed policy action.

        Unchanged and skipped actions are not logged.
        """
        fields: dict[str, object] = {
            "tenant": tenant_key,
            "resource": outcome.resource,
            "action": outcome.action,
        }
        if outcome.group is not None:
            fields["group"] = outcome.group

        match outcome.status:
            case ActionStatus.APPLIED:
                log_event(
                    self._logger, "INFO", ReconcileEventType.ACTION_APPLIED, **fields
                )
            case ActionStatus.FAILED:
                fields["error_category"] = outcome.category
                fields["error_message"] = outcome.detail
                log_event(
                    self._logger, "WARNING", ReconcileEventType.ACTION_FAILED, **fields
                )
            case ActionStatus.SUPPRESSED:
                log_event(
                    self._logger,
                    "DEBUG",
                    ReconcileEventType.ACTION_SUPPRESSED,
                    **fields,
                )
            case _:
                pass

    def log_groups_unresolved(
        self, tenant_key: str, org: str, groups: typ.Sequence[str]
    ) -> None:
        """Log required teams that do not exist in the organisation."""
        log_event(
            self._logger,
            "WARNING",
            ReconcileEventType.GROUPS_UNRESOLVED,
            tenant=tenant_key,
            org=org,
            groups=",".join(groups),
        )


__all__ = [
    "ErrorCategory",
    "ReconcileEventLogger",
    "ReconcileEventType",
    "RunContext",
    "categorize_error",
]
