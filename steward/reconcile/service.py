"""Reconciliation service orchestrating listing, converging and enforcement.

Each tenant runs as one sequential task: list, converge, enforce. The
converger only ever sees a fully drained listing, so a listing failure aborts
the tenant's run before the store is touched. Several tenants may run
concurrently; they share no mutable state because every store query and
index is tenant scoped.

Usage
-----
>>> service = ReconciliationService(store, lister, host, DisabledMirrorSink())
>>> report = await service.sync_repositories("acme")
>>> report.created, report.updated, report.deleted

"""

from __future__ import annotations

import asyncio
import dataclasses
import typing as typ

from steward.common.time import utcnow

from .config import ReconcileConfig
from .converger import Converger
from .enforcer import PolicyEnforcer
from .identity import build_identity_index
from .observability import ReconcileEventLogger, RunContext

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from steward.github.client import RepositoryHost
    from steward.mirror.sink import MirrorSink
    from steward.store.repository import RepositoryStore

    from .lister import RemoteLister
    from .models import ListingOptions
    from .policy import EnforcementPolicy
    from .reports import ConvergeReport, EnforceReport


@dataclasses.dataclass(frozen=True, slots=True)
class TenantRunReport:
    """Reports of every phase completed for one tenant."""

    tenant_key: str
    sync: ConvergeReport
    enforce: EnforceReport | None = None

    @property
    def is_clean(self) -> bool:
        """Return True when every completed phase converged cleanly."""
        return self.sync.is_clean and (self.enforce is None or self.enforce.is_clean)


@dataclasses.dataclass(frozen=True, slots=True)
class TenantRunResult:
    """Either a completed tenant run or the hard failure that stopped it."""

    tenant_key: str
    report: TenantRunReport | None = None
    error: Exception | None = None

    @property
    def completed(self) -> bool:
        """Return True when the run produced a report."""
        return self.report is not None


class ReconciliationService:
    """Coordinate the per-tenant reconciliation phases."""

    def __init__(  # noqa: PLR0913
        self,
        store: RepositoryStore,
        lister: RemoteLister,
        host: RepositoryHost,
        mirror: MirrorSink,
        *,
        config: ReconcileConfig | None = None,
        event_logger: ReconcileEventLogger | None = None,
    ) -> None:
        """Wire the store, remote adapters and mirror used by every run."""
        self._store = store
        self._lister = lister
        self._config = config or ReconcileConfig()
        self._events = event_logger or ReconcileEventLogger()
        self._converger = Converger(
            store, mirror, match_on=self._config.match_on, event_logger=self._events
        )
        self._enforcer = PolicyEnforcer(store, host, event_logger=self._events)

    async def _phase[T](
        self,
        tenant_key: str,
        phase: str,
        run: cabc.Callable[[RunContext], cabc.Awaitable[T]],
    ) -> T:
        context = RunContext(tenant_key=tenant_key, phase=phase, started_at=utcnow())
        self._events.log_run_started(context)
        try:
            return await run(context)
        except asyncio.CancelledError:
            self._events.log_run_cancelled(context)
            raise
        except Exception as exc:
            self._events.log_run_failed(context, exc)
            raise

    async def sync_repositories(
        self, tenant_key: str, options: ListingOptions | None = None
    ) -> ConvergeReport:
        """List, index and converge one tenant's repositories.

        Raises
        ------
        TenantNotFoundError
            If the tenant is unknown.
        RemoteUnavailable
            If the listing could not be completed; nothing was mutated.
        IntegrityViolation
            If stored or listed records share a match key; nothing was
            mutated.

        """
        opts = options or self._config.listing_options

        async def run(context: RunContext) -> ConvergeReport:
            tenant = await self._store.get_tenant(tenant_key)
            remote = await self._lister.list_records(tenant, opts)
            persisted = await self._store.find_all(tenant.id)
            index = build_identity_index(
                persisted, tenant_key=tenant.key, match_on=self._config.match_on
            )
            report = await self._converger.converge(tenant, remote, index)
            self._events.log_converge_completed(context, report)
            return report

        return await self._phase(tenant_key, "sync", run)

    async def enforce_policy(self, policy: EnforcementPolicy) -> EnforceReport:
        """Enforce ``policy`` on its tenant's stored repositories.

        Raises
        ------
        TenantNotFoundError
            If the policy names an unknown tenant.
        RemoteUnavailable
            If the organisation's teams cannot be listed.

        """

        async def run(context: RunContext) -> EnforceReport:
            tenant = await self._store.get_tenant(policy.tenant)
            report = await self._enforcer.enforce(tenant, policy)
            self._events.log_enforce_completed(context, report)
            return report

        return await self._phase(policy.tenant, "enforce", run)

    async def run_tenant(
        self, tenant_key: str, policy: EnforcementPolicy | None = None
    ) -> TenantRunReport:
        """Run the sync phase and, when a policy is given, the enforce phase.

        Phases run strictly in sequence. Cancellation between or during
        phases propagates after being logged; the next run recomputes the
        full diff from a fresh listing.
        """
        sync_report = await self.sync_repositories(tenant_key)
        enforce_report = None
        if policy is not None:
            enforce_report = await self.enforce_policy(policy)
        return TenantRunReport(
            tenant_key=tenant_key, sync=sync_report, enforce=enforce_report
        )

    async def run_tenants(
        self,
        tenant_keys: cabc.Sequence[str],
        policies: typ.Mapping[str, EnforcementPolicy] | None = None,
    ) -> list[TenantRunResult]:
        """Run several tenants concurrently under the configured bound.

        A hard failure of one tenant is captured in its result and never
        affects the others. Non-``Exception`` errors such as cancellation
        propagate.
        """
        policy_map = policies or {}
        semaphore = asyncio.Semaphore(self._config.max_concurrent_tenants)

        async def bounded(tenant_key: str) -> TenantRunReport:
            async with semaphore:
                return await self.run_tenant(tenant_key, policy_map.get(tenant_key))

        gathered = await asyncio.gather(
            *(bounded(key) for key in tenant_keys), return_exceptions=True
        )

        results: list[TenantRunResult] = []
        for tenant_key, outcome in zip(tenant_keys, gathered, strict=True):
            if isinstance(outcome, Exception):
                results.append(TenantRunResult(tenant_key=tenant_key, error=outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(TenantRunResult(tenant_key=tenant_key, report=outcome))
        return results


__all__ = ["ReconciliationService", "TenantRunReport", "TenantRunResult"]
