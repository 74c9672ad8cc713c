"""Dramatiq actors that trigger reconciliation runs.

Usage
-----
Queue a repository sync for one tenant:

>>> sync_repositories_job.send(
...     database_url="postgresql+asyncpg://...",
...     tenant_key="acme",
... )

Queue policy enforcement for every tenant in a policy file:

>>> enforce_policy_job.send(
...     database_url="postgresql+asyncpg://...",
...     policy_path="/etc/steward/policy.yaml",
... )

"""

from __future__ import annotations

import asyncio
import threading
import typing as typ

import dramatiq
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ._broker import ensure_broker_configured
from .factory import open_reconciliation_service
from .policy import load_policy

if typ.TYPE_CHECKING:
    from .policy import PolicyDocument
    from .reports import ConvergeReport, EnforceReport
    from .service import ReconciliationService

type SessionFactory = async_sessionmaker[AsyncSession]

_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, SessionFactory] = {}
_CACHE_LOCK = threading.Lock()


def _get_or_create_session_factory(database_url: str) -> SessionFactory:
    """Return the cached session factory for ``database_url``.

    Thread-safe: Dramatiq workers invoke actors from several threads.
    """
    with _CACHE_LOCK:
        if database_url not in _SESSION_FACTORY_CACHE:
            engine = _ENGINE_CACHE.get(database_url)
            if engine is None:
                engine = create_async_engine(database_url)
                _ENGINE_CACHE[database_url] = engine
            _SESSION_FACTORY_CACHE[database_url] = async_sessionmaker(
                engine, expire_on_commit=False
            )
        return _SESSION_FACTORY_CACHE[database_url]


def converge_summary(report: ConvergeReport) -> dict[str, typ.Any]:
    """Return a JSON-serialisable summary of a converge report."""
    return {
        "tenant": report.tenant_key,
        "created": report.created,
        "updated": report.updated,
        "deleted": report.deleted,
        "failed": report.failed,
        "mirror_failed": len(report.mirror_failures),
        "failures": [failure.describe() for failure in report.failures],
    }


def enforce_summary(report: EnforceReport) -> dict[str, typ.Any]:
    """Return a JSON-serialisable summary of an enforcement report."""
    return {
        "tenant": report.tenant_key,
        "mutations": report.mutations,
        "failures": [
            f"{o.resource} {o.action}"
            + (f" [{o.group}]" if o.group else "")
            + f": {o.detail}"
            for o in report.failures
        ],
        "unresolved_groups": list(report.unresolved_groups),
    }


async def _sync_async(
    service: ReconciliationService, tenant_key: str
) -> dict[str, typ.Any]:
    return converge_summary(await service.sync_repositories(tenant_key))


async def _enforce_async(
    service: ReconciliationService,
    document: PolicyDocument,
    tenant_key: str | None,
) -> list[dict[str, typ.Any]]:
    policies = [
        policy
        for policy in document.tenants
        if tenant_key is None or policy.tenant == tenant_key
    ]
    return [
        enforce_summary(await service.enforce_policy(policy)) for policy in policies
    ]


def _run_with_service[T](
    database_url: str,
    fn: typ.Callable[[ReconciliationService], typ.Awaitable[T]],
) -> T:
    """Run ``fn`` with a freshly wired service on a new event loop."""
    ensure_broker_configured()
    session_factory = _get_or_create_session_factory(database_url)

    async def run() -> T:
        async with open_reconciliation_service(session_factory) as service:
            return await fn(service)

    return asyncio.run(run())


@dramatiq.actor
def sync_repositories_job(database_url: str, tenant_key: str) -> dict[str, typ.Any]:
    """Mirror a tenant's GitHub repositories into the store.

    Parameters
    ----------
    database_url
        SQLAlchemy URL of the authoritative store.
    tenant_key
        Key of the tenant to sync.

    Returns
    -------
    dict[str, Any]
        Converge counters and failure descriptions.

    Raises
    ------
    RemoteUnavailable
        If the listing could not be completed.

    """
    return _run_with_service(
        database_url, lambda service: _sync_async(service, tenant_key)
    )


@dramatiq.actor
def enforce_policy_job(
    database_url: str, policy_path: str, tenant_key: str | None = None
) -> list[dict[str, typ.Any]]:
    """Enforce a policy file, optionally restricted to one tenant.

    Raises
    ------
    PolicyValidationError
        If the policy file is invalid.

    """
    ensure_broker_configured()
    document = load_policy(policy_path)
    return _run_with_service(
        database_url,
        lambda service: _enforce_async(service, document, tenant_key),
    )


__all__ = [
    "converge_summary",
    "enforce_policy_job",
    "enforce_summary",
    "sync_repositories_job",
]
