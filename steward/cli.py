"""Command-line entry point for repository reconciliation.

Exit codes: 0 when every run completed cleanly, 2 when runs completed but
reported per-record or per-action failures, and 1 on a hard failure such as
an incomplete remote listing or an invalid policy file.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import typing as typ

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from steward.github.errors import GitHubConfigError
from steward.logging import configure_logging, get_logger, log_exception, log_warning
from steward.mirror.errors import AirtableConfigError
from steward.reconcile.errors import ReconcileError
from steward.reconcile.factory import open_reconciliation_service
from steward.reconcile.policy import PolicyValidationError, load_policy
from steward.store.errors import StoreError
from steward.store.repository import SqlRepositoryStore
from steward.store.storage import init_store

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from steward.reconcile.reports import ConvergeReport, EnforceReport
    from steward.reconcile.service import TenantRunResult

    type SessionFactory = async_sessionmaker[AsyncSession]

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_HARD_FAILURE = 1
EXIT_COMPLETED_WITH_FAILURES = 2

_HARD_FAILURES: tuple[type[Exception], ...] = (
    ReconcileError,
    StoreError,
    SQLAlchemyError,
    GitHubConfigError,
    AirtableConfigError,
    PolicyValidationError,
    ValueError,
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="steward", description=__doc__)
    parser.add_argument(
        "--database-url",
        default=os.environ.get("STEWARD_DATABASE_URL"),
        help="SQLAlchemy URL of the store (default: $STEWARD_DATABASE_URL)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("STEWARD_LOG_LEVEL", "INFO"),
        help="Log level (default: $STEWARD_LOG_LEVEL or INFO)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the store tables if absent")

    tenant = commands.add_parser("tenant", help="Register or update a tenant")
    tenant.add_argument("key", help="Tenant key")
    tenant.add_argument("--org", required=True, help="GitHub organisation")
    tenant.add_argument("--name", default=None, help="Display name")

    sync = commands.add_parser("sync", help="Mirror a tenant's repositories")
    sync.add_argument("tenant", help="Tenant key")

    enforce = commands.add_parser("enforce", help="Enforce a policy file")
    enforce.add_argument("policy", help="YAML policy file")
    enforce.add_argument("--tenant", default=None, help="Only enforce this tenant")

    run = commands.add_parser(
        "run", help="Sync then enforce every tenant listed in a policy file"
    )
    run.add_argument("policy", help="YAML policy file")
    return parser


def print_converge_report(report: ConvergeReport) -> None:
    """Print a converge report summary and its failures."""
    print(f"sync {report.summary()}")
    for failure in report.failures:
        print(f"  - failed {failure.describe()}")
    for failure in report.mirror_failures:
        print(f"  - mirror {failure.describe()}")


def print_enforce_report(report: EnforceReport) -> None:
    """Print an enforcement report summary and its failures."""
    print(f"enforce {report.summary()}")
    for outcome in report.failures:
        group = f" [{outcome.group}]" if outcome.group else ""
        print(f"  - {outcome.resource} {outcome.action}{group}: {outcome.detail}")
    if report.unresolved_groups:
        print(f"  - unresolved groups: {', '.join(report.unresolved_groups)}")


def _exit_code(*, clean: bool) -> int:
    return EXIT_OK if clean else EXIT_COMPLETED_WITH_FAILURES


async def _sync(session_factory: SessionFactory, tenant_key: str) -> int:
    async with open_reconciliation_service(session_factory) as service:
        report = await service.sync_repositories(tenant_key)
    print_converge_report(report)
    return _exit_code(clean=report.is_clean)


async def _enforce(
    session_factory: SessionFactory, policy_path: str, tenant_key: str | None
) -> int:
    document = load_policy(policy_path)
    policies = [
        p for p in document.tenants if tenant_key is None or p.tenant == tenant_key
    ]
    if tenant_key is not None and not policies:
        print(f"policy {policy_path} has no entry for tenant {tenant_key}")
        return EXIT_HARD_FAILURE

    clean = True
    async with open_reconciliation_service(session_factory) as service:
        for policy in policies:
            report = await service.enforce_policy(policy)
            print_enforce_report(report)
            clean = clean and report.is_clean
    return _exit_code(clean=clean)


def _print_run_result(result: TenantRunResult) -> None:
    if result.report is None:
        print(f"{result.tenant_key}: failed: {result.error}")
        return
    print_converge_report(result.report.sync)
    if result.report.enforce is not None:
        print_enforce_report(result.report.enforce)


async def _run(session_factory: SessionFactory, policy_path: str) -> int:
    document = load_policy(policy_path)
    policies = {policy.tenant: policy for policy in document.tenants}
    async with open_reconciliation_service(session_factory) as service:
        results = await service.run_tenants(list(policies), policies)

    for result in results:
        _print_run_result(result)
    if any(not result.completed for result in results):
        return EXIT_HARD_FAILURE
    return _exit_code(
        clean=all(r.report is not None and r.report.is_clean for r in results)
    )


async def _tenant(
    session_factory: SessionFactory, key: str, org: str, name: str | None
) -> int:
    store = SqlRepositoryStore(session_factory)
    tenant = await store.ensure_tenant(key, name=name or key, github_org=org)
    print(f"tenant {tenant.key} -> {tenant.github_org} ({tenant.id})")
    return EXIT_OK


async def _dispatch(args: argparse.Namespace) -> int:
    engine = create_async_engine(args.database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        match args.command:
            case "init-db":
                await init_store(engine)
                print("store tables are ready")
                return EXIT_OK
            case "tenant":
                return await _tenant(session_factory, args.key, args.org, args.name)
            case "sync":
                return await _sync(session_factory, args.tenant)
            case "enforce":
                return await _enforce(session_factory, args.policy, args.tenant)
            case "run":
                return await _run(session_factory, args.policy)
            case _:  # pragma: no cover - argparse rejects unknown commands
                return EXIT_HARD_FAILURE
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    """Run the ``steward`` command.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        Process exit code.

    """
    args = _build_parser().parse_args(argv)

    normalized, invalid = configure_logging(args.log_level)
    if invalid:
        log_warning(
            logger,
            "Invalid log level %r, falling back to %s",
            args.log_level,
            normalized,
        )

    if not args.database_url:
        print("a database URL is required (--database-url or STEWARD_DATABASE_URL)")
        return EXIT_HARD_FAILURE

    try:
        return asyncio.run(_dispatch(args))
    except _HARD_FAILURES as exc:
        log_exception(logger, f"steward {args.command} failed", exc)
        print(f"steward {args.command} failed: {exc}")
        return EXIT_HARD_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
