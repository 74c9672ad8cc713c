"""Idempotent configuration policy enforcement for stored repositories.

For each stored, non-archived, non-skipped repository the enforcer first
observes the live configuration into a :class:`PolicyTarget` and then applies
only the corrective actions the target actually needs:

- default branch protection is written only when the branch is unprotected;
- a team is granted access only when it lacks write-or-higher permission.

Every action is isolated. A failure is recorded in the report and the next
action or repository proceeds; nothing is rolled back. A compliant
repository therefore costs read calls only.
"""

from __future__ import annotations

import typing as typ

import httpx

from steward.github.classification import (
    is_expected_empty_state,
    is_missing_grant_state,
)
from steward.github.errors import GitHubAPIError, GitHubResponseShapeError
from steward.github.models import ProtectionRule, TeamRef, grants_write

from .errors import ExpectedEmptyState, RemoteUnavailable
from .observability import ReconcileEventLogger, categorize_error
from .reports import (
    ActionKind,
    ActionOutcome,
    ActionStatus,
    EnforceReport,
    PolicyTarget,
    ProtectionStatus,
)

if typ.TYPE_CHECKING:
    from steward.github.client import RepositoryHost
    from steward.store.repository import RepositoryStore

    from .models import PersistedRecord, TenantInfo
    from .policy import EnforcementPolicy

_REMOTE_ERRORS: tuple[type[Exception], ...] = (
    GitHubAPIError,
    GitHubResponseShapeError,
    httpx.HTTPError,
)


def _has_history(record: PersistedRecord) -> bool:
    # GitHub reports size 0 for repositories without any pushed content.
    return record.attributes.size > 0


def resolve_required_teams(
    required_groups: typ.Sequence[str], teams: typ.Sequence[TeamRef]
) -> tuple[list[tuple[str, TeamRef]], tuple[str, ...]]:
    """Match required group names to organisation teams.

    Names match a team's name or slug, ignoring case. A team named twice is
    resolved once, under the first name that matched it.

    Returns
    -------
    tuple[list[tuple[str, TeamRef]], tuple[str, ...]]
        ``(group, team)`` pairs in policy order, and the names that matched
        no team.

    """
    by_name: dict[str, TeamRef] = {}
    for team in teams:
        by_name.setdefault(team.slug.lower(), team)
        by_name.setdefault(team.name.lower(), team)

    resolved: list[tuple[str, TeamRef]] = []
    unresolved: list[str] = []
    seen: set[str] = set()
    for group in dict.fromkeys(required_groups):
        team = by_name.get(group.lower())
        if team is None:
            unresolved.append(group)
        elif team.slug not in seen:
            seen.add(team.slug)
            resolved.append((group, team))
    return resolved, tuple(unresolved)


class PolicyEnforcer:
    """Enforce an :class:`EnforcementPolicy` against a tenant's repositories."""

    def __init__(
        self,
        store: RepositoryStore,
        host: RepositoryHost,
        *,
        event_logger: ReconcileEventLogger | None = None,
        protection_rule: ProtectionRule | None = None,
    ) -> None:
        """Bind the store that lists repositories and the host that is changed."""
        self._store = store
        self._host = host
        self._events = event_logger or ReconcileEventLogger()
        self._rule = protection_rule or ProtectionRule()

    async def enforce(
        self, tenant: TenantInfo, policy: EnforcementPolicy
    ) -> EnforceReport:
        """Apply ``policy`` to every stored repository of ``tenant``.

        Raises
        ------
        RemoteUnavailable
            If the organisation's teams cannot be listed.
        StoreOperationError
            If the stored repositories cannot be loaded.

        """
        teams, unresolved = await self._resolve_teams(tenant, policy)
        report = EnforceReport(tenant_key=tenant.key, unresolved_groups=unresolved)
        if unresolved:
            self._events.log_groups_unresolved(tenant.key, tenant.github_org, unresolved)

        records = await self._store.find_all(tenant.id)
        for record in sorted(records, key=lambda r: r.natural_key):
            await self._enforce_resource(tenant, policy, record, teams, report)
        return report

    async def _resolve_teams(
        self, tenant: TenantInfo, policy: EnforcementPolicy
    ) -> tuple[list[tuple[str, TeamRef]], tuple[str, ...]]:
        if not policy.required_groups:
            return [], ()
        try:
            teams = await self._host.list_organisation_teams(tenant.github_org)
        except _REMOTE_ERRORS as exc:
            raise RemoteUnavailable(tenant.key, f"team listing failed: {exc}") from exc
        return resolve_required_teams(policy.required_groups, teams)

    def _add(
        self, tenant: TenantInfo, report: EnforceReport, outcome: ActionOutcome
    ) -> None:
        report.add(outcome)
        self._events.log_action(tenant.key, outcome)

    def _failed(
        self,
        resource: str,
        action: ActionKind,
        error: Exception,
        *,
        group: str | None = None,
    ) -> ActionOutcome:
        return ActionOutcome(
            resource=resource,
            action=action,
            status=ActionStatus.FAILED,
            group=group,
            detail=str(error),
            category=categorize_error(error),
        )

    async def _enforce_resource(
        self,
        tenant: TenantInfo,
        policy: EnforcementPolicy,
        record: PersistedRecord,
        teams: list[tuple[str, TeamRef]],
        report: EnforceReport,
    ) -> None:
        name = record.natural_key
        if policy.skips(name) or record.attributes.archived:
            reason = "skip list" if policy.skips(name) else "archived"
            self._add(
                tenant,
                report,
                ActionOutcome(name, ActionKind.SKIP, ActionStatus.SKIPPED, detail=reason),
            )
            return

        target = await self.observe(
            tenant, record, policy, report, read_grants=bool(teams)
        )
        await self._apply_protection(tenant, target, report)
        await self._apply_grants(tenant, target, teams, policy, report)

    async def observe(
        self,
        tenant: TenantInfo,
        record: PersistedRecord,
        policy: EnforcementPolicy,
        report: EnforceReport,
        *,
        read_grants: bool = True,
    ) -> PolicyTarget:
        """Read the live protection flag and team grants of ``record``.

        Read failures are recorded in ``report``; the returned target marks
        what could not be observed so no action is taken on unknown state.
        """
        protection = ProtectionStatus.UNKNOWN
        if policy.protect_default_branch:
            protection = await self._read_protection(tenant, record, report)

        grants: dict[str, str] | None = None
        if read_grants:
            grants = await self._read_grants(tenant, record, report)
        return PolicyTarget(record=record, protection=protection, grants=grants)

    async def _read_protection(
        self, tenant: TenantInfo, record: PersistedRecord, report: EnforceReport
    ) -> ProtectionStatus:
        attrs = record.attributes
        try:
            branch = await self._host.get_branch(
                attrs.owner, record.natural_key, attrs.default_branch
            )
        except _REMOTE_ERRORS as exc:
            if is_expected_empty_state(exc, has_history=_has_history(record)):
                self._add(
                    tenant,
                    report,
                    ActionOutcome(
                        record.natural_key,
                        ActionKind.READ_PROTECTION,
                        ActionStatus.SUPPRESSED,
                        detail=str(ExpectedEmptyState(record.natural_key)),
                    ),
                )
                return ProtectionStatus.EMPTY
            self._add(
                tenant,
                report,
                self._failed(record.natural_key, ActionKind.READ_PROTECTION, exc),
            )
            return ProtectionStatus.UNKNOWN
        return (
            ProtectionStatus.PROTECTED
            if branch.protected
            else ProtectionStatus.UNPROTECTED
        )

    async def _read_grants(
        self, tenant: TenantInfo, record: PersistedRecord, report: EnforceReport
    ) -> dict[str, str] | None:
        try:
            grants = await self._host.list_repository_teams(
                record.attributes.owner, record.natural_key
            )
        except _REMOTE_ERRORS as exc:
            if is_missing_grant_state(exc):
                return {}
            self._add(
                tenant,
                report,
                self._failed(record.natural_key, ActionKind.LIST_GRANTS, exc),
            )
            return None
        return {grant.team.slug: grant.permission for grant in grants}

    async def _apply_protection(
        self, tenant: TenantInfo, target: PolicyTarget, report: EnforceReport
    ) -> None:
        record = target.record
        name = record.natural_key
        match target.protection:
            case ProtectionStatus.PROTECTED:
                self._add(
                    tenant,
                    report,
                    ActionOutcome(
                        name, ActionKind.APPLY_PROTECTION, ActionStatus.UNCHANGED
                    ),
                )
            case ProtectionStatus.UNPROTECTED:
                attrs = record.attributes
                try:
                    await self._host.set_branch_protection(
                        attrs.owner, name, attrs.default_branch, self._rule
                    )
                except _REMOTE_ERRORS as exc:
                    if is_expected_empty_state(
                        exc, has_history=_has_history(record)
                    ):
                        outcome = ActionOutcome(
                            name,
                            ActionKind.APPLY_PROTECTION,
                            ActionStatus.SUPPRESSED,
                            detail=str(ExpectedEmptyState(name)),
                        )
                    else:
                        outcome = self._failed(name, ActionKind.APPLY_PROTECTION, exc)
                else:
                    outcome = ActionOutcome(
                        name,
                        ActionKind.APPLY_PROTECTION,
                        ActionStatus.APPLIED,
                        detail=attrs.default_branch,
                    )
                self._add(tenant, report, outcome)
            case _:
                pass

    async def _apply_grants(
        self,
        tenant: TenantInfo,
        target: PolicyTarget,
        teams: list[tuple[str, TeamRef]],
        policy: EnforcementPolicy,
        report: EnforceReport,
    ) -> None:
        if target.grants is None:
            return
        record = target.record
        name = record.natural_key
        for group, team in teams:
            if grants_write(target.grants.get(team.slug)):
                self._add(
                    tenant,
                    report,
                    ActionOutcome(
                        name,
                        ActionKind.GRANT_ACCESS,
                        ActionStatus.UNCHANGED,
                        group=group,
                    ),
                )
                continue
            try:
                await self._host.grant_team_permission(
                    tenant.github_org,
                    team.slug,
                    record.attributes.owner,
                    name,
                    str(policy.grant_permission),
                )
            except _REMOTE_ERRORS as exc:
                outcome = self._failed(name, ActionKind.GRANT_ACCESS, exc, group=group)
            else:
                outcome = ActionOutcome(
                    name,
                    ActionKind.GRANT_ACCESS,
                    ActionStatus.APPLIED,
                    group=group,
                    detail=str(policy.grant_permission),
                )
            self._add(tenant, report, outcome)


__all__ = ["PolicyEnforcer", "resolve_required_teams"]
