"""Tenant-scoped repository store backed by SQLAlchemy.

Every mutation runs in its own transaction, so a failure affects exactly one
record. Queries are always filtered by tenant; no call can read or mutate
another tenant's rows.
"""

from __future__ import annotations

import enum
import typing as typ

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from steward.reconcile.models import (
    MatchKey,
    PersistedRecord,
    RepositoryAttributes,
    TenantInfo,
    match_key_for,
)

from .errors import StoreOperationError, TenantNotFoundError
from .storage import GitHubRepository, Tenant

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from sqlalchemy.sql.elements import ColumnElement

    from steward.reconcile.models import RecordIdentity, RemoteRecord

    type SessionFactory = async_sessionmaker[AsyncSession]


class UpsertOutcome(enum.StrEnum):
    """Whether an upsert inserted or overwrote a row."""

    CREATED = "created"
    UPDATED = "updated"


class RepositoryStore(typ.Protocol):
    """Authoritative store operations used by reconciliation."""

    async def get_tenant(self, key: str) -> TenantInfo:
        """Return the tenant with ``key`` or raise TenantNotFoundError."""
        ...

    async def find_all(self, tenant_id: str) -> list[PersistedRecord]:
        """Return every persisted repository of a tenant ordered by name."""
        ...

    async def upsert(
        self, record: RemoteRecord, *, match_on: MatchKey
    ) -> UpsertOutcome:
        """Insert ``record`` or overwrite the row sharing its match key."""
        ...

    async def delete(self, identity: RecordIdentity) -> bool:
        """Delete the row identified by ``identity``; return whether one existed."""
        ...


def _tenant_info(row: Tenant) -> TenantInfo:
    return TenantInfo(id=row.id, key=row.key, name=row.name, github_org=row.github_org)


def _to_persisted(row: GitHubRepository) -> PersistedRecord:
    return PersistedRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        remote_id=row.github_id,
        natural_key=row.name,
        attributes=RepositoryAttributes(
            owner=row.owner,
            full_name=row.full_name,
            description=row.description,
            default_branch=row.default_branch,
            private=row.private,
            fork=row.fork,
            archived=row.archived,
            disabled=row.disabled,
            html_url=row.html_url,
            clone_url=row.clone_url,
            homepage=row.homepage,
            language=row.language,
            topics=tuple(row.topics or ()),
            stargazers_count=row.stargazers_count,
            forks_count=row.forks_count,
            watchers_count=row.watchers_count,
            open_issues_count=row.open_issues_count,
            size=row.size,
            has_issues=row.has_issues,
            has_wiki=row.has_wiki,
            has_pages=row.has_pages,
            pushed_at=row.pushed_at,
            created_at=row.github_created_at,
            updated_at=row.github_updated_at,
        ),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _apply_record(row: GitHubRepository, record: RemoteRecord) -> None:
    """Overwrite every descriptive column of ``row`` from ``record``."""
    attrs = record.attributes
    row.github_id = record.remote_id
    row.name = record.natural_key
    row.owner = attrs.owner
    row.full_name = attrs.full_name
    row.description = attrs.description
    row.default_branch = attrs.default_branch
    row.private = attrs.private
    row.fork = attrs.fork
    row.archived = attrs.archived
    row.disabled = attrs.disabled
    row.html_url = attrs.html_url
    row.clone_url = attrs.clone_url
    row.homepage = attrs.homepage
    row.language = attrs.language
    row.topics = list(attrs.topics)
    row.stargazers_count = attrs.stargazers_count
    row.forks_count = attrs.forks_count
    row.watchers_count = attrs.watchers_count
    row.open_issues_count = attrs.open_issues_count
    row.size = attrs.size
    row.has_issues = attrs.has_issues
    row.has_wiki = attrs.has_wiki
    row.has_pages = attrs.has_pages
    row.pushed_at = attrs.pushed_at
    row.github_created_at = attrs.created_at
    row.github_updated_at = attrs.updated_at


def _key_clause(
    tenant_id: str, key: str, match_on: MatchKey
) -> tuple[ColumnElement[bool], ColumnElement[bool]]:
    column = (
        GitHubRepository.github_id
        if match_on is MatchKey.REMOTE_ID
        else GitHubRepository.name
    )
    return (GitHubRepository.tenant_id == tenant_id, column == key)


class SqlRepositoryStore:
    """SQLAlchemy implementation of :class:`RepositoryStore`."""

    def __init__(self, session_factory: SessionFactory) -> None:
        """Bind the store to an async session factory."""
        self._session_factory = session_factory

    async def get_tenant(self, key: str) -> TenantInfo:
        """Return the tenant with ``key``.

        Raises
        ------
        TenantNotFoundError
            If no tenant has ``key``.
        StoreOperationError
            If the query fails.

        """
        try:
            async with self._session_factory() as session:
                row = await session.scalar(select(Tenant).where(Tenant.key == key))
        except SQLAlchemyError as exc:
            raise StoreOperationError("get_tenant", key, str(exc)) from exc
        if row is None:
            raise TenantNotFoundError(key)
        return _tenant_info(row)

    async def ensure_tenant(self, key: str, *, name: str, github_org: str) -> TenantInfo:
        """Create the tenant ``key`` or update its name and organisation."""
        try:
            async with self._session_factory() as session, session.begin():
                row = await session.scalar(select(Tenant).where(Tenant.key == key))
                if row is None:
                    row = Tenant(key=key, name=name, github_org=github_org)
                    session.add(row)
                else:
                    row.name = name
                    row.github_org = github_org
                await session.flush()
                info = _tenant_info(row)
        except SQLAlchemyError as exc:
            raise StoreOperationError("ensure_tenant", key, str(exc)) from exc
        return info

    async def find_all(self, tenant_id: str) -> list[PersistedRecord]:
        """Return every repository of ``tenant_id`` ordered by name."""
        try:
            async with self._session_factory() as session:
                rows = await session.scalars(
                    select(GitHubRepository)
                    .where(GitHubRepository.tenant_id == tenant_id)
                    .order_by(GitHubRepository.name)
                )
                return [_to_persisted(row) for row in rows]
        except SQLAlchemyError as exc:
            raise StoreOperationError("find_all", tenant_id, str(exc)) from exc

    async def upsert(
        self, record: RemoteRecord, *, match_on: MatchKey = MatchKey.NATURAL_KEY
    ) -> UpsertOutcome:
        """Insert ``record`` or overwrite the row sharing its match key.

        Raises
        ------
        StoreOperationError
            If the transaction fails, for example when a renamed repository
            collides with the row still holding its remote id.

        """
        key = match_key_for(record, match_on)
        try:
            async with self._session_factory() as session, session.begin():
                row = await session.scalar(
                    select(GitHubRepository).where(
                        *_key_clause(record.tenant_id, key, match_on)
                    )
                )
                outcome = UpsertOutcome.UPDATED
                if row is None:
                    row = GitHubRepository(tenant_id=record.tenant_id)
                    session.add(row)
                    outcome = UpsertOutcome.CREATED
                _apply_record(row, record)
        except SQLAlchemyError as exc:
            raise StoreOperationError("upsert", key, str(exc)) from exc
        return outcome

    async def delete(self, identity: RecordIdentity) -> bool:
        """Delete the row identified by ``identity``.

        Returns
        -------
        bool
            ``True`` when a row was removed, ``False`` when none matched.

        """
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    delete(GitHubRepository).where(
                        *_key_clause(identity.tenant_id, identity.key, identity.match_on)
                    )
                )
        except SQLAlchemyError as exc:
            raise StoreOperationError("delete", identity.key, str(exc)) from exc
        return bool(result.rowcount)


__all__ = ["RepositoryStore", "SqlRepositoryStore", "UpsertOutcome"]
