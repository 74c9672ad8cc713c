"""Persistence models for tenants and their GitHub repositories."""

from __future__ import annotations

import datetime as dt
import typing as typ
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from steward.common.time import utcnow
from steward.store.errors import NaiveDatetimeError

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine


class Base(DeclarativeBase):
    """Base declarative class for store models."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise NaiveDatetimeError
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Return aware UTC datetimes regardless of backend."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class Tenant(Base):
    """Organisational scope whose repositories are reconciled together."""

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    key: Mapped[str] = mapped_column(String(64), unique=True)
    name: Mapped[str] = mapped_column(String(255))
    github_org: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class GitHubRepository(Base):
    """Authoritative row for one GitHub repository of a tenant.

    Rows are fully overwritten on every sync in which the repository is seen
    and deleted when a complete listing no longer contains it.
    """

    __tablename__ = "github_repositories"
    __table_args__ = (
        UniqueConstraint("tenant_id", "github_id", name="uq_github_repo_remote_id"),
        UniqueConstraint("tenant_id", "name", name="uq_github_repo_name"),
        Index("ix_github_repositories_tenant", "tenant_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    github_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255))
    owner: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str] = mapped_column(String(512))
    description: Mapped[str] = mapped_column(Text(), default="")
    default_branch: Mapped[str] = mapped_column(String(255), default="main")
    private: Mapped[bool] = mapped_column(Boolean, default=False)
    fork: Mapped[bool] = mapped_column(Boolean, default=False)
    archived: Mapped[bool] = mapped_column(Boolean, default=False)
    disabled: Mapped[bool] = mapped_column(Boolean, default=False)
    html_url: Mapped[str] = mapped_column(String(1024), default="")
    clone_url: Mapped[str] = mapped_column(String(1024), default="")
    homepage: Mapped[str] = mapped_column(String(1024), default="")
    language: Mapped[str] = mapped_column(String(128), default="")
    topics: Mapped[list[str]] = mapped_column(JSON, default=list)
    stargazers_count: Mapped[int] = mapped_column(Integer, default=0)
    forks_count: Mapped[int] = mapped_column(Integer, default=0)
    watchers_count: Mapped[int] = mapped_column(Integer, default=0)
    open_issues_count: Mapped[int] = mapped_column(Integer, default=0)
    size: Mapped[int] = mapped_column(Integer, default=0)
    has_issues: Mapped[bool] = mapped_column(Boolean, default=False)
    has_wiki: Mapped[bool] = mapped_column(Boolean, default=False)
    has_pages: Mapped[bool] = mapped_column(Boolean, default=False)
    pushed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    github_created_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    github_updated_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


async def init_store(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
