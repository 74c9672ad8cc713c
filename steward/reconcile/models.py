"""Records and identities exchanged by the reconciliation engine."""

from __future__ import annotations

import dataclasses
import datetime as dt  # noqa: TC003
import enum
import typing as typ


class MatchKey(enum.StrEnum):
    """Attribute used to correlate remote and persisted records.

    Repositories match on ``NATURAL_KEY`` (the repository name) because
    downstream policy refers to repositories by name.
    """

    NATURAL_KEY = "natural_key"
    REMOTE_ID = "remote_id"


@dataclasses.dataclass(frozen=True, slots=True)
class TenantInfo:
    """Organisational scope whose records are reconciled together."""

    id: str
    key: str
    name: str
    github_org: str


@dataclasses.dataclass(frozen=True, slots=True)
class RepositoryAttributes:
    """Descriptive repository attributes overwritten on every sync."""

    owner: str
    full_name: str
    description: str = ""
    default_branch: str = "main"
    private: bool = False
    fork: bool = False
    archived: bool = False
    disabled: bool = False
    html_url: str = ""
    clone_url: str = ""
    homepage: str = ""
    language: str = ""
    topics: tuple[str, ...] = ()
    stargazers_count: int = 0
    forks_count: int = 0
    watchers_count: int = 0
    open_issues_count: int = 0
    size: int = 0
    has_issues: bool = False
    has_wiki: bool = False
    has_pages: bool = False
    pushed_at: dt.datetime | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    def as_dict(self) -> dict[str, typ.Any]:
        """Return the attributes as a plain mapping keyed by field name."""
        return {
            field.name: getattr(self, field.name)
            for field in dataclasses.fields(self)
        }


@dataclasses.dataclass(frozen=True, slots=True)
class RemoteRecord:
    """Snapshot of one remote repository taken during a listing.

    Attributes
    ----------
    remote_id
        Identifier assigned by GitHub (numeric id rendered as a string).
    natural_key
        Repository name; the match key for repositories.
    tenant_id
        Owning tenant.
    attributes
        Descriptive attributes captured at fetch time.

    """

    remote_id: str
    natural_key: str
    tenant_id: str
    attributes: RepositoryAttributes


@dataclasses.dataclass(frozen=True, slots=True)
class PersistedRecord:
    """Authoritative stored repository."""

    id: str
    tenant_id: str
    remote_id: str
    natural_key: str
    attributes: RepositoryAttributes
    created_at: dt.datetime
    updated_at: dt.datetime


@dataclasses.dataclass(frozen=True, slots=True)
class RecordIdentity:
    """Tenant-scoped identity of a record under a given match key."""

    tenant_id: str
    key: str
    match_on: MatchKey = MatchKey.NATURAL_KEY

    def __str__(self) -> str:
        """Render as ``tenant_id/key`` for logs and report entries."""
        return f"{self.tenant_id}/{self.key}"


type KeyedRecord = RemoteRecord | PersistedRecord


def match_key_for(record: KeyedRecord, match_on: MatchKey) -> str:
    """Return the value of ``record`` under the ``match_on`` key.

    >>> attrs = RepositoryAttributes(owner="acme", full_name="acme/alpha")
    >>> match_key_for(RemoteRecord("7", "alpha", "t1", attrs), MatchKey.REMOTE_ID)
    '7'

    """
    if match_on is MatchKey.REMOTE_ID:
        return record.remote_id
    return record.natural_key


def identity_of(record: KeyedRecord, match_on: MatchKey) -> RecordIdentity:
    """Return the tenant-scoped identity of ``record``."""
    return RecordIdentity(
        tenant_id=record.tenant_id,
        key=match_key_for(record, match_on),
        match_on=match_on,
    )


@dataclasses.dataclass(frozen=True, slots=True)
class ListingOptions:
    """Paging configuration for a remote listing."""

    page_size: int = 100
    repo_type: str = "all"
