"""Authoritative relational store for tenants and repositories."""

from __future__ import annotations

from .errors import (
    NaiveDatetimeError,
    StoreError,
    StoreOperationError,
    TenantNotFoundError,
)
from .repository import RepositoryStore, SqlRepositoryStore, UpsertOutcome
from .storage import Base, GitHubRepository, Tenant, UTCDateTime, init_store

__all__ = [
    "Base",
    "GitHubRepository",
    "NaiveDatetimeError",
    "RepositoryStore",
    "SqlRepositoryStore",
    "StoreError",
    "StoreOperationError",
    "Tenant",
    "TenantNotFoundError",
    "UTCDateTime",
    "UpsertOutcome",
    "init_store",
]
