"""GitHub REST client and payload models."""

from __future__ import annotations

from .classification import is_expected_empty_state, is_missing_grant_state
from .client import GitHubRestClient, GitHubRestConfig, RepositoryHost
from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError
from .models import (
    BranchState,
    Permission,
    ProtectionRule,
    TeamGrant,
    TeamRef,
    grants_write,
)

__all__ = [
    "BranchState",
    "GitHubAPIError",
    "GitHubConfigError",
    "GitHubResponseShapeError",
    "GitHubRestClient",
    "GitHubRestConfig",
    "Permission",
    "ProtectionRule",
    "RepositoryHost",
    "TeamGrant",
    "TeamRef",
    "grants_write",
    "is_expected_empty_state",
    "is_missing_grant_state",
]
