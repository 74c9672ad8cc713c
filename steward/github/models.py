"""Typed views of the GitHub REST payloads Steward consumes."""

from __future__ import annotations

import dataclasses
import enum
import typing as typ


class Permission(enum.StrEnum):
    """Repository permission levels a team can hold."""

    PULL = "pull"
    TRIAGE = "triage"
    PUSH = "push"
    MAINTAIN = "maintain"
    ADMIN = "admin"


# Administrator and maintainer access both include push.
WRITE_OR_HIGHER: frozenset[str] = frozenset(
    {Permission.PUSH, Permission.MAINTAIN, Permission.ADMIN}
)


def grants_write(permission: str | None) -> bool:
    """Return True when ``permission`` includes write access.

    >>> grants_write("ADMIN")
    True
    >>> grants_write("pull")
    False

    """
    return permission is not None and permission.lower() in WRITE_OR_HIGHER


@dataclasses.dataclass(frozen=True, slots=True)
class TeamRef:
    """Organisation team identity."""

    id: int
    slug: str
    name: str


@dataclasses.dataclass(frozen=True, slots=True)
class TeamGrant:
    """A team's current access to a repository."""

    team: TeamRef
    permission: str


@dataclasses.dataclass(frozen=True, slots=True)
class BranchState:
    """Protection flag reported for a branch."""

    name: str
    protected: bool


@dataclasses.dataclass(frozen=True, slots=True)
class ProtectionRule:
    """Minimal branch protection forbidding history rewrites.

    Review counts and status checks are intentionally left unset so that rules
    configured elsewhere are not replaced by stricter defaults.
    """

    enforce_admins: bool = True
    allow_force_pushes: bool = False
    allow_deletions: bool = False

    def to_payload(self) -> dict[str, typ.Any]:
        """Return the request body for ``PUT .../branches/{branch}/protection``."""
        return {
            "required_status_checks": None,
            "enforce_admins": self.enforce_admins,
            "required_pull_request_reviews": None,
            "restrictions": None,
            "allow_force_pushes": self.allow_force_pushes,
            "allow_deletions": self.allow_deletions,
        }
