"""Enforcement policy structures and their YAML loader.

A policy file lists one entry per tenant::

    version: 1
    tenants:
      - tenant: acme
        required_groups: [all, eng]
        skip_resources: [fluffy-tribble]

Files are parsed with a YAML 1.2 loader and decoded with msgspec, so
booleans like ``no`` stay strings and unknown keys are rejected.
"""

from __future__ import annotations

import collections
from pathlib import Path

import msgspec
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from steward.github.models import Permission

YAML_VERSION = (1, 2)


class PolicyValidationError(ValueError):
    """Raised when a policy document fails structural validation."""

    def __init__(self, issues: list[str]) -> None:
        """Capture validation issues whilst preserving the aggregated message."""
        super().__init__("\n".join(issues))
        self.issues = issues


class EnforcementPolicy(
    msgspec.Struct, kw_only=True, frozen=True, forbid_unknown_fields=True
):
    """Configuration policy for one tenant.

    Attributes
    ----------
    tenant : str
        Tenant key the policy applies to.
    required_groups : list[str]
        Team names that must hold write-or-higher access on every repository.
    skip_resources : list[str]
        Repository names excluded from enforcement entirely.
    grant_permission : Permission
        Permission granted to teams lacking write access.
    protect_default_branch : bool
        Whether default branches must forbid force pushes.

    """

    tenant: str
    required_groups: list[str] = msgspec.field(default_factory=list)
    skip_resources: list[str] = msgspec.field(default_factory=list)
    grant_permission: Permission = Permission.PUSH
    protect_default_branch: bool = True

    def skips(self, name: str) -> bool:
        """Return True when ``name`` is on the skip list."""
        return name in self.skip_resources


class PolicyDocument(
    msgspec.Struct, kw_only=True, frozen=True, forbid_unknown_fields=True
):
    """Top-level policy file."""

    version: int = 1
    tenants: list[EnforcementPolicy] = msgspec.field(default_factory=list)

    def for_tenant(self, tenant_key: str) -> EnforcementPolicy | None:
        """Return the policy of ``tenant_key`` when the document has one."""
        return next((p for p in self.tenants if p.tenant == tenant_key), None)


def validate_policy(document: PolicyDocument) -> PolicyDocument:
    """Validate a decoded policy document, returning it when all checks pass."""
    issues: list[str] = []
    counts = collections.Counter(policy.tenant for policy in document.tenants)

    for index, policy in enumerate(document.tenants):
        if not policy.tenant.strip():
            issues.append(f"tenants[{index}]: tenant key must be non-empty")
        issues.extend(
            f"tenants[{index}] ({policy.tenant}): blank group name"
            for group in policy.required_groups
            if not group.strip()
        )
        issues.extend(
            f"tenants[{index}] ({policy.tenant}): blank skip entry"
            for name in policy.skip_resources
            if not name.strip()
        )

    issues.extend(
        f"tenant {key} has {count} policies"
        for key, count in sorted(counts.items())
        if count > 1 and key.strip()
    )

    if issues:
        raise PolicyValidationError(issues)
    return document


def load_policy(path: Path | str) -> PolicyDocument:
    """Parse and validate a YAML policy file."""
    try:
        loaded = _yaml().load(Path(path).read_text(encoding="utf-8"))
    except (OSError, YAMLError) as exc:
        raise PolicyValidationError([f"failed to parse YAML: {exc}"]) from exc

    if loaded is None:
        raise PolicyValidationError(["policy file is empty"])

    try:
        document = msgspec.convert(loaded, type=PolicyDocument)
    except msgspec.ValidationError as exc:
        raise PolicyValidationError([f"schema validation failed: {exc}"]) from exc

    return validate_policy(document)


def _yaml() -> YAML:
    yaml = YAML(typ="safe")
    yaml.version = YAML_VERSION
    yaml.allow_duplicate_keys = False
    return yaml


__all__ = [
    "EnforcementPolicy",
    "PolicyDocument",
    "PolicyValidationError",
    "load_policy",
    "validate_policy",
]
