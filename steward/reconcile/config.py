"""Configuration for reconciliation runs.

Usage
-----
Create a configuration with defaults:

>>> config = ReconcileConfig()
>>> config.page_size
100

Or load from environment variables:

>>> import os
>>> os.environ["STEWARD_PAGE_SIZE"] = "50"
>>> ReconcileConfig.from_env().page_size
50

"""

from __future__ import annotations

import dataclasses as dc
import os

from .models import ListingOptions, MatchKey

_MAX_PAGE_SIZE = 100
_REPO_TYPES = frozenset({"all", "public", "private", "forks", "sources", "member"})


@dc.dataclass(frozen=True, slots=True)
class ReconcileConfig:
    """Settings shared by every tenant run.

    Attributes
    ----------
    page_size
        Repositories requested per listing page, between 1 and 100.
    repo_type
        GitHub ``type`` filter for organisation repository listings.
    max_concurrent_tenants
        Upper bound on tenants reconciled at the same time.
    match_on
        Key used to correlate remote and stored repositories.

    """

    page_size: int = _MAX_PAGE_SIZE
    repo_type: str = "all"
    max_concurrent_tenants: int = 4
    match_on: MatchKey = MatchKey.NATURAL_KEY

    def __post_init__(self) -> None:
        """Reject out-of-range values."""
        if not 1 <= self.page_size <= _MAX_PAGE_SIZE:
            msg = f"page_size must be between 1 and {_MAX_PAGE_SIZE}, got: {self.page_size}"
            raise ValueError(msg)
        if self.repo_type not in _REPO_TYPES:
            msg = f"repo_type must be one of {sorted(_REPO_TYPES)}, got: {self.repo_type!r}"
            raise ValueError(msg)
        if self.max_concurrent_tenants < 1:
            msg = (
                "max_concurrent_tenants must be positive, "
                f"got: {self.max_concurrent_tenants}"
            )
            raise ValueError(msg)

    @property
    def listing_options(self) -> ListingOptions:
        """Return the paging options for remote listings."""
        return ListingOptions(page_size=self.page_size, repo_type=self.repo_type)

    @staticmethod
    def _parse_int(env_var: str, default: int) -> int:
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            return int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ValueError(msg) from exc

    @classmethod
    def from_env(cls) -> ReconcileConfig:
        """Create configuration from environment variables.

        Reads ``STEWARD_PAGE_SIZE``, ``STEWARD_REPO_TYPE``,
        ``STEWARD_MAX_CONCURRENT_TENANTS`` and ``STEWARD_MATCH_ON``.

        Raises
        ------
        ValueError
            If a variable is set to an unusable value.

        """
        repo_type = os.environ.get("STEWARD_REPO_TYPE", "").strip().lower() or "all"
        raw_match_on = os.environ.get("STEWARD_MATCH_ON", "").strip().lower()
        try:
            match_on = MatchKey(raw_match_on or MatchKey.NATURAL_KEY)
        except ValueError as exc:
            msg = (
                f"STEWARD_MATCH_ON must be one of {[m.value for m in MatchKey]}, "
                f"got: {raw_match_on!r}"
            )
            raise ValueError(msg) from exc
        return cls(
            page_size=cls._parse_int("STEWARD_PAGE_SIZE", _MAX_PAGE_SIZE),
            repo_type=repo_type,
            max_concurrent_tenants=cls._parse_int("STEWARD_MAX_CONCURRENT_TENANTS", 4),
            match_on=match_on,
        )
