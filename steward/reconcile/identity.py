"""Identity index over persisted records."""

from __future__ import annotations

import collections
import typing as typ

from .errors import IntegrityViolation
from .models import MatchKey, match_key_for

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .models import KeyedRecord, PersistedRecord


def find_duplicate_keys(
    records: cabc.Iterable[KeyedRecord], *, match_on: MatchKey
) -> list[str]:
    """Return every match key shared by two or more records, sorted."""
    counts = collections.Counter(match_key_for(record, match_on) for record in records)
    return sorted(key for key, count in counts.items() if count > 1)


def build_identity_index(
    records: cabc.Iterable[PersistedRecord],
    *,
    tenant_key: str,
    match_on: MatchKey = MatchKey.NATURAL_KEY,
) -> dict[str, PersistedRecord]:
    """Key persisted records by their match key.

    Parameters
    ----------
    records
        Every persisted record of one tenant.
    tenant_key
        Tenant being indexed, used in error reporting.
    match_on
        Attribute used as the key.

    Returns
    -------
    dict[str, PersistedRecord]
        A fresh mapping owned by the caller.

    Raises
    ------
    IntegrityViolation
        If two records share a key. Every duplicated key is named; none is
        silently overwritten.

    """
    materialised = list(records)
    duplicates = find_duplicate_keys(materialised, match_on=match_on)
    if duplicates:
        raise IntegrityViolation(tenant_key, duplicates)
    return {match_key_for(record, match_on): record for record in materialised}
