"""Construct a fully wired reconciliation service from the environment."""

from __future__ import annotations

import contextlib
import typing as typ

from steward.github.client import GitHubRestClient, GitHubRestConfig
from steward.mirror.airtable import AirtableConfig, AirtableMirrorSink
from steward.mirror.sink import DisabledMirrorSink
from steward.store.repository import SqlRepositoryStore

from .config import ReconcileConfig
from .lister import GitHubRepositoryLister
from .service import ReconciliationService

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from steward.mirror.sink import MirrorSink

    type SessionFactory = async_sessionmaker[AsyncSession]


def build_mirror_sink(config: AirtableConfig | None) -> MirrorSink:
    """Return the Airtable sink when configured, otherwise a disabled sink."""
    if config is None:
        return DisabledMirrorSink()
    return AirtableMirrorSink(config)


@contextlib.asynccontextmanager
async def open_reconciliation_service(
    session_factory: SessionFactory,
    *,
    github_config: GitHubRestConfig | None = None,
    airtable_config: AirtableConfig | None = None,
    config: ReconcileConfig | None = None,
) -> cabc.AsyncIterator[ReconciliationService]:
    """Yield a service whose HTTP clients are closed on exit.

    Settings that are not passed explicitly are read with ``from_env()``, all
    of them before any HTTP client is opened.

    Raises
    ------
    GitHubConfigError
        If no GitHub token is configured.
    AirtableConfigError
        If Airtable is only partially configured.

    """
    mirror_config = (
        airtable_config if airtable_config is not None else AirtableConfig.from_env()
    )
    reconcile_config = config or ReconcileConfig.from_env()
    github = GitHubRestClient(github_config or GitHubRestConfig.from_env())
    mirror = build_mirror_sink(mirror_config)
    try:
        yield ReconciliationService(
            SqlRepositoryStore(session_factory),
            GitHubRepositoryLister(github),
            github,
            mirror,
            config=reconcile_config,
        )
    finally:
        if isinstance(mirror, AirtableMirrorSink):
            await mirror.aclose()
        await github.aclose()


__all__ = ["build_mirror_sink", "open_reconciliation_service"]
