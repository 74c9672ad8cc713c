"""Unit tests for the reconciliation Dramatiq actors."""

from __future__ import annotations

import contextlib
import typing as typ

import pytest

from steward.github.client import GitHubRestConfig
from steward.mirror import AirtableConfigError, DisabledMirrorSink
from steward.mirror.airtable import AirtableConfig, AirtableMirrorSink
from steward.reconcile import actor, factory
from steward.reconcile.config import ReconcileConfig
from steward.reconcile.models import RecordIdentity
from steward.reconcile.reports import (
    ActionKind,
    ActionOutcome,
    ActionStatus,
    ConvergeReport,
    EnforceReport,
    Operation,
    RecordFailure,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from steward.reconcile.policy import EnforcementPolicy


class _FakeService:
    """Service double that records which phases ran."""

    def __init__(self) -> None:
        self.synced: list[str] = []
        self.enforced: list[str] = []

    async def sync_repositories(self, tenant_key: str) -> ConvergeReport:
        self.synced.append(tenant_key)
        return ConvergeReport(tenant_key=tenant_key, created=3, updated=1)

    async def enforce_policy(self, policy: EnforcementPolicy) -> EnforceReport:
        self.enforced.append(policy.tenant)
        report = EnforceReport(tenant_key=policy.tenant)
        report.add(
            ActionOutcome("alpha", ActionKind.APPLY_PROTECTION, ActionStatus.APPLIED)
        )
        return report


@pytest.fixture
def service(monkeypatch: pytest.MonkeyPatch) -> _FakeService:
    """Replace service construction with a recording double."""
    fake = _FakeService()

    @contextlib.asynccontextmanager
    async def fake_open(session_factory: object) -> typ.AsyncIterator[_FakeService]:
        yield fake

    monkeypatch.setattr(actor, "open_reconciliation_service", fake_open)
    return fake


def _database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'actor.db'}"


def test_converge_summary_is_serialisable() -> None:
    """Converge summaries carry counters and failure descriptions."""
    report = ConvergeReport(tenant_key="acme", created=1, deleted=2)
    report.failures.append(
        RecordFailure(
            identity=RecordIdentity("t-acme", "beta"),
            operation=Operation.DELETE,
            reason="locked",
            category="database_error",
        )
    )

    assert actor.converge_summary(report) == {
        "tenant": "acme",
        "created": 1,
        "updated": 0,
        "deleted": 2,
        "failed": 1,
        "mirror_failed": 0,
        "failures": ["delete t-acme/beta: locked (database_error)"],
    }


def test_enforce_summary_lists_failures_and_unresolved_groups() -> None:
    """Enforce summaries describe failed actions with their team."""
    report = EnforceReport(tenant_key="acme", unresolved_groups=("ghosts",))
    report.add(
        ActionOutcome(
            "alpha",
            ActionKind.GRANT_ACCESS,
            ActionStatus.FAILED,
            group="eng",
            detail="HTTP 403",
        )
    )
    report.add(ActionOutcome("beta", ActionKind.APPLY_PROTECTION, ActionStatus.APPLIED))

    assert actor.enforce_summary(report) == {
        "tenant": "acme",
        "mutations": 1,
        "failures": ["alpha grant_access [eng]: HTTP 403"],
        "unresolved_groups": ["ghosts"],
    }


def test_sync_job_runs_the_sync_phase(service: _FakeService, tmp_path: Path) -> None:
    """The sync actor runs one tenant's sync and returns its summary."""
    summary = actor.sync_repositories_job.fn(
        database_url=_database_url(tmp_path), tenant_key="acme"
    )

    assert service.synced == ["acme"]
    assert summary["created"] == 3
    assert summary["updated"] == 1
    assert summary["failures"] == []


def test_enforce_job_filters_by_tenant(service: _FakeService, tmp_path: Path) -> None:
    """The enforce actor honours an optional tenant filter."""
    policy = tmp_path / "policy.yaml"
    policy.write_text(
        "tenants:\n  - tenant: acme\n  - tenant: globex\n", encoding="utf-8"
    )

    everything = actor.enforce_policy_job.fn(
        database_url=_database_url(tmp_path), policy_path=str(policy)
    )
    only_globex = actor.enforce_policy_job.fn(
        database_url=_database_url(tmp_path),
        policy_path=str(policy),
        tenant_key="globex",
    )

    assert [s["tenant"] for s in everything] == ["acme", "globex"]
    assert [s["tenant"] for s in only_globex] == ["globex"]
    assert service.enforced == ["acme", "globex", "globex"]
    assert everything[0]["mutations"] == 1


def test_session_factory_is_cached_per_url(tmp_path: Path) -> None:
    """Repeated invocations reuse one engine per database URL."""
    url = _database_url(tmp_path)

    first = actor._get_or_create_session_factory(url)
    second = actor._get_or_create_session_factory(url)

    assert first is second


def test_build_mirror_sink_defaults_to_disabled() -> None:
    """Without Airtable settings mirroring is disabled."""
    assert isinstance(factory.build_mirror_sink(None), DisabledMirrorSink)


@pytest.mark.asyncio
async def test_build_mirror_sink_uses_airtable_when_configured() -> None:
    """Airtable settings produce an Airtable sink."""
    sink = factory.build_mirror_sink(AirtableConfig(token="t", base_id="appBase"))  # noqa: S106

    assert isinstance(sink, AirtableMirrorSink)
    await sink.aclose()


class _RecordingGitHubClient:
    """Stand-in client that records construction and closing."""

    instances: typ.ClassVar[list[_RecordingGitHubClient]] = []

    def __init__(self, config: GitHubRestConfig) -> None:
        self.config = config
        self.closed = False
        type(self).instances.append(self)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def recording_github(monkeypatch: pytest.MonkeyPatch) -> type[_RecordingGitHubClient]:
    """Replace the GitHub client built by the service factory."""
    _RecordingGitHubClient.instances = []
    monkeypatch.setattr(factory, "GitHubRestClient", _RecordingGitHubClient)
    return _RecordingGitHubClient


@pytest.mark.asyncio
async def test_partial_airtable_settings_open_no_client(
    monkeypatch: pytest.MonkeyPatch, recording_github: type[_RecordingGitHubClient]
) -> None:
    """Configuration errors surface before any HTTP client is created."""
    monkeypatch.setenv("STEWARD_AIRTABLE_TOKEN", "token")
    monkeypatch.delenv("STEWARD_AIRTABLE_BASE_ID", raising=False)

    with pytest.raises(AirtableConfigError, match="STEWARD_AIRTABLE_BASE_ID"):
        async with factory.open_reconciliation_service(
            typ.cast("typ.Any", None),
            github_config=GitHubRestConfig(token="token"),  # noqa: S106
        ):
            pass

    assert recording_github.instances == []


@pytest.mark.asyncio
async def test_service_clients_are_closed_on_exit(
    monkeypatch: pytest.MonkeyPatch, recording_github: type[_RecordingGitHubClient]
) -> None:
    """The GitHub client opened for a service is closed with it."""
    monkeypatch.delenv("STEWARD_AIRTABLE_TOKEN", raising=False)
    monkeypatch.delenv("STEWARD_AIRTABLE_BASE_ID", raising=False)

    async with factory.open_reconciliation_service(
        typ.cast("typ.Any", None),
        github_config=GitHubRestConfig(token="token"),  # noqa: S106
        airtable_config=None,
        config=ReconcileConfig(),
    ):
        (client,) = recording_github.instances
        assert not client.closed

    assert client.closed
