"""Unit tests for the converger."""

from __future__ import annotations

import dataclasses

import pytest

from steward.reconcile.converger import Converger
from steward.reconcile.errors import IntegrityViolation, TenantMismatchError
from steward.reconcile.identity import build_identity_index
from steward.reconcile.models import MatchKey
from steward.reconcile.observability import ReconcileEventLogger
from steward.reconcile.reports import ConvergeReport, Operation
from tests.helpers.fakes import (
    ACME,
    GLOBEX,
    FakeLogger,
    InMemoryStore,
    RecordingMirrorSink,
    make_persisted,
    make_remote,
)


def _converger(
    store: InMemoryStore,
    mirror: RecordingMirrorSink | None = None,
    *,
    logger: FakeLogger | None = None,
    match_on: MatchKey = MatchKey.NATURAL_KEY,
) -> Converger:
    return Converger(
        store,
        mirror or RecordingMirrorSink(),
        match_on=match_on,
        event_logger=ReconcileEventLogger(logger or FakeLogger()),
    )


async def _converge(
    store: InMemoryStore,
    remote_names: list[str],
    *,
    mirror: RecordingMirrorSink | None = None,
    logger: FakeLogger | None = None,
) -> ConvergeReport:
    index = build_identity_index(await store.find_all(ACME.id), tenant_key=ACME.key)
    remote = [make_remote(name, description="fresh") for name in remote_names]
    return await _converger(store, mirror, logger=logger).converge(
        ACME, remote, index
    )


@pytest.mark.asyncio
async def test_create_update_and_delete_in_one_run() -> None:
    """Unseen remotes are created, seen ones updated, stale ones deleted."""
    store = InMemoryStore(records=[make_persisted("beta"), make_persisted("gamma")])
    mirror = RecordingMirrorSink()

    report = await _converge(store, ["alpha", "beta"], mirror=mirror)

    assert (report.created, report.updated, report.deleted, report.failed) == (
        1,
        1,
        1,
        0,
    )
    assert store.keys(ACME) == {"alpha", "beta"}
    beta = store.get(ACME, "beta")
    assert beta is not None
    assert beta.attributes.description == "fresh"
    assert [r.name for r in mirror.upserts] == ["alpha", "beta"]
    assert mirror.deletes == [("acme", "gamma")]
    assert report.is_clean


@pytest.mark.asyncio
async def test_second_run_is_a_fixed_point() -> None:
    """Re-running with the same listing creates and deletes nothing."""
    store = InMemoryStore(records=[make_persisted("beta"), make_persisted("gamma")])
    await _converge(store, ["alpha", "beta"])

    report = await _converge(store, ["alpha", "beta"])

    assert (report.created, report.updated, report.deleted) == (0, 2, 0)
    assert store.keys(ACME) == {"alpha", "beta"}


@pytest.mark.asyncio
async def test_empty_listing_deletes_everything() -> None:
    """An empty but complete listing removes every stored record."""
    store = InMemoryStore(records=[make_persisted("alpha"), make_persisted("beta")])

    report = await _converge(store, [])

    assert report.deleted == 2
    assert store.keys(ACME) == set()


@pytest.mark.asyncio
async def test_failed_upsert_is_isolated_and_never_deleted() -> None:
    """One failed upsert is reported while the rest of the run proceeds."""
    store = InMemoryStore(records=[make_persisted("beta"), make_persisted("gamma")])
    store.fail_upserts.add("beta")
    logger = FakeLogger()

    report = await _converge(store, ["alpha", "beta"], logger=logger)

    assert (report.created, report.updated, report.deleted) == (1, 0, 1)
    assert report.failed == 1
    failure = report.failures[0]
    assert failure.identity.key == "beta"
    assert failure.operation is Operation.UPSERT
    assert failure.category == "database_error"
    assert ("delete", ACME.id, "beta") not in store.calls
    assert store.get(ACME, "beta") is not None
    assert not report.is_clean
    assert any(
        "[reconcile.record.failed]" in m and "key=beta" in m
        for m in logger.messages("WARNING")
    )


@pytest.mark.asyncio
async def test_failed_delete_is_reported_and_record_kept() -> None:
    """A failing delete leaves the record in place and counts a failure."""
    store = InMemoryStore(records=[make_persisted("alpha"), make_persisted("gamma")])
    store.fail_deletes.add("gamma")

    report = await _converge(store, ["alpha"])

    assert report.deleted == 0
    assert [f.operation for f in report.failures] == [Operation.DELETE]
    assert store.get(ACME, "gamma") is not None


@pytest.mark.asyncio
async def test_mirror_failure_does_not_change_counts() -> None:
    """Mirror failures are tracked apart from the authoritative counters."""
    store = InMemoryStore(records=[make_persisted("gamma")])
    mirror = RecordingMirrorSink(fail_keys={"alpha", "gamma"})
    logger = FakeLogger()

    report = await _converge(store, ["alpha"], mirror=mirror, logger=logger)

    assert (report.created, report.deleted, report.failed) == (1, 1, 0)
    assert [f.identity.key for f in report.mirror_failures] == ["alpha", "gamma"]
    assert {f.category for f in report.mirror_failures} == {"mirror"}
    assert store.keys(ACME) == {"alpha"}
    assert report.is_clean
    assert sum("[reconcile.mirror.failed]" in m for m in logger.messages()) == 2


@pytest.mark.asyncio
async def test_other_tenants_are_untouched() -> None:
    """Converging one tenant never mutates another tenant's records."""
    store = InMemoryStore(
        records=[
            make_persisted("alpha"),
            make_persisted("alpha", tenant=GLOBEX),
            make_persisted("shared", tenant=GLOBEX),
        ]
    )

    await _converge(store, [])

    assert store.keys(ACME) == set()
    assert store.keys(GLOBEX) == {"alpha", "shared"}


@pytest.mark.asyncio
async def test_foreign_record_aborts_before_mutation() -> None:
    """A record from another tenant aborts the run with no writes."""
    store = InMemoryStore(records=[make_persisted("gamma")])
    remote = [make_remote("alpha"), make_remote("intruder", tenant=GLOBEX)]

    with pytest.raises(TenantMismatchError, match="intruder"):
        await _converger(store).converge(
            ACME, remote, build_identity_index(store.rows, tenant_key="acme")
        )

    assert store.calls == []


@pytest.mark.asyncio
async def test_foreign_stored_record_aborts_before_mutation() -> None:
    """An index entry owned by another tenant is never deleted."""
    shared = make_persisted("shared", tenant=GLOBEX)
    store = InMemoryStore(records=[shared])
    mirror = RecordingMirrorSink()

    with pytest.raises(TenantMismatchError, match="shared"):
        await _converger(store, mirror).converge(
            ACME, [make_remote("alpha")], {"shared": shared}
        )

    assert store.calls == []
    assert mirror.deletes == []
    assert store.keys(GLOBEX) == {"shared"}


@pytest.mark.asyncio
async def test_duplicate_remote_keys_abort_before_mutation() -> None:
    """Duplicated remote keys raise IntegrityViolation before any write."""
    store = InMemoryStore(records=[make_persisted("gamma")])
    remote = [make_remote("alpha"), make_remote("alpha", remote_id="other")]

    with pytest.raises(IntegrityViolation) as excinfo:
        await _converger(store).converge(
            ACME, remote, build_identity_index(store.rows, tenant_key="acme")
        )

    assert excinfo.value.duplicates == ("alpha",)
    assert store.calls == []


@pytest.mark.asyncio
async def test_caller_index_is_not_mutated() -> None:
    """The persisted index passed in is copied, not consumed."""
    store = InMemoryStore(records=[make_persisted("alpha"), make_persisted("gamma")])
    index = build_identity_index(store.rows, tenant_key="acme")
    snapshot = dict(index)

    await _converger(store).converge(ACME, [make_remote("alpha")], index)

    assert index == snapshot


@pytest.mark.asyncio
async def test_remote_id_matching_follows_renames() -> None:
    """Matching on the remote id updates a renamed repository in place."""
    old = make_persisted("old-name", remote_id="101")
    store = InMemoryStore(records=[old], match_on=MatchKey.REMOTE_ID)
    renamed = dataclasses.replace(make_remote("new-name"), remote_id="101")
    index = build_identity_index(
        store.rows, tenant_key="acme", match_on=MatchKey.REMOTE_ID
    )

    report = await _converger(store, match_on=MatchKey.REMOTE_ID).converge(
        ACME, [renamed], index
    )

    assert (report.created, report.updated, report.deleted) == (0, 1, 0)
    assert [row.natural_key for row in store.rows] == ["new-name"]
    assert store.rows[0].id == old.id
