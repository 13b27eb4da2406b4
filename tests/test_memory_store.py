import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from evchargenet.backend.base import SERVER_TIMESTAMP, ChangeKind, FieldUpdate, Query
from evchargenet.backend.loader import BackendManifest
from evchargenet.backend.memory import Store
from evchargenet.exceptions import BackendError, ConflictError, NotFoundError


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


def _store(clock: _Clock | None = None) -> Store:
    manifest = BackendManifest(id="memory", name="In-memory", realtime=True)
    return Store(None, manifest, clock=clock)


@pytest.mark.asyncio
async def test_create_get_and_server_timestamp() -> None:
    clock = _Clock()
    store = _store(clock)
    doc_id = await store.create("bookings", {"cost": 1.5, "createdAt": SERVER_TIMESTAMP})
    document = await store.get("bookings", doc_id)
    assert document is not None
    assert document.data == {"cost": 1.5, "createdAt": clock.now}
    assert document.update_time == clock.now
    assert await store.get("bookings", "missing") is None


@pytest.mark.asyncio
async def test_create_with_explicit_id_rejects_duplicates() -> None:
    store = _store()
    assert await store.create("users", {"email": "a@example.com"}, doc_id="uid-1") == "uid-1"
    with pytest.raises(BackendError):
        await store.create("users", {"email": "b@example.com"}, doc_id="uid-1")


@pytest.mark.asyncio
async def test_documents_are_copies() -> None:
    store = _store()
    doc_id = await store.create("stations", {"queue": ["a"]})
    document = await store.get("stations", doc_id)
    document.data["queue"].append("b")
    assert (await store.get("stations", doc_id)).data["queue"] == ["a"]


@pytest.mark.asyncio
async def test_update_merges_nested_fields() -> None:
    store = _store()
    doc_id = await store.create("users", {"profile": {"vehicle": "Other", "loyaltyPoints": 0}})
    await store.update("users", doc_id, (FieldUpdate(("profile", "loyaltyPoints"), 10),))
    document = await store.get("users", doc_id)
    assert document.data == {"profile": {"vehicle": "Other", "loyaltyPoints": 10}}


@pytest.mark.asyncio
async def test_update_missing_document() -> None:
    store = _store()
    with pytest.raises(NotFoundError):
        await store.update("users", "missing", (FieldUpdate(("email",), "x"),))


@pytest.mark.asyncio
async def test_delete_is_idempotent() -> None:
    store = _store()
    doc_id = await store.create("activeSessions", {"userId": "u1"})
    await store.delete("activeSessions", doc_id)
    await store.delete("activeSessions", doc_id)
    assert await store.get("activeSessions", doc_id) is None


@pytest.mark.asyncio
async def test_query_filters_orders_and_limits() -> None:
    clock = _Clock()
    store = _store(clock)
    for rating in (3, 5, 1):
        clock.now += timedelta(minutes=1)
        await store.create("reviews", {"stationId": "s1", "rating": rating})
    await store.create("reviews", {"stationId": "s2", "rating": 4})
    await store.create("reviews", {"stationId": "s1"})

    rows = await store.query(Query("reviews", where=(("stationId", "s1"),), order_by="rating"))
    assert [row.data.get("rating") for row in rows] == [1, 3, 5, None]

    rows = await store.query(
        Query("reviews", order_by="rating", descending=True, limit=2),
    )
    assert [row.data["rating"] for row in rows] == [5, 4]


@pytest.mark.asyncio
async def test_run_atomic_commits_all_writes() -> None:
    store = _store()
    station_id = await store.create("stations", {"slots": {"total": 1, "available": 1}})

    async def start(transaction):
        document = await transaction.get("stations", station_id)
        available = document.data["slots"]["available"]
        fields = (FieldUpdate(("slots", "available"), available - 1),)
        transaction.update("stations", station_id, fields)
        return transaction.create("activeSessions", {"stationId": station_id})

    session_id = await store.run_atomic(start)
    assert (await store.get("stations", station_id)).data["slots"]["available"] == 0
    assert await store.get("activeSessions", session_id) is not None


@pytest.mark.asyncio
async def test_run_atomic_conflicts_when_read_changes() -> None:
    store = _store()
    station_id = await store.create("stations", {"queue": []})

    async def join(transaction):
        await transaction.get("stations", station_id)
        await store.update("stations", station_id, (FieldUpdate(("queue",), ["intruder"]),))
        transaction.update("stations", station_id, (FieldUpdate(("queue",), ["me"]),))

    with pytest.raises(ConflictError):
        await store.run_atomic(join)
    assert (await store.get("stations", station_id)).data["queue"] == ["intruder"]


@pytest.mark.asyncio
async def test_run_atomic_conflicts_when_missing_document_appears() -> None:
    store = _store()

    async def claim(transaction):
        assert await transaction.get("users", "uid-1") is None
        await store.create("users", {"email": "a@example.com"}, doc_id="uid-1")
        transaction.create("users", {"email": "b@example.com"}, doc_id="uid-1")

    with pytest.raises(ConflictError):
        await store.run_atomic(claim)


@pytest.mark.asyncio
async def test_run_atomic_failure_writes_nothing() -> None:
    store = _store()
    station_id = await store.create("stations", {"slots": {"total": 1, "available": 1}})

    async def broken(transaction):
        await transaction.get("stations", station_id)
        transaction.update("stations", station_id, (FieldUpdate(("slots", "available"), 0),))
        transaction.update("users", "missing", (FieldUpdate(("profile", "loyaltyPoints"), 10),))

    with pytest.raises(NotFoundError):
        await store.run_atomic(broken)
    assert (await store.get("stations", station_id)).data["slots"]["available"] == 1


@pytest.mark.asyncio
async def test_concurrent_transactions_serialize() -> None:
    store = _store()
    doc_id = await store.create("counters", {"value": 0})

    async def increment(transaction):
        document = await transaction.get("counters", doc_id)
        fields = (FieldUpdate(("value",), document.data["value"] + 1),)
        transaction.update("counters", doc_id, fields)

    results = await asyncio.gather(
        *(store.run_atomic(increment) for _ in range(3)),
        return_exceptions=True,
    )
    successes = [result for result in results if not isinstance(result, Exception)]
    conflicts = [result for result in results if isinstance(result, ConflictError)]
    assert len(successes) == 1
    assert len(conflicts) == 2
    assert (await store.get("counters", doc_id)).data["value"] == 1


@pytest.mark.asyncio
async def test_subscribe_reports_initial_and_later_changes() -> None:
    store = _store()
    kept = await store.create("stations", {"name": "Kept"})
    received = []
    unsubscribe = await store.subscribe(Query("stations"), received.append)

    assert [(change.kind, change.document.id) for change in received[0]] == [
        (ChangeKind.ADDED, kept)
    ]
    added = await store.create("stations", {"name": "New"})
    await store.update("stations", kept, (FieldUpdate(("name",), "Renamed"),))
    await store.delete("stations", added)
    await store.create("reviews", {"rating": 5})
    unsubscribe()
    await store.create("stations", {"name": "Unseen"})

    kinds = [(change.kind, change.document.id) for batch in received[1:] for change in batch]
    assert kinds == [
        (ChangeKind.ADDED, added),
        (ChangeKind.MODIFIED, kept),
        (ChangeKind.REMOVED, added),
    ]
    assert received[2][0].document.data["name"] == "Renamed"


@pytest.mark.asyncio
async def test_subscribe_tracks_filter_membership() -> None:
    store = _store()
    doc_id = await store.create("activeSessions", {"userId": "u1"})
    received = []
    await store.subscribe(Query("activeSessions", where=(("userId", "u2"),)), received.append)
    await store.update("activeSessions", doc_id, (FieldUpdate(("userId",), "u2"),))
    await store.update("activeSessions", doc_id, (FieldUpdate(("userId",), "u3"),))
    assert [batch[0].kind for batch in received] == [ChangeKind.ADDED, ChangeKind.REMOVED]


@pytest.mark.asyncio
async def test_failing_listener_does_not_undo_commit() -> None:
    store = _store()

    def broken(changes):
        raise RuntimeError("listener failed")

    await store.subscribe(Query("stations"), broken)
    doc_id = await store.create("stations", {"name": "Hub"})
    assert await store.get("stations", doc_id) is not None
