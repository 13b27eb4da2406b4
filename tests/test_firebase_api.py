from __future__ import annotations

import logging

import pytest

from evchargenet.backend.base import FieldUpdate, Query
from evchargenet.backend.firebase import Store
from evchargenet.backend.loader import BackendManifest
from evchargenet.exceptions import (
    AuthError,
    ConfigError,
    ConflictError,
    NoSlotsAvailableError,
)

BASE = "https://firestore.googleapis.com/v1/projects/demo/databases/(default)/documents"

STATION = {
    "name": "projects/demo/databases/(default)/documents/stations/s1",
    "fields": {
        "name": {"stringValue": "Green Hub"},
        "slots": {
            "mapValue": {
                "fields": {
                    "total": {"integerValue": "2"},
                    "available": {"integerValue": "1"},
                }
            }
        },
    },
    "updateTime": "2024-05-01T09:00:00.000001Z",
}


class _FakeResponse:
    def __init__(self, status: int = 200, json_data: object | None = None) -> None:
        self.status = status
        self._json_data = json_data

    async def json(self) -> object:
        return self._json_data

    async def text(self) -> str:
        return ""


class _FakeRequestContext:
    def __init__(self, response: _FakeResponse) -> None:
        self._response = response

    async def __aenter__(self) -> _FakeResponse:
        return self._response

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _RecordingSession:
    def __init__(self, responses: list[_FakeResponse]) -> None:
        self._responses = list(responses)
        self.requests: list[tuple[str, str, dict]] = []

    def request(self, method: str, url: str, **kwargs) -> _FakeRequestContext:
        self.requests.append((method, url, kwargs))
        return _FakeRequestContext(self._responses.pop(0))


class _FakeIdentity:
    def __init__(self) -> None:
        self.token = "token-1"
        self.refreshes = 0

    async def get_id_token(self) -> str:
        return self.token

    async def refresh(self) -> None:
        self.refreshes += 1
        self.token = f"token-{self.refreshes + 1}"


def _manifest() -> BackendManifest:
    return BackendManifest(id="firebase", name="Firebase", realtime=False)


def _store(session: _RecordingSession, **kwargs) -> Store:
    kwargs.setdefault("project_id", "demo")
    return Store(session, _manifest(), **kwargs)


def _error(status: str, message: str = "") -> dict:
    return {"error": {"status": status, "message": message}}


def test_store_requires_session_and_project():
    with pytest.raises(ConfigError):
        Store(None, _manifest(), project_id="demo")
    with pytest.raises(ConfigError):
        Store(_RecordingSession([]), _manifest())


@pytest.mark.asyncio
async def test_get_document_and_missing_document():
    session = _RecordingSession(
        [
            _FakeResponse(json_data=STATION),
            _FakeResponse(status=404, json_data=_error("NOT_FOUND")),
        ]
    )
    store = _store(session)

    document = await store.get("stations", "s1")
    assert document.id == "s1"
    assert document.data["slots"] == {"total": 2, "available": 1}
    assert await store.get("stations", "gone") is None

    method, url, kwargs = session.requests[0]
    assert (method, url) == ("GET", f"{BASE}/stations/s1")
    assert "params" not in kwargs
    assert kwargs["headers"]["User-Agent"] == "evchargenet-firebase"


@pytest.mark.asyncio
async def test_query_posts_structured_query_and_skips_empty_rows():
    session = _RecordingSession(
        [_FakeResponse(json_data=[{"readTime": "2024-05-01T09:00:00Z"}, {"document": STATION}])]
    )
    store = _store(session)

    documents = await store.query(Query("stations", where=(("status", "Operational"),)))

    assert [document.id for document in documents] == ["s1"]
    method, url, kwargs = session.requests[0]
    assert (method, url) == ("POST", f"{BASE}:runQuery")
    assert kwargs["json"]["structuredQuery"]["from"] == [{"collectionId": "stations"}]


@pytest.mark.asyncio
async def test_run_atomic_reads_in_transaction_and_commits():
    session = _RecordingSession(
        [
            _FakeResponse(json_data={"transaction": "tx-1"}),
            _FakeResponse(json_data=STATION),
            _FakeResponse(json_data={"writeResults": [{}]}),
        ]
    )
    store = _store(session)

    async def take_slot(transaction):
        document = await transaction.get("stations", "s1")
        available = document.data["slots"]["available"]
        transaction.update("stations", "s1", (FieldUpdate(("slots", "available"), available - 1),))
        return available - 1

    assert await store.run_atomic(take_slot) == 0

    begin, read, commit = session.requests
    assert begin[1] == f"{BASE}:beginTransaction"
    assert begin[2]["json"] == {"options": {"readWrite": {}}}
    assert read[2]["params"] == {"transaction": "tx-1"}
    assert commit[1] == f"{BASE}:commit"
    assert commit[2]["json"]["transaction"] == "tx-1"
    write = commit[2]["json"]["writes"][0]
    assert write["updateMask"] == {"fieldPaths": ["slots.available"]}
    assert write["currentDocument"] == {"exists": True}


@pytest.mark.asyncio
async def test_run_atomic_rolls_back_rejected_work():
    session = _RecordingSession(
        [
            _FakeResponse(json_data={"transaction": "tx-2"}),
            _FakeResponse(json_data=STATION),
            _FakeResponse(json_data={}),
        ]
    )
    store = _store(session)

    async def reject(transaction):
        await transaction.get("stations", "s1")
        raise NoSlotsAvailableError("full")

    with pytest.raises(NoSlotsAvailableError):
        await store.run_atomic(reject)

    rollback = session.requests[-1]
    assert rollback[1] == f"{BASE}:rollback"
    assert rollback[2]["json"] == {"transaction": "tx-2"}
    assert len(session.requests) == 3


@pytest.mark.asyncio
async def test_aborted_commit_raises_conflict():
    session = _RecordingSession(
        [
            _FakeResponse(json_data={"transaction": "tx-3"}),
            _FakeResponse(status=409, json_data=_error("ABORTED", "Transaction lock timeout.")),
        ]
    )
    store = _store(session)

    async def noop(transaction):
        transaction.delete("activeSessions", "a1")

    with pytest.raises(ConflictError):
        await store.run_atomic(noop)


@pytest.mark.asyncio
async def test_create_uses_precondition_and_server_time():
    session = _RecordingSession([_FakeResponse(json_data={"writeResults": [{}]})])
    store = _store(session)

    doc_id = await store.create("reviews", {"rating": 5}, doc_id="r1")

    assert doc_id == "r1"
    write = session.requests[0][2]["json"]["writes"][0]
    assert write["currentDocument"] == {"exists": False}
    assert write["update"]["name"].endswith("/documents/reviews/r1")
    assert "transaction" not in session.requests[0][2]["json"]


@pytest.mark.asyncio
async def test_bearer_token_and_reauth(caplog):
    identity = _FakeIdentity()
    session = _RecordingSession(
        [
            _FakeResponse(status=401, json_data=_error("UNAUTHENTICATED")),
            _FakeResponse(json_data=STATION),
        ]
    )
    store = _store(session, identity=identity)

    with caplog.at_level(logging.WARNING, logger="evchargenet.backend.firebase.api"):
        document = await store.get("stations", "s1")

    assert document.id == "s1"
    assert identity.refreshes == 1
    first, second = session.requests
    assert first[2]["headers"]["Authorization"] == "Bearer token-1"
    assert second[2]["headers"]["Authorization"] == "Bearer token-2"
    assert "Backend firebase reauth triggered" in caplog.text


@pytest.mark.asyncio
async def test_reauth_happens_once():
    identity = _FakeIdentity()
    session = _RecordingSession(
        [
            _FakeResponse(status=403, json_data=_error("PERMISSION_DENIED")),
            _FakeResponse(status=403, json_data=_error("PERMISSION_DENIED")),
        ]
    )
    store = _store(session, identity=identity)

    with pytest.raises(AuthError):
        await store.delete("stations", "s1")
    assert identity.refreshes == 1
    assert len(session.requests) == 2


@pytest.mark.asyncio
async def test_subscribe_delivers_initial_snapshot_and_stops_polling():
    session = _RecordingSession([_FakeResponse(json_data=[{"document": STATION}])])
    store = _store(session, poll_interval=3600)
    received = []

    unsubscribe = await store.subscribe(Query("stations"), received.extend)

    assert [change.document.id for change in received] == ["s1"]
    unsubscribe()
    await store.aclose()
    assert len(session.requests) == 1
