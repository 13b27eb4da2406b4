"""In-memory document store implementation."""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

import aiohttp

from ...exceptions import BackendError, ConflictError, NotFoundError
from ...util import new_document_id
from ..base import (
    SERVER_TIMESTAMP,
    BaseStore,
    ChangeCallback,
    ChangeKind,
    Document,
    DocumentChange,
    FieldUpdate,
    Query,
    Transaction,
    Unsubscribe,
    Write,
    WriteKind,
    lookup_path,
)
from ..loader import BackendManifest

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class _Record:
    version: int
    data: dict[str, Any]
    update_time: datetime


@dataclass(frozen=True, slots=True)
class _Applied:
    collection: str
    doc_id: str
    before: _Record | None
    after: _Record | None


def resolve_server_values(value: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, Mapping):
        return {key: resolve_server_values(item, now) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [resolve_server_values(item, now) for item in value]
    return copy.deepcopy(value)


def apply_field_updates(
    data: Mapping[str, Any],
    fields: Sequence[FieldUpdate],
    now: datetime,
) -> dict[str, Any]:
    updated = copy.deepcopy(dict(data))
    for field_update in fields:
        target = updated
        for part in field_update.path[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[field_update.path[-1]] = resolve_server_values(field_update.value, now)
    return updated


class _MemoryTransaction(Transaction):
    def __init__(self, store: Store) -> None:
        super().__init__()
        self._store = store
        self.read_versions: dict[tuple[str, str], int] = {}

    async def _read(self, collection: str, doc_id: str) -> Document | None:
        record = self._store._record(collection, doc_id)
        self.read_versions[(collection, doc_id)] = record.version if record else 0
        # Yield like a remote read: other transactions may commit before this one does.
        await asyncio.sleep(0)
        if record is None:
            return None
        return self._store._to_document(doc_id, record)


class Store(BaseStore):
    """Document store held in process memory.

    Transactions are optimistic: each read records the document version and the
    commit fails with ConflictError when any of those versions moved. Change
    notifications are pushed synchronously after every commit; ``order_by`` and
    ``limit`` only apply to ``query`` results.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None,
        manifest: BackendManifest,
        **kwargs: Any,
    ) -> None:
        super().__init__(session, manifest, **kwargs)
        self._collections: dict[str, dict[str, _Record]] = {}
        self._versions = itertools.count(1)
        self._lock = asyncio.Lock()
        self._subscriptions: dict[int, tuple[Query, ChangeCallback]] = {}
        self._subscription_ids = itertools.count(1)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        record = self._record(collection, doc_id)
        if record is None:
            return None
        return self._to_document(doc_id, record)

    async def query(self, query: Query) -> list[Document]:
        records = self._collections.get(query.collection, {})
        documents = [
            self._to_document(doc_id, record)
            for doc_id, record in records.items()
            if query.matches(record.data)
        ]
        if query.order_by is not None:
            order_by = query.order_by
            # Missing values sort last in both directions.
            present = [doc for doc in documents if lookup_path(doc.data, order_by) is not None]
            missing = [doc for doc in documents if lookup_path(doc.data, order_by) is None]
            present.sort(key=lambda doc: lookup_path(doc.data, order_by), reverse=query.descending)
            documents = present + missing
        if query.limit is not None:
            documents = documents[: query.limit]
        return documents

    async def create(
        self,
        collection: str,
        data: Mapping[str, Any],
        *,
        doc_id: str | None = None,
    ) -> str:
        doc_id = doc_id or new_document_id()
        await self._commit([Write(WriteKind.CREATE, collection, doc_id, data=dict(data))], {})
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Sequence[FieldUpdate]) -> None:
        await self._commit([Write(WriteKind.UPDATE, collection, doc_id, fields=tuple(fields))], {})

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._commit([Write(WriteKind.DELETE, collection, doc_id)], {})

    async def subscribe(self, query: Query, callback: ChangeCallback) -> Unsubscribe:
        subscription_id = next(self._subscription_ids)
        self._subscriptions[subscription_id] = (query, callback)
        initial = [
            DocumentChange(ChangeKind.ADDED, query.collection, document)
            for document in await self.query(query)
        ]
        if initial:
            self._deliver(callback, initial)

        def unsubscribe() -> None:
            self._subscriptions.pop(subscription_id, None)

        return unsubscribe

    async def run_atomic(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        transaction = _MemoryTransaction(self)
        result = await fn(transaction)
        await self._commit(list(transaction.writes), transaction.read_versions)
        return result

    def _record(self, collection: str, doc_id: str) -> _Record | None:
        return self._collections.get(collection, {}).get(doc_id)

    def _to_document(self, doc_id: str, record: _Record) -> Document:
        return Document(id=doc_id, data=copy.deepcopy(record.data), update_time=record.update_time)

    async def _commit(
        self,
        writes: Sequence[Write],
        read_versions: Mapping[tuple[str, str], int],
    ) -> None:
        async with self._lock:
            for (collection, doc_id), version in read_versions.items():
                current = self._record(collection, doc_id)
                if (current.version if current else 0) != version:
                    _LOGGER.debug("Transaction conflict on %s/%s", collection, doc_id)
                    raise ConflictError(
                        f"Document {collection}/{doc_id} changed during the transaction."
                    )
            staged = self._stage(writes)
            applied: list[_Applied] = []
            for (collection, doc_id), record in staged.items():
                before = self._record(collection, doc_id)
                if record is None:
                    if before is None:
                        continue
                    del self._collections[collection][doc_id]
                else:
                    self._collections.setdefault(collection, {})[doc_id] = record
                applied.append(_Applied(collection, doc_id, before, record))
        if applied:
            self._notify(applied)

    def _stage(self, writes: Sequence[Write]) -> dict[tuple[str, str], _Record | None]:
        """Validate every write against a scratch view before anything is applied."""
        now = self._clock()
        staged: dict[tuple[str, str], _Record | None] = {}
        for write in writes:
            key = (write.collection, write.doc_id)
            current = staged[key] if key in staged else self._record(*key)
            if write.kind is WriteKind.CREATE:
                if current is not None:
                    name = f"{write.collection}/{write.doc_id}"
                    raise BackendError(f"Document {name} already exists.")
                data = resolve_server_values(write.data, now)
                staged[key] = _Record(next(self._versions), data, now)
            elif write.kind is WriteKind.UPDATE:
                if current is None:
                    name = f"{write.collection}/{write.doc_id}"
                    raise NotFoundError(f"Document {name} does not exist.")
                data = apply_field_updates(current.data, write.fields, now)
                staged[key] = _Record(next(self._versions), data, now)
            else:
                staged[key] = None
        return staged

    def _notify(self, applied: Sequence[_Applied]) -> None:
        for query, callback in list(self._subscriptions.values()):
            changes: list[DocumentChange] = []
            for item in applied:
                if item.collection != query.collection:
                    continue
                was = item.before is not None and query.matches(item.before.data)
                matches = item.after is not None and query.matches(item.after.data)
                if matches and item.after is not None:
                    kind = ChangeKind.MODIFIED if was else ChangeKind.ADDED
                    document = self._to_document(item.doc_id, item.after)
                elif was and item.before is not None:
                    kind = ChangeKind.REMOVED
                    document = self._to_document(item.doc_id, item.before)
                else:
                    continue
                changes.append(DocumentChange(kind, item.collection, document))
            if changes:
                self._deliver(callback, changes)

