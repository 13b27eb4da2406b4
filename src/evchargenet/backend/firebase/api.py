"""Cloud Firestore (REST v1) document store."""

from __future__ import annotations

import asyncio
import logging
import math
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import datetime
from typing import Any, TypeVar

import aiohttp

from ...exceptions import (
    AuthError,
    BackendError,
    ConfigError,
    ConflictError,
    EVChargeNetError,
    NotFoundError,
    ValidationError,
)
from ...util import format_utc_timestamp, new_document_id, parse_timestamp
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
    error_status,
)
from ..loader import BackendManifest
from .const import (
    ABORTED_STATUS,
    ALREADY_EXISTS_STATUS,
    DEFAULT_DATABASE,
    DEFAULT_HEADERS,
    DEFAULT_POLL_INTERVAL,
    FIRESTORE_BASE_URL,
    REQUEST_TIME,
)

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_SIMPLE_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_FRACTIONAL_SECONDS = re.compile(r"\.(\d{6})\d+")


def field_path(parts: Sequence[str]) -> str:
    """Join path segments, quoting any segment that is not a plain identifier."""
    quoted = []
    for part in parts:
        if _SIMPLE_FIELD_NAME.match(part):
            quoted.append(part)
        else:
            escaped = part.replace("\\", "\\\\").replace("`", "\\`")
            quoted.append(f"`{escaped}`")
    return ".".join(quoted)


def parse_firestore_timestamp(value: Any) -> datetime:
    if not isinstance(value, str):
        raise BackendError("Backend returned an invalid timestamp.")
    # Firestore reports nanoseconds; datetime keeps microseconds.
    trimmed = _FRACTIONAL_SECONDS.sub(r".\1", value)
    try:
        return parse_timestamp(trimmed)
    except ValidationError as exc:
        raise BackendError("Backend returned an invalid timestamp.") from exc


def encode_value(value: Any) -> dict[str, Any]:
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError("Only finite numbers can be stored.")
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": format_utc_timestamp(value)}
    if isinstance(value, Mapping):
        fields, transforms = encode_fields(value)
        if transforms:
            raise ValidationError("Server timestamps are not supported inside lists.")
        return {"mapValue": {"fields": fields}}
    if isinstance(value, list | tuple):
        values = [encode_value(item) for item in value]
        return {"arrayValue": {"values": values}} if values else {"arrayValue": {}}
    raise ValidationError(f"Cannot store values of type {type(value).__name__}.")


def encode_fields(
    data: Mapping[str, Any],
    prefix: tuple[str, ...] = (),
) -> tuple[dict[str, Any], list[tuple[str, ...]]]:
    """Encode a mapping; server timestamp placeholders become transform paths."""
    fields: dict[str, Any] = {}
    transforms: list[tuple[str, ...]] = []
    for key, value in data.items():
        path = (*prefix, key)
        if value is SERVER_TIMESTAMP:
            transforms.append(path)
        elif isinstance(value, Mapping):
            nested, nested_transforms = encode_fields(value, path)
            fields[key] = {"mapValue": {"fields": nested}}
            transforms.extend(nested_transforms)
        else:
            fields[key] = encode_value(value)
    return fields, transforms


def decode_value(raw: Any) -> Any:
    if not isinstance(raw, dict) or len(raw) != 1:
        raise BackendError("Backend returned an invalid field value.")
    kind, value = next(iter(raw.items()))
    if kind == "nullValue":
        return None
    if kind in ("booleanValue", "stringValue", "referenceValue", "bytesValue"):
        return value
    try:
        if kind == "integerValue":
            return int(value)
        if kind == "doubleValue":
            return float(value)
    except (TypeError, ValueError) as exc:
        raise BackendError("Backend returned an invalid number.") from exc
    if kind == "timestampValue":
        return parse_firestore_timestamp(value)
    if kind == "geoPointValue":
        return dict(value or {})
    if kind == "arrayValue":
        return [decode_value(item) for item in (value or {}).get("values", [])]
    if kind == "mapValue":
        return decode_fields((value or {}).get("fields", {}))
    raise BackendError(f"Backend returned an unsupported value type {kind}.")


def decode_fields(fields: Any) -> dict[str, Any]:
    if not isinstance(fields, dict):
        raise BackendError("Backend returned invalid document fields.")
    return {key: decode_value(value) for key, value in fields.items()}


def decode_document(raw: Any) -> Document:
    if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
        raise BackendError("Backend returned an invalid document.")
    doc_id = raw["name"].rsplit("/", 1)[-1]
    update_time = raw.get("updateTime")
    return Document(
        id=doc_id,
        data=decode_fields(raw.get("fields", {})),
        update_time=parse_firestore_timestamp(update_time) if update_time else None,
    )


def structured_query(query: Query) -> dict[str, Any]:
    body: dict[str, Any] = {"from": [{"collectionId": query.collection}]}
    filters = [
        {
            "fieldFilter": {
                "field": {"fieldPath": field_path(name.split("."))},
                "op": "EQUAL",
                "value": encode_value(expected),
            }
        }
        for name, expected in query.where
    ]
    if len(filters) == 1:
        body["where"] = filters[0]
    elif filters:
        body["where"] = {"compositeFilter": {"op": "AND", "filters": filters}}
    if query.order_by is not None:
        body["orderBy"] = [
            {
                "field": {"fieldPath": field_path(query.order_by.split("."))},
                "direction": "DESCENDING" if query.descending else "ASCENDING",
            }
        ]
    if query.limit is not None:
        body["limit"] = query.limit
    return body


def diff_snapshots(
    collection: str,
    previous: Mapping[str, Document],
    current: Mapping[str, Document],
) -> list[DocumentChange]:
    changes: list[DocumentChange] = []
    for doc_id, document in current.items():
        before = previous.get(doc_id)
        if before is None:
            changes.append(DocumentChange(ChangeKind.ADDED, collection, document))
        elif before.update_time != document.update_time or before.data != document.data:
            changes.append(DocumentChange(ChangeKind.MODIFIED, collection, document))
    for doc_id, document in previous.items():
        if doc_id not in current:
            changes.append(DocumentChange(ChangeKind.REMOVED, collection, document))
    return changes


def _transform(path: tuple[str, ...]) -> dict[str, str]:
    return {"fieldPath": field_path(path), "setToServerValue": REQUEST_TIME}


def _nest_updates(fields: Sequence[FieldUpdate]) -> tuple[dict[str, Any], list[str]]:
    nested: dict[str, Any] = {}
    mask: list[str] = []
    for field_update in fields:
        target = nested
        for part in field_update.path[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[field_update.path[-1]] = field_update.value
        if field_update.value is not SERVER_TIMESTAMP:
            mask.append(field_path(field_update.path))
    return nested, mask


class _FirestoreTransaction(Transaction):
    def __init__(self, store: Store, transaction_id: str) -> None:
        super().__init__()
        self._store = store
        self._transaction_id = transaction_id

    async def _read(self, collection: str, doc_id: str) -> Document | None:
        return await self._store._get_document(
            collection,
            doc_id,
            transaction_id=self._transaction_id,
        )


class Store(BaseStore):
    """Document store backed by Cloud Firestore.

    Transactions use Firestore read-write transactions; a commit that lost a
    race comes back as ABORTED and is raised as ConflictError. Firestore has no
    REST listen channel, so ``subscribe`` polls the query every
    ``poll_interval`` seconds and reports the differences.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None,
        manifest: BackendManifest,
        **kwargs: Any,
    ) -> None:
        super().__init__(session, manifest, **kwargs)
        self._require_session()
        if not self._project_id:
            raise ConfigError("project_id is required for the Firebase backend.")
        database = self._database or DEFAULT_DATABASE
        self._documents_path = f"projects/{self._project_id}/databases/{database}/documents"
        self._api_base = self._base_url or FIRESTORE_BASE_URL
        self._interval = self._poll_interval or DEFAULT_POLL_INTERVAL
        self._poll_tasks: set[asyncio.Task[None]] = set()

    async def aclose(self) -> None:
        tasks = list(self._poll_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_tasks.clear()

    async def get(self, collection: str, doc_id: str) -> Document | None:
        return await self._get_document(collection, doc_id)

    async def query(self, query: Query) -> list[Document]:
        rows = await self._call(
            "POST",
            ":runQuery",
            json={"structuredQuery": structured_query(query)},
        )
        if not isinstance(rows, list):
            raise BackendError("Backend returned invalid query results.")
        return [
            decode_document(row["document"])
            for row in rows
            if isinstance(row, dict) and "document" in row
        ]

    async def create(
        self,
        collection: str,
        data: Mapping[str, Any],
        *,
        doc_id: str | None = None,
    ) -> str:
        doc_id = doc_id or new_document_id()
        await self._commit([Write(WriteKind.CREATE, collection, doc_id, data=dict(data))])
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Sequence[FieldUpdate]) -> None:
        await self._commit([Write(WriteKind.UPDATE, collection, doc_id, fields=tuple(fields))])

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._commit([Write(WriteKind.DELETE, collection, doc_id)])

    async def subscribe(self, query: Query, callback: ChangeCallback) -> Unsubscribe:
        snapshot = {document.id: document for document in await self.query(query)}
        if snapshot:
            initial = [
                DocumentChange(ChangeKind.ADDED, query.collection, document)
                for document in snapshot.values()
            ]
            self._deliver(callback, initial)
        task = asyncio.create_task(self._poll(query, callback, snapshot))
        self._poll_tasks.add(task)
        task.add_done_callback(self._poll_tasks.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def run_atomic(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        begun = await self._call(
            "POST",
            ":beginTransaction",
            json={"options": {"readWrite": {}}},
        )
        transaction_id = begun.get("transaction") if isinstance(begun, dict) else None
        if not isinstance(transaction_id, str) or not transaction_id:
            raise BackendError("Backend did not return a transaction id.")
        transaction = _FirestoreTransaction(self, transaction_id)
        try:
            result = await fn(transaction)
        except Exception:
            await self._rollback(transaction_id)
            raise
        await self._commit(transaction.writes, transaction_id=transaction_id)
        return result

    async def _poll(
        self,
        query: Query,
        callback: ChangeCallback,
        snapshot: dict[str, Document],
    ) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                documents = await self.query(query)
            except EVChargeNetError as exc:
                _LOGGER.warning("Polling %s failed: %s", query.collection, exc)
                continue
            current = {document.id: document for document in documents}
            changes = diff_snapshots(query.collection, snapshot, current)
            snapshot = current
            if changes:
                self._deliver(callback, changes)

    async def _get_document(
        self,
        collection: str,
        doc_id: str,
        *,
        transaction_id: str | None = None,
    ) -> Document | None:
        params = {"transaction": transaction_id} if transaction_id else None
        try:
            raw = await self._call("GET", f"/{collection}/{doc_id}", params=params)
        except NotFoundError:
            return None
        return decode_document(raw)

    async def _commit(
        self,
        writes: Sequence[Write],
        *,
        transaction_id: str | None = None,
    ) -> None:
        body: dict[str, Any] = {"writes": [self._encode_write(write) for write in writes]}
        if transaction_id is not None:
            body["transaction"] = transaction_id
        await self._call("POST", ":commit", json=body)

    async def _rollback(self, transaction_id: str) -> None:
        try:
            await self._call("POST", ":rollback", json={"transaction": transaction_id})
        except EVChargeNetError as exc:
            _LOGGER.warning("Rollback of transaction failed: %s", exc)

    def _document_name(self, collection: str, doc_id: str) -> str:
        return f"{self._documents_path}/{collection}/{doc_id}"

    def _encode_write(self, write: Write) -> dict[str, Any]:
        name = self._document_name(write.collection, write.doc_id)
        if write.kind is WriteKind.DELETE:
            return {"delete": name}
        if write.kind is WriteKind.CREATE:
            fields, transforms = encode_fields(write.data)
            encoded: dict[str, Any] = {
                "update": {"name": name, "fields": fields},
                "currentDocument": {"exists": False},
            }
        else:
            nested, mask = _nest_updates(write.fields)
            fields, transforms = encode_fields(nested)
            encoded = {
                "update": {"name": name, "fields": fields},
                "updateMask": {"fieldPaths": mask},
                "currentDocument": {"exists": True},
            }
        if transforms:
            encoded["updateTransforms"] = [_transform(path) for path in transforms]
        return encoded

    async def _build_headers(self) -> dict[str, str]:
        headers = dict(DEFAULT_HEADERS)
        if self._identity is not None:
            token = await self._identity.get_id_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _call(self, method: str, suffix: str, **kwargs: Any) -> Any:
        url = f"{self._api_base}/{self._documents_path}{suffix}"
        if kwargs.get("params") is None:
            kwargs.pop("params", None)
        attempts = 2 if self._identity is not None else 1
        for attempt in range(attempts):
            headers = await self._build_headers()
            try:
                return await self._request(method, url, headers=headers, **kwargs)
            except AuthError:
                if self._identity is not None and attempt == 0:
                    _LOGGER.warning("Backend %s reauth triggered", self.backend_id)
                    await self._identity.refresh()
                    continue
                raise
        raise BackendError("Request failed.")

    def _error_for_status(self, status: int, payload: Any) -> EVChargeNetError:
        status_name = error_status(payload)
        if status_name == ABORTED_STATUS:
            return ConflictError("Transaction was aborted by a concurrent update.")
        if status_name == ALREADY_EXISTS_STATUS:
            return BackendError("Document already exists.")
        return super()._error_for_status(status, payload)
