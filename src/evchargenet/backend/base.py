"""Backend base classes and shared behavior."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, TypeVar

import aiohttp

from ..exceptions import (
    AuthError,
    BackendError,
    BackendUnavailableError,
    ConfigError,
    ConflictError,
    EVChargeNetError,
    NotFoundError,
    ValidationError,
)
from ..models import BackendInfo, Identity
from ..util import new_document_id, utc_now
from .loader import BackendManifest

_LOGGER = logging.getLogger(__name__)
_DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=30)

T = TypeVar("T")


class _ServerTimestamp:
    """Placeholder replaced with the commit time by the store."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True, slots=True)
class FieldUpdate:
    path: tuple[str, ...]
    value: Any

    def __post_init__(self) -> None:
        if not self.path or not all(isinstance(part, str) and part for part in self.path):
            raise ValidationError("Field path must be a non-empty tuple of names.")


@dataclass(frozen=True, slots=True)
class Document:
    id: str
    data: dict[str, Any]
    update_time: datetime | None = None


class ChangeKind(StrEnum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True, slots=True)
class DocumentChange:
    kind: ChangeKind
    collection: str
    document: Document


@dataclass(frozen=True, slots=True)
class Query:
    collection: str
    where: tuple[tuple[str, Any], ...] = ()
    order_by: str | None = None
    descending: bool = False
    limit: int | None = None

    def matches(self, data: Mapping[str, Any]) -> bool:
        return all(lookup_path(data, name) == expected for name, expected in self.where)


class WriteKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class Write:
    kind: WriteKind
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)
    fields: tuple[FieldUpdate, ...] = ()


ChangeCallback = Callable[[list[DocumentChange]], None]
Unsubscribe = Callable[[], None]
AuthStateCallback = Callable[[Identity | None], None]


def lookup_path(data: Mapping[str, Any], dotted: str) -> Any:
    current: Any = data
    for part in dotted.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def error_message(payload: Any) -> str | None:
    """Return the message of a Google-style ``{"error": {"message": ...}}`` body."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        error = error.get("message")
    if isinstance(error, str) and error.strip():
        return error.strip()
    return None


def error_status(payload: Any) -> str | None:
    if not isinstance(payload, dict) or not isinstance(payload.get("error"), dict):
        return None
    status = payload["error"].get("status")
    return status if isinstance(status, str) else None


class _HttpComponent:
    """HTTP plumbing shared by stores and identity providers."""

    def __init__(
        self,
        session: aiohttp.ClientSession | None,
        manifest: BackendManifest,
        *,
        timeout: aiohttp.ClientTimeout | None,
        retry_count: int,
    ) -> None:
        self._session = session
        self._manifest = manifest
        self._timeout = timeout or _DEFAULT_TIMEOUT
        self._retry_count = max(0, retry_count)

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise ConfigError(f"Backend {self._manifest.id} requires an aiohttp session.")
        return self._session

    async def _request(
        self,
        method: str,
        url: str,
        *,
        expect_json: bool = True,
        **kwargs: Any,
    ) -> Any:
        session = self._require_session()
        retries = self._retry_count if method.upper() == "GET" else 0
        attempts = retries + 1
        for attempt in range(attempts):
            try:
                async with session.request(
                    method,
                    url,
                    timeout=self._timeout,
                    ssl=True,
                    **kwargs,
                ) as response:
                    if not 200 <= response.status < 300:
                        payload = await self._error_payload(response)
                        raise self._error_for_status(response.status, payload)
                    if expect_json:
                        try:
                            return await response.json()
                        except (aiohttp.ContentTypeError, ValueError) as exc:
                            raise BackendError("Response did not contain valid JSON.") from exc
                    return await response.text()
            except (aiohttp.ClientError, TimeoutError) as exc:
                if attempt >= attempts - 1:
                    raise BackendUnavailableError("Network request failed.") from exc
        raise BackendUnavailableError("Network request failed.")

    async def _error_payload(self, response: aiohttp.ClientResponse) -> Any:
        try:
            return await response.json()
        except (aiohttp.ContentTypeError, ValueError):
            return None

    def _error_for_status(self, status: int, payload: Any) -> EVChargeNetError:
        message = error_message(payload)
        if status in (401, 403):
            return AuthError("Authentication failed.", detail=message)
        if status == 404:
            return NotFoundError("Backend resource was not found.", detail=message)
        if status == 409:
            return ConflictError("Backend reported a conflicting update.", detail=message)
        if status == 429 or status >= 500:
            return BackendUnavailableError(
                f"Backend is unavailable (status {status}).",
                detail=message,
            )
        return BackendError(f"Backend request failed with status {status}.", detail=message)


class Transaction(ABC):
    """Reads and staged writes executed as one atomic unit.

    All reads must happen before the first write.
    """

    def __init__(self) -> None:
        self._writes: list[Write] = []

    @property
    def writes(self) -> tuple[Write, ...]:
        return tuple(self._writes)

    @abstractmethod
    async def _read(self, collection: str, doc_id: str) -> Document | None:
        """Read a document and record it in the transaction's read set."""

    async def get(self, collection: str, doc_id: str) -> Document | None:
        if self._writes:
            raise BackendError("Transaction reads must happen before writes.")
        return await self._read(collection, doc_id)

    def create(
        self,
        collection: str,
        data: Mapping[str, Any],
        *,
        doc_id: str | None = None,
    ) -> str:
        doc_id = doc_id or new_document_id()
        self._writes.append(Write(WriteKind.CREATE, collection, doc_id, data=dict(data)))
        return doc_id

    def update(self, collection: str, doc_id: str, fields: Sequence[FieldUpdate]) -> None:
        if not fields:
            raise ValidationError("At least one field update is required.")
        self._writes.append(Write(WriteKind.UPDATE, collection, doc_id, fields=tuple(fields)))

    def delete(self, collection: str, doc_id: str) -> None:
        self._writes.append(Write(WriteKind.DELETE, collection, doc_id))


class BaseStore(_HttpComponent, ABC):
    """Base class for document store implementations."""

    def __init__(
        self,
        session: aiohttp.ClientSession | None,
        manifest: BackendManifest,
        *,
        identity: BaseIdentityProvider | None = None,
        project_id: str | None = None,
        database: str | None = None,
        base_url: str | None = None,
        poll_interval: float | None = None,
        clock: Callable[[], datetime] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        retry_count: int = 0,
    ) -> None:
        super().__init__(session, manifest, timeout=timeout, retry_count=retry_count)
        self._identity = identity
        self._project_id = project_id
        self._database = database
        self._base_url = self._normalize_base_url(base_url)
        self._poll_interval = poll_interval
        self._clock = clock or utc_now

    @property
    def backend_id(self) -> str:
        return self._manifest.id

    @property
    def backend_name(self) -> str:
        return self._manifest.name

    @property
    def realtime(self) -> bool:
        return self._manifest.realtime

    @property
    def info(self) -> BackendInfo:
        return BackendInfo(id=self._manifest.id, realtime=self._manifest.realtime)

    def _normalize_base_url(self, base_url: str | None) -> str | None:
        if base_url is None:
            return None
        if not isinstance(base_url, str) or not base_url.strip():
            raise ValidationError("base_url must be a non-empty string.")
        return base_url.strip().rstrip("/")

    async def aclose(self) -> None:
        """Release background resources such as polling tasks."""

    def _deliver(self, callback: ChangeCallback, changes: list[DocumentChange]) -> None:
        try:
            callback(changes)
        except Exception:
            # A failing listener never undoes a commit that already happened.
            _LOGGER.exception("Change listener raised an exception")

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Return a document or ``None`` when it does not exist."""

    @abstractmethod
    async def query(self, query: Query) -> list[Document]:
        """Return documents matching all equality filters."""

    @abstractmethod
    async def create(
        self,
        collection: str,
        data: Mapping[str, Any],
        *,
        doc_id: str | None = None,
    ) -> str:
        """Create a document; the store assigns the id unless ``doc_id`` is given."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Sequence[FieldUpdate]) -> None:
        """Apply field updates to an existing document."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document; deleting a missing document is a no-op."""

    @abstractmethod
    async def subscribe(self, query: Query, callback: ChangeCallback) -> Unsubscribe:
        """Deliver the current matches, then every later change, to ``callback``."""

    @abstractmethod
    async def run_atomic(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run ``fn`` and commit its writes atomically.

        Raises ConflictError when a document read by ``fn`` changed before commit.
        """


class BaseIdentityProvider(_HttpComponent, ABC):
    """Base class for identity provider implementations."""

    def __init__(
        self,
        session: aiohttp.ClientSession | None,
        manifest: BackendManifest,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        retry_count: int = 0,
    ) -> None:
        super().__init__(session, manifest, timeout=timeout, retry_count=retry_count)
        self._api_key = api_key
        self._base_url = base_url
        self._current: Identity | None = None
        self._listeners: dict[int, AuthStateCallback] = {}
        self._next_listener = 0

    @property
    def current_user(self) -> Identity | None:
        return self._current

    def on_auth_state_changed(self, callback: AuthStateCallback) -> Unsubscribe:
        """Register ``callback``; it is called now and on every sign-in or sign-out."""
        listener_id = self._next_listener
        self._next_listener += 1
        self._listeners[listener_id] = callback
        callback(self._current)

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def _set_current_user(self, identity: Identity | None) -> None:
        if identity == self._current:
            return
        self._current = identity
        for callback in list(self._listeners.values()):
            callback(identity)

    def _validate_credentials(self, email: str, password: str) -> str:
        if not isinstance(email, str) or "@" not in email.strip():
            raise ValidationError("A valid email address is required.")
        if not isinstance(password, str) or not password:
            raise ValidationError("password is required.")
        return email.strip().lower()

    async def get_id_token(self) -> str | None:
        """Return a bearer token for the current user, if the backend uses one."""
        return None

    async def refresh(self) -> None:
        """Refresh credentials after the backend rejected them."""

    async def sign_out(self) -> None:
        _LOGGER.debug("Identity provider %s sign_out", self._manifest.id)
        self._set_current_user(None)

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Identity:
        """Authenticate an existing account."""

    @abstractmethod
    async def sign_up(self, email: str, password: str) -> Identity:
        """Create an account and sign it in."""
