"""Client facade for backend discovery and service construction."""

from __future__ import annotations

import asyncio
import importlib
from collections.abc import Callable
from datetime import datetime

import aiohttp

from .backend.base import BaseIdentityProvider, BaseStore
from .backend.loader import BackendManifest, list_backends, read_manifest
from .exceptions import BackendError
from .models import BackendInfo
from .service import ChargingService

_DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=30)


def _load_backend_data(
    backend_id: str,
) -> tuple[BackendManifest, type[BaseStore], type[BaseIdentityProvider]]:
    if not backend_id:
        raise BackendError("Backend id is required.")
    manifest = read_manifest(backend_id)
    module_name = f"evchargenet.backend.{backend_id}"
    try:
        module = importlib.import_module(module_name)
    except ModuleNotFoundError as exc:
        raise BackendError("Backend module could not be imported.") from exc
    store_cls = getattr(module, "Store", None)
    identity_cls = getattr(module, "IdentityProvider", None)
    if store_cls is None or identity_cls is None:
        raise BackendError("Backend module must export Store and IdentityProvider.")
    if not isinstance(store_cls, type) or not issubclass(store_cls, BaseStore):
        raise BackendError("Store must inherit from BaseStore.")
    if not isinstance(identity_cls, type) or not issubclass(identity_cls, BaseIdentityProvider):
        raise BackendError("IdentityProvider must inherit from BaseIdentityProvider.")
    return manifest, store_cls, identity_cls


class Client:
    """Facade for backend discovery and access."""

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        *,
        timeout: aiohttp.ClientTimeout | None = None,
        retry_count: int = 0,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout or _DEFAULT_TIMEOUT
        self._retry_count = max(0, retry_count)

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def list_backends(self) -> list[BackendInfo]:
        return await asyncio.to_thread(list_backends)

    async def connect(
        self,
        backend_id: str,
        *,
        project_id: str | None = None,
        api_key: str | None = None,
        database: str | None = None,
        base_url: str | None = None,
        poll_interval: float | None = None,
        conflict_retries: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> ChargingService:
        """Build a ChargingService wired to the identity provider and store of a backend."""
        manifest, store_cls, identity_cls = await asyncio.to_thread(
            _load_backend_data,
            backend_id,
        )
        session = self._ensure_session()
        identity = identity_cls(
            session,
            manifest,
            api_key=api_key,
            timeout=self._timeout,
            retry_count=self._retry_count,
        )
        store = store_cls(
            session,
            manifest,
            identity=identity,
            project_id=project_id,
            database=database,
            base_url=base_url,
            poll_interval=poll_interval,
            clock=clock,
            timeout=self._timeout,
            retry_count=self._retry_count,
        )
        return ChargingService(
            store,
            identity,
            clock=clock,
            conflict_retries=conflict_retries,
        )

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session
