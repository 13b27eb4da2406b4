import aiohttp
import pytest

from evchargenet import ChargingService, Client
from evchargenet.backend.firebase import IdentityProvider as FirebaseIdentityProvider
from evchargenet.backend.firebase import Store as FirebaseStore
from evchargenet.backend.memory import IdentityProvider, Store
from evchargenet.exceptions import ConfigError


@pytest.mark.asyncio
async def test_client_does_not_close_injected_session() -> None:
    session = aiohttp.ClientSession()
    client = Client(session=session)
    await client.aclose()

    assert session.closed is False
    await session.close()


@pytest.mark.asyncio
async def test_client_closes_owned_session() -> None:
    client = Client()
    service = await client.connect("memory")
    session = client._session
    await client.aclose()

    assert isinstance(service, ChargingService)
    assert session is not None and session.closed is True
    assert client._session is None


@pytest.mark.asyncio
async def test_connect_memory_wires_store_and_identity() -> None:
    async with Client(retry_count=2) as client:
        service = await client.connect("memory", conflict_retries=1)
        assert isinstance(service.store, Store)
        assert isinstance(service.identity, IdentityProvider)
        assert service.store.backend_id == "memory"
        assert service.store.realtime is True
        assert service.store._identity is service.identity
        assert service.store._retry_count == 2
        assert service._conflict_retries == 1


@pytest.mark.asyncio
async def test_connect_retries_lost_races_without_cap_by_default() -> None:
    async with Client() as client:
        service = await client.connect("memory")
        assert service._conflict_retries is None


@pytest.mark.asyncio
async def test_connect_firebase_requires_project_id() -> None:
    async with Client() as client:
        with pytest.raises(ConfigError):
            await client.connect("firebase", api_key="key")


@pytest.mark.asyncio
async def test_connect_firebase_passes_configuration() -> None:
    async with Client() as client:
        service = await client.connect(
            "firebase",
            project_id="demo-project",
            api_key="key",
            database="chargers",
            base_url="http://localhost:8080/v1/",
            poll_interval=0.5,
        )
        store = service.store
        assert isinstance(store, FirebaseStore)
        assert isinstance(service.identity, FirebaseIdentityProvider)
        assert store.realtime is False
        assert store._documents_path == "projects/demo-project/databases/chargers/documents"
        assert store._api_base == "http://localhost:8080/v1"
        assert store._interval == 0.5
        await service.aclose()
