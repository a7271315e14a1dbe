"""Shared fixtures."""

import httpx
import pytest

from bazaar_server.bazaar_client import BazaarClient
from bazaar_server.models import User
from bazaar_server.persistence import StateStorage
from bazaar_server.session import BazaarSession
from bazaar_server.store import AppStore
from bazaar_server.sync import SyncManager

from .fakes import BASE_URL, FakeBazaarApi


@pytest.fixture
def api() -> FakeBazaarApi:
    return FakeBazaarApi()


@pytest.fixture
async def client(api):
    client = BazaarClient(base_url=BASE_URL, transport=httpx.MockTransport(api.handler))
    yield client
    await client.close()


@pytest.fixture
def storage(tmp_path) -> StateStorage:
    return StateStorage(str(tmp_path / "state.json"))


@pytest.fixture
def store(client, storage) -> AppStore:
    return AppStore(client, storage)


@pytest.fixture
def sync(store) -> SyncManager:
    return SyncManager(store)


@pytest.fixture
def session(client, store) -> BazaarSession:
    return BazaarSession(client, store)


@pytest.fixture
def logged_in(api, store):
    """Put the store in an authenticated state without going through login."""
    token = api.issue_token()
    store.set_session(User.model_validate(api.users["u1"]), token)
    return token
