import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import create_sql_engine
from main import create_app
from memory_storage import MemoryStorage
from mongo_storage import MongoStorage
from sql_storage import SQLStorage

from helpers import ADMIN_EMAIL, ADMIN_PASSWORD, add_admin


@pytest.fixture
def memory_store():
    return MemoryStorage()


@pytest.fixture
def sql_store():
    store = SQLStorage(create_sql_engine("sqlite://"))
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def mongo_store():
    store = MongoStorage(mongomock.MongoClient()["agency_test"])
    store.initialize()
    return store


@pytest.fixture(params=["memory", "sql", "mongo"])
def any_store(request):
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture(params=["sql", "mongo"])
def persistent_store(request):
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def settings():
    return Settings(secret_key="test-secret", employee_registration_code="EMP-CODE")


@pytest.fixture
def make_client(settings):
    def _make(store=None, mailer=None):
        app = create_app(store=store if store is not None else MemoryStorage(), mailer=mailer,
                         settings=settings)
        return TestClient(app)
    return _make


@pytest.fixture
def client(make_client, memory_store):
    return make_client(memory_store)


@pytest.fixture
def admin_headers(client, memory_store):
    add_admin(memory_store)
    response = client.post("/api/auth/employee/login",
                           json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
