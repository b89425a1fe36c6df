"""
Shared fixtures

The application runs against an in-memory mongomock database injected through
the ``get_db`` dependency, so no MongoDB server is needed and the lifespan
(which connects to the real server) is never entered.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app
from schemas import ADMIN, VISITOR
from security import create_access_token, get_password_hash

PASSWORD = "Abcd1234!"


@pytest.fixture
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def test_client(db) -> TestClient:
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(scope="session")
def password_hash() -> str:
    return get_password_hash(PASSWORD)


@pytest.fixture
def make_user(db, password_hash):
    def _make_user(email="alice@shop.com", name="Alice", role=VISITOR) -> str:
        doc = create_document(db, "user", {
            "name": name,
            "email": email,
            "password_hash": password_hash,
            "role": role,
        })
        return str(doc["_id"])
    return _make_user


@pytest.fixture
def make_product(db):
    def _make_product(name="Linen Shirt", price=89.9, stock=5, **extra) -> str:
        doc = create_document(db, "product", {"name": name, "price": price, "stock": stock, **extra})
        return str(doc["_id"])
    return _make_product


@pytest.fixture
def auth_headers():
    def _auth_headers(user_id: str, role: str = VISITOR) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}
    return _auth_headers


@pytest.fixture
def admin_headers(make_user, auth_headers) -> dict:
    admin_id = make_user(email="admin@shop.com", name="Admin", role=ADMIN)
    return auth_headers(admin_id, ADMIN)
