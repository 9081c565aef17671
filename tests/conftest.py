"""
Shared pytest fixtures for the print-shop test suite.

Provides:
    - db: SQLAlchemy session on a fresh in-memory SQLite database
    - store: SqlRecordStore over that session
    - progress: OrderProgressEngine over the store
    - shop_client, make_product, make_order: record factories
    - api: FastAPI TestClient wired to the same store
"""
import os

# Keep the application module from creating a database file on import
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STORE_BACKEND", "sql")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from printshop import models  # noqa: F401  (registers tables)
from printshop import schemas
from printshop.database import Base, make_engine
from printshop.main import app, get_store
from printshop.progress import OrderProgressEngine
from printshop.store import SqlRecordStore


@pytest.fixture()
def db():
    """Per-test in-memory database, shared across threads by StaticPool."""
    test_engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=test_engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSession()
    yield session
    session.close()
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture()
def store(db):
    return SqlRecordStore(db)


@pytest.fixture()
def progress(store):
    return OrderProgressEngine(store)


@pytest.fixture()
def shop_client(store):
    return store.insert("clients", {"full_name": "Kamel Zouaoui", "phone": "123-456-7890"})


@pytest.fixture()
def make_product(store):
    def _make(steps, name="Business cards"):
        return store.insert("products", {"name": name, "process_steps": list(steps)})
    return _make


@pytest.fixture()
def make_order(progress, shop_client):
    """Create an order through the engine; returns (order, [items])."""
    def _make(*products, quantity=10, is_priority=False):
        order = progress.create_order(schemas.OrderCreate(
            client_id=shop_client["id"],
            is_priority=is_priority,
            items=[schemas.OrderItemCreate(product_id=p["id"], quantity=quantity) for p in products],
        ))
        return order, progress.list_items(order.id)
    return _make


@pytest.fixture()
def api(store):
    """TestClient whose requests use the test store."""
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
