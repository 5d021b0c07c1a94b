import pytest
from fastapi.testclient import TestClient

import main
from database import DocumentStore
from payments import FakeGateway, reset_gateway, set_gateway
from schemas import Identity


def product_record(product_id="p1", price=50.0, stock=10, **overrides):
    record = {
        "id": product_id,
        "name": f"Product {product_id}",
        "brand": "Acme",
        "category": "Fitness",
        "price": price,
        "rating": 4.5,
        "review_count": 0,
        "stock": stock,
        "images": [f"/uploads/{product_id}.png"],
        "short_description": "",
        "description": "A product",
        "highlights": [],
        "specs": {},
    }
    record.update(overrides)
    return record


SHIPPING = {
    "name": "Alice Runner",
    "phone": "555-0100",
    "address": "1 Track Lane",
    "city": "Eugene",
    "state": "OR",
    "zip": "97401",
}


@pytest.fixture()
def db_path(tmp_path):
    return str(tmp_path / "data" / "db.json")


@pytest.fixture()
async def store(db_path):
    store = DocumentStore(db_path)
    yield store
    await store.close()


@pytest.fixture()
def gateway():
    gateway = FakeGateway()
    set_gateway(gateway)
    yield gateway
    reset_gateway()


@pytest.fixture()
def alice():
    return Identity(id="u_alice", name="Alice", email="alice@example.com", is_admin=False)


@pytest.fixture()
def admin():
    return Identity(id="u_admin", name="Admin", email="admin@example.com", is_admin=True)


@pytest.fixture()
def client(monkeypatch, db_path, gateway):
    monkeypatch.setattr(main, "db", DocumentStore(db_path))
    with TestClient(main.app) as client:
        yield client
