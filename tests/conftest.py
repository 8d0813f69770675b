import mongomock
import pytest
from fastapi.testclient import TestClient

import accounts
from database import PRODUCTS, Database
from main import create_app
from schemas import Product
from security import create_token


@pytest.fixture
def db():
    database = Database(client=mongomock.MongoClient(), name="okimall_test")
    database.connect()
    yield database


@pytest.fixture
def client(db):
    app = create_app(db)
    with TestClient(app) as c:
        yield c


def make_user(db, email="customer@example.com", role="customer", name="Customer", password="secret123"):
    return accounts.register(db, email, name, password, role)


def auth(user):
    return {"Authorization": f"Bearer {create_token(user)}"}


def make_product(db, **overrides):
    fields = {
        "name": "Classic Ring",
        "sku": "R001",
        "description": "14K gold",
        "price": 100000,
        "stock": 5,
        "category": "반지",
    }
    fields.update(overrides)
    product_id = db.create_document(PRODUCTS, Product(**fields))
    return product_id


SHIPPING = {
    "recipient_name": "Kim Minji",
    "phone": "010-1234-5678",
    "postal_code": "06236",
    "address": "Seoul Gangnam-gu Teheran-ro 1",
}


@pytest.fixture
def customer(db):
    return make_user(db)


@pytest.fixture
def admin(db):
    return make_user(db, email="admin@example.com", role="admin", name="Admin")
