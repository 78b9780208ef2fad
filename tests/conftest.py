from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import create_document, get_db
from errors import NotificationError
from notifier import Notifier
from orders import OrderService
from schemas import CatalogItem

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)

ADDRESS = {
    "full_name": "Asha Rao",
    "address_line": "12 MG Road",
    "city": "Pune",
    "postal_code": "411001",
}


class RecordingNotifier(Notifier):
    """Captures outbound calls instead of hitting the network."""

    def __init__(self, fail: bool = False):
        super().__init__(base_url="")
        self.calls = []
        self.fail = fail

    def _post(self, path, payload):
        self.calls.append((path, payload))
        if self.fail:
            raise NotificationError("notifier unreachable")

    def paths(self):
        return [path for path, _ in self.calls]


def make_item(id, kind="medicine", **fields):
    data = {"id": id, "kind": kind, "name": id, "price": 10.0, "stock_quantity": 5}
    if kind == "medicine":
        data["requires_prescription"] = False
    data.update(fields)
    return CatalogItem(**data)


@pytest.fixture
def db():
    return mongomock.MongoClient()["pharmacy_test"]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(db, notifier):
    return OrderService(db, notifier)


@pytest.fixture
def users(db):
    def add(role, name, email):
        return create_document("user", {"display_name": name, "email": email, "role": role}, database=db)

    return {
        "admin": add("admin", "Admin", "admin@example.com"),
        "courier": add("delivery", "Ravi Kumar", "ravi@example.com"),
        "other_courier": add("delivery", None, "sam@example.com"),
        "customer": add("customer", "Asha Rao", "asha@example.com"),
    }


@pytest.fixture
def stock(db):
    paracetamol = create_document(
        "medicine",
        {
            "name": "Crocin 500",
            "generic_name": "Paracetamol",
            "category": "Pain Relief",
            "manufacturer": "GSK",
            "price": 50.0,
            "stock_quantity": 10,
            "requires_prescription": False,
        },
        database=db,
    )
    amoxicillin = create_document(
        "medicine",
        {
            "name": "Mox 250",
            "generic_name": "Amoxicillin",
            "category": "Antibiotics",
            "price": 120.0,
            "stock_quantity": 1,
            "requires_prescription": True,
        },
        database=db,
    )
    bandage = create_document(
        "product",
        {"name": "Elastic Bandage", "category": "First Aid", "price": 15.0, "stock_quantity": 5},
        database=db,
    )
    return {"paracetamol": paracetamol, "amoxicillin": amoxicillin, "bandage": bandage}


def line(item_id, kind="medicine", price=50.0, quantity=1, **extra):
    data = {"id": item_id, "kind": kind, "name": extra.pop("name", item_id), "price": price, "quantity": quantity}
    data.update(extra)
    return data


@pytest.fixture
def client(db, notifier):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[main.get_notifier] = lambda: notifier
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
