from types import SimpleNamespace

import stripe
from bson import ObjectId

import main
from conftest import ADDRESS, line
from database import create_document, get_db


def create_order(client, stock, users, quantity=1):
    resp = client.post(
        "/orders",
        json={
            "items": [line(stock["paracetamol"], quantity=quantity, requires_prescription=False)],
            "shipping_address": ADDRESS,
            "user_id": users["customer"],
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_root(client):
    assert client.get("/").json()["status"] == "ok"


def test_database_not_configured(client):
    main.app.dependency_overrides[get_db] = lambda: None
    resp = client.get("/orders")
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Database not configured"
    assert client.get("/test").json()["database"] == "not configured"


def test_catalog_crud(client):
    resp = client.post(
        "/medicines",
        json={"name": "Cetzine", "generic_name": "Cetirizine", "price": 30, "stock_quantity": 4},
    )
    assert resp.status_code == 201
    item_id = resp.json()["id"]

    item = client.get(f"/medicines/{item_id}").json()
    assert item["kind"] == "medicine"
    assert item["requires_prescription"] is False

    assert client.patch(f"/medicines/{item_id}", json={"price": 25}).json() == {"updated": True}
    assert client.get(f"/medicines/{item_id}").json()["price"] == 25

    assert client.delete(f"/medicines/{item_id}").json() == {"deleted": True}
    assert client.get(f"/medicines/{item_id}").status_code == 404
    assert client.get(f"/products/{ObjectId()}").status_code == 404


def test_catalog_queries(client, stock):
    low = client.get("/medicines/low-stock", params={"threshold": 5}).json()
    assert [item["id"] for item in low] == [stock["amoxicillin"]]

    found = client.get("/search", params={"q": "para"}).json()
    assert [item["id"] for item in found] == [stock["paracetamol"]]

    assert client.get("/categories/products").json() == ["First Aid"]
    assert client.get("/categories/medicines").json() == ["Antibiotics", "Pain Relief"]
    assert client.get("/categories/medicinez").status_code == 404
    assert client.get("/categories/productss").status_code == 404


def test_alternatives_endpoint(client, db, stock):
    other = create_document(
        "medicine",
        {
            "name": "Dolo 650",
            "generic_name": "Paracetamol",
            "category": "Pain Relief",
            "manufacturer": "Micro Labs",
            "price": 52.0,
            "stock_quantity": 7,
            "requires_prescription": False,
        },
        database=db,
    )
    results = client.get(f"/medicines/{stock['paracetamol']}/alternatives").json()
    assert results[0]["id"] == other
    assert results[0]["score"] == 10.0
    assert stock["paracetamol"] not in [r["id"] for r in results]


def test_cold_start_recommendations(client, stock, users):
    results = client.get(f"/users/{users['customer']}/recommendations").json()
    assert [r["id"] for r in results] == [stock["bandage"], stock["paracetamol"], stock["amoxicillin"]]


def test_order_flow(client, users, stock, notifier):
    created = create_order(client, stock, users, quantity=2)
    order_id = created["order_id"]
    otp = created["order"]["delivery_otp"]

    resp = client.post(f"/orders/{order_id}/assign", json={"delivery_person_id": users["courier"]})
    assert resp.status_code == 403

    resp = client.post(
        f"/orders/{order_id}/assign",
        json={"delivery_person_id": users["courier"]},
        headers={"X-User-Id": users["admin"]},
    )
    assert resp.status_code == 200
    assert resp.json()["order"]["status"] == "Ready for Delivery"

    courier = {"X-User-Id": users["courier"]}
    for status in ("Picked Up", "Out for Delivery"):
        resp = client.patch(f"/orders/{order_id}/status", json={"status": status}, headers=courier)
        assert resp.status_code == 200, resp.text

    resp = client.patch(f"/orders/{order_id}/status", json={"status": "Delivered", "otp_code": "999999"}, headers=courier)
    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Invalid OTP")
    assert client.get(f"/orders/{order_id}").json()["status"] == "Out for Delivery"

    resp = client.patch(f"/orders/{order_id}/status", json={"status": "Delivered", "otp_code": otp}, headers=courier)
    assert resp.status_code == 200
    assert client.get(f"/orders/{order_id}").json()["status"] == "Delivered"

    assigned = client.get(f"/delivery/{users['courier']}/orders").json()
    assert [o["id"] for o in assigned] == [order_id]

    inbox = client.get(f"/users/{users['customer']}/notifications").json()
    assert inbox[0]["status"] == "unread"
    resp = client.post(f"/notifications/{inbox[0]['id']}/read")
    assert resp.json() == {"updated": True}


def test_otp_hidden_from_courier(client, users, stock):
    created = create_order(client, stock, users)
    order_id = created["order_id"]
    otp = created["order"]["delivery_otp"]
    client.post(
        f"/orders/{order_id}/assign",
        json={"delivery_person_id": users["courier"]},
        headers={"X-User-Id": users["admin"]},
    )

    courier = {"X-User-Id": users["courier"]}
    order = client.get(f"/orders/{order_id}", headers=courier).json()
    assert order["status"] == "Ready for Delivery"
    assert "delivery_otp" not in order
    assert "delivery_otp" not in client.get(f"/orders/{order_id}").json()
    assert all("delivery_otp" not in o for o in client.get("/orders", headers=courier).json())
    assert all("delivery_otp" not in o for o in client.get(f"/users/{users['customer']}/orders", headers=courier).json())

    buyer = {"X-User-Id": users["customer"]}
    assert client.get(f"/orders/{order_id}", headers=buyer).json()["delivery_otp"] == otp
    assert client.get(f"/users/{users['customer']}/orders", headers=buyer).json()[0]["delivery_otp"] == otp

    # without the code the courier cannot confirm delivery
    for status in ("Picked Up", "Out for Delivery"):
        client.patch(f"/orders/{order_id}/status", json={"status": status}, headers=courier)
    resp = client.patch(f"/orders/{order_id}/status", json={"status": "Delivered"}, headers=courier)
    assert resp.status_code == 400


def test_order_validation_errors(client, stock):
    resp = client.post("/orders", json={"items": [], "shipping_address": ADDRESS})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Order must contain at least one item"

    resp = client.get(f"/orders/{ObjectId()}")
    assert resp.status_code == 404


def test_recommendations_after_purchase(client, db, stock, users):
    create_document(
        "medicine",
        {
            "name": "Dolo 650",
            "generic_name": "Paracetamol",
            "category": "Pain Relief",
            "price": 52.0,
            "stock_quantity": 7,
            "requires_prescription": False,
        },
        database=db,
    )
    create_order(client, stock, users)
    results = client.get(f"/users/{users['customer']}/recommendations").json()
    assert results[0]["name"] == "Dolo 650"
    assert stock["paracetamol"] not in [r["id"] for r in results]


def test_simulated_checkout(client, db, stock, monkeypatch):
    monkeypatch.setattr(main.config, "STRIPE_SECRET_KEY", "")
    resp = client.post(
        "/checkout",
        json={
            "items": [line(stock["bandage"], kind="product", price=15.0, quantity=2)],
            "shipping_address": ADDRESS,
            "customer_email": "guest@example.com",
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["payment_simulated"] is True
    order = db["order"].find_one({"_id": ObjectId(body["order_id"])})
    assert order["payment_status"] == "completed"
    assert order["user_id"] == "guest"


def checkout_body(stock, **extra):
    body = {
        "items": [
            line(stock["paracetamol"], price=0.01, quantity=3),
            line(stock["bandage"], kind="product", price=0.01, quantity=1),
        ],
        "shipping_address": ADDRESS,
        "customer_email": "asha@example.com",
    }
    body.update(extra)
    return body


def test_stripe_checkout_uses_catalog_prices(client, db, stock, users, monkeypatch):
    sent = {}

    def create_session(**kwargs):
        sent.update(kwargs)
        return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.test/cs_test_1")

    monkeypatch.setattr(main.config, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(main.stripe.checkout.Session, "create", create_session)
    resp = client.post("/checkout", json=checkout_body(stock, user_id=users["customer"]))

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["url"] == "https://checkout.stripe.test/cs_test_1"
    assert [(i["price_data"]["unit_amount"], i["quantity"]) for i in sent["line_items"]] == [(5000, 3), (1500, 1)]
    assert sent["line_items"][0]["price_data"]["product_data"]["name"] == "Crocin 500"
    assert sent["metadata"] == {"order_id": body["order_id"]}

    order = db["order"].find_one({"_id": ObjectId(body["order_id"])})
    assert order["payment_session_id"] == "cs_test_1"
    assert order["total"] == 165.0


def test_stripe_failure_cancels_order(client, db, stock, monkeypatch):
    def create_session(**kwargs):
        raise stripe.StripeError("Your card was declined.")

    monkeypatch.setattr(main.config, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(main.stripe.checkout.Session, "create", create_session)
    resp = client.post("/checkout", json=checkout_body(stock))

    assert resp.status_code == 400
    assert "declined" in resp.json()["detail"]
    order = db["order"].find_one({})
    assert (order["status"], order["payment_status"]) == ("cancelled", "failed")
    assert db["medicine"].find_one({"_id": ObjectId(stock["paracetamol"])})["stock_quantity"] == 10
    assert db["product"].find_one({"_id": ObjectId(stock["bandage"])})["stock_quantity"] == 5
