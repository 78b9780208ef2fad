from datetime import datetime, timezone

import pytest
import requests

import notifier as notifier_module
from errors import NotificationError
from notifier import Notifier, list_notifications, mark_notification_read, record_notification

ORDER = {
    "id": "abc123",
    "status": "pending",
    "delivery_otp": "123456",
    "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
}


class FakeResponse:
    def __init__(self, status_code=200, text="ok"):
        self.status_code = status_code
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400


@pytest.fixture
def sent(monkeypatch):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        return FakeResponse()

    monkeypatch.setattr(notifier_module.requests, "post", fake_post)
    return calls


def test_disabled_notifier_sends_nothing(sent):
    Notifier(base_url="").order_created(ORDER)
    assert sent == []


def test_order_created_payload(sent):
    Notifier(base_url="http://notify.local/api/", timeout=2).order_created(ORDER)
    assert sent[0]["url"] == "http://notify.local/api/order-confirmation"
    assert sent[0]["timeout"] == 2
    payload = sent[0]["json"]["order"]
    assert "delivery_otp" not in payload
    assert payload["created_at"] == "2026-01-01T00:00:00+00:00"


def test_push_payload(sent):
    Notifier(base_url="http://notify.local").push("u1", "Hi", "There", {"orderId": "abc123"})
    assert sent[0]["url"] == "http://notify.local/push"
    assert sent[0]["json"] == {"userId": "u1", "title": "Hi", "body": "There", "data": {"orderId": "abc123"}}


def test_connection_error_becomes_notification_error(monkeypatch):
    def broken_post(url, json=None, timeout=None):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(notifier_module.requests, "post", broken_post)
    with pytest.raises(NotificationError):
        Notifier(base_url="http://notify.local").order_status_changed(ORDER, "Delivered")


def test_error_status_becomes_notification_error(monkeypatch):
    monkeypatch.setattr(
        notifier_module.requests, "post", lambda url, json=None, timeout=None: FakeResponse(500, "boom")
    )
    with pytest.raises(NotificationError, match="500"):
        Notifier(base_url="http://notify.local").delivery_assigned(ORDER, {"id": "d1", "email": "d@example.com"})


def test_inbox(db):
    first = record_notification(db, "u1", "Order placed", "Your order has been placed.")
    record_notification(db, "u2", "Other", "Not yours")

    inbox = list_notifications(db, "u1")
    assert [n["id"] for n in inbox] == [first]
    assert inbox[0]["status"] == "unread"

    assert mark_notification_read(db, first)
    assert list_notifications(db, "u1")[0]["status"] == "read"
    assert not mark_notification_read(db, "missing")
