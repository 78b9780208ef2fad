"""
Best-effort order notifications

Purpose: tell the notification backend (email / push) about order events and
keep the in-app notification inbox.

Notes: every outbound call is a single attempt. Failures raise
NotificationError; callers log and discard it so the primary operation's
outcome never depends on the notifier.
"""
import logging
from typing import Any, Dict, List, Optional

import requests
from pymongo.database import Database

import config
from database import create_document, get_documents, update_document
from errors import NotificationError
from schemas import Notification

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        base_url = config.NOTIFIER_URL if base_url is None else base_url
        self.base_url = base_url.rstrip("/")
        self.timeout = config.NOTIFIER_TIMEOUT if timeout is None else timeout

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _post(self, path: str, payload: Dict[str, Any]) -> None:
        if not self.enabled:
            logger.debug("Notifier disabled, skipping %s", path)
            return
        url = f"{self.base_url}{path}"
        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise NotificationError(f"Notification to {path} failed: {e}") from e
        if not response.ok:
            raise NotificationError(
                f"Notification to {path} failed ({response.status_code}): {response.text[:200]}"
            )

    def order_created(self, order: Dict[str, Any]) -> None:
        self._post("/order-confirmation", {"order": _public_order(order)})

    def order_status_changed(self, order: Dict[str, Any], status: str) -> None:
        self._post("/order-status-update", {"order": _public_order(order), "status": status})

    def delivery_assigned(self, order: Dict[str, Any], delivery_person: Dict[str, Any]) -> None:
        self._post(
            "/delivery-assignment",
            {
                "order": _public_order(order),
                "deliveryPerson": {
                    "id": delivery_person.get("id"),
                    "email": delivery_person.get("email"),
                    "display_name": delivery_person.get("display_name"),
                },
            },
        )

    def push(self, user_id: str, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._post("/push", {"userId": user_id, "title": title, "body": body, "data": data or {}})


def _public_order(order: Dict[str, Any]) -> Dict[str, Any]:
    """Order payload without the delivery code and with JSON-safe values."""
    payload = {}
    for key, value in order.items():
        if key in ("delivery_otp", "_id"):
            continue
        if hasattr(value, "isoformat"):
            value = value.isoformat()
        payload[key] = value
    return payload


# ---------- In-app inbox ----------

def record_notification(
    database: Database,
    user_id: str,
    title: str,
    body: str,
    data: Optional[Dict[str, Any]] = None,
) -> str:
    return create_document(
        "notification",
        Notification(user_id=user_id, title=title, body=body, data=data or {}),
        database=database,
    )


def list_notifications(database: Database, user_id: str) -> List[Dict[str, Any]]:
    return get_documents("notification", {"user_id": user_id}, sort=[("created_at", -1)], database=database)


def mark_notification_read(database: Database, notification_id: str) -> bool:
    return update_document("notification", notification_id, {"status": "read"}, database=database)
