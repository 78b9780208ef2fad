"""
Order lifecycle

Purpose: create orders at checkout and move them through approval, delivery
assignment and OTP-confirmed delivery.

Input: checkout lines + address, admin / delivery actions (acting user id).

Output: OperationResult for every state-changing call; errors are reported in
the result, never raised to the caller.

Notes:
- Roles are re-read from the "user" collection; a caller-supplied role is
  never trusted.
- Admins override the transition table; the assigned delivery person follows
  it. "Delivered" is terminal and always requires the order's OTP.
- Stock is reserved with one conditional update per line, so stock never goes
  negative. Concurrent status writes are last-write-wins.
- Line prices and prescription flags come from the catalog, not the client.
- The delivery OTP is returned at creation and to the buyer only.
- Notifications are single-attempt and best-effort.
"""
import logging
import random
import string
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from bson import ObjectId
from pydantic import ValidationError as PydanticValidationError
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from database import create_document, get_document, get_documents, to_object_id, update_document, utcnow
from errors import (
    AuthorizationError,
    InsufficientStockError,
    InvalidOtpError,
    InvalidTransitionError,
    NotFoundError,
    NotificationError,
    PersistenceError,
    PharmacyError,
    ValidationError,
)
from notifier import Notifier, record_notification
from schemas import CATALOG_COLLECTIONS, CatalogItem, OperationResult, Order, OrderHistoryEntry, OrderLine, ShippingAddress

logger = logging.getLogger(__name__)

OTP_LENGTH = 6


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "Approved"
    READY_FOR_DELIVERY = "Ready for Delivery"
    PICKED_UP = "Picked Up"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


VALID_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.APPROVED, OrderStatus.CANCELLED, OrderStatus.REJECTED},
    OrderStatus.PROCESSING: {OrderStatus.APPROVED, OrderStatus.CANCELLED, OrderStatus.REJECTED},
    OrderStatus.APPROVED: {OrderStatus.READY_FOR_DELIVERY, OrderStatus.CANCELLED},
    OrderStatus.READY_FOR_DELIVERY: {OrderStatus.PICKED_UP, OrderStatus.CANCELLED},
    OrderStatus.PICKED_UP: {OrderStatus.OUT_FOR_DELIVERY},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.REJECTED: set(),
}

# statuses the assigned delivery person may set
DELIVERY_STATUSES = {OrderStatus.PICKED_UP, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED}


def parse_status(value: Union[str, OrderStatus]) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown order status: {value}")


def can_transition(current: Optional[str], new: OrderStatus, override: bool = False) -> bool:
    try:
        current_status = OrderStatus(current)
    except ValueError:
        # legacy / hand-edited statuses can only be fixed by an admin
        return override
    if current_status is OrderStatus.DELIVERED:
        return False
    if override:
        return True
    return new in VALID_TRANSITIONS[current_status]


def generate_otp(length: int = OTP_LENGTH, rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return "".join(rng.choice(string.digits) for _ in range(length))


def _without_otp(order: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in order.items() if k != "delivery_otp"}


def _for_viewer(order: Dict[str, Any], viewer_id: Optional[str]) -> Dict[str, Any]:
    # only the registered buyer sees the code the courier must ask for
    if viewer_id and viewer_id != config.GUEST_USER_ID and viewer_id == order.get("user_id"):
        return order
    return _without_otp(order)


def _failure(error: PharmacyError) -> OperationResult:
    return OperationResult(success=False, error=error.message, error_type=error.error_type)


class OrderService:
    def __init__(self, db: Database, notifier: Optional[Notifier] = None):
        self.db = db
        self.notifier = notifier or Notifier()

    # ---------- boundary ----------

    def _guarded(self, operation: str, func: Callable[..., OperationResult], *args) -> OperationResult:
        try:
            return func(*args)
        except PharmacyError as e:
            logger.info("%s refused: %s", operation, e.message)
            return _failure(e)
        except PyMongoError as e:
            logger.error("%s failed on the database", operation, exc_info=True)
            return _failure(PersistenceError(f"Failed to {operation}: {e}"))

    def _notify(self, what: str, send: Callable, *args) -> None:
        try:
            send(*args)
        except NotificationError as e:
            logger.warning("Could not send %s notification: %s", what, e.message)

    def _inbox(self, user_id: Optional[str], title: str, body: str, data: Dict[str, Any]) -> None:
        if not user_id or user_id == config.GUEST_USER_ID:
            return
        try:
            record_notification(self.db, user_id, title, body, data)
        except PyMongoError:
            logger.warning("Could not store in-app notification for %s", user_id, exc_info=True)

    # ---------- lookups ----------

    def _load_order(self, order_id: str) -> Dict[str, Any]:
        order = get_document("order", order_id, database=self.db)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def _actor(self, actor_id: Optional[str]) -> Dict[str, Any]:
        user = get_document("user", actor_id, database=self.db) if actor_id else None
        if user is None:
            raise AuthorizationError("Unknown or missing acting user")
        return user

    # ---------- create ----------

    def create_order(
        self,
        items: Iterable[Union[OrderLine, Dict[str, Any]]],
        shipping_address: Optional[Union[ShippingAddress, Dict[str, Any]]],
        user_id: Optional[str] = None,
    ) -> OperationResult:
        return self._guarded("create order", self._create_order, items, shipping_address, user_id)

    def _create_order(self, items, shipping_address, user_id) -> OperationResult:
        lines, address = self._validate_checkout(items, shipping_address)
        user_id = user_id or config.GUEST_USER_ID
        registered = user_id != config.GUEST_USER_ID

        lines, reserved = self._reserve_stock(lines)
        order = Order(
            items=lines,
            shipping_address=address,
            user_id=user_id,
            is_guest_checkout=not registered,
            status=OrderStatus.PENDING.value,
            total=round(sum(line.price * line.quantity for line in lines), 2),
            requires_prescription=any(bool(line.requires_prescription) for line in lines),
            delivery_otp=generate_otp(),
        )
        try:
            order_id = create_document("order", order, database=self.db)
        except PyMongoError:
            self._release_stock(reserved)
            raise
        logger.info("Order %s created for %s (%d lines, total %.2f)", order_id, user_id, len(lines), order.total)

        stored = self._load_order(order_id)
        if registered:
            try:
                create_document(
                    "order_history",
                    OrderHistoryEntry(user_id=user_id, order_id=order_id, total=order.total, status=order.status),
                    database=self.db,
                )
            except PyMongoError:
                logger.error("Order %s placed but not added to %s's history", order_id, user_id, exc_info=True)

        self._notify("order confirmation", self.notifier.order_created, stored)
        self._inbox(user_id, "Order placed", f"Your order #{order_id} has been placed.", {"orderId": order_id})
        return OperationResult(success=True, message="Order placed successfully", order_id=order_id, order=stored)

    def _validate_checkout(self, items, shipping_address) -> Tuple[List[OrderLine], ShippingAddress]:
        items = list(items or [])
        if not items:
            raise ValidationError("Order must contain at least one item")
        if not shipping_address:
            raise ValidationError("Shipping address is required")
        try:
            lines = [OrderLine.model_validate(item) for item in items]
            address = ShippingAddress.model_validate(shipping_address)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid order data: {e.errors()[0].get('msg', 'invalid value')}")
        return lines, address

    def _reserve_stock(self, lines: List[OrderLine]) -> Tuple[List[OrderLine], List[Tuple[str, ObjectId, int]]]:
        """Decrement stock for every line and price it from its catalog record.

        Client-supplied price, name and prescription flag are replaced by the
        stored values. Returns the priced lines and the reservations made.
        """
        priced: List[OrderLine] = []
        reserved: List[Tuple[str, ObjectId, int]] = []
        try:
            for line in lines:
                collection = self.db[CATALOG_COLLECTIONS[line.kind]]
                oid = to_object_id(line.id)
                doc = collection.find_one({"_id": oid}) if oid is not None else None
                if doc is None:
                    self._release_stock(reserved)
                    raise NotFoundError(f"{line.kind.capitalize()} {line.id} not found")
                item = CatalogItem.from_document(doc, line.kind)
                updated = collection.find_one_and_update(
                    {"_id": oid, "stock_quantity": {"$gte": line.quantity}},
                    {"$inc": {"stock_quantity": -line.quantity}, "$set": {"updated_at": utcnow()}},
                )
                if updated is None:
                    self._release_stock(reserved)
                    raise InsufficientStockError(f"Insufficient stock for {item.name or line.id}")
                reserved.append((collection.name, oid, line.quantity))
                priced.append(
                    line.model_copy(
                        update={
                            "name": item.name or line.name,
                            "price": item.price,
                            "requires_prescription": item.requires_prescription,
                        }
                    )
                )
        except PyMongoError:
            self._release_stock(reserved)
            raise
        return priced, reserved

    def _release_stock(self, reserved: List[Tuple[str, ObjectId, int]]) -> None:
        for collection_name, oid, quantity in reserved:
            try:
                self.db[collection_name].update_one({"_id": oid}, {"$inc": {"stock_quantity": quantity}})
            except PyMongoError:
                logger.error("Could not release %d units of %s/%s", quantity, collection_name, oid, exc_info=True)

    # ---------- delivery assignment ----------

    def assign_delivery_person(self, order_id: str, delivery_person_id: str, actor_id: Optional[str]) -> OperationResult:
        return self._guarded("assign delivery person", self._assign, order_id, delivery_person_id, actor_id)

    def _assign(self, order_id, delivery_person_id, actor_id) -> OperationResult:
        if self._actor(actor_id).get("role") != "admin":
            raise AuthorizationError("Only admins can assign deliveries")
        order = self._load_order(order_id)
        person = get_document("user", delivery_person_id, database=self.db)
        if person is None or person.get("role") != "delivery":
            raise NotFoundError("Delivery person not found")
        if order.get("status") == OrderStatus.DELIVERED.value:
            raise InvalidTransitionError("Order has already been delivered")

        name = person.get("display_name") or person.get("email") or ""
        fields = {
            "delivery_person_id": delivery_person_id,
            "delivery_person_name": name,
            "status": OrderStatus.READY_FOR_DELIVERY.value,
        }
        if not update_document("order", order_id, fields, database=self.db):
            raise NotFoundError("Order not found")
        updated = self._load_order(order_id)
        logger.info("Order %s assigned to %s (%s)", order_id, delivery_person_id, name)

        self._notify("delivery assignment", self.notifier.delivery_assigned, updated, person)
        self._inbox(
            delivery_person_id,
            "New Delivery Assignment",
            f"You have been assigned Order #{order_id} for delivery",
            {"type": "delivery_assignment", "orderId": order_id},
        )
        return OperationResult(
            success=True,
            message="Delivery person assigned successfully",
            order_id=order_id,
            order=_without_otp(updated),
        )

    # ---------- status ----------

    def update_order_status(
        self,
        order_id: str,
        new_status: Union[str, OrderStatus],
        actor_id: Optional[str],
        otp_code: Optional[str] = None,
    ) -> OperationResult:
        return self._guarded("update order status", self._update_status, order_id, new_status, actor_id, otp_code)

    def _update_status(self, order_id, new_status, actor_id, otp_code) -> OperationResult:
        order = self._load_order(order_id)
        status = parse_status(new_status)
        actor = self._actor(actor_id)
        current = order.get("status")

        role = actor.get("role")
        if role == "admin":
            override = True
        elif role == "delivery":
            if order.get("delivery_person_id") != actor["id"]:
                raise AuthorizationError("This order is not assigned to you")
            if status not in DELIVERY_STATUSES:
                raise AuthorizationError(f"Delivery staff cannot set status '{status.value}'")
            override = False
        else:
            raise AuthorizationError("Not allowed to change order status")

        if current == OrderStatus.DELIVERED.value:
            raise InvalidTransitionError("Order has already been delivered")
        if not can_transition(current, status, override=override):
            raise InvalidTransitionError(f"Cannot change status from '{current}' to '{status.value}'")

        if status is OrderStatus.DELIVERED:
            if not otp_code:
                raise InvalidOtpError("Delivery OTP is required")
            if str(otp_code).strip() != order.get("delivery_otp"):
                raise InvalidOtpError("Invalid OTP. Please check the code with the customer.")

        if not update_document("order", order_id, {"status": status.value}, database=self.db):
            raise NotFoundError("Order not found")
        updated = self._load_order(order_id)
        logger.info("Order %s status %s -> %s by %s", order_id, current, status.value, actor["id"])

        self._notify("status update", self.notifier.order_status_changed, updated, status.value)
        self._inbox(
            updated.get("user_id"),
            "Order Status Update",
            f"Your order #{order_id} is now {status.value}",
            {"type": "order_status_update", "orderId": order_id, "status": status.value},
        )
        delivery_person_id = updated.get("delivery_person_id")
        if delivery_person_id:
            self._notify(
                "delivery push",
                self.notifier.push,
                delivery_person_id,
                "Order Status Update",
                f"Order #{order_id} status has been updated to {status.value}",
                {"type": "order_status_update", "orderId": order_id, "status": status.value},
            )
        return OperationResult(
            success=True,
            message="Order status updated successfully",
            order_id=order_id,
            order=_without_otp(updated),
        )

    # ---------- cancellation ----------

    def cancel_order(self, order_id: str, payment_status: str = "failed") -> OperationResult:
        """Cancel an order whose payment did not go through and return its stock."""
        return self._guarded("cancel order", self._cancel, order_id, payment_status)

    def _cancel(self, order_id, payment_status) -> OperationResult:
        order = self._load_order(order_id)
        current = order.get("status")
        if current == OrderStatus.DELIVERED.value:
            raise InvalidTransitionError("Order has already been delivered")

        if current not in (OrderStatus.CANCELLED.value, OrderStatus.REJECTED.value):
            reserved = []
            for item in order.get("items") or []:
                oid = to_object_id(item.get("id"))
                if oid is not None and item.get("kind") in CATALOG_COLLECTIONS:
                    reserved.append((CATALOG_COLLECTIONS[item["kind"]], oid, int(item.get("quantity") or 0)))
            self._release_stock(reserved)

        fields = {"status": OrderStatus.CANCELLED.value, "payment_status": payment_status}
        if not update_document("order", order_id, fields, database=self.db):
            raise NotFoundError("Order not found")
        updated = self._load_order(order_id)
        logger.info("Order %s cancelled (%s -> cancelled, payment %s)", order_id, current, payment_status)

        self._inbox(
            updated.get("user_id"),
            "Order Cancelled",
            f"Your order #{order_id} has been cancelled.",
            {"type": "order_status_update", "orderId": order_id, "status": OrderStatus.CANCELLED.value},
        )
        return OperationResult(
            success=True,
            message="Order cancelled",
            order_id=order_id,
            order=_without_otp(updated),
        )

    # ---------- reads ----------

    def get_order(self, order_id: str, viewer_id: Optional[str] = None) -> OperationResult:
        """The delivery OTP is only included when ``viewer_id`` is the buyer."""

        def _get(order_id):
            order = self._load_order(order_id)
            return OperationResult(success=True, order_id=order_id, order=_for_viewer(order, viewer_id))

        return self._guarded("load order", _get, order_id)

    def list_orders(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        filt = {"status": status} if status else {}
        orders = get_documents("order", filt, sort=[("created_at", -1)], database=self.db)
        return [_without_otp(order) for order in orders]

    def list_user_orders(self, user_id: str, viewer_id: Optional[str] = None) -> List[Dict[str, Any]]:
        orders = get_documents("order", {"user_id": user_id}, sort=[("created_at", -1)], database=self.db)
        return [_for_viewer(order, viewer_id) for order in orders]

    def list_delivery_orders(self, delivery_person_id: str) -> List[Dict[str, Any]]:
        orders = get_documents(
            "order",
            {"delivery_person_id": delivery_person_id},
            sort=[("created_at", -1)],
            database=self.db,
        )
        return [_without_otp(order) for order in orders]
