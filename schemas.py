"""
Pharmacy Schemas

Define MongoDB collection schemas using Pydantic models.
Each stored class maps to a collection with lowercase name:
- Medicine / Product -> "medicine" / "product"
- Order -> "order", User -> "user", Notification -> "notification"
- OrderHistoryEntry -> "order_history"
- Prescription -> "prescription"
"""
import math
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

ItemKind = Literal["medicine", "product"]
UserRole = Literal["customer", "admin", "delivery"]
PrescriptionStatus = Literal["pending", "approved", "rejected"]

CATALOG_COLLECTIONS: Dict[str, str] = {"medicine": "medicine", "product": "product"}


def _as_utc(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            return _as_utc(datetime.fromisoformat(value))
        except ValueError:
            return None
    return None


# ---------- Catalog ----------

class CatalogItem(BaseModel):
    """A purchasable medicine or generic product.

    Built leniently from stored documents: partially populated records are
    normal in the catalog, so malformed numbers fall back to 0 and malformed
    text fields to None instead of failing validation.
    """

    id: str
    kind: ItemKind
    name: str = ""
    generic_name: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    dosage: Optional[str] = None
    side_effects: Optional[str] = None
    description: Optional[str] = None
    price: float = 0.0
    stock_quantity: int = 0
    requires_prescription: Optional[bool] = None
    expiry_date: Optional[datetime] = None
    manufacturing_date: Optional[datetime] = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value):
        return value if isinstance(value, str) else ""

    @field_validator("generic_name", "category", "manufacturer", "dosage", "side_effects", "description", mode="before")
    @classmethod
    def _text(cls, value):
        return value if isinstance(value, str) else None

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, value):
        try:
            price = float(value)
        except (TypeError, ValueError):
            return 0.0
        if math.isnan(price) or price < 0:
            return 0.0
        return price

    @field_validator("stock_quantity", mode="before")
    @classmethod
    def _stock(cls, value):
        try:
            stock = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return 0
        return max(stock, 0)

    @field_validator("requires_prescription", mode="before")
    @classmethod
    def _prescription(cls, value):
        return None if value is None else bool(value)

    @field_validator("expiry_date", "manufacturing_date", mode="before")
    @classmethod
    def _dates(cls, value):
        return _as_utc(value)

    @classmethod
    def from_document(cls, doc: Dict[str, Any], kind: ItemKind) -> "CatalogItem":
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        data["kind"] = kind
        return cls(**data)

    @property
    def in_stock(self) -> bool:
        return self.stock_quantity > 0

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiry_date is None:
            return False
        return self.expiry_date < (now or datetime.now(timezone.utc))


class CatalogItemCreate(BaseModel):
    name: str = Field(..., description="Display name")
    generic_name: Optional[str] = Field(None, description="Active ingredient / generic name")
    category: Optional[str] = Field(None, description="Category label")
    manufacturer: Optional[str] = None
    dosage: Optional[str] = Field(None, description="e.g. 500mg")
    side_effects: Optional[str] = None
    description: Optional[str] = None
    price: float = Field(..., ge=0, description="Price in base currency")
    stock_quantity: int = Field(0, ge=0, description="Units in stock")
    images: List[str] = Field(default_factory=list, description="Image URLs")


class MedicineCreate(CatalogItemCreate):
    requires_prescription: bool = Field(False, description="Prescription-only medicine")
    expiry_date: Optional[datetime] = None
    manufacturing_date: Optional[datetime] = None


class ProductCreate(CatalogItemCreate):
    pass


class CatalogItemUpdate(BaseModel):
    name: Optional[str] = None
    generic_name: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    dosage: Optional[str] = None
    side_effects: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock_quantity: Optional[int] = Field(None, ge=0)
    requires_prescription: Optional[bool] = None
    expiry_date: Optional[datetime] = None
    manufacturing_date: Optional[datetime] = None
    images: Optional[List[str]] = None


class ScoredItem(BaseModel):
    item: CatalogItem
    score: float


# ---------- Orders ----------

class ShippingAddress(BaseModel):
    full_name: str
    address_line: str
    city: str
    state: Optional[str] = None
    postal_code: str
    phone: Optional[str] = None


class OrderLine(BaseModel):
    id: str = Field(..., description="Catalog item id")
    kind: ItemKind = Field(..., description="Which catalog the item belongs to")
    name: Optional[str] = None
    price: float = Field(0.0, ge=0, description="Replaced by the catalog price at checkout")
    quantity: int = Field(1, ge=1)
    requires_prescription: Optional[bool] = None


class OrderCreate(BaseModel):
    items: List[OrderLine] = Field(default_factory=list)
    shipping_address: Optional[ShippingAddress] = None
    user_id: Optional[str] = None


class Order(BaseModel):
    items: List[OrderLine]
    shipping_address: ShippingAddress
    user_id: str
    is_guest_checkout: bool = False
    status: str = Field("pending", description="See orders.OrderStatus")
    total: float = 0.0
    requires_prescription: bool = False
    delivery_person_id: Optional[str] = None
    delivery_person_name: Optional[str] = None
    delivery_otp: str = Field(..., min_length=6, max_length=6)
    payment_status: str = Field("pending", description="pending, completed, failed")


class AssignDeliveryRequest(BaseModel):
    delivery_person_id: str


class StatusUpdateRequest(BaseModel):
    status: str
    otp_code: Optional[str] = None


class CheckoutRequest(OrderCreate):
    customer_email: EmailStr


class OrderHistoryEntry(BaseModel):
    user_id: str
    order_id: str
    total: float
    status: str


class OperationResult(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    order_id: Optional[str] = None
    order: Optional[Dict[str, Any]] = None


# ---------- Users & notifications ----------

class User(BaseModel):
    display_name: Optional[str] = None
    email: EmailStr
    role: UserRole = Field("customer")


class Notification(BaseModel):
    user_id: str
    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)
    status: Literal["unread", "read"] = "unread"


# ---------- Prescriptions ----------

class PrescriptionCreate(BaseModel):
    """Metadata for a prescription file that was already uploaded elsewhere."""

    user_id: str
    file_url: str = Field(..., min_length=1, description="Where the uploaded file can be fetched")
    file_name: Optional[str] = None
    content_type: Optional[str] = Field(None, description="e.g. image/jpeg, application/pdf")
    size: Optional[int] = Field(None, ge=0, description="File size in bytes")
    notes: str = ""
    order_id: Optional[str] = Field(None, description="Order this prescription supports")


class Prescription(PrescriptionCreate):
    status: PrescriptionStatus = "pending"
    review_notes: str = ""
    reviewed_by: Optional[str] = None
    user: Dict[str, str] = Field(default_factory=dict, description="Name and email of the patient at submission")


class PrescriptionReview(BaseModel):
    status: str
    notes: str = ""
