import logging
from typing import List, Optional, Type

import stripe
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import config
from catalog import CatalogRepository
from database import get_db, update_document
from errors import HTTP_STATUS, PharmacyError
from notifier import Notifier, list_notifications, mark_notification_read
from orders import OrderService
from prescriptions import PrescriptionRepository
from recommendations import find_alternatives, recommend_for_user
from schemas import (
    AssignDeliveryRequest,
    CatalogItemCreate,
    CatalogItemUpdate,
    CheckoutRequest,
    MedicineCreate,
    OperationResult,
    OrderCreate,
    PrescriptionCreate,
    PrescriptionReview,
    ProductCreate,
    ScoredItem,
    StatusUpdateRequest,
)

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Pharmacy Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if config.STRIPE_SECRET_KEY:
    stripe.api_key = config.STRIPE_SECRET_KEY


@app.exception_handler(PharmacyError)
def pharmacy_error_handler(request: Request, exc: PharmacyError):
    return JSONResponse(status_code=HTTP_STATUS.get(exc.error_type, 400), content={"detail": exc.message})


# ---------- Dependencies ----------

def require_db(database: Optional[Database] = Depends(get_db)) -> Database:
    if database is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database


def get_notifier() -> Notifier:
    return Notifier()


def get_catalog(database: Database = Depends(require_db)) -> CatalogRepository:
    return CatalogRepository(database)


def get_order_service(
    database: Database = Depends(require_db),
    notifier: Notifier = Depends(get_notifier),
) -> OrderService:
    return OrderService(database, notifier)


def get_prescriptions(database: Database = Depends(require_db)) -> PrescriptionRepository:
    return PrescriptionRepository(database)


def _unwrap(result: OperationResult) -> dict:
    if not result.success:
        raise HTTPException(status_code=HTTP_STATUS.get(result.error_type, 400), detail=result.error)
    return result.model_dump(exclude_none=True)


def _scored(items: List[ScoredItem]) -> List[dict]:
    return [{**s.item.model_dump(), "score": s.score} for s in items]


# ---------- Health ----------

@app.get("/")
def root():
    return {"name": "Pharmacy Storefront API", "status": "ok"}


@app.get("/test")
def test_database(database: Optional[Database] = Depends(get_db)):
    resp = {"backend": "running", "database": "not configured"}
    try:
        if database is not None:
            resp["database"] = "connected"
            resp["collections"] = database.list_collection_names()
    except Exception as e:
        resp["database"] = "error"
        resp["error"] = str(e)
    return resp


# ---------- Catalog ----------

@app.get("/medicines/expiring")
def expiring_medicines(
    days: int = Query(config.EXPIRY_WARNING_DAYS, ge=1, le=3650),
    catalog: CatalogRepository = Depends(get_catalog),
):
    return catalog.expiring_medicines(days)


CATALOG_PATHS = {"medicines": "medicine", "products": "product"}


@app.get("/categories/{kind}")
def list_categories(kind: str, catalog: CatalogRepository = Depends(get_catalog)):
    if kind not in CATALOG_PATHS:
        raise HTTPException(status_code=404, detail=f"Unknown catalog: {kind}")
    return catalog.categories(CATALOG_PATHS[kind])


@app.get("/search")
def search(q: str = Query(""), catalog: CatalogRepository = Depends(get_catalog)):
    return [item.model_dump() for item in catalog.search(q)]


def _catalog_router(kind: str, create_model: Type[CatalogItemCreate]) -> APIRouter:
    router = APIRouter()

    @router.get("")
    def list_items(
        category: Optional[str] = None,
        q: Optional[str] = None,
        catalog: CatalogRepository = Depends(get_catalog),
    ):
        return [item.model_dump() for item in catalog.list_items(kind, category=category, search=q)]

    @router.post("", status_code=201)
    def create_item(payload: create_model, catalog: CatalogRepository = Depends(get_catalog)):
        return {"id": catalog.create_item(kind, payload)}

    @router.get("/low-stock")
    def low_stock(
        threshold: int = Query(config.LOW_STOCK_THRESHOLD, ge=1),
        catalog: CatalogRepository = Depends(get_catalog),
    ):
        return [item.model_dump() for item in catalog.low_stock(kind, threshold)]

    @router.get("/{item_id}")
    def get_item(item_id: str, catalog: CatalogRepository = Depends(get_catalog)):
        return catalog.get_item(kind, item_id).model_dump()

    @router.patch("/{item_id}")
    def update_item(item_id: str, payload: CatalogItemUpdate, catalog: CatalogRepository = Depends(get_catalog)):
        catalog.update_item(kind, item_id, payload)
        return {"updated": True}

    @router.delete("/{item_id}")
    def delete_item(item_id: str, catalog: CatalogRepository = Depends(get_catalog)):
        catalog.delete_item(kind, item_id)
        return {"deleted": True}

    @router.get("/{item_id}/alternatives")
    def alternatives(
        item_id: str,
        max_results: int = Query(config.ALTERNATIVES_LIMIT, ge=1, le=50),
        prefer_cheaper: bool = True,
        catalog: CatalogRepository = Depends(get_catalog),
    ):
        base = catalog.get_item(kind, item_id)
        ranked = find_alternatives(base, catalog.all_items(), max_results=max_results, prefer_cheaper=prefer_cheaper)
        return _scored(ranked)

    return router


app.include_router(_catalog_router("medicine", MedicineCreate), prefix="/medicines", tags=["medicines"])
app.include_router(_catalog_router("product", ProductCreate), prefix="/products", tags=["products"])


# ---------- Recommendations ----------

@app.get("/users/{user_id}/recommendations")
def user_recommendations(
    user_id: str,
    max_results: int = Query(config.RECOMMENDATIONS_LIMIT, ge=1, le=50),
    catalog: CatalogRepository = Depends(get_catalog),
    service: OrderService = Depends(get_order_service),
):
    history = [] if user_id == config.GUEST_USER_ID else service.list_user_orders(user_id)
    return _scored(recommend_for_user(history, catalog.all_items(), max_results=max_results))


# ---------- Orders ----------

@app.post("/orders", status_code=201)
def create_order(payload: OrderCreate, service: OrderService = Depends(get_order_service)):
    return _unwrap(service.create_order(payload.items, payload.shipping_address, payload.user_id))


@app.get("/orders")
def list_orders(status: Optional[str] = None, service: OrderService = Depends(get_order_service)):
    return service.list_orders(status)


@app.get("/orders/{order_id}")
def get_order(
    order_id: str,
    x_user_id: Optional[str] = Header(None),
    service: OrderService = Depends(get_order_service),
):
    return _unwrap(service.get_order(order_id, viewer_id=x_user_id))["order"]


@app.get("/users/{user_id}/orders")
def list_user_orders(
    user_id: str,
    x_user_id: Optional[str] = Header(None),
    service: OrderService = Depends(get_order_service),
):
    return service.list_user_orders(user_id, viewer_id=x_user_id)


@app.get("/delivery/{delivery_person_id}/orders")
def list_delivery_orders(delivery_person_id: str, service: OrderService = Depends(get_order_service)):
    return service.list_delivery_orders(delivery_person_id)


@app.post("/orders/{order_id}/assign")
def assign_delivery(
    order_id: str,
    body: AssignDeliveryRequest,
    x_user_id: Optional[str] = Header(None),
    service: OrderService = Depends(get_order_service),
):
    return _unwrap(service.assign_delivery_person(order_id, body.delivery_person_id, x_user_id))


@app.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    body: StatusUpdateRequest,
    x_user_id: Optional[str] = Header(None),
    service: OrderService = Depends(get_order_service),
):
    return _unwrap(service.update_order_status(order_id, body.status, x_user_id, otp_code=body.otp_code))


@app.post("/checkout")
def checkout(req: CheckoutRequest, service: OrderService = Depends(get_order_service)):
    created = _unwrap(service.create_order(req.items, req.shipping_address, req.user_id))
    order_id = created["order_id"]

    if not config.STRIPE_SECRET_KEY:
        # Simulate success for demo if no Stripe configured
        update_document("order", order_id, {"payment_status": "completed"}, database=service.db)
        return {"success": True, "order_id": order_id, "payment_simulated": True}

    try:
        line_items = [
            {
                "price_data": {
                    "currency": config.CURRENCY,
                    "product_data": {"name": line.get("name") or "Item"},
                    # Stripe expects amount in smallest unit (paise)
                    "unit_amount": int(round(line["price"] * 100)),
                },
                "quantity": line["quantity"],
            }
            for line in created["order"]["items"]
        ]
        session = stripe.checkout.Session.create(
            mode="payment",
            line_items=line_items,
            success_url=config.FRONTEND_URL + f"/orders/{order_id}/confirmation",
            cancel_url=config.FRONTEND_URL + "/checkout/cancel",
            customer_email=req.customer_email,
            metadata={"order_id": order_id},
        )
    except stripe.StripeError as e:
        logger.error("Stripe session for order %s failed: %s", order_id, e)
        cancelled = service.cancel_order(order_id, payment_status="failed")
        if not cancelled.success:
            logger.error("Order %s could not be cancelled after payment failure: %s", order_id, cancelled.error)
        raise HTTPException(status_code=400, detail=str(e))

    update_document("order", order_id, {"payment_session_id": session.id}, database=service.db)
    return {"success": True, "order_id": order_id, "url": session.url}


# ---------- Prescriptions ----------

@app.post("/prescriptions", status_code=201)
def submit_prescription(payload: PrescriptionCreate, prescriptions: PrescriptionRepository = Depends(get_prescriptions)):
    return prescriptions.submit(payload)


@app.get("/prescriptions")
def list_prescriptions(
    status: Optional[str] = None,
    x_user_id: Optional[str] = Header(None),
    prescriptions: PrescriptionRepository = Depends(get_prescriptions),
):
    return prescriptions.list_prescriptions(x_user_id, status=status)


@app.get("/users/{user_id}/prescriptions")
def list_user_prescriptions(
    user_id: str,
    x_user_id: Optional[str] = Header(None),
    prescriptions: PrescriptionRepository = Depends(get_prescriptions),
):
    return prescriptions.list_user_prescriptions(user_id, x_user_id)


@app.get("/prescriptions/{prescription_id}")
def get_prescription(
    prescription_id: str,
    x_user_id: Optional[str] = Header(None),
    prescriptions: PrescriptionRepository = Depends(get_prescriptions),
):
    return prescriptions.get_prescription(prescription_id, x_user_id)


@app.patch("/prescriptions/{prescription_id}/status")
def review_prescription(
    prescription_id: str,
    body: PrescriptionReview,
    x_user_id: Optional[str] = Header(None),
    prescriptions: PrescriptionRepository = Depends(get_prescriptions),
):
    return prescriptions.update_status(prescription_id, body.status, x_user_id, notes=body.notes)


@app.delete("/prescriptions/{prescription_id}")
def delete_prescription(
    prescription_id: str,
    x_user_id: Optional[str] = Header(None),
    prescriptions: PrescriptionRepository = Depends(get_prescriptions),
):
    prescriptions.delete_prescription(prescription_id, x_user_id)
    return {"deleted": True}


# ---------- Notifications ----------

@app.get("/users/{user_id}/notifications")
def user_notifications(user_id: str, database: Database = Depends(require_db)):
    return list_notifications(database, user_id)


@app.post("/notifications/{notification_id}/read")
def read_notification(notification_id: str, database: Database = Depends(require_db)):
    if not mark_notification_read(database, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"updated": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
