"""
Catalog access for medicines and generic products

Both kinds share one shape (CatalogItem) but live in their own collections.
"""
import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pymongo.database import Database

import config
from database import create_document, get_document, get_documents, to_object_id, update_document
from errors import NotFoundError, ValidationError
from schemas import CATALOG_COLLECTIONS, CatalogItem, CatalogItemCreate, CatalogItemUpdate

logger = logging.getLogger(__name__)


def _collection(kind: str) -> str:
    try:
        return CATALOG_COLLECTIONS[kind]
    except KeyError:
        raise ValidationError(f"Unknown catalog kind: {kind}")


class CatalogRepository:
    def __init__(self, db: Database):
        self.db = db

    def list_items(self, kind: str, category: Optional[str] = None, search: Optional[str] = None) -> List[CatalogItem]:
        filt: Dict[str, Any] = {}
        if category:
            filt["category"] = category
        if search:
            filt["name"] = {"$regex": re.escape(search), "$options": "i"}
        docs = get_documents(_collection(kind), filt, database=self.db)
        return [CatalogItem.from_document(doc, kind) for doc in docs]

    def all_items(self) -> List[CatalogItem]:
        """Medicines followed by products."""
        items: List[CatalogItem] = []
        for kind in CATALOG_COLLECTIONS:
            items.extend(self.list_items(kind))
        return items

    def get_item(self, kind: str, item_id: str) -> CatalogItem:
        doc = get_document(_collection(kind), item_id, database=self.db)
        if doc is None:
            raise NotFoundError(f"{kind.capitalize()} not found")
        return CatalogItem.from_document(doc, kind)

    def create_item(self, kind: str, payload: CatalogItemCreate) -> str:
        data = payload.model_dump()
        item_id = create_document(_collection(kind), data, database=self.db)
        logger.info("Created %s %s", kind, item_id)
        return item_id

    def update_item(self, kind: str, item_id: str, payload: CatalogItemUpdate) -> None:
        data = {k: v for k, v in payload.model_dump().items() if v is not None}
        if not data:
            raise ValidationError("No fields to update")
        if not update_document(_collection(kind), item_id, data, database=self.db):
            raise NotFoundError(f"{kind.capitalize()} not found")

    def delete_item(self, kind: str, item_id: str) -> None:
        oid = to_object_id(item_id)
        res = self.db[_collection(kind)].delete_one({"_id": oid}) if oid else None
        if res is None or res.deleted_count == 0:
            raise NotFoundError(f"{kind.capitalize()} not found")
        logger.info("Deleted %s %s", kind, item_id)

    def categories(self, kind: str) -> List[str]:
        values = self.db[_collection(kind)].distinct("category")
        return sorted(v for v in values if isinstance(v, str) and v)

    def expiring_medicines(self, days: int = config.EXPIRY_WARNING_DAYS, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Medicines expiring within ``days`` (already expired ones excluded)."""
        now = now or datetime.now(timezone.utc)
        threshold = now + timedelta(days=days)
        expiring = []
        for item in self.list_items("medicine"):
            if item.expiry_date and now < item.expiry_date < threshold:
                data = item.model_dump()
                data["days_until_expiry"] = math.ceil((item.expiry_date - now).total_seconds() / 86400)
                expiring.append(data)
        return sorted(expiring, key=lambda d: d["expiry_date"])

    def low_stock(self, kind: str, threshold: int = config.LOW_STOCK_THRESHOLD) -> List[CatalogItem]:
        docs = get_documents(
            _collection(kind),
            {"stock_quantity": {"$lte": threshold, "$gt": 0}},
            database=self.db,
        )
        return [CatalogItem.from_document(doc, kind) for doc in docs]

    def search(self, query: str, limit: int = 20) -> List[CatalogItem]:
        query = (query or "").strip()
        if not query:
            return []
        pattern = {"$regex": re.escape(query), "$options": "i"}
        filt = {"$or": [{"name": pattern}, {"generic_name": pattern}, {"category": pattern}]}
        results: List[CatalogItem] = []
        for kind in CATALOG_COLLECTIONS:
            docs = get_documents(_collection(kind), filt, limit=limit, database=self.db)
            results.extend(CatalogItem.from_document(doc, kind) for doc in docs)
        return results[:limit]
