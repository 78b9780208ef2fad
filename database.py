"""
MongoDB access helpers

Each collection is named after its schema in lowercase ("order", "medicine",
...). ``db`` is None when no DATABASE_URL is configured; the API then reports
the database as unavailable instead of failing at import time.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

import config

logger = logging.getLogger(__name__)

db: Optional[Database] = None

if config.DATABASE_URL:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]


def get_db() -> Optional[Database]:
    return db


def _resolve(database: Optional[Database]) -> Database:
    database = db if database is None else database
    if database is None:
        raise RuntimeError("Database not configured")
    return database


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(id_str: Any) -> Optional[ObjectId]:
    """Parse an id string; malformed ids are treated as absent records."""
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except (InvalidId, TypeError):
        return None


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Replace Mongo's ``_id`` with a string ``id`` for API responses."""
    if doc is None:
        return None
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    database = _resolve(database)
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
    database: Optional[Database] = None,
) -> List[Dict[str, Any]]:
    database = _resolve(database)
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(doc) for doc in cursor]


def get_document(collection_name: str, id_str: str, database: Optional[Database] = None) -> Optional[Dict[str, Any]]:
    """Fetch by id; returns None (never raises) when the record is absent."""
    database = _resolve(database)
    oid = to_object_id(id_str)
    if oid is None:
        return None
    return serialize(database[collection_name].find_one({"_id": oid}))


def update_document(collection_name: str, id_str: str, fields: dict, database: Optional[Database] = None) -> bool:
    """Field-level update; returns False when nothing matched."""
    database = _resolve(database)
    oid = to_object_id(id_str)
    if oid is None:
        return False
    data = dict(fields)
    data["updated_at"] = utcnow()
    res = database[collection_name].update_one({"_id": oid}, {"$set": data})
    return res.matched_count > 0
