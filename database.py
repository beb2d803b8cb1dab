"""
Database helpers

Connection setup, id parsing, output serialization and the explicit
reference-expansion ("populate") lookups used by the routes.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Settings
from errors import ValidationError

logger = logging.getLogger(__name__)


def connect(settings: Settings) -> Database:
    # MongoClient does not touch the network until the first operation
    client = MongoClient(settings.database_url)
    logger.info("MongoDB client configured for database %r", settings.database_name)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)


def get_db(request: Request) -> Database:
    return request.app.state.db


def to_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    # ObjectId(None) would mint a fresh id
    if not isinstance(value, str):
        raise ValidationError(f"Invalid {label}: {value}")
    try:
        return ObjectId(value)
    except InvalidId:
        raise ValidationError(f"Invalid {label}: {value}")


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        # pymongo hands back naive datetimes that are already UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = {k: v for k, v in doc.items() if k != "password"}
    return _serialize_value(doc)


def create_document(db: Database, collection_name: str, data: BaseModel) -> Dict[str, Any]:
    """Insert a schema model and return the stored document, _id included."""
    document = data.model_dump()
    result = db[collection_name].insert_one(document)
    document["_id"] = result.inserted_id
    return document


def populate_products(db: Database, product_ids: Iterable[ObjectId]) -> List[Dict[str, Any]]:
    """
    Resolve product ids to product documents.

    Keeps the order of ``product_ids``. Ids whose product has since been
    deleted are left out rather than returned as nulls.
    """
    product_ids = list(product_ids)
    if not product_ids:
        return []
    found = {d["_id"]: d for d in db["product"].find({"_id": {"$in": product_ids}})}
    return [found[pid] for pid in product_ids if pid in found]


def populate_user_emails(db: Database, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Replace each order's ``userId`` with ``{"_id", "email"}`` of its user.

    One query for all distinct users. An order whose user no longer exists
    gets ``userId: None``.
    """
    user_ids = list({o["userId"] for o in orders if o.get("userId") is not None})
    users = {}
    if user_ids:
        cursor = db["user"].find({"_id": {"$in": user_ids}}, {"email": 1})
        users = {u["_id"]: {"_id": u["_id"], "email": u.get("email")} for u in cursor}
    return [{**o, "userId": users.get(o.get("userId"))} for o in orders]
