"""
MongoDB access helpers.

The application never keeps its own copy of the data: every read and write
goes straight to the collections below.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import structlog
from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from config import settings
from order_status import OrderStatus, check_transition

logger = structlog.get_logger()

PRODUCTS = "product"
ORDERS = "order"
USERS = "user"
ADMIN_SESSIONS = "admin_session"


class OrderNotFound(Exception):
    """No order exists with the given id."""


class StatusConflict(Exception):
    """The order's status changed between read and conditional write."""

    def __init__(self, expected: OrderStatus, actual: str):
        self.expected = OrderStatus(expected)
        self.actual = actual
        super().__init__(
            f"Order status is '{actual}', expected '{self.expected.value}'"
        )


def connect(url: Optional[str], name: Optional[str]) -> Optional[Database]:
    if not url or not name:
        return None
    client = MongoClient(url)
    return client[name]


db = connect(settings.database_url, settings.database_name)


def utcnow() -> datetime:
    # pymongo hands back naive UTC datetimes, keep writes consistent with reads
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_object_id(value: str) -> ObjectId:
    """Raise bson.errors.InvalidId for anything that is not a valid ObjectId."""
    return ObjectId(value)


def to_dict(doc):
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    res = database[collection_name].insert_one(doc)
    return str(res.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort_field: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort_field:
        cursor = cursor.sort(sort_field, DESCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return [to_dict(d) for d in cursor]


def get_order(database: Database, order_id: ObjectId) -> Dict[str, Any]:
    doc = database[ORDERS].find_one({"_id": order_id})
    if doc is None:
        raise OrderNotFound(str(order_id))
    return to_dict(doc)


def transition_order_status(
    database: Database,
    order_id: ObjectId,
    expected: OrderStatus,
    target: OrderStatus,
) -> Dict[str, Any]:
    """Move an order one edge along the lifecycle.

    The write only touches ``status`` and only applies while the stored
    status still equals ``expected``. If another session moved the order
    first, StatusConflict is raised instead of overwriting its decision.
    """
    expected, target = OrderStatus(expected), OrderStatus(target)
    check_transition(expected, target)

    doc = database[ORDERS].find_one_and_update(
        {"_id": order_id, "status": expected.value},
        {"$set": {"status": target.value}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        current = database[ORDERS].find_one({"_id": order_id}, {"status": 1})
        if current is None:
            raise OrderNotFound(str(order_id))
        raise StatusConflict(expected, current.get("status"))

    logger.info("order_status_changed", order_id=str(order_id), from_status=expected.value, to_status=target.value)
    return to_dict(doc)


def set_delivery_location(database: Database, order_id: ObjectId, location: Dict[str, float]) -> Dict[str, Any]:
    # Unconditional overwrite, the status is not checked.
    doc = database[ORDERS].find_one_and_update(
        {"_id": order_id},
        {"$set": {"delivery_location": location}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise OrderNotFound(str(order_id))
    return to_dict(doc)
