"""
MongoDB access helpers.

The process entry point owns the client: ``main.create_app`` connects in its
lifespan and stores the database handle on ``app.state.db``. Handlers receive
it through the ``get_db`` dependency.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from errors import ValidationError
from settings import Settings

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def connect(settings: Settings) -> MongoClient:
    client = MongoClient(settings.database_url, tz_aware=True)
    logger.info("Connecting to MongoDB database %s", settings.database_name)
    return client


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["product"].create_index("productCode", unique=True)
    db["product"].create_index("category")
    # one active cart per user
    db["cart"].create_index(
        [("user", ASCENDING), ("status", ASCENDING)],
        unique=True,
        partialFilterExpression={"status": "active"},
    )
    db["order"].create_index("orderNumber", unique=True)
    db["order"].create_index([("user", ASCENDING), ("createdAt", DESCENDING)])
    db["order"].create_index([("status", ASCENDING), ("createdAt", DESCENDING)])
    db["order"].create_index("payment.status")
    db["order"].create_index(
        [("user", ASCENDING), ("payment.paymentId", ASCENDING)],
        unique=True,
        partialFilterExpression={"payment.paymentId": {"$type": "string"}},
    )


def get_db(request: Request) -> Database:
    return request.app.state.db


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping createdAt/updatedAt, and return its id"""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True)
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["createdAt"] = now
    data_dict["updatedAt"] = now
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[list] = None,
    skip: int = 0,
    limit: int = 0,
    projection: Optional[Dict[str, Any]] = None,
) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def next_sequence(db: Database, name: str) -> int:
    """Atomically increment and return the named counter"""
    counter = db["counter"].find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["seq"]


def parse_object_id(value: Any, label: str = "") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label + ' ' if label else ''}ID.")


def serialize_document(doc: Any) -> Any:
    """Make a Mongo document JSON friendly: _id -> id, ObjectId -> str, no password"""
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, list):
        return [serialize_document(item) for item in doc]
    if isinstance(doc, dict):
        out = {}
        for key, value in doc.items():
            if key == "password":
                continue
            if key == "_id":
                out["id"] = serialize_document(value)
            else:
                out[key] = serialize_document(value)
        return out
    return doc
