"""
MongoDB connection and small document helpers.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; routes
answer 500 in that case.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson.errors import InvalidId
from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from errors import ValidationError
from settings import settings

client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.database_url and settings.database_name:
    client = MongoClient(settings.database_url)
    db = client[settings.database_name]


def utcnow() -> datetime:
    # naive UTC, the form pymongo hands back on reads
    return datetime.now(timezone.utc).replace(tzinfo=None)


def object_id(value: str, resource: str = "resource") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {resource} ID")


def to_dict(doc):
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(database: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    res = database[collection].insert_one(doc)
    return str(res.inserted_id)


def get_documents(database: Database, collection: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None) -> List[dict]:
    cursor = database[collection].find(filter_dict or {}).sort(
        [("created_at", DESCENDING), ("_id", DESCENDING)]
    )
    if limit:
        cursor = cursor.limit(limit)
    return [to_dict(d) for d in cursor]


def ensure_indexes(database: Database) -> None:
    database["gem"].create_index([("seller", ASCENDING)])
    database["gem"].create_index([("availability", ASCENDING), ("price", ASCENDING)])
    database["gem"].create_index([("created_at", DESCENDING)])
    database["cart"].create_index([("user", ASCENDING)], unique=True)
    database["order"].create_index([("order_number", ASCENDING)], unique=True)
    database["order"].create_index([("buyer", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index([("items.seller", ASCENDING)])
