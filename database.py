"""
MongoDB access helpers.

The database handle is created once by the application factory and passed to
every service; nothing in here keeps a module-level client.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from errors import NotFound


def connect(url: str, name: str) -> Database:
    client = MongoClient(url)
    return client[name]


def ensure_indexes(db: Database) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["cart"].create_index([("user_id", ASCENDING)], unique=True)
    db["wishlist"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["address"].create_index([("user_id", ASCENDING)])
    db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["product"].create_index([("category", ASCENDING)])


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id as a string."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    stamp = now()
    doc["created_at"] = stamp
    doc["updated_at"] = stamp
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(d) for d in cursor]


def parse_object_id(id_str: Optional[str]) -> Optional[ObjectId]:
    # ObjectId(None) would mint a fresh id
    if not id_str:
        return None
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def to_object_id(id_str: str, what: str = "Resource") -> ObjectId:
    """Parse a path/body id; an unparsable id can never match, so it is reported as missing."""
    oid = parse_object_id(id_str)
    if oid is None:
        raise NotFound(f"{what} not found")
    return oid


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def clamp_page(page: Any, page_size: Any, default_size: int) -> Tuple[int, int]:
    """Coerce paging query values: page >= 1, 1 <= page_size <= 100. Zero or junk falls back to the default."""
    try:
        page = int(page) or 1
    except (TypeError, ValueError):
        page = 1
    try:
        page_size = int(page_size) or default_size
    except (TypeError, ValueError):
        page_size = default_size
    return max(1, page), min(100, max(1, page_size))
