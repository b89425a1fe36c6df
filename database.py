"""
MongoDB access

The client is opened once by the application lifespan and handed to route
handlers through the ``get_db`` dependency, so tests can swap in another
database with ``app.dependency_overrides``.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

logger = structlog.get_logger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None


def connect() -> Database:
    global client, db
    client = MongoClient(DATABASE_URL, tz_aware=True)
    # Fail fast: an unreachable server must stop the process at startup
    client.admin.command("ping")
    db = client[DATABASE_NAME]
    ensure_indexes(db)
    logger.info("database_connected", database=DATABASE_NAME)
    return db


def close() -> None:
    global client, db
    if client is not None:
        client.close()
        logger.info("database_closed")
    client = None
    db = None


def get_db() -> Database:
    if db is None:
        raise RuntimeError("Database is not connected")
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["cart"].create_index([("user_id", ASCENDING)], unique=True)
    database["cartitem"].create_index(
        [("cart_id", ASCENDING), ("product_id", ASCENDING)], unique=True
    )
    database["cartitem"].create_index([("product_id", ASCENDING)])


def to_object_id(value: str) -> Optional[ObjectId]:
    """Return the ObjectId for ``value`` or None when it is not a valid id."""
    if not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def create_document(database: Database, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    doc = {**data, "created_at": now, "updated_at": now}
    result = database[collection].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(database: Database, collection: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = database[collection].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
