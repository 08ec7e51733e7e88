"""
MongoDB access

A single client is created at import time when DATABASE_URL and
DATABASE_NAME are configured; otherwise `db` stays None and the API
answers "Database not configured". Routes receive the database through
the `get_db` dependency so it can be swapped out in tests.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId as BsonInvalidId
from fastapi import HTTPException
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from settings import get_settings

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None

_settings = get_settings()
if _settings.database_url and _settings.database_name:
    _client = MongoClient(_settings.database_url)
    db = _client[_settings.database_name]
    logger.info("MongoDB client created for database %s", _settings.database_name)


class InvalidId(ValueError):
    """Raised when a path id is not a valid ObjectId."""


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def ensure_indexes(database: Database) -> None:
    database.trade.create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
    database.customer.create_index("user_id", unique=True)
    database.customer.create_index("stripe_customer_id")


def utc_now() -> datetime:
    """Current time as naive UTC, the form pymongo hands datetimes back in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (BsonInvalidId, TypeError):
        raise InvalidId(id_str)


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc["id"] = str(doc.pop("_id"))
    # Convert datetimes to isoformat
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc
