"""
MongoDB access for the print shop backend.

One collection per entity (user, otp, session, order). Handlers receive the
database through ``get_db`` so tests can swap in an in-memory client.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()
_client: Optional[MongoClient] = None
db: Optional[Database] = None

if _settings.database_url and _settings.database_name:
    # MongoClient connects lazily; nothing touches the network until first use
    _client = MongoClient(_settings.database_url, tz_aware=True)
    db = _client[_settings.database_name]


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes may come back naive depending on the client; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
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
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List] = None,
) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: Any) -> Optional[ObjectId]:
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def to_str_id(doc):
    if doc is None:
        return None
    doc["id"] = str(doc.pop("_id"))
    return doc


def ensure_indexes(database: Database, session_ttl_seconds: int = 7 * 24 * 3600) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["otp"].create_index([("email", ASCENDING), ("created_at", DESCENDING)])
    database["session"].create_index([("token", ASCENDING)], unique=True)
    database["session"].create_index([("created_at", ASCENDING)], expireAfterSeconds=session_ttl_seconds)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info("Indexes ensured on %s", database.name)
