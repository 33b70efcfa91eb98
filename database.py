"""
MongoDB access for the Artvia backend.

`db` is None when no connection string is configured; callers that need the
database go through `get_db()` which raises a 500 in that case.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from config import DATABASE_NAME, DATABASE_URL
from errors import InternalError, ValidationError

logger = logging.getLogger(__name__)

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    try:
        _client = MongoClient(DATABASE_URL)
        db = _client[DATABASE_NAME]
    except PyMongoError as exc:
        logger.error("MongoDB connection failed: %s", exc)


def get_db():
    if db is None:
        raise InternalError("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Union[str, ObjectId]) -> ObjectId:
    """Parse a path/body id, failing with a 400 instead of a bson error."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True)
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["createdAt"] = now
    data_dict["updatedAt"] = now
    result = get_db()[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None,
                  sort: Optional[List] = None) -> List[Dict[str, Any]]:
    cursor = get_db()[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(value: Any) -> Any:
    """Make a Mongo document JSON friendly (ObjectId -> str, datetime -> ISO)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, dict):
        return {k: serialize_doc(v) for k, v in value.items()}
    return value


def ensure_indexes():
    if db is None:
        return
    try:
        db["user"].create_index("email", unique=True)
        db["category"].create_index("name", unique=True)
        db["category"].create_index("slug", unique=True)
        db["favorite"].create_index([("user", ASCENDING), ("product", ASCENDING)], unique=True)
    except PyMongoError as exc:
        logger.warning("Unable to ensure indexes: %s", exc)
