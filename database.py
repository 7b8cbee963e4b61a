"""
MongoDB helpers.

Collections are named after the lowercase schema class (Car -> "car").
The connection is opened once by main.create_app and handed to the domain
modules explicitly.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from settings import Settings

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def connect(settings: Settings) -> Optional[Database]:
    if not settings.database_url or not settings.database_name:
        logger.warning("DATABASE_URL or DATABASE_NAME not set; running without a database")
        return None
    client = MongoClient(settings.database_url, tz_aware=True)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    # One conversation per (customer, agent) pair.
    db["chat"].create_index([("user_id", ASCENDING), ("agent_id", ASCENDING)], unique=True)
    db["message"].create_index([("chat_id", ASCENDING), ("created_at", ASCENDING)])
    db["booking"].create_index("car_id")
    db["payment"].create_index("booking_id")


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse a client supplied id; malformed ids are treated as absent."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    stamp = now_utc()
    doc["created_at"] = stamp
    doc["updated_at"] = stamp
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    newest_first: bool = False,
) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if newest_first:
        cursor = cursor.sort("created_at", DESCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_by_id(db: Database, collection_name: str, doc_id: Any) -> Optional[dict]:
    oid = to_object_id(doc_id)
    if oid is None:
        return None
    return db[collection_name].find_one({"_id": oid})


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            doc[key] = str(value)
        elif isinstance(value, dict):
            doc[key] = serialize_doc(value)
    return doc
