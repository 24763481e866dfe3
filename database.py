"""
MongoDB access for the dream journal.

Exposes the shared `db` handle and small helpers used by the handlers and
the integrity layer. Every collection stores documents keyed by ObjectId;
cross-collection references are plain ObjectId fields, nothing is enforced
at the storage layer.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo import ASCENDING, MongoClient, ReturnDocument

from settings import settings

logger = logging.getLogger(f"{settings.SERVICE_NAME}.db")

OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")

# Insertion order; created_at alone can tie within the same millisecond
INSERTION_ORDER: List[Tuple[str, int]] = [("created_at", ASCENDING), ("_id", ASCENDING)]


def _connect():
    if not settings.DATABASE_URL:
        logger.warning("DATABASE_URL not set, database disabled")
        return None
    client = MongoClient(settings.DATABASE_URL, serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS)
    return client[settings.DATABASE_NAME]


db = _connect()


def _collection(collection_name: str):
    if db is None:
        raise RuntimeError("Database not configured")
    return db[collection_name]


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """Returns the ObjectId for a 24-hex string (or ObjectId), None otherwise."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and OBJECT_ID_RE.match(value):
        return ObjectId(value)
    return None


def serialize(value: Any) -> Any:
    """Turns `_id` into `id` and every ObjectId into its hex string."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            if key == "_id":
                out["id"] = serialize(item)
            else:
                out[key] = serialize(item)
        return out
    return value


def create_document(collection_name: str, data: Dict[str, Any]) -> str:
    now = datetime.now(timezone.utc)
    doc = {**data, "created_at": now, "updated_at": now}
    result = _collection(collection_name).insert_one(doc)
    return str(result.inserted_id)


def get_document(
    collection_name: str, document_id: Any, projection: Optional[Dict[str, int]] = None
) -> Optional[dict]:
    oid = parse_object_id(document_id)
    if oid is None:
        return None
    return _collection(collection_name).find_one({"_id": oid}, projection)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    skip: int = 0,
    limit: Optional[int] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
    projection: Optional[Dict[str, int]] = None,
) -> List[dict]:
    cursor = _collection(collection_name).find(filter_dict or {}, projection)
    cursor = cursor.sort(list(sort or INSERTION_ORDER))
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def count_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
    return _collection(collection_name).count_documents(filter_dict or {})


def document_exists(collection_name: str, filter_dict: Dict[str, Any]) -> bool:
    return _collection(collection_name).find_one(filter_dict, {"_id": 1}) is not None


def update_document(collection_name: str, document_id: Any, changes: Dict[str, Any]) -> Optional[dict]:
    """Applies `$set` changes and returns the updated document, None if it does not exist."""
    oid = parse_object_id(document_id)
    if oid is None:
        return None
    changes = {**changes, "updated_at": datetime.now(timezone.utc)}
    return _collection(collection_name).find_one_and_update(
        {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )


def delete_document(collection_name: str, document_id: Any) -> Optional[dict]:
    """Deletes by id and returns the removed document, None if nothing matched."""
    oid = parse_object_id(document_id)
    if oid is None:
        return None
    return _collection(collection_name).find_one_and_delete({"_id": oid})


def delete_documents(collection_name: str, filter_dict: Dict[str, Any]) -> int:
    return _collection(collection_name).delete_many(filter_dict).deleted_count


def ensure_indexes() -> None:
    if db is None:
        return
    db["users"].create_index("name", unique=True)
    db["users"].create_index("email", unique=True, sparse=True)
    db["dreams"].create_index("author")
    db["comments"].create_index([("dream", ASCENDING), ("created_at", ASCENDING)])
    db["comments"].create_index("parent")
    db["refresh_tokens"].create_index("token", unique=True)
    logger.info("Indexes ensured on %s", db.name)
