"""
MongoDB access helpers.

`db` is the shared pymongo Database handle, built from DATABASE_URL and
DATABASE_NAME. It stays None when no URL is configured; tests inject a
database with `use_database`.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.errors import OperationFailure

from errors import DatabaseNotConfigured
from settings import get_settings

# Server codes meaning the caller may not read the document: Unauthorized, AuthenticationFailed
UNAUTHORIZED_CODES = {13, 18}

_settings = get_settings()
_client = MongoClient(_settings.database_url) if _settings.database_url else None
db = _client[_settings.database_name] if _client is not None else None


def use_database(database) -> None:
    global db
    db = database


def now() -> datetime:
    return datetime.now(timezone.utc)


def collection(name: str):
    if db is None:
        raise DatabaseNotConfigured("Database not available")
    return db[name]


def _as_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def is_permission_denied(exc: Exception) -> bool:
    return isinstance(exc, OperationFailure) and exc.code in UNAUTHORIZED_CODES


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with an auto id, stamping created_at/updated_at."""
    doc = _as_dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = collection(collection_name).insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[List[Tuple[str, int]]] = None) -> List[dict]:
    cursor = collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document(collection_name: str, key: str) -> Optional[dict]:
    return collection(collection_name).find_one({"_id": key})


def put_document(collection_name: str, key: str, data: Union[BaseModel, dict]) -> None:
    """Create or overwrite the document stored under `key`."""
    doc = _as_dict(data)
    doc["_id"] = key
    collection(collection_name).replace_one({"_id": key}, doc, upsert=True)


def create_if_absent(collection_name: str, key: str, data: Union[BaseModel, dict]) -> bool:
    """
    Write the document under `key` only if nothing is stored there yet.

    Returns True when this call created it. An existing document is left
    untouched, so concurrent callers with the same key converge on one record.
    """
    doc = _as_dict(data)
    doc.pop("_id", None)
    result = collection(collection_name).update_one(
        {"_id": key}, {"$setOnInsert": doc}, upsert=True
    )
    return result.upserted_id is not None


def update_document(collection_name: str, key: str, fields: Dict[str, Any]) -> bool:
    """Merge `fields` into an existing document. Returns False if it does not exist."""
    result = collection(collection_name).update_one({"_id": key}, {"$set": fields})
    return result.matched_count > 0
