"""
Database Helper Functions

A MongoDB store handle owned by the application. The app factory creates
one, connects it on startup and exposes it to routes through `get_db`;
services receive it as their first argument.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId as BsonInvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

import config
from errors import InvalidId, StoreUnavailable

logger = logging.getLogger(__name__)

USERS = "users"
PRODUCTS = "products"
ORDERS = "orders"


class Database:
    def __init__(self, url: Optional[str] = None, name: Optional[str] = None, client=None):
        self.url = url or config.DATABASE_URL
        self.name = name or config.DATABASE_NAME
        self._client = client
        self._owns_client = client is None
        self.db = None

    # ---------------- lifecycle ----------------
    def connect(self):
        if self._client is None:
            self._client = MongoClient(
                self.url,
                serverSelectionTimeoutMS=10000,
                socketTimeoutMS=45000,
                tz_aware=True,
            )
        self.db = self._client[self.name]
        try:
            self.ensure_indexes()
        except PyMongoError as e:
            # the server may come up later; the health probe reconnects
            logger.error("MongoDB connection failed: %s", e)
            self.db = None
            return False
        logger.info("MongoDB connected (database: %s)", self.name)
        return True

    def health_check(self) -> bool:
        if self._client is None or self.db is None:
            return False
        try:
            self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning("MongoDB ping failed: %s", e)
            return False

    def reconnect(self):
        logger.warning("MongoDB connection lost - reconnecting")
        if self._owns_client:
            self.close()
        return self.connect()

    def close(self):
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        self.db = None

    @property
    def connected(self) -> bool:
        return self.db is not None

    def ensure_indexes(self):
        self.db[USERS].create_index([("email", ASCENDING)], unique=True)
        self.db[USERS].create_index(
            [("social_provider", ASCENDING), ("social_id", ASCENDING)],
            unique=True,
            partialFilterExpression={"social_id": {"$type": "string"}},
        )
        self.db[PRODUCTS].create_index([("sku", ASCENDING)], unique=True)
        self.db[PRODUCTS].create_index([("category", ASCENDING)])
        self.db[PRODUCTS].create_index([("status", ASCENDING)])
        self.db[PRODUCTS].create_index([("created_at", DESCENDING)])
        self.db[ORDERS].create_index([("order_number", ASCENDING)], unique=True)
        self.db[ORDERS].create_index([("user_id", ASCENDING)])
        self.db[ORDERS].create_index([("status", ASCENDING)])
        self.db[ORDERS].create_index([("payment_status", ASCENDING)])
        self.db[ORDERS].create_index([("created_at", DESCENDING)])

    def __getitem__(self, collection_name: str):
        if self.db is None:
            raise StoreUnavailable()
        return self.db[collection_name]

    # ---------------- CRUD helpers ----------------
    def create_document(self, collection_name: str, data: Union[BaseModel, dict]) -> str:
        payload = _to_dict(data)
        now = datetime.now(timezone.utc)
        payload["created_at"] = now
        payload["updated_at"] = now
        result = self[collection_name].insert_one(payload)
        return str(result.inserted_id)

    def get_documents(
        self,
        collection_name: str,
        filter_dict: Optional[dict] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        sort: Optional[list] = None,
    ) -> List[dict]:
        cursor = self[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(int(skip))
        if limit:
            cursor = cursor.limit(int(limit))
        return list(cursor)

    def count_documents(self, collection_name: str, filter_dict: Optional[dict] = None) -> int:
        return self[collection_name].count_documents(filter_dict or {})

    def get_document_by_id(self, collection_name: str, _id: str) -> Optional[dict]:
        return self[collection_name].find_one({"_id": object_id(_id)})

    def update_document(self, collection_name: str, _id: str, update_data: Dict[str, Any]) -> Optional[dict]:
        update = {"$set": _to_dict(update_data)}
        update["$set"]["updated_at"] = datetime.now(timezone.utc)
        return self[collection_name].find_one_and_update(
            {"_id": object_id(_id)}, update, return_document=ReturnDocument.AFTER
        )

    def delete_document(self, collection_name: str, _id: str) -> bool:
        result = self[collection_name].delete_one({"_id": object_id(_id)})
        return result.deleted_count > 0


def get_db(request: Request) -> Database:
    return request.app.state.db


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


# Utility

def object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (BsonInvalidId, TypeError):
        raise InvalidId(f"Invalid {label}: {value}")


def serialize_doc(doc: Any) -> Any:
    """Make a stored document JSON friendly: `_id` -> `id`, ObjectId -> str,
    datetimes -> ISO strings. Password hashes never leave the store."""
    if isinstance(doc, dict):
        out = {}
        for k, v in doc.items():
            if k == "password_hash":
                continue
            out["id" if k == "_id" else k] = serialize_doc(v)
        return out
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        if doc.tzinfo is None:
            doc = doc.replace(tzinfo=timezone.utc)
        return doc.isoformat()
    return doc
