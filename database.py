"""
Database Helper Functions

MongoDB access for the marketplace. A single Database object is created by the
process entry point, connected in the app lifespan and handed to every request
handler through a FastAPI dependency. Collections are named after the
lowercase schema class (Account -> "account", SoldItem -> "solditem").
"""

import logging
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any, List

from bson import ObjectId
from pymongo import MongoClient, ASCENDING, DESCENDING
from pydantic import BaseModel

from errors import ServiceUnavailableError

log = logging.getLogger("coast2cart.database")


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for value, or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes unless tz_aware is set
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Database:
    def __init__(self, url: Optional[str] = None, name: Optional[str] = None):
        self.url = url
        self.name = name
        self._client: Optional[MongoClient] = None
        self.db = None

    @classmethod
    def from_client(cls, client, name: str) -> "Database":
        database = cls(name=name)
        database._client = client
        database.db = client[name]
        return database

    @property
    def configured(self) -> bool:
        return self.db is not None or bool(self.url and self.name)

    def connect(self) -> None:
        if self.db is not None:
            return
        if not (self.url and self.name):
            log.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
            return
        self._client = MongoClient(self.url, tz_aware=True)
        self.db = self._client[self.name]
        log.info("Connected to MongoDB database %s", self.name)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            log.info("MongoDB connection closed")
        self._client = None
        self.db = None

    def ping(self) -> bool:
        if self.db is None:
            return False
        self.db.command("ping")
        return True

    def ensure_indexes(self) -> None:
        self._ensure_db()
        self.db["account"].create_index("username", unique=True)
        self.db["account"].create_index("email", unique=True)
        self.db["account"].create_index("contactNo", unique=True)
        self.db["otp"].create_index("userId")
        # expired codes are swept by the server
        self.db["otp"].create_index("expiresAt", expireAfterSeconds=0)
        self.db["item"].create_index([("seller", ASCENDING), ("isActive", ASCENDING)])
        self.db["item"].create_index([("itemType", ASCENDING), ("isActive", ASCENDING)])
        self.db["item"].create_index([("catchDate", DESCENDING)])
        self.db["solditem"].create_index([("seller", ASCENDING), ("saleDate", DESCENDING)])
        self.db["solditem"].create_index([("buyer", ASCENDING), ("saleDate", DESCENDING)])
        self.db["cart"].create_index("user", unique=True)

    def _ensure_db(self):
        if self.db is None:
            raise ServiceUnavailableError(
                "Database not available. Check DATABASE_URL and DATABASE_NAME environment variables."
            )

    def __getitem__(self, collection_name: str):
        self._ensure_db()
        return self.db[collection_name]

    # CRUD helpers

    def create_document(self, collection_name: str, data: Union[BaseModel, dict]) -> ObjectId:
        self._ensure_db()
        payload = _to_dict(data)
        now = utcnow()
        payload.setdefault("createdAt", now)
        payload["updatedAt"] = now
        result = self.db[collection_name].insert_one(payload)
        return result.inserted_id

    def get_documents(
        self,
        collection_name: str,
        filter_dict: Optional[dict] = None,
        limit: Optional[int] = None,
        sort: Optional[list] = None,
        skip: Optional[int] = None,
        projection: Optional[dict] = None,
    ) -> List[dict]:
        self._ensure_db()
        cursor = self.db[collection_name].find(filter_dict or {}, projection)
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(int(skip))
        if limit:
            cursor = cursor.limit(int(limit))
        return list(cursor)

    def count_documents(self, collection_name: str, filter_dict: Optional[dict] = None) -> int:
        self._ensure_db()
        return self.db[collection_name].count_documents(filter_dict or {})

    def get_document_by_id(
        self, collection_name: str, _id: Any, projection: Optional[dict] = None
    ) -> Optional[dict]:
        self._ensure_db()
        oid = to_object_id(_id)
        if oid is None:
            return None
        return self.db[collection_name].find_one({"_id": oid}, projection)

    def update_document(self, collection_name: str, _id: Any, update_data: Dict[str, Any]) -> bool:
        self._ensure_db()
        oid = to_object_id(_id)
        if oid is None:
            return False
        update = {"$set": _to_dict(update_data)}
        update["$set"]["updatedAt"] = utcnow()
        result = self.db[collection_name].update_one({"_id": oid}, update)
        return result.matched_count > 0

    def delete_document(self, collection_name: str, _id: Any) -> bool:
        self._ensure_db()
        oid = to_object_id(_id)
        if oid is None:
            return False
        result = self.db[collection_name].delete_one({"_id": oid})
        return result.deleted_count > 0

    def populate(
        self,
        docs: List[dict],
        field: str,
        collection_name: str,
        projection: Optional[dict] = None,
    ) -> List[dict]:
        """Replace the reference id stored in ``field`` with the referenced document.

        References that no longer resolve are set to None, mirroring an ODM populate.
        """
        ids = {doc[field] for doc in docs if isinstance(doc.get(field), ObjectId)}
        if not ids:
            return docs
        found = {
            ref["_id"]: ref
            for ref in self[collection_name].find({"_id": {"$in": list(ids)}}, projection)
        }
        for doc in docs:
            if isinstance(doc.get(field), ObjectId):
                doc[field] = found.get(doc[field])
        return docs


# Utility

def serialize_doc(doc: Optional[Any]) -> Optional[Any]:
    if doc is None:
        return None
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return as_utc(doc).isoformat()
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, dict):
        return {k: serialize_doc(v) for k, v in doc.items()}
    return doc
