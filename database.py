from __future__ import annotations
import logging
import os
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncContextManager, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from bson import Decimal128, ObjectId
from dotenv import load_dotenv
from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from errors import BackendError

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "brewspot")

logger = logging.getLogger(__name__)

Sort = Sequence[Tuple[str, int]]


def oid(obj: Any) -> Any:
    if isinstance(obj, ObjectId):
        return str(obj)
    return obj


def encode(value: Any) -> Any:
    """Convert Python values into BSON-storable ones (Decimal -> Decimal128)."""
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, dict):
        return {k: encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [encode(v) for v in value]
    return value


def decode(value: Any) -> Any:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode(v) for v in value]
    return value


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = decode(doc)
    doc["id"] = oid(doc.pop("_id"))
    return doc


def _doc_key(doc_id: str) -> Any:
    return ObjectId(doc_id) if ObjectId.is_valid(doc_id) else doc_id


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Field value replaced by the store's own write time on create_document.
SERVER_TIMESTAMP = _ServerTimestamp()


def stamp(data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Fill SERVER_TIMESTAMP fields and the createdAt/updatedAt audit pair."""
    doc = {k: (now if v is SERVER_TIMESTAMP else v) for k, v in data.items()}
    doc["createdAt"] = now
    doc["updatedAt"] = now
    return doc


class DocumentStore(ABC):
    """Narrow document-store contract used by the coordinators.

    Every method is a suspension point. Failures surface as BackendError
    carrying the store's own message.
    """

    @abstractmethod
    async def create_document(self, collection_name: str, data: Dict[str, Any]) -> str:
        """Insert one document, stamping server-side timestamps; return its id."""

    @abstractmethod
    async def get_document(self, collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Point read by id; None when the document does not exist."""

    @abstractmethod
    async def get_documents(
        self,
        collection_name: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        sort: Optional[Sort] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Collection read with equality filter and optional ordering."""

    @abstractmethod
    async def update_document(self, collection_name: str, filter_dict: Dict[str, Any], fields: Dict[str, Any]) -> None:
        """Set fields on the single matching document; not-found is a BackendError."""

    @abstractmethod
    def watch(
        self, collection_name: str, filter_dict: Dict[str, Any]
    ) -> AsyncContextManager[AsyncIterator[Dict[str, Any]]]:
        """Open a change stream; entering it starts capturing events.

        The yielded iterator produces one event per insert/update/delete of
        matching documents made after the stream was opened.
        """

    @abstractmethod
    async def list_collections(self) -> List[str]:
        ...


class MongoDocumentStore(DocumentStore):
    def __init__(self, db):
        self.db = db

    @classmethod
    def from_url(cls, url: str = DATABASE_URL, name: str = DATABASE_NAME) -> "MongoDocumentStore":
        client = AsyncMongoClient(url)
        return cls(client[name])

    async def create_document(self, collection_name: str, data: Dict[str, Any]) -> str:
        data = encode(stamp(data, datetime.now(timezone.utc)))
        try:
            res = await self.db[collection_name].insert_one(data)
        except PyMongoError as e:
            raise BackendError(str(e)) from e
        return str(res.inserted_id)

    async def get_document(self, collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            doc = await self.db[collection_name].find_one({"_id": _doc_key(doc_id)})
        except PyMongoError as e:
            raise BackendError(str(e)) from e
        return serialize(doc)

    async def get_documents(
        self,
        collection_name: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        sort: Optional[Sort] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection_name].find(encode(filter_dict or {}))
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        try:
            docs = await cursor.to_list()
        except PyMongoError as e:
            raise BackendError(str(e)) from e
        return [serialize(d) for d in docs]

    async def update_document(self, collection_name: str, filter_dict: Dict[str, Any], fields: Dict[str, Any]) -> None:
        update = {"$set": {**encode(fields), "updatedAt": datetime.now(timezone.utc)}}
        try:
            res = await self.db[collection_name].update_one(encode(filter_dict), update)
        except PyMongoError as e:
            raise BackendError(str(e)) from e
        if res.matched_count == 0:
            raise BackendError(f"No document in {collection_name} matches {filter_dict}")

    @asynccontextmanager
    async def watch(self, collection_name: str, filter_dict: Dict[str, Any]):
        # Deletes carry no fullDocument, so they are passed through unfiltered.
        match = {
            "$or": [
                {f"fullDocument.{k}": v for k, v in filter_dict.items()},
                {"operationType": "delete"},
            ]
        }
        try:
            stream = await self.db[collection_name].watch([{"$match": match}], full_document="updateLookup")
        except PyMongoError as e:
            raise BackendError(str(e)) from e
        try:
            yield _changes(stream)
        finally:
            await stream.close()

    async def list_collections(self) -> List[str]:
        try:
            return await self.db.list_collection_names()
        except PyMongoError as e:
            raise BackendError(str(e)) from e


async def _changes(stream) -> AsyncIterator[Dict[str, Any]]:
    try:
        async for change in stream:
            yield change
    except PyMongoError as e:
        raise BackendError(str(e)) from e


_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    """FastAPI dependency returning the process-wide store; override in tests."""
    global _store
    if _store is None:
        _store = MongoDocumentStore.from_url()
        logger.info("Connected document store to %s/%s", DATABASE_URL, DATABASE_NAME)
    return _store
