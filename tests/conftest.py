"""
Shared fixtures: an in-memory document store standing in for MongoDB.
"""

import asyncio
import copy
import itertools
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import pytest

from database import DocumentStore, stamp
from errors import BackendError
from schemas import MenuItem, PaymentMethod, User, Voucher


class InMemoryStore(DocumentStore):
    """Counts calls, can be told to fail, and feeds change events to watchers."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self._failures: List[tuple] = []
        self._watchers: List[tuple] = []
        self._ids = itertools.count(1)

    # ---- test helpers ----
    def put(self, collection_name: str, doc_id: str, data: Dict[str, Any]) -> None:
        self.collections.setdefault(collection_name, {})[doc_id] = dict(data)

    def docs(self, collection_name: str) -> List[Dict[str, Any]]:
        return [dict(d, id=k) for k, d in self.collections.get(collection_name, {}).items()]

    def fail(self, method: str, collection_name: str, message: str = "backend unavailable",
             when: Optional[Callable[[Any], bool]] = None) -> None:
        self._failures.append((method, collection_name, message, when))

    def clear_failures(self) -> None:
        self._failures.clear()

    def open_watchers(self) -> int:
        return len(self._watchers)

    def break_watchers(self, message: str = "change stream closed") -> None:
        for queue, _, _ in list(self._watchers):
            queue.put_nowait(BackendError(message))

    def _record(self, method: str, collection_name: str, arg: Any = None) -> None:
        self.calls.append((method, collection_name))
        for f_method, f_collection, message, when in self._failures:
            if f_method == method and f_collection == collection_name and (when is None or when(arg)):
                raise BackendError(message)

    def _notify(self, collection_name: str, op: str, doc: Dict[str, Any]) -> None:
        for queue, watched, filter_dict in list(self._watchers):
            if watched == collection_name and _matches(doc, filter_dict):
                queue.put_nowait({"operationType": op, "fullDocument": copy.deepcopy(doc)})

    # ---- DocumentStore ----
    async def create_document(self, collection_name, data):
        self._record("create_document", collection_name, data)
        doc_id = f"doc{next(self._ids)}"
        doc = stamp(copy.deepcopy(data), datetime.now(timezone.utc))
        self.collections.setdefault(collection_name, {})[doc_id] = doc
        self._notify(collection_name, "insert", doc)
        return doc_id

    async def get_document(self, collection_name, doc_id):
        self._record("get_document", collection_name, doc_id)
        doc = self.collections.get(collection_name, {}).get(doc_id)
        if doc is None:
            return None
        return dict(copy.deepcopy(doc), id=doc_id)

    async def get_documents(self, collection_name, filter_dict=None, sort=None, limit=None):
        self._record("get_documents", collection_name, filter_dict)
        docs = [
            dict(copy.deepcopy(d), id=k)
            for k, d in self.collections.get(collection_name, {}).items()
            if _matches(d, filter_dict or {})
        ]
        for key, direction in reversed(list(sort or [])):
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return docs[:limit] if limit else docs

    async def update_document(self, collection_name, filter_dict, fields):
        self._record("update_document", collection_name, filter_dict)
        for doc in self.collections.get(collection_name, {}).values():
            if _matches(doc, filter_dict):
                doc.update(copy.deepcopy(fields))
                self._notify(collection_name, "update", doc)
                return
        raise BackendError(f"No document in {collection_name} matches {filter_dict}")

    @asynccontextmanager
    async def watch(self, collection_name, filter_dict):
        self._record("watch", collection_name, filter_dict)
        queue: asyncio.Queue = asyncio.Queue()
        entry = (queue, collection_name, dict(filter_dict))
        self._watchers.append(entry)
        try:
            yield _drain(queue)
        finally:
            self._watchers.remove(entry)

    async def list_collections(self):
        return sorted(self.collections)


async def _drain(queue: asyncio.Queue):
    while True:
        event = await queue.get()
        if isinstance(event, BackendError):
            raise event
        yield event


def _matches(doc: Dict[str, Any], filter_dict: Dict[str, Any]) -> bool:
    return all(doc.get(k) == v for k, v in filter_dict.items())


async def wait_until(predicate: Callable[[], bool], attempts: int = 200) -> bool:
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0.005)
    return predicate()


CAFE_ID = "jokopi"


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore()
    s.put("cafe", CAFE_ID, {"name": "Jokopi", "address": "Jl. Jakarta No.26", "jamOperasional": "08:00 - 22:00"})
    s.put("cafe", "kopikita", {"name": "Kopi Kita", "address": "Jl. Merdeka 1"})
    for table_id, booked in (("T10", False), ("T2", True), ("T1", False), ("KASIR", False), ("PHOTO BOOTH", False)):
        s.put("table", f"{CAFE_ID}-{table_id}", {"cafeId": CAFE_ID, "tableId": table_id, "booked": booked})
    s.put("table", "kopikita-A1", {"cafeId": "kopikita", "tableId": "A1", "booked": False})
    s.put("menu_item", "latte", {"cafeId": CAFE_ID, "name": "Es Kopi Susu", "price": Decimal("25000")})
    s.put("menu_item", "croissant", {"cafeId": CAFE_ID, "name": "Croissant", "price": Decimal("15000")})
    s.put("menu_item", "tea", {"cafeId": "kopikita", "name": "Teh Tarik", "price": Decimal("12000")})
    s.put("voucher", "hemat10", {"name": "HEMAT10", "potongan": Decimal("10000"), "minimal": Decimal("50000")})
    s.put("payment", "qris", {"name": "QRIS", "gambar": "https://img.example/qris.png"})
    s.put("users", "u1", {"username": "Budi", "email": "budi@example.com"})
    return s


@pytest.fixture
def user() -> User:
    return User(uid="u1", email="budi@example.com", display_name="Budi")


@pytest.fixture
def latte() -> MenuItem:
    return MenuItem(id="latte", cafe_id=CAFE_ID, name="Es Kopi Susu", price=Decimal("25000"))


@pytest.fixture
def croissant() -> MenuItem:
    return MenuItem(id="croissant", cafe_id=CAFE_ID, name="Croissant", price=Decimal("15000"))


@pytest.fixture
def qris() -> PaymentMethod:
    return PaymentMethod(id="qris", name="QRIS")


@pytest.fixture
def voucher() -> Voucher:
    return Voucher(id="hemat10", name="HEMAT10", discount=Decimal("10000"), minimum_spend=Decimal("50000"))
