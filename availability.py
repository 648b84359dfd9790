"""Live per-table booking status for one cafe."""

from __future__ import annotations
import asyncio
import logging
import re
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional

from database import DocumentStore
from errors import BackendError

logger = logging.getLogger(__name__)

TABLE_COLLECTION = "table"

# Layout markers stored alongside seats; never bookable.
NON_SEAT_TABLE_IDS = frozenset({"PHOTO BOOTH", "KASIR", "TEMPAT PARKIR"})

_NUMERIC_SUFFIX = re.compile(r"^\D*(\d+)$")

Snapshot = Dict[str, bool]
Listener = Callable[[Snapshot], None]


def seat_ids(ids: Iterable[str]) -> List[str]:
    return [t for t in ids if t not in NON_SEAT_TABLE_IDS]


def sort_table_ids(ids: Iterable[str]) -> List[str]:
    """Order by numeric suffix ("T2" before "T10"); unparsable ids go last, in input order."""

    def key(table_id: str):
        m = _NUMERIC_SUFFIX.match(table_id)
        if m is None:
            return (1, 0)
        return (0, int(m.group(1)))

    return sorted(ids, key=key)


async def read_snapshot(store: DocumentStore, cafe_id: str) -> Snapshot:
    docs = await store.get_documents(TABLE_COLLECTION, {"cafeId": cafe_id})
    return {d["tableId"]: bool(d.get("booked", False)) for d in docs if d.get("tableId")}


async def snapshots(store: DocumentStore, cafe_id: str) -> AsyncIterator[Snapshot]:
    """Full table mapping for ``cafe_id``, re-emitted on every change.

    The change stream is opened before the first read so that no change
    between the two is lost. Never completes on its own; a store failure
    ends it with BackendError.
    """
    async with store.watch(TABLE_COLLECTION, {"cafeId": cafe_id}) as changes:
        yield await read_snapshot(store, cafe_id)
        async for _change in changes:
            yield await read_snapshot(store, cafe_id)


class TableAvailabilityFeed:
    """Keeps the latest snapshot for the subscribed cafe and fans it out to listeners.

    The snapshot is replaced wholesale on each emission. If the stream fails the
    last-known snapshot stays in place and ``last_error`` is set until ``retry``.
    """

    def __init__(self, store: DocumentStore):
        self.store = store
        self.cafe_id: Optional[str] = None
        self.snapshot: Snapshot = {}
        self.last_error: Optional[str] = None
        self._listeners: List[Listener] = []
        self._task: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Event] = None

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def is_booked(self, table_id: str) -> bool:
        return self.snapshot.get(table_id, False)

    def seats(self) -> List[str]:
        return sort_table_ids(seat_ids(self.snapshot))

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, cafe_id: str) -> None:
        """Start following ``cafe_id``; must be called from a running event loop."""
        if cafe_id != self.cafe_id:
            self.unsubscribe()
            self.snapshot = {}
        elif self.active:
            return
        self.cafe_id = cafe_id
        self.last_error = None
        self._ready = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run(cafe_id))

    async def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait for the first snapshot (or failure) of the current subscription."""
        if self._ready is None:
            return False
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def retry(self) -> None:
        if self.cafe_id is None:
            return
        self._cancel()
        self.subscribe(self.cafe_id)

    def unsubscribe(self) -> None:
        self._cancel()
        self.cafe_id = None

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, cafe_id: str) -> None:
        ready = self._ready
        try:
            async for snap in snapshots(self.store, cafe_id):
                self._publish(snap)
        except BackendError as e:
            self.last_error = e.message
            logger.warning("Table feed for cafe %s failed, keeping last snapshot: %s", cafe_id, e)
        finally:
            ready.set()

    def _publish(self, snap: Snapshot) -> None:
        self.snapshot = snap
        if self._ready is not None:
            self._ready.set()
        logger.debug("Cafe %s tables: %s", self.cafe_id, snap)
        for listener in list(self._listeners):
            listener(snap)
