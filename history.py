from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import List, Optional

import config
from checkout import HISTORY_COLLECTION
from database import DocumentStore
from schemas import OrderRecord

logger = logging.getLogger(__name__)

STATUS_PAID = "paid"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"

RESERVATION_DATETIME_FORMAT = "%d/%m/%Y %H:%M"


def effective_status(record: OrderRecord, now: Optional[datetime] = None, expiry_hours: int = config.BOOKING_EXPIRY_HOURS) -> str:
    """Status as shown to the user: a paid booking whose slot passed long ago reads as expired.

    Only derived at read time; the stored status is left alone.
    """
    if record.status != STATUS_PAID:
        return record.status
    if not record.date or not record.reservation_time:
        return record.status
    try:
        slot = datetime.strptime(f"{record.date} {record.reservation_time}", RESERVATION_DATETIME_FORMAT)
    except ValueError:
        logger.debug("Unparsable reservation slot %r %r on order %s", record.date, record.reservation_time, record.id)
        return record.status
    now = now or datetime.now()
    if now - slot >= timedelta(hours=expiry_hours):
        return STATUS_EXPIRED
    return record.status


async def list_history(
    store: DocumentStore, user_id: str, now: Optional[datetime] = None, query: Optional[str] = None
) -> List[OrderRecord]:
    """A user's orders, newest payment first, optionally narrowed to cafe names containing ``query``."""
    docs = await store.get_documents(HISTORY_COLLECTION, {"userId": user_id}, sort=[("timestamp", -1)])
    needle = (query or "").strip().lower()
    records = []
    for doc in docs:
        record = OrderRecord.model_validate(doc)
        if needle and needle not in record.cafe_name.lower():
            continue
        records.append(record.model_copy(update={"status": effective_status(record, now)}))
    return records
