from __future__ import annotations
import logging
from typing import List, Optional

from database import DocumentStore
from errors import BackendError, ValidationError
from schemas import ReservationRecord
from selection import SelectionState

logger = logging.getLogger(__name__)

RESERVATION_COLLECTION = "reservations"


class ReservationCoordinator:
    """Turns a finalised table selection into exactly one reservation record."""

    def __init__(self, store: DocumentStore, selection: Optional[SelectionState] = None):
        self.store = store
        self.selection = selection

    async def create_reservation(
        self,
        cafe_id: Optional[str],
        cafe_name: str,
        user_id: Optional[str],
        user_name: Optional[str],
        date: Optional[str],
        time: Optional[str],
        total_guests: int,
        selected_tables: Optional[List[str]] = None,
    ) -> str:
        """Validate, persist and return the backend-assigned reservation id.

        Validation failures raise ValidationError before any store call. Store
        failures propagate as BackendError with the backend's message; there is
        no retry here.
        """
        missing = [
            name
            for name, value in (("cafeId", cafe_id), ("userName", user_name), ("date", date), ("time", time))
            if not value or not str(value).strip()
        ]
        if missing:
            raise ValidationError(f"Incomplete reservation data: missing {', '.join(missing)}")
        if total_guests <= 0:
            raise ValidationError("Total guests must be at least 1")

        if selected_tables is None:
            if self.selection is None:
                raise ValidationError("No tables selected")
            if self.selection.cafe_id != cafe_id:
                raise ValidationError(f"Current table selection belongs to cafe {self.selection.cafe_id}")
            selected_tables = self.selection.selected
        if not selected_tables:
            raise ValidationError("No tables selected")

        record = {
            "cafeId": cafe_id,
            "cafeName": cafe_name,
            "userId": user_id,
            "userName": user_name,
            "date": date,
            "time": time,
            "totalGuests": total_guests,
            "selectedTables": list(selected_tables),
        }
        try:
            reservation_id = await self.store.create_document(RESERVATION_COLLECTION, record)
        except BackendError as e:
            logger.error("Error creating reservation for %s: %s", cafe_name or cafe_id, e)
            raise

        logger.info(
            "Reservation %s created for %s on %s at %s with tables %s",
            reservation_id, cafe_name or cafe_id, date, time, selected_tables,
        )
        if self.selection is not None:
            self.selection.clear()
        return reservation_id

    async def get_reservation(self, reservation_id: str) -> Optional[ReservationRecord]:
        doc = await self.store.get_document(RESERVATION_COLLECTION, reservation_id)
        if doc is None:
            return None
        return ReservationRecord.model_validate(doc)
