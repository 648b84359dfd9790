from __future__ import annotations
import logging
from typing import List, Optional, Protocol, Set

from availability import sort_table_ids
from errors import SelectionLimitReached

logger = logging.getLogger(__name__)


class Availability(Protocol):
    def is_booked(self, table_id: str) -> bool:
        ...


class SelectionState:
    """Tables chosen during one reservation session.

    Single writer: only the owning session mutates ``selected``. Booked tables
    (per the latest availability snapshot) can never be toggled in.
    """

    def __init__(
        self,
        cafe_id: str,
        availability: Availability,
        max_selections: Optional[int] = None,
        surface_limit: bool = False,
    ):
        self.cafe_id = cafe_id
        self.availability = availability
        self.max_selections = max_selections
        self.surface_limit = surface_limit
        self._selected: Set[str] = set()

    @property
    def selected(self) -> List[str]:
        return sort_table_ids(self._selected)

    def toggle(self, table_id: str) -> bool:
        """Flip ``table_id``; returns whether the selection changed."""
        if self.availability.is_booked(table_id):
            logger.debug("Ignoring toggle of booked table %s", table_id)
            return False
        if table_id in self._selected:
            self._selected.remove(table_id)
            return True
        if self.max_selections is not None and len(self._selected) >= self.max_selections:
            if self.surface_limit:
                raise SelectionLimitReached(table_id, self.max_selections)
            logger.debug("Selection limit %d reached, ignoring %s", self.max_selections, table_id)
            return False
        self._selected.add(table_id)
        return True

    def clear(self) -> None:
        self._selected.clear()

    def count(self) -> int:
        return len(self._selected)

    @property
    def can_proceed(self) -> bool:
        return self.count() > 0

    def reset(self, cafe_id: str) -> None:
        """Switch cafe context; any selection from the previous cafe is dropped."""
        self.cafe_id = cafe_id
        self.clear()
