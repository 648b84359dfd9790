from __future__ import annotations
from decimal import Decimal
from typing import List

from schemas import MenuItem, OrderLine


class Cart:
    """Menu items picked for one or more cafes during a session."""

    def __init__(self):
        self._lines: List[OrderLine] = []

    def _find(self, menu_item_id: str, cafe_id: str) -> int:
        for idx, line in enumerate(self._lines):
            if line.menu_item_id == menu_item_id and line.cafe_id == cafe_id:
                return idx
        return -1

    def add(self, item: MenuItem) -> OrderLine:
        idx = self._find(item.id, item.cafe_id)
        if idx >= 0:
            line = self._lines[idx].model_copy(update={"quantity": self._lines[idx].quantity + 1})
            self._lines[idx] = line
            return line
        line = OrderLine(menu_item_id=item.id, name=item.name, unit_price=item.price, quantity=1, cafe_id=item.cafe_id)
        self._lines.append(line)
        return line

    def remove(self, menu_item_id: str, cafe_id: str) -> None:
        """Drop one unit; the line disappears when its quantity reaches zero."""
        idx = self._find(menu_item_id, cafe_id)
        if idx < 0:
            return
        line = self._lines[idx]
        if line.quantity > 1:
            self._lines[idx] = line.model_copy(update={"quantity": line.quantity - 1})
        else:
            del self._lines[idx]

    def lines_for(self, cafe_id: str) -> List[OrderLine]:
        return [line for line in self._lines if line.cafe_id == cafe_id]

    def clear_cafe(self, cafe_id: str) -> None:
        self._lines = [line for line in self._lines if line.cafe_id != cafe_id]

    @property
    def lines(self) -> List[OrderLine]:
        return list(self._lines)

    def total(self) -> Decimal:
        return sum((line.unit_price * line.quantity for line in self._lines), Decimal(0))
