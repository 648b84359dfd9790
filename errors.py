"""Error taxonomy shared by the reservation and checkout flow."""

from __future__ import annotations


class BrewspotError(Exception):
    """Base class for errors raised by this service."""


class ValidationError(BrewspotError):
    """Missing or invalid input, detected before anything reaches the store."""


class SelectionLimitReached(ValidationError):
    def __init__(self, table_id: str, limit: int):
        super().__init__(f"Cannot select {table_id}: at most {limit} tables per reservation")
        self.table_id = table_id
        self.limit = limit


class BackendError(BrewspotError):
    """Any failure reported by the document store or auth provider.

    The message is the backend's own text and is passed to callers unmodified.
    """

    @property
    def message(self) -> str:
        return str(self)


class PartialBookingFailure(BrewspotError):
    """A table could not be marked booked after its order was already saved.

    Recorded on the checkout attempt and logged; it never fails the checkout
    unless strict booking is enabled.
    """

    def __init__(self, cafe_id: str, table_id: str, message: str):
        super().__init__(f"Failed to book table {table_id} in cafe {cafe_id}: {message}")
        self.cafe_id = cafe_id
        self.table_id = table_id
        self.message = message
