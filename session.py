"""Per-user reservation flow state held by the API process."""

from __future__ import annotations
import logging
from typing import Dict, Optional

import config
from availability import TableAvailabilityFeed
from cart import Cart
from checkout import CheckoutAttempt, CheckoutCoordinator
from database import DocumentStore
from pricing import PricingEngine
from reservations import ReservationCoordinator
from schemas import PaymentMethod, Voucher
from selection import SelectionState

logger = logging.getLogger(__name__)


class ReservationSession:
    """Everything one user touches while reserving: feed, selection, cart, choices."""

    def __init__(
        self,
        store: DocumentStore,
        cafe_id: str,
        pricing: PricingEngine,
        max_selections: Optional[int] = config.MAX_TABLE_SELECTIONS,
        surface_limit: bool = config.SURFACE_SELECTION_LIMIT,
        strict_booking: bool = config.STRICT_TABLE_BOOKING,
    ):
        self.store = store
        self.pricing = pricing
        self.feed = TableAvailabilityFeed(store)
        self.selection = SelectionState(cafe_id, self.feed, max_selections=max_selections, surface_limit=surface_limit)
        self.cart = Cart()
        self.voucher: Optional[Voucher] = None
        self.payment_method: Optional[PaymentMethod] = None
        self.last_attempt: Optional[CheckoutAttempt] = None
        self.reservations = ReservationCoordinator(store, self.selection)
        self.checkout = CheckoutCoordinator(
            store,
            pricing,
            self.cart,
            self.selection,
            on_success=self._checkout_succeeded,
            on_failure=self._checkout_failed,
            strict_booking=strict_booking,
        )

    @property
    def cafe_id(self) -> str:
        return self.selection.cafe_id

    def start(self, cafe_id: str) -> None:
        if cafe_id != self.selection.cafe_id:
            self.selection.reset(cafe_id)
        self.feed.subscribe(cafe_id)

    def close(self) -> None:
        self.feed.unsubscribe()
        self.selection.clear()

    def _checkout_succeeded(self, attempt: CheckoutAttempt) -> None:
        self.last_attempt = attempt
        if attempt.failed_tables:
            logger.warning("Checkout %s done but tables %s are not marked booked", attempt.order_id, attempt.failed_tables)
        else:
            logger.info("Checkout %s done for reservation %s", attempt.order_id, attempt.reservation_id)

    def _checkout_failed(self, attempt: CheckoutAttempt, message: str) -> None:
        self.last_attempt = attempt
        logger.error("Checkout for reservation %s failed (%s): %s", attempt.reservation_id, attempt.state.value, message)


class SessionRegistry:
    def __init__(self, pricing: Optional[PricingEngine] = None):
        self.pricing = pricing or PricingEngine()
        self._sessions: Dict[str, ReservationSession] = {}

    def open(self, user_id: str, cafe_id: str, store: DocumentStore) -> ReservationSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = ReservationSession(store, cafe_id, self.pricing)
            self._sessions[user_id] = session
        session.start(cafe_id)
        return session

    def get(self, user_id: str) -> Optional[ReservationSession]:
        return self._sessions.get(user_id)

    def close(self, user_id: str) -> None:
        session = self._sessions.pop(user_id, None)
        if session is not None:
            session.close()

    def close_all(self) -> None:
        for user_id in list(self._sessions):
            self.close(user_id)
        logger.info("Closed all reservation sessions")
