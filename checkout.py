"""Payment confirmation: persist the order, then mark the reserved tables booked.

The order write and the table updates are not transactional. Once the order is
saved the payment is on record; a table that fails to flip to booked is kept
as a PartialBookingFailure on the attempt. By default that still counts as a
completed checkout, matching the deployed app. ``strict_booking`` turns it
into FAILED_BOOKING so the caller can retry just those tables.
"""

from __future__ import annotations
import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import config
from availability import TABLE_COLLECTION
from cart import Cart
from database import SERVER_TIMESTAMP, DocumentStore
from errors import BackendError, BrewspotError, PartialBookingFailure, ValidationError
from pricing import PricingEngine
from reservations import RESERVATION_COLLECTION
from schemas import OrderLine, OrderRecord, PaymentBreakdown, PaymentMethod, ReservationRecord, User, Voucher
from selection import SelectionState

logger = logging.getLogger(__name__)

HISTORY_COLLECTION = "history"


class CheckoutState(str, enum.Enum):
    PENDING = "pending"
    SAVING_ORDER = "saving_order"
    BOOKING_TABLES = "booking_tables"
    DONE = "done"
    FAILED_ORDER = "failed_order"
    FAILED_BOOKING = "failed_booking"


@dataclass
class CheckoutAttempt:
    user: User
    cafe_id: str
    reservation_id: str
    payment_method: Optional[PaymentMethod]
    voucher: Optional[Voucher] = None
    cafe_name: str = ""
    state: CheckoutState = CheckoutState.PENDING
    lines: List[OrderLine] = field(default_factory=list)
    breakdown: Optional[PaymentBreakdown] = None
    order_id: Optional[str] = None
    tables: List[str] = field(default_factory=list)
    booking_failures: List[PartialBookingFailure] = field(default_factory=list)
    error: Optional[str] = None
    notified: bool = False

    @property
    def failed_tables(self) -> List[str]:
        return [f.table_id for f in self.booking_failures]


SuccessCallback = Callable[[CheckoutAttempt], None]
FailureCallback = Callable[[CheckoutAttempt, str], None]


class CheckoutCoordinator:
    def __init__(
        self,
        store: DocumentStore,
        pricing: PricingEngine,
        cart: Cart,
        selection: Optional[SelectionState] = None,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        strict_booking: bool = config.STRICT_TABLE_BOOKING,
    ):
        self.store = store
        self.pricing = pricing
        self.cart = cart
        self.selection = selection
        self.on_success = on_success
        self.on_failure = on_failure
        self.strict_booking = strict_booking

    async def checkout(
        self,
        user: User,
        cafe_id: str,
        reservation_id: str,
        payment_method: Optional[PaymentMethod],
        voucher: Optional[Voucher] = None,
        cafe_name: str = "",
    ) -> CheckoutAttempt:
        """Run one checkout attempt to DONE or to a failed state.

        Raises ValidationError, leaving nothing written, when no payment
        method is chosen or there is nothing to pay for.
        """
        attempt = CheckoutAttempt(
            user=user,
            cafe_id=cafe_id,
            reservation_id=reservation_id,
            payment_method=payment_method,
            voucher=voucher,
            cafe_name=cafe_name,
        )
        if payment_method is None:
            raise ValidationError("Select a payment method first")
        if not reservation_id:
            raise ValidationError("Missing reservation id")

        attempt.lines = self.cart.lines_for(cafe_id)
        attempt.breakdown = self.pricing.compute(attempt.lines, voucher, cafe_id=cafe_id)
        if not attempt.lines and attempt.breakdown.grand_total != 0:
            raise ValidationError("No menu items to check out")

        return await self._advance(attempt)

    async def retry(self, attempt: CheckoutAttempt) -> CheckoutAttempt:
        """Resume a failed attempt from the step that failed."""
        if attempt.state == CheckoutState.FAILED_ORDER:
            attempt.state = CheckoutState.PENDING
        elif attempt.state == CheckoutState.FAILED_BOOKING:
            attempt.tables = attempt.failed_tables
            attempt.booking_failures = []
            attempt.state = CheckoutState.BOOKING_TABLES
        else:
            return attempt
        attempt.error = None
        return await self._advance(attempt)

    async def _advance(self, attempt: CheckoutAttempt) -> CheckoutAttempt:
        if attempt.state == CheckoutState.PENDING:
            attempt.state = CheckoutState.SAVING_ORDER
            try:
                await self._save_order(attempt)
            except BrewspotError as e:
                logger.error("Failed to save order for reservation %s: %s", attempt.reservation_id, e)
                return self._fail(attempt, CheckoutState.FAILED_ORDER, str(e))

        attempt.state = CheckoutState.BOOKING_TABLES
        await self._book_tables(attempt)
        if attempt.booking_failures and self.strict_booking:
            message = "; ".join(str(f) for f in attempt.booking_failures)
            return self._fail(attempt, CheckoutState.FAILED_BOOKING, message)

        attempt.state = CheckoutState.DONE
        self.cart.clear_cafe(attempt.cafe_id)
        if self.selection is not None:
            self.selection.clear()
        if not attempt.notified:
            attempt.notified = True
            if self.on_success is not None:
                self.on_success(attempt)
        return attempt

    async def _save_order(self, attempt: CheckoutAttempt) -> None:
        doc = await self.store.get_document(RESERVATION_COLLECTION, attempt.reservation_id)
        if doc is None:
            raise BackendError(f"Reservation {attempt.reservation_id} not found")
        reservation = ReservationRecord.model_validate(doc)
        if reservation.cafe_id != attempt.cafe_id:
            raise ValidationError(f"Reservation {reservation.id} belongs to cafe {reservation.cafe_id}")
        if reservation.user_id != attempt.user.uid:
            raise ValidationError(f"Reservation {reservation.id} belongs to another user")

        breakdown = attempt.breakdown
        voucher = attempt.voucher
        applied = voucher is not None and breakdown.voucher_discount > 0
        order = OrderRecord(
            reservation_id=reservation.id,
            cafe_id=attempt.cafe_id,
            cafe_name=attempt.cafe_name or reservation.cafe_name,
            items=attempt.lines,
            subtotal=breakdown.subtotal,
            total_price=breakdown.grand_total,
            app_fee_amount=breakdown.app_fee,
            down_payment_amount=breakdown.down_payment,
            voucher_name=voucher.name if applied else None,
            voucher_discount=breakdown.voucher_discount if applied else None,
            payment_method_id=attempt.payment_method.id,
            payment_method_name=attempt.payment_method.name,
            user_id=attempt.user.uid,
            user_name=attempt.user.display_name or reservation.user_name,
            user_email=attempt.user.email,
            date=reservation.date,
            reservation_time=reservation.time,
            reservation_total_guests=reservation.total_guests,
            reservation_selected_tables=reservation.selected_tables,
        )
        doc = order.to_document()
        doc["timestamp"] = SERVER_TIMESTAMP
        attempt.order_id = await self.store.create_document(HISTORY_COLLECTION, doc)
        attempt.tables = list(reservation.selected_tables)
        logger.info("Order %s saved for reservation %s", attempt.order_id, reservation.id)

    async def _book_tables(self, attempt: CheckoutAttempt) -> None:
        results = await asyncio.gather(
            *(self._book_table(attempt.cafe_id, table_id) for table_id in attempt.tables),
            return_exceptions=True,
        )
        for table_id, result in zip(attempt.tables, results):
            if isinstance(result, BackendError):
                failure = PartialBookingFailure(attempt.cafe_id, table_id, result.message)
                attempt.booking_failures.append(failure)
                logger.warning("%s", failure)
            elif isinstance(result, BaseException):
                raise result

    async def _book_table(self, cafe_id: str, table_id: str) -> None:
        await self.store.update_document(TABLE_COLLECTION, {"cafeId": cafe_id, "tableId": table_id}, {"booked": True})
        logger.debug("Table %s booked in cafe %s", table_id, cafe_id)

    def _fail(self, attempt: CheckoutAttempt, state: CheckoutState, message: str) -> CheckoutAttempt:
        attempt.state = state
        attempt.error = message
        if self.on_failure is not None:
            self.on_failure(attempt, message)
        return attempt
