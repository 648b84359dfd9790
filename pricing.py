from __future__ import annotations
from decimal import Decimal
from typing import Iterable, Optional

import config
from schemas import OrderLine, PaymentBreakdown, Voucher

ZERO = Decimal(0)


class PricingEngine:
    """Order subtotal, fixed app fee, voucher discount and down-payment split.

    Pure and deterministic; all amounts are Decimal and never rounded here.
    """

    def __init__(self, app_fee: Decimal = config.APP_FEE, down_payment_ratio: Decimal = config.DOWN_PAYMENT_RATIO):
        if app_fee < 0:
            raise ValueError("app_fee must not be negative")
        if not ZERO <= down_payment_ratio <= 1:
            raise ValueError("down_payment_ratio must be between 0 and 1")
        self.app_fee = Decimal(app_fee)
        self.down_payment_ratio = Decimal(down_payment_ratio)

    def compute(
        self,
        order_lines: Iterable[OrderLine],
        voucher: Optional[Voucher] = None,
        cafe_id: Optional[str] = None,
    ) -> PaymentBreakdown:
        subtotal = sum(
            (line.unit_price * line.quantity for line in order_lines if cafe_id is None or line.cafe_id == cafe_id),
            ZERO,
        )
        base = subtotal + self.app_fee

        discount = ZERO
        if voucher is not None and base >= voucher.minimum_spend:
            discount = min(voucher.discount, base)
            base -= discount

        down_payment = base * self.down_payment_ratio
        return PaymentBreakdown(
            subtotal=subtotal,
            app_fee=self.app_fee,
            voucher_discount=discount,
            down_payment=down_payment,
            grand_total=base - down_payment,
        )
