from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

# Collections:
# - cafe
# - table          {cafeId, tableId, booked}
# - menu_item
# - reservations
# - history
# - voucher
# - payment
# - users


class Document(BaseModel):
    """Stored and serialised with camelCase keys; built from either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)


# ---------- Catalogue ----------
class Cafe(Document):
    id: str
    name: str
    address: str = ""
    opening_hours: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("openingHours", "opening_hours", "jamOperasional")
    )
    image: Optional[str] = None
    image_detail: Optional[str] = None
    layout_image: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("layoutImage", "layout_image", "denahImage")
    )
    price_range: Optional[str] = None


class MenuItem(Document):
    id: str
    cafe_id: str
    name: str
    description: Optional[str] = None
    price: Decimal = Field(ge=0)
    image_url: Optional[str] = None


class Voucher(Document):
    id: str = ""
    name: str = ""
    discount: Decimal = Field(default=Decimal(0), ge=0, validation_alias=AliasChoices("discount", "potongan"))
    minimum_spend: Decimal = Field(
        default=Decimal(0), ge=0, validation_alias=AliasChoices("minimumSpend", "minimum_spend", "minimal")
    )


class PaymentMethod(Document):
    id: str
    name: str
    image_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("imageUrl", "image_url", "gambar"))


class User(Document):
    uid: str
    email: Optional[EmailStr] = None
    display_name: Optional[str] = None


# ---------- Tables ----------
class Table(Document):
    id: str
    booked: bool = False


# ---------- Orders ----------
class OrderLine(Document):
    menu_item_id: str
    name: str
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    cafe_id: str


class PaymentBreakdown(Document):
    subtotal: Decimal
    app_fee: Decimal
    voucher_discount: Decimal
    down_payment: Decimal
    grand_total: Decimal


class OrderRecord(Document):
    id: Optional[str] = None
    reservation_id: str
    cafe_id: str
    cafe_name: str = ""
    items: List[OrderLine] = []
    subtotal: Decimal = Decimal(0)
    total_price: Decimal
    app_fee_amount: Decimal
    down_payment_amount: Decimal
    voucher_name: Optional[str] = None
    voucher_discount: Optional[Decimal] = None
    payment_method_id: Optional[str] = None
    payment_method_name: Optional[str] = None
    user_id: str
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    date: Optional[str] = None
    reservation_time: Optional[str] = None
    reservation_total_guests: Optional[int] = None
    reservation_selected_tables: List[str] = []
    timestamp: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("timestamp", "createdAt"))
    status: str = "paid"


# ---------- Reservations ----------
class ReservationCreate(Document):
    cafe_id: Optional[str] = None
    cafe_name: str = ""
    user_name: Optional[str] = None
    date: Optional[str] = None  # dd/MM/yyyy
    time: Optional[str] = None  # HH:mm
    total_guests: int = 0
    selected_tables: Optional[List[str]] = None


class ReservationRecord(Document):
    id: str
    cafe_id: str
    cafe_name: str = ""
    user_id: Optional[str] = None
    user_name: str
    date: str
    time: str
    total_guests: int
    selected_tables: List[str] = []
    created_at: Optional[datetime] = None


class ReservationOut(Document):
    reservation_id: str


# ---------- Session ----------
class SessionStart(Document):
    cafe_id: str


class CartItemIn(Document):
    menu_item_id: str


class VoucherChoice(Document):
    voucher_id: Optional[str] = None


class PaymentMethodChoice(Document):
    payment_method_id: Optional[str] = None


class SessionOut(Document):
    cafe_id: str
    tables: List[Table]
    selected: List[str]
    can_proceed: bool
    cart: List[OrderLine]
    voucher: Optional[Voucher] = None
    payment_method: Optional[PaymentMethod] = None
    feed_error: Optional[str] = None


# ---------- Checkout ----------
class CheckoutIn(Document):
    reservation_id: str


class CheckoutOut(Document):
    state: str
    order_id: Optional[str] = None
    breakdown: Optional[PaymentBreakdown] = None
    error: Optional[str] = None
    failed_tables: List[str] = []
