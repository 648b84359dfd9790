from __future__ import annotations
import os
from decimal import Decimal
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return int(raw)


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", "8000"))

# Pricing
APP_FEE = Decimal(os.getenv("APP_FEE", "2000"))
DOWN_PAYMENT_RATIO = Decimal(os.getenv("DOWN_PAYMENT_RATIO", "0.5"))

# Table selection; unset means unbounded
MAX_TABLE_SELECTIONS = _optional_int("MAX_TABLE_SELECTIONS")
SURFACE_SELECTION_LIMIT = _flag("SURFACE_SELECTION_LIMIT")

# Checkout: fail the attempt when any table cannot be marked booked
STRICT_TABLE_BOOKING = _flag("STRICT_TABLE_BOOKING")

# History: paid bookings older than this are reported as expired
BOOKING_EXPIRY_HOURS = int(os.getenv("BOOKING_EXPIRY_HOURS", "2"))
