"""Order totals: flat per-tier seat prices plus at most one promo code."""

from typing import Iterable, Optional, Tuple

from models import DiscountType, PromoCode, Seat

DEFAULT_SEAT_PRICE_CENTS = 5000


def normalize_code(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    code = code.strip().upper()
    return code or None


def seat_price_cents(seat: Seat, default_cents: int = DEFAULT_SEAT_PRICE_CENTS) -> int:
    """Price of the seat's section/table ticket type, or the flat default."""
    parent = seat.parent
    if parent is not None and parent.ticket_type is not None:
        return parent.ticket_type.price_cents
    return default_cents


def discount_cents(subtotal: int, promo: Optional[PromoCode]) -> int:
    if promo is None or subtotal <= 0:
        return 0
    if promo.discount_type == DiscountType.PERCENT:
        percent = min(100, max(0, promo.discount_value))
        return (subtotal * percent) // 100
    return min(subtotal, max(0, promo.discount_value))


def price_seats(
    seats: Iterable[Seat],
    promo: Optional[PromoCode] = None,
    default_cents: int = DEFAULT_SEAT_PRICE_CENTS,
) -> Tuple[int, int, int]:
    """Return (subtotal, discount, total) in cents; total never drops below zero."""
    subtotal = sum(seat_price_cents(seat, default_cents) for seat in seats)
    discount = discount_cents(subtotal, promo)
    return subtotal, discount, max(0, subtotal - discount)
