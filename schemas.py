"""Typed response shapes returned by the services.

Views are built while the owning session is still open, so callers never
touch a detached ORM instance.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from layout_placer import SectionSpec, StageSpec, TableSpec
from models import Booking, DiscountType, Event, Hold, Seat, VenueMap


@dataclass
class VenueMapRequest:
    name: str = ""
    grid_cols: Optional[int] = None
    grid_rows: Optional[int] = None
    stage: Optional[StageSpec] = None
    sections: List[SectionSpec] = field(default_factory=list)
    tables: List[TableSpec] = field(default_factory=list)


@dataclass
class TicketTypeRequest:
    name: str
    price_cents: int


@dataclass
class PromoCodeRequest:
    code: str
    discount_type: DiscountType
    discount_value: int


@dataclass
class EventRequest:
    name: str
    description: str = ""
    date: Optional[datetime] = None
    max_seats: Optional[int] = None
    ticket_types: List[TicketTypeRequest] = field(default_factory=list)
    promo_codes: List[PromoCodeRequest] = field(default_factory=list)
    seating: Optional[VenueMapRequest] = None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class SeatView:
    id: str
    seat_number: str
    status: str
    section_id: Optional[str]
    table_id: Optional[str]
    hold_id: Optional[str]
    booking_id: Optional[str]
    label: str = ""
    section_name: Optional[str] = None
    table_name: Optional[str] = None

    @classmethod
    def from_model(cls, seat: Seat) -> "SeatView":
        return cls(
            id=seat.id,
            seat_number=seat.seat_number,
            status=seat.status.value,
            section_id=seat.section_id,
            table_id=seat.table_id,
            hold_id=seat.hold_id,
            booking_id=seat.booking_id,
            label=seat.label,
            section_name=seat.section.name if seat.section is not None else None,
            table_name=seat.table.name if seat.table is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "seatNumber": self.seat_number,
            "label": self.label,
            "status": self.status,
            "sectionId": self.section_id,
            "sectionName": self.section_name,
            "tableId": self.table_id,
            "tableName": self.table_name,
            "holdId": self.hold_id,
            "bookingId": self.booking_id,
        }


@dataclass(frozen=True)
class HoldView:
    id: str
    event_id: str
    label: str
    created_at: Optional[datetime]
    seats: List[SeatView] = field(default_factory=list)

    @classmethod
    def from_model(cls, hold: Hold, seats: Optional[List[Seat]] = None) -> "HoldView":
        return cls(
            id=hold.id,
            event_id=hold.event_id,
            label=hold.label,
            created_at=hold.created_at,
            seats=[SeatView.from_model(s) for s in (hold.seats if seats is None else seats)],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "eventId": self.event_id,
            "label": self.label,
            "createdAt": _iso(self.created_at),
            "seats": [s.to_dict() for s in self.seats],
        }


@dataclass(frozen=True)
class BookingView:
    id: str
    event_id: str
    attendee_name: str
    attendee_email: str
    payment_reference: Optional[str]
    created_at: Optional[datetime]
    checked_in_at: Optional[datetime]
    seats: List[SeatView] = field(default_factory=list)

    @classmethod
    def from_model(cls, booking: Booking, seats: Optional[List[Seat]] = None) -> "BookingView":
        return cls(
            id=booking.id,
            event_id=booking.event_id,
            attendee_name=booking.attendee_name,
            attendee_email=booking.attendee_email,
            payment_reference=booking.payment_reference,
            created_at=booking.created_at,
            checked_in_at=booking.checked_in_at,
            seats=[SeatView.from_model(s) for s in (booking.seats if seats is None else seats)],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "eventId": self.event_id,
            "attendeeName": self.attendee_name,
            "attendeeEmail": self.attendee_email,
            "paymentReference": self.payment_reference,
            "createdAt": _iso(self.created_at),
            "checkedInAt": _iso(self.checked_in_at),
            "seatCount": len(self.seats),
            "seats": [s.to_dict() for s in self.seats],
        }


@dataclass(frozen=True)
class Quote:
    event_id: str
    seat_count: int
    subtotal_cents: int
    discount_cents: int
    total_cents: int
    promo_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventId": self.event_id,
            "seatCount": self.seat_count,
            "subtotalCents": self.subtotal_cents,
            "discountCents": self.discount_cents,
            "totalCents": self.total_cents,
            "promoCode": self.promo_code,
        }


def _placed_item(item, kind: str) -> Dict[str, Any]:
    payload = {
        "id": item.id,
        "name": item.name,
        "posX": item.pos_x,
        "posY": item.pos_y,
        "color": item.color,
        "ticketType": item.ticket_type.name if item.ticket_type else None,
        "seats": [SeatView.from_model(s).to_dict() for s in sorted(item.seats, key=lambda s: s.id)],
    }
    if kind == "section":
        payload.update(rows=item.rows, cols=item.cols)
    else:
        payload.update(seatCount=item.seat_count)
    return payload


def venue_map_to_dict(venue_map: VenueMap) -> Dict[str, Any]:
    return {
        "id": venue_map.id,
        "eventId": venue_map.event_id,
        "name": venue_map.name,
        "gridCols": venue_map.grid_cols,
        "gridRows": venue_map.grid_rows,
        "stage": {
            "x": venue_map.stage_x,
            "y": venue_map.stage_y,
            "width": venue_map.stage_width,
            "height": venue_map.stage_height,
        },
        "sections": [_placed_item(s, "section") for s in venue_map.sections],
        "tables": [_placed_item(t, "table") for t in venue_map.tables],
    }


def event_to_dict(event: Event) -> Dict[str, Any]:
    return {
        "id": event.id,
        "name": event.name,
        "description": event.description,
        "date": _iso(event.date),
        "maxSeats": event.max_seats,
        "ticketTypes": [
            {"name": t.name, "priceCents": t.price_cents} for t in event.ticket_types
        ],
        "promoCodes": [
            {"code": p.code, "discountType": p.discount_type.value, "discountValue": p.discount_value}
            for p in event.promo_codes
        ],
        "venueMap": venue_map_to_dict(event.venue_map) if event.venue_map else None,
    }
