"""Confirmed bookings: allocation, capacity enforcement, pricing and check-in."""

from datetime import datetime, timezone
from typing import Dict, List, Optional
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from errors import CapacityExceeded, Conflict, InvalidInput, NotFound
from models import Booking, PromoCode, Seat, SeatStatus
from payments import PaymentConfirmation
from pricing import DEFAULT_SEAT_PRICE_CENTS, normalize_code, price_seats
from schemas import BookingView, Quote
import seat_ledger

logger = logging.getLogger(__name__)


def _require_attendee(name, email):
    if not isinstance(name, str) or not name.strip():
        raise InvalidInput("attendeeName is required")
    if not isinstance(email, str) or not email.strip():
        raise InvalidInput("attendeeEmail is required")
    if "@" not in email:
        raise InvalidInput("attendeeEmail must be an email address")
    return name.strip(), email.strip()


class BookingService:

    def __init__(self, db, default_price_cents: int = DEFAULT_SEAT_PRICE_CENTS):
        self.db = db
        self.default_price_cents = default_price_cents

    def create_booking(
        self,
        event_id: str,
        seat_ids: List[str],
        attendee_name: str,
        attendee_email: str,
    ) -> BookingView:
        """Admin path: book available seats directly. Held seats are refused."""
        if not event_id:
            raise InvalidInput("eventId is required")
        seat_ids = seat_ledger.normalize_seat_ids(seat_ids)
        name, email = _require_attendee(attendee_name, attendee_email)

        with self.db.get_session() as session:
            event = seat_ledger.load_event(session, event_id, lock=True)
            booking, seats = self._allocate(session, event, seat_ids, name, email)
            logger.info(f"Booking created: event={event_id}, booking_id={booking.id}, seats={len(seats)}")
            return BookingView.from_model(booking, seats)

    def confirm_payment(self, confirmation: PaymentConfirmation) -> BookingView:
        """Payment path: turn a paid checkout into a booking, at most once per reference.

        Holds on the paid seats are advisory here; they were checked when the
        checkout started, so confirmation clears them and proceeds.
        """
        if not confirmation.reference:
            raise InvalidInput("paymentReference is required")
        if not confirmation.event_id:
            raise InvalidInput("Invalid session: missing event")
        seat_ids = seat_ledger.normalize_seat_ids(confirmation.seat_ids)
        name, email = _require_attendee(confirmation.attendee_name, confirmation.attendee_email)

        try:
            with self.db.get_session() as session:
                event = seat_ledger.load_event(session, confirmation.event_id, lock=True)
                # Checked under the event lock so a queued duplicate sees the committed booking
                existing = self._by_reference(session, confirmation.reference)
                if existing is not None:
                    logger.info(f"Duplicate confirmation for {confirmation.reference}, returning {existing.id}")
                    return BookingView.from_model(existing)

                booking, seats = self._allocate(
                    session, event, seat_ids, name, email,
                    payment_reference=confirmation.reference,
                )
                logger.info(
                    f"Booking confirmed: event={confirmation.event_id}, booking_id={booking.id}, "
                    f"reference={confirmation.reference}"
                )
                return BookingView.from_model(booking, seats)
        except IntegrityError:
            # A concurrent confirmation of the same reference committed first
            existing = self.find_by_payment_reference(confirmation.reference)
            if existing is None:
                raise
            return existing

    def _allocate(self, session, event, seat_ids, name, email, payment_reference=None):
        """Shared core of both booking paths.

        Runs inside the caller's transaction, which must already hold the
        event row lock.
        """
        seats = seat_ledger.load_seats(session, event.venue_map.id, seat_ids)

        seat_ledger.require_status(
            seats, {SeatStatus.AVAILABLE, SeatStatus.HELD}, "Seat(s) already booked"
        )
        if payment_reference is None:
            seat_ledger.require_status(
                seats, {SeatStatus.AVAILABLE}, "Seat(s) are on hold"
            )

        ceiling = event.capacity_ceiling
        if ceiling is not None:
            booked_count = seat_ledger.count_booked(session, event.venue_map.id)
            if booked_count + len(seats) > ceiling:
                raise CapacityExceeded(
                    f"Event is at capacity. {booked_count} of {ceiling} seats sold. "
                    f"Cannot add {len(seats)} more."
                )

        booking = Booking(
            event_id=event.id,
            attendee_name=name,
            attendee_email=email,
            payment_reference=payment_reference,
        )
        session.add(booking)
        released_holds = seat_ledger.book(seats, booking)
        session.flush()

        for hold in released_holds:
            remaining = session.execute(
                select(func.count(Seat.id)).where(Seat.hold_id == hold.id)
            ).scalar_one()
            if remaining == 0:
                session.delete(hold)
                logger.info(f"Hold {hold.id} emptied by booking {booking.id}, removed")
        return booking, seats

    def delete_booking(self, booking_id: str) -> int:
        """Cancel a booking and return its seats to AVAILABLE; returns seats freed."""
        with self.db.get_session() as session:
            booking = session.execute(
                select(Booking).where(Booking.id == booking_id).with_for_update()
            ).scalar_one_or_none()
            if booking is None:
                raise NotFound("Booking not found")

            released = seat_ledger.release_booking_seats(session, booking)
            session.delete(booking)

            logger.info(f"Booking deleted: booking_id={booking_id}, seats={released}")
            return released

    def get_booking(self, booking_id: str) -> BookingView:
        with self.db.get_session() as session:
            booking = session.get(Booking, booking_id)
            if booking is None:
                raise NotFound("Booking not found")
            return BookingView.from_model(booking)

    def list_bookings(self, event_id: str) -> List[BookingView]:
        """Attendee list for an event, newest booking first."""
        with self.db.get_session() as session:
            event = seat_ledger.load_event(session, event_id)
            bookings = session.execute(
                select(Booking)
                .where(Booking.event_id == event.id)
                .order_by(Booking.created_at.desc(), Booking.id)
            ).scalars()
            return [BookingView.from_model(b) for b in bookings]

    @staticmethod
    def _by_reference(session, reference: str) -> Optional[Booking]:
        return session.execute(
            select(Booking).where(Booking.payment_reference == reference)
        ).scalar_one_or_none()

    def find_by_payment_reference(self, reference: str) -> Optional[BookingView]:
        with self.db.get_session() as session:
            booking = self._by_reference(session, reference)
            return BookingView.from_model(booking) if booking is not None else None

    def update_attendee(
        self,
        booking_id: str,
        attendee_name: Optional[str] = None,
        attendee_email: Optional[str] = None,
    ) -> BookingView:
        """Change attendee details; blank values leave the field untouched."""
        with self.db.get_session() as session:
            booking = session.get(Booking, booking_id, with_for_update=True)
            if booking is None:
                raise NotFound("Booking not found")
            if isinstance(attendee_name, str) and attendee_name.strip():
                booking.attendee_name = attendee_name.strip()
            if isinstance(attendee_email, str) and attendee_email.strip():
                if "@" not in attendee_email:
                    raise InvalidInput("attendeeEmail must be an email address")
                booking.attendee_email = attendee_email.strip()
            session.flush()
            return BookingView.from_model(booking)

    def check_in(self, event_id: str, booking_id: str) -> Dict:
        """Mark a ticket as used at the door; a second scan is a Conflict."""
        if not isinstance(booking_id, str) or not booking_id.strip():
            raise InvalidInput("ticketId is required")

        with self.db.get_session() as session:
            event = seat_ledger.load_event(session, event_id)
            booking = session.execute(
                select(Booking).where(
                    Booking.id == booking_id.strip(),
                    Booking.event_id == event.id,
                ).with_for_update()
            ).scalar_one_or_none()
            if booking is None or not booking.seats:
                raise NotFound("Invalid or expired ticket")

            ticket_type = self._ticket_type_label(booking.seats)
            if booking.checked_in_at is not None:
                raise Conflict(f"Already checked in: {booking.attendee_name} ({ticket_type})")

            booking.checked_in_at = datetime.now(timezone.utc)
            logger.info(f"Checked in booking {booking.id} for event {event.id}")
            return {
                "success": True,
                "attendeeName": booking.attendee_name,
                "ticketType": ticket_type,
                "checkedInAt": booking.checked_in_at.isoformat(),
            }

    @staticmethod
    def _ticket_type_label(seats: List[Seat]) -> str:
        names = set()
        for seat in seats:
            parent = seat.parent
            names.add(parent.ticket_type.name if parent is not None and parent.ticket_type else "General")
        return ", ".join(sorted(names))

    def quote(self, event_id: str, seat_ids: List[str], promo_code: Optional[str] = None) -> Quote:
        """Price a prospective order for checkout; seats must currently be AVAILABLE."""
        seat_ids = seat_ledger.normalize_seat_ids(seat_ids)
        code = normalize_code(promo_code)

        with self.db.get_session() as session:
            event = seat_ledger.load_event(session, event_id)
            seats = seat_ledger.load_seats(session, event.venue_map.id, seat_ids, lock=False)
            seat_ledger.require_status(seats, {SeatStatus.AVAILABLE}, "Seat(s) not available")

            promo = None
            if code is not None:
                promo = session.execute(
                    select(PromoCode).where(PromoCode.event_id == event.id, PromoCode.code == code)
                ).scalar_one_or_none()
                if promo is None:
                    raise NotFound("Invalid promo code")

            subtotal, discount, total = price_seats(seats, promo, self.default_price_cents)
            return Quote(
                event_id=event.id,
                seat_count=len(seats),
                subtotal_cents=subtotal,
                discount_cents=discount,
                total_cents=total,
                promo_code=code if promo is not None else None,
            )
