"""Seat status transitions and the locking reads they depend on.

Every change to a seat's status or owner goes through this module, always
inside a transaction opened by ``DatabaseManager.get_session``:

    AVAILABLE -> HELD      (hold)
    HELD      -> AVAILABLE (release_hold_seats)
    AVAILABLE -> BOOKED    (book)
    HELD      -> BOOKED    (book, payment path only; clears the hold reference)
    BOOKED    -> AVAILABLE (release_booking_seats, when the booking is deleted)
"""

from typing import Any, Dict, Iterable, List, Sequence

from sqlalchemy import func, or_, select

from errors import Conflict, InvalidInput, NotFound
from models import Booking, Event, Hold, Seat, SeatStatus, Section, Table

ALLOWED_TRANSITIONS = {
    SeatStatus.AVAILABLE: frozenset({SeatStatus.HELD, SeatStatus.BOOKED}),
    SeatStatus.HELD: frozenset({SeatStatus.AVAILABLE, SeatStatus.BOOKED}),
    SeatStatus.BOOKED: frozenset({SeatStatus.AVAILABLE}),
}


def row_label(index: int) -> str:
    """Spreadsheet-style row letters: 0 -> A, 25 -> Z, 26 -> AA."""
    label = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        label = chr(65 + remainder) + label
    return label


def section_seat_numbers(rows: int, cols: int) -> List[str]:
    return [f"{row_label(r)}{c}" for r in range(rows) for c in range(1, cols + 1)]


def table_seat_numbers(seat_count: int) -> List[str]:
    return [str(n) for n in range(1, seat_count + 1)]


def normalize_seat_ids(seat_ids: Any) -> List[str]:
    """Validate seat identifiers and return them trimmed, rejecting duplicates."""
    if not isinstance(seat_ids, (list, tuple)):
        raise InvalidInput("seatIds must be provided as a non-empty array")
    if len(seat_ids) == 0:
        raise InvalidInput("seatIds must contain at least one seat")

    normalized: List[str] = []
    for seat_id in seat_ids:
        if not isinstance(seat_id, str) or not seat_id.strip():
            raise InvalidInput("each seat ID must be a non-empty string")
        normalized.append(seat_id.strip())

    if len(set(normalized)) != len(normalized):
        raise InvalidInput("seatIds must not contain duplicates")
    return normalized


def venue_seat_filter(venue_map_id: str):
    """SQL predicate matching every seat of a venue map, via its section or table."""
    return or_(
        Seat.section_id.in_(select(Section.id).where(Section.venue_map_id == venue_map_id)),
        Seat.table_id.in_(select(Table.id).where(Table.venue_map_id == venue_map_id)),
    )


def load_event(session, event_id: str, lock: bool = False) -> Event:
    """Fetch an event that has a venue map, optionally taking its row lock.

    The event row lock serializes every writer that affects the booked count,
    so a capacity check and the booking it guards cannot interleave.
    """
    query = select(Event).where(Event.id == event_id)
    if lock:
        query = query.with_for_update()
    event = session.execute(query).scalar_one_or_none()
    if event is None or event.venue_map is None:
        raise NotFound("Event not found")
    return event


def load_seats(session, venue_map_id: str, seat_ids: Sequence[str], lock: bool = True) -> List[Seat]:
    """Load the requested seats, by default with SELECT ... FOR UPDATE.

    Rows are locked in id order so two transactions over overlapping seat
    sets queue up instead of deadlocking.
    """
    query = select(Seat).where(Seat.id.in_(seat_ids)).order_by(Seat.id)
    if lock:
        query = query.with_for_update()
    seats = list(session.execute(query).scalars())
    if len(seats) != len(seat_ids):
        raise InvalidInput("One or more seat IDs are invalid")

    foreign = [s for s in seats if s.venue_map_id != venue_map_id]
    if foreign:
        raise InvalidInput(
            "One or more seats do not belong to this event",
            seats=[s.label for s in foreign],
        )
    return seats


def require_status(seats: Iterable[Seat], allowed: Iterable[SeatStatus], message: str):
    """Raise Conflict naming (by label) every seat whose status is outside ``allowed``."""
    allowed = frozenset(allowed)
    offending = [s.label for s in seats if s.status not in allowed]
    if offending:
        raise Conflict(f"{message}: {', '.join(offending)}", seats=offending)


def check_transition(seat: Seat, target: SeatStatus):
    if target not in ALLOWED_TRANSITIONS[seat.status]:
        raise Conflict(
            f"Seat {seat.label} cannot move from {seat.status.value} to {target.value}",
            seats=[seat.label],
        )


def hold(seats: Iterable[Seat], new_hold: Hold):
    for seat in seats:
        check_transition(seat, SeatStatus.HELD)
        seat.status = SeatStatus.HELD
        seat.hold = new_hold
        seat.booking = None


def book(seats: Iterable[Seat], booking: Booking) -> List[Hold]:
    """Move seats to BOOKED under ``booking``; return the holds they were taken from."""
    released = []
    for seat in seats:
        check_transition(seat, SeatStatus.BOOKED)
        if seat.hold is not None and seat.hold not in released:
            released.append(seat.hold)
        seat.status = SeatStatus.BOOKED
        seat.hold = None
        seat.booking = booking
    return released


def release_hold_seats(session, hold_record: Hold) -> int:
    """Return every seat still referencing the hold to AVAILABLE."""
    return session.query(Seat).filter(
        Seat.hold_id == hold_record.id,
        Seat.status == SeatStatus.HELD,
    ).update(
        {
            Seat.status: SeatStatus.AVAILABLE,
            Seat.hold_id: None,
        },
        synchronize_session=False,
    )


def release_booking_seats(session, booking: Booking) -> int:
    return session.query(Seat).filter(
        Seat.booking_id == booking.id,
        Seat.status == SeatStatus.BOOKED,
    ).update(
        {
            Seat.status: SeatStatus.AVAILABLE,
            Seat.booking_id: None,
        },
        synchronize_session=False,
    )


def count_booked(session, venue_map_id: str) -> int:
    return session.execute(
        select(func.count(Seat.id)).where(
            Seat.status == SeatStatus.BOOKED,
            venue_seat_filter(venue_map_id),
        )
    ).scalar_one()


def invariant_violations(seats: Iterable[Seat]) -> List[str]:
    """IDs of seats whose status disagrees with their hold/booking reference."""
    broken = []
    for seat in seats:
        held = seat.hold_id is not None
        booked = seat.booking_id is not None
        if (seat.status == SeatStatus.HELD) != held or (seat.status == SeatStatus.BOOKED) != booked:
            broken.append(seat.id)
        elif held and booked:
            broken.append(seat.id)
    return broken


def seat_snapshot(session, event: Event) -> Dict[str, Any]:
    """Return status aggregates and per-seat details for an event's venue."""
    venue_map_id = event.venue_map.id
    counts = session.execute(
        select(Seat.status, func.count(Seat.id))
        .where(venue_seat_filter(venue_map_id))
        .group_by(Seat.status)
    ).all()

    count_dict = {SeatStatus.AVAILABLE: 0, SeatStatus.HELD: 0, SeatStatus.BOOKED: 0}
    for status, count in counts:
        count_dict[status] = count

    seats = list(
        session.execute(
            select(Seat).where(venue_seat_filter(venue_map_id)).order_by(Seat.id)
        ).scalars()
    )
    seats_detail = [
        {
            "id": seat.id,
            "seatNumber": seat.seat_number,
            "sectionId": seat.section_id,
            "tableId": seat.table_id,
            "status": seat.status.value,
            "holdId": seat.hold_id,
            "bookingId": seat.booking_id,
        }
        for seat in seats
    ]

    return {
        "eventId": event.id,
        "maxSeats": event.capacity_ceiling,
        "totalSeats": sum(count_dict.values()),
        "availableSeats": count_dict[SeatStatus.AVAILABLE],
        "heldSeats": count_dict[SeatStatus.HELD],
        "bookedSeats": count_dict[SeatStatus.BOOKED],
        "seats": seats_detail,
        "invariantsValid": not invariant_violations(seats),
    }
