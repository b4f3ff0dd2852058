"""Temporary named claims ("VIP", "Press") over sets of available seats."""

from typing import List
import logging

from sqlalchemy import select

from errors import InvalidInput, NotFound
from models import Hold, SeatStatus
from schemas import HoldView
import seat_ledger

logger = logging.getLogger(__name__)


class HoldService:

    def __init__(self, db):
        self.db = db

    def create_hold(self, event_id: str, seat_ids: List[str], label: str) -> HoldView:
        """Atomically mark seats as held using row-level locking to prevent races."""
        if not isinstance(label, str) or not label.strip():
            raise InvalidInput("label is required")
        if not event_id:
            raise InvalidInput("eventId is required")
        seat_ids = seat_ledger.normalize_seat_ids(seat_ids)

        with self.db.get_session() as session:
            event = seat_ledger.load_event(session, event_id)
            seats = seat_ledger.load_seats(session, event.venue_map.id, seat_ids)
            seat_ledger.require_status(seats, {SeatStatus.AVAILABLE}, "Seat(s) not available")

            hold = Hold(event_id=event.id, label=label.strip())
            session.add(hold)
            seat_ledger.hold(seats, hold)
            session.flush()

            logger.info(f"Hold created: event={event.id}, hold_id={hold.id}, seats={len(seats)}")
            return HoldView.from_model(hold, seats)

    def release_hold(self, hold_id: str) -> int:
        """Release a hold and free its seats; returns how many seats were freed."""
        with self.db.get_session() as session:
            hold = session.execute(
                select(Hold).where(Hold.id == hold_id).with_for_update()
            ).scalar_one_or_none()
            if hold is None:
                raise NotFound("Hold not found")

            released = seat_ledger.release_hold_seats(session, hold)
            session.delete(hold)

            logger.info(f"Hold released: hold_id={hold_id}, seats={released}")
            return released

    def list_holds(self, event_id: str) -> List[HoldView]:
        with self.db.get_session() as session:
            event = seat_ledger.load_event(session, event_id)
            holds = session.execute(
                select(Hold).where(Hold.event_id == event.id).order_by(Hold.created_at, Hold.id)
            ).scalars()
            return [HoldView.from_model(h) for h in holds]
