"""Database coordination layer: sessions, transaction limits and venue setup."""

from sqlalchemy import create_engine, event as sa_event, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.exc import OperationalError
from contextlib import contextmanager
from typing import Dict, List, Optional
import logging
import re

from errors import Conflict, InvalidInput, NotFound, SeatingError, Unavailable
from layout_placer import SectionSpec, StageSpec, TableSpec, place_layout
from models import (
    Base, Event, PromoCode, Section, Seat, SeatStatus, Table, TicketType, VenueMap, DiscountType,
)
from schemas import EventRequest, PromoCodeRequest, TicketTypeRequest, VenueMapRequest, event_to_dict, venue_map_to_dict
import seat_ledger

logger = logging.getLogger(__name__)

COLOR_PATTERN = re.compile(r'^#[0-9A-Fa-f]{6}$')
DEMO_EVENT_ID = 'demo-event'


def clean_color(color: Optional[str]) -> Optional[str]:
    """Keep #RRGGBB colours, drop anything else."""
    if color and COLOR_PATTERN.match(color):
        return color
    return None


class DatabaseManager:
    """Thread-safe façade over SQLAlchemy sessions and transactional flows."""

    def __init__(self, database_url: str, lock_timeout_ms: int = 5000):
        self.lock_timeout_ms = lock_timeout_ms
        url = make_url(database_url)
        self.dialect = url.get_backend_name()

        if self.dialect == 'sqlite':
            self.engine = create_engine(
                database_url,
                connect_args={
                    'timeout': lock_timeout_ms / 1000.0,
                    'check_same_thread': False,
                },
                echo=False,
            )
            self._configure_sqlite()
        else:
            self.engine = create_engine(
                database_url,
                pool_size=20,
                max_overflow=40,
                pool_pre_ping=True,  # Reconnect if connection lost
                pool_recycle=3600,   # Recycle connections after 1 hour
                echo=False
            )
        self.session_factory = scoped_session(sessionmaker(bind=self.engine))

        # Create tables
        Base.metadata.create_all(self.engine)

    def _configure_sqlite(self):
        """Make SQLite writers serialize: every transaction starts with BEGIN IMMEDIATE."""

        @sa_event.listens_for(self.engine, 'connect')
        def _on_connect(dbapi_connection, connection_record):
            # Hand transaction control to SQLAlchemy instead of pysqlite
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

        @sa_event.listens_for(self.engine, 'begin')
        def _on_begin(conn):
            conn.exec_driver_sql('BEGIN IMMEDIATE')

    def _apply_timeouts(self, session):
        if self.dialect == 'postgresql':
            timeout = int(self.lock_timeout_ms)
            session.execute(text(f"SET LOCAL lock_timeout = {timeout}"))
            session.execute(text(f"SET LOCAL statement_timeout = {timeout * 2}"))

    @contextmanager
    def get_session(self):
        """Provide a transactional scope, committing on success and rolling back otherwise.

        Lock timeouts, deadlocks and busy databases surface as ``Unavailable``
        so callers can retry the whole operation.
        """
        session = self.session_factory()
        try:
            self._apply_timeouts(session)
            yield session
            session.commit()
        except OperationalError as e:
            session.rollback()
            logger.error(f"Database unavailable: {e}")
            raise Unavailable("Seat inventory is busy, please retry") from e
        except SeatingError as e:
            session.rollback()
            logger.info(f"Rejected: {e.message}")
            raise
        except Exception as e:
            session.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            session.close()
            self.session_factory.remove()

    # Events and venue maps

    def create_event(self, request: EventRequest) -> Dict:
        """Create an event with its ticket types, promo codes and optional venue map."""
        if not request.name or not request.name.strip():
            raise InvalidInput("event name is required")
        if request.max_seats is not None and request.max_seats < 0:
            raise InvalidInput("maxSeats must not be negative")

        with self.get_session() as session:
            event = Event(
                name=request.name.strip(),
                description=(request.description or '').strip(),
                date=request.date,
                max_seats=request.max_seats,
            )
            session.add(event)
            self._add_ticket_types(event, request.ticket_types)
            self._add_promo_codes(event, request.promo_codes)
            session.flush()

            if request.seating is not None:
                self._build_venue_map(session, event, request.seating)

            logger.info(f"Event created: {event.id} ({event.name})")
            return event_to_dict(event)

    def _add_ticket_types(self, event: Event, ticket_types: List[TicketTypeRequest]):
        seen = set()
        for ticket_type in ticket_types:
            name = (ticket_type.name or '').strip()
            if not name:
                raise InvalidInput("ticket type name is required")
            if ticket_type.price_cents is None or ticket_type.price_cents < 0:
                raise InvalidInput(f"ticket type '{name}' must have a non-negative price")
            if name in seen:
                raise InvalidInput(f"duplicate ticket type '{name}'")
            seen.add(name)
            event.ticket_types.append(TicketType(name=name, price_cents=int(ticket_type.price_cents)))

    def _add_promo_codes(self, event: Event, promo_codes: List[PromoCodeRequest]):
        seen = set()
        for promo in promo_codes:
            code = (promo.code or '').strip().upper()
            if not code:
                raise InvalidInput("promo code is required")
            if code in seen:
                raise InvalidInput(f"duplicate promo code '{code}'")
            seen.add(code)
            if promo.discount_type == DiscountType.PERCENT:
                value = min(100, max(0, promo.discount_value))
            else:
                value = max(0, promo.discount_value)
            event.promo_codes.append(PromoCode(
                code=code,
                discount_type=promo.discount_type,
                discount_value=int(round(value)),
            ))

    def create_venue_map(self, event_id: str, request: VenueMapRequest) -> Dict:
        """Lay out and persist an event's floor plan, creating every seat AVAILABLE."""
        with self.get_session() as session:
            event = session.execute(
                select(Event).where(Event.id == event_id).with_for_update()
            ).scalar_one_or_none()
            if event is None:
                raise NotFound("Event not found")
            if event.venue_map is not None:
                raise Conflict("Event already has a venue map")

            venue_map = self._build_venue_map(session, event, request)
            return venue_map_to_dict(venue_map)

    def _build_venue_map(self, session, event: Event, request: VenueMapRequest) -> VenueMap:
        layout = place_layout(
            request.sections,
            request.tables,
            stage=request.stage,
            grid_cols=request.grid_cols,
            grid_rows=request.grid_rows,
        )
        ticket_types = {t.name: t for t in event.ticket_types}

        def resolve_ticket_type(name):
            if name is None:
                return None
            if name not in ticket_types:
                raise InvalidInput(f"unknown ticket type '{name}'")
            return ticket_types[name]

        venue_map = VenueMap(
            event=event,
            name=(request.name or '').strip(),
            grid_cols=layout.grid_cols,
            grid_rows=layout.grid_rows,
            stage_x=layout.stage.x,
            stage_y=layout.stage.y,
            stage_width=layout.stage.width,
            stage_height=layout.stage.height,
        )
        session.add(venue_map)

        seat_count = 0
        for index, spec in enumerate(layout.sections):
            section = Section(
                position_index=index,
                name=spec.name.strip() or f"Section {index + 1}",
                rows=spec.rows,
                cols=spec.cols,
                pos_x=spec.pos_x,
                pos_y=spec.pos_y,
                color=clean_color(spec.color),
                ticket_type=resolve_ticket_type(spec.ticket_type),
            )
            section.seats = [
                Seat(seat_number=number, status=SeatStatus.AVAILABLE)
                for number in seat_ledger.section_seat_numbers(spec.rows, spec.cols)
            ]
            seat_count += len(section.seats)
            venue_map.sections.append(section)

        for index, spec in enumerate(layout.tables):
            table = Table(
                position_index=index,
                name=spec.name.strip() or f"Table {index + 1}",
                seat_count=spec.seat_count,
                pos_x=spec.pos_x,
                pos_y=spec.pos_y,
                color=clean_color(spec.color),
                ticket_type=resolve_ticket_type(spec.ticket_type),
            )
            table.seats = [
                Seat(seat_number=number, status=SeatStatus.AVAILABLE)
                for number in seat_ledger.table_seat_numbers(spec.seat_count)
            ]
            seat_count += len(table.seats)
            venue_map.tables.append(table)

        session.flush()
        logger.info(
            f"Venue map created for event {event.id}: {len(layout.sections)} sections, "
            f"{len(layout.tables)} tables, {seat_count} seats, grid {layout.grid_cols}x{layout.grid_rows}"
        )
        return venue_map

    def duplicate_event(self, event_id: str) -> Dict:
        """Copy an event and its floor plan; the copy starts with every seat AVAILABLE."""
        with self.get_session() as session:
            source = session.get(Event, event_id)
            if source is None:
                raise NotFound("Event not found")

            copy = Event(
                name=f"{source.name} (Copy)",
                description=source.description,
                date=source.date,
                max_seats=source.max_seats,
            )
            session.add(copy)
            self._add_ticket_types(copy, [
                TicketTypeRequest(name=t.name, price_cents=t.price_cents) for t in source.ticket_types
            ])
            self._add_promo_codes(copy, [
                PromoCodeRequest(code=p.code, discount_type=p.discount_type, discount_value=p.discount_value)
                for p in source.promo_codes
            ])
            session.flush()

            vm = source.venue_map
            if vm is not None:
                self._build_venue_map(session, copy, VenueMapRequest(
                    name=vm.name,
                    grid_cols=vm.grid_cols,
                    grid_rows=vm.grid_rows,
                    stage=StageSpec(x=vm.stage_x, y=vm.stage_y, width=vm.stage_width, height=vm.stage_height),
                    sections=[
                        SectionSpec(name=s.name, rows=s.rows, cols=s.cols, pos_x=s.pos_x, pos_y=s.pos_y,
                                    color=s.color, ticket_type=s.ticket_type.name if s.ticket_type else None)
                        for s in vm.sections
                    ],
                    tables=[
                        TableSpec(name=t.name, seat_count=t.seat_count, pos_x=t.pos_x, pos_y=t.pos_y,
                                  color=t.color, ticket_type=t.ticket_type.name if t.ticket_type else None)
                        for t in vm.tables
                    ],
                ))

            logger.info(f"Event {event_id} duplicated as {copy.id}")
            return event_to_dict(copy)

    def update_layout(
        self,
        venue_map_id: str,
        grid_cols: Optional[int] = None,
        grid_rows: Optional[int] = None,
        stage: Optional[StageSpec] = None,
        sections: Optional[List[Dict]] = None,
        tables: Optional[List[Dict]] = None,
    ) -> Dict:
        """Apply an operator's manual placement. Positions here are not constrained to bands."""
        with self.get_session() as session:
            venue_map = session.get(VenueMap, venue_map_id, with_for_update=True)
            if venue_map is None:
                raise NotFound("Venue map not found")

            if grid_cols is not None:
                if grid_cols < 1:
                    raise InvalidInput("gridCols must be positive")
                venue_map.grid_cols = grid_cols
            if grid_rows is not None:
                if grid_rows < 1:
                    raise InvalidInput("gridRows must be positive")
                venue_map.grid_rows = grid_rows
            if stage is not None:
                venue_map.stage_x = stage.x
                venue_map.stage_y = stage.y
                venue_map.stage_width = stage.width
                venue_map.stage_height = stage.height

            self._move_items({s.id: s for s in venue_map.sections}, sections or [], 'section')
            self._move_items({t.id: t for t in venue_map.tables}, tables or [], 'table')

            session.flush()
            return venue_map_to_dict(venue_map)

    @staticmethod
    def _move_items(items_by_id: Dict, moves: List[Dict], kind: str):
        for move in moves:
            item = items_by_id.get(move.get('id'))
            if item is None:
                raise InvalidInput(f"{kind} {move.get('id')!r} does not belong to this venue map")
            pos_x, pos_y = move.get('posX'), move.get('posY')
            if pos_x is not None and pos_y is not None:
                if any(isinstance(v, bool) or not isinstance(v, int) for v in (pos_x, pos_y)):
                    raise InvalidInput(f"{kind} position must be integers")
                if pos_x < 0 or pos_y < 0:
                    raise InvalidInput(f"{kind} position must not be negative")
                item.pos_x = pos_x
                item.pos_y = pos_y
            if 'color' in move:
                item.color = clean_color(move['color'])

    def get_event(self, event_id: str) -> Dict:
        with self.get_session() as session:
            event = session.get(Event, event_id)
            if event is None:
                raise NotFound("Event not found")
            return event_to_dict(event)

    def get_seat_status(self, event_id: str) -> Dict:
        """Return booking aggregates and per-seat details for the given event."""
        with self.get_session() as session:
            event = seat_ledger.load_event(session, event_id)
            return seat_ledger.seat_snapshot(session, event)

    def health_check(self) -> Dict:
        """Report database connectivity and event count; used by the /health endpoint."""
        try:
            with self.get_session() as session:
                # Test database connection
                session.execute(text("SELECT 1"))

                event_count = session.query(Event).count()

                return {
                    "status": "healthy",
                    "database": "connected",
                    "events": event_count
                }
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return {
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e)
            }

    def seed_demo_event(self) -> bool:
        """Create an example event so local demos and the load script have data."""
        with self.get_session() as session:
            if session.get(Event, DEMO_EVENT_ID) is not None:
                return False
            event = Event(id=DEMO_EVENT_ID, name="Demo Night", description="Demo event", max_seats=60)
            session.add(event)
            self._add_ticket_types(event, [
                TicketTypeRequest(name="General", price_cents=5000),
                TicketTypeRequest(name="VIP", price_cents=12000),
            ])
            self._add_promo_codes(event, [
                PromoCodeRequest(code="EARLY10", discount_type=DiscountType.PERCENT, discount_value=10),
            ])
            session.flush()
            self._build_venue_map(session, event, VenueMapRequest(
                name="Main Hall",
                sections=[SectionSpec(name="Floor", rows=5, cols=10, ticket_type="General")],
                tables=[TableSpec(name=f"VIP {n}", seat_count=4, ticket_type="VIP") for n in range(1, 6)],
            ))
            return True
