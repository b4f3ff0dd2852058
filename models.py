"""ORM model definitions describing the event seating schema."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone
import enum
import uuid

Base = declarative_base()


def _new_id():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class SeatStatus(str, enum.Enum):
    """Enumerated seat lifecycle states persisted in the database."""
    AVAILABLE = 'AVAILABLE'
    HELD = 'HELD'
    BOOKED = 'BOOKED'


class DiscountType(str, enum.Enum):
    PERCENT = 'PERCENT'
    FLAT = 'FLAT'


class Event(Base):
    __tablename__ = 'events'

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default='')
    date = Column(DateTime(timezone=True))
    max_seats = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    venue_map = relationship('VenueMap', back_populates='event', uselist=False,
                             cascade='all, delete-orphan')
    ticket_types = relationship('TicketType', back_populates='event', cascade='all, delete-orphan')
    promo_codes = relationship('PromoCode', back_populates='event', cascade='all, delete-orphan')
    holds = relationship('Hold', back_populates='event', cascade='all, delete-orphan')
    bookings = relationship('Booking', back_populates='event', cascade='all, delete-orphan')

    @property
    def capacity_ceiling(self):
        """The booked-seat limit, or None when the event is unlimited."""
        if self.max_seats is None or self.max_seats <= 0:
            return None
        return self.max_seats


class VenueMap(Base):
    __tablename__ = 'venue_maps'

    id = Column(String(36), primary_key=True, default=_new_id)
    event_id = Column(String(36), ForeignKey('events.id', ondelete='CASCADE'),
                      nullable=False, unique=True)
    name = Column(String(200), nullable=False, default='')
    grid_cols = Column(Integer, nullable=False)
    grid_rows = Column(Integer, nullable=False)
    stage_x = Column(Integer, nullable=False, default=0)
    stage_y = Column(Integer, nullable=False, default=0)
    stage_width = Column(Integer, nullable=False)
    stage_height = Column(Integer, nullable=False)

    event = relationship('Event', back_populates='venue_map')
    sections = relationship('Section', back_populates='venue_map', cascade='all, delete-orphan',
                            order_by='Section.position_index')
    tables = relationship('Table', back_populates='venue_map', cascade='all, delete-orphan',
                          order_by='Table.position_index')


class TicketType(Base):
    __tablename__ = 'ticket_types'

    id = Column(String(36), primary_key=True, default=_new_id)
    event_id = Column(String(36), ForeignKey('events.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(100), nullable=False)
    price_cents = Column(Integer, nullable=False)

    event = relationship('Event', back_populates='ticket_types')

    __table_args__ = (
        UniqueConstraint('event_id', 'name', name='uq_ticket_types_event_name'),
        CheckConstraint('price_cents >= 0', name='ck_ticket_types_price'),
    )


class Section(Base):
    __tablename__ = 'sections'

    id = Column(String(36), primary_key=True, default=_new_id)
    venue_map_id = Column(String(36), ForeignKey('venue_maps.id', ondelete='CASCADE'), nullable=False)
    ticket_type_id = Column(String(36), ForeignKey('ticket_types.id', ondelete='SET NULL'))
    position_index = Column(Integer, nullable=False, default=0)
    name = Column(String(100), nullable=False)
    rows = Column(Integer, nullable=False)
    cols = Column(Integer, nullable=False)
    pos_x = Column(Integer, nullable=False)
    pos_y = Column(Integer, nullable=False)
    color = Column(String(7))

    venue_map = relationship('VenueMap', back_populates='sections')
    ticket_type = relationship('TicketType')
    seats = relationship('Seat', back_populates='section', cascade='all, delete-orphan')


class Table(Base):
    __tablename__ = 'tables'

    id = Column(String(36), primary_key=True, default=_new_id)
    venue_map_id = Column(String(36), ForeignKey('venue_maps.id', ondelete='CASCADE'), nullable=False)
    ticket_type_id = Column(String(36), ForeignKey('ticket_types.id', ondelete='SET NULL'))
    position_index = Column(Integer, nullable=False, default=0)
    name = Column(String(100), nullable=False)
    seat_count = Column(Integer, nullable=False)
    pos_x = Column(Integer, nullable=False)
    pos_y = Column(Integer, nullable=False)
    color = Column(String(7))

    venue_map = relationship('VenueMap', back_populates='tables')
    ticket_type = relationship('TicketType')
    seats = relationship('Seat', back_populates='table', cascade='all, delete-orphan')


class Hold(Base):
    __tablename__ = 'holds'

    id = Column(String(36), primary_key=True, default=_new_id)
    event_id = Column(String(36), ForeignKey('events.id', ondelete='CASCADE'), nullable=False)
    label = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    event = relationship('Event', back_populates='holds')
    seats = relationship('Seat', back_populates='hold', order_by='Seat.id')

    __table_args__ = (
        Index('idx_holds_event', 'event_id'),
    )


class Booking(Base):
    __tablename__ = 'bookings'

    id = Column(String(36), primary_key=True, default=_new_id)
    event_id = Column(String(36), ForeignKey('events.id', ondelete='CASCADE'), nullable=False)
    attendee_name = Column(String(200), nullable=False)
    attendee_email = Column(String(320), nullable=False)
    payment_reference = Column(String(255), unique=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    checked_in_at = Column(DateTime(timezone=True))

    event = relationship('Event', back_populates='bookings')
    seats = relationship('Seat', back_populates='booking', order_by='Seat.id')

    __table_args__ = (
        Index('idx_bookings_event', 'event_id'),
    )


class PromoCode(Base):
    __tablename__ = 'promo_codes'

    id = Column(String(36), primary_key=True, default=_new_id)
    event_id = Column(String(36), ForeignKey('events.id', ondelete='CASCADE'), nullable=False)
    code = Column(String(50), nullable=False)
    discount_type = Column(Enum(DiscountType, name='discount_type_enum'), nullable=False)
    discount_value = Column(Integer, nullable=False)

    event = relationship('Event', back_populates='promo_codes')

    __table_args__ = (
        UniqueConstraint('event_id', 'code', name='uq_promo_codes_event_code'),
    )


class Seat(Base):
    __tablename__ = 'seats'

    id = Column(String(36), primary_key=True, default=_new_id)
    seat_number = Column(String(20), nullable=False)
    section_id = Column(String(36), ForeignKey('sections.id', ondelete='CASCADE'))
    table_id = Column(String(36), ForeignKey('tables.id', ondelete='CASCADE'))

    status = Column(Enum(SeatStatus, name='seat_status_enum'),
                    default=SeatStatus.AVAILABLE, nullable=False)
    hold_id = Column(String(36), ForeignKey('holds.id'))
    booking_id = Column(String(36), ForeignKey('bookings.id'))

    section = relationship('Section', back_populates='seats')
    table = relationship('Table', back_populates='seats')
    hold = relationship('Hold', back_populates='seats')
    booking = relationship('Booking', back_populates='seats')

    __table_args__ = (
        CheckConstraint(
            '(section_id IS NULL) <> (table_id IS NULL)',
            name='ck_seats_single_parent',
        ),
        CheckConstraint(
            "(status = 'AVAILABLE' AND hold_id IS NULL AND booking_id IS NULL)"
            " OR (status = 'HELD' AND hold_id IS NOT NULL AND booking_id IS NULL)"
            " OR (status = 'BOOKED' AND booking_id IS NOT NULL AND hold_id IS NULL)",
            name='ck_seats_status_owner',
        ),
        Index('idx_seats_status', 'status'),
        Index('idx_seats_section', 'section_id'),
        Index('idx_seats_table', 'table_id'),
        Index('idx_seats_hold', 'hold_id'),
        Index('idx_seats_booking', 'booking_id'),
    )

    @property
    def venue_map_id(self):
        parent = self.section if self.section_id is not None else self.table
        return parent.venue_map_id if parent is not None else None

    @property
    def parent(self):
        return self.section if self.section_id is not None else self.table

    @property
    def label(self):
        """Seat number qualified by its parent: "Floor A1", "Table 3 seat 2"."""
        if self.section is not None:
            return f"{self.section.name} {self.seat_number}"
        if self.table is not None:
            return f"{self.table.name} seat {self.seat_number}"
        return self.seat_number
