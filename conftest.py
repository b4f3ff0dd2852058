import pytest

from app import create_app
from booking_service import BookingService
from checkout import CheckoutOrchestrator
from config import Settings
from database_manager import DatabaseManager
from errors import InvalidInput
from hold_service import HoldService
from layout_placer import SectionSpec, StageSpec, TableSpec
from models import DiscountType
from payments import PaymentConfirmation, PaymentGateway
from schemas import EventRequest, PromoCodeRequest, TicketTypeRequest, VenueMapRequest


class InMemoryPaymentGateway(PaymentGateway):
    """Payment provider double: references registered by the test, lookups counted."""

    def __init__(self):
        self.sessions = {}
        self.lookups = 0

    def register(self, reference, event_id, seat_ids, paid=True,
                 name="Ada Lovelace", email="ada@example.com"):
        self.sessions[reference] = PaymentConfirmation(
            reference=reference,
            paid=paid,
            event_id=event_id,
            seat_ids=list(seat_ids),
            attendee_name=name,
            attendee_email=email,
        )

    def retrieve(self, reference):
        self.lookups += 1
        if reference not in self.sessions:
            raise InvalidInput("Invalid or expired payment reference")
        return self.sessions[reference]


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'seats.db'}", lock_timeout_ms=5000)
    yield manager
    manager.engine.dispose()


@pytest.fixture
def holds(db):
    return HoldService(db)


@pytest.fixture
def bookings(db):
    return BookingService(db, default_price_cents=5000)


@pytest.fixture
def gateway():
    return InMemoryPaymentGateway()


@pytest.fixture
def checkout(bookings, gateway):
    return CheckoutOrchestrator(bookings, gateway)


@pytest.fixture
def client(db, gateway):
    app = create_app(Settings(log_level="WARNING"), db=db, payment_gateway=gateway)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def make_event(db):
    """Create an event with one 2x5 section ("Floor", A1-B5) and one 4-seat table."""

    def _make(max_seats=None, promo_codes=(), sections=None, tables=None, ticket_types=None):
        if sections is None:
            sections = [SectionSpec(name="Floor", rows=2, cols=5, ticket_type="General")]
        if tables is None:
            tables = [TableSpec(name="VIP 1", seat_count=4, ticket_type="VIP")]
        if ticket_types is None:
            ticket_types = [
                TicketTypeRequest(name="General", price_cents=5000),
                TicketTypeRequest(name="VIP", price_cents=12000),
            ]
        return db.create_event(EventRequest(
            name="Spring Concert",
            description="An evening of music",
            max_seats=max_seats,
            ticket_types=ticket_types,
            promo_codes=list(promo_codes),
            seating=VenueMapRequest(
                name="Main Hall",
                stage=StageSpec(width=10, height=4),
                sections=sections,
                tables=tables,
            ),
        ))

    return _make


def seat_ids_by_number(event, item_name):
    """Map seat numbers to IDs for one section or table of a created event."""
    venue_map = event["venueMap"]
    for item in venue_map["sections"] + venue_map["tables"]:
        if item["name"] == item_name:
            return {s["seatNumber"]: s["id"] for s in item["seats"]}
    raise KeyError(item_name)


def percent_promo(code, value):
    return PromoCodeRequest(code=code, discount_type=DiscountType.PERCENT, discount_value=value)


def flat_promo(code, value):
    return PromoCodeRequest(code=code, discount_type=DiscountType.FLAT, discount_value=value)
