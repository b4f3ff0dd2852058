"""HTTP entrypoint for the seat inventory and booking backend."""

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from datetime import datetime
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
import logging

from booking_service import BookingService
from checkout import CheckoutOrchestrator
from config import Settings
from database_manager import DatabaseManager
from errors import InvalidInput, SeatingError, Unavailable
from hold_service import HoldService
from layout_placer import SectionSpec, StageSpec, TableSpec
from models import DiscountType
from payments import HttpPaymentGateway, PaymentGateway
from schemas import EventRequest, PromoCodeRequest, TicketTypeRequest, VenueMapRequest

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)


def services() -> SimpleNamespace:
    return current_app.extensions['seating']


def require_json_object() -> Dict[str, Any]:
    """Ensure the request body is a JSON object before proceeding."""
    data = request.get_json(silent=True) if request.is_json else None
    if not isinstance(data, dict):
        raise InvalidInput("request body must be a JSON object")
    return data


def optional_int(data: Dict[str, Any], key: str, minimum: Optional[int] = None) -> Optional[int]:
    """Read an optional integer field, rejecting booleans masquerading as ints."""
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise InvalidInput(f"{key} must be an integer")
    value = int(value)
    if minimum is not None and value < minimum:
        raise InvalidInput(f"{key} must be at least {minimum}")
    return value


def required_int(data: Dict[str, Any], key: str, minimum: Optional[int] = None) -> int:
    value = optional_int(data, key, minimum)
    if value is None:
        raise InvalidInput(f"{key} is required")
    return value


def optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInput(f"{key} must be a string")
    return value.strip() or None


def _position(item: Dict[str, Any]):
    # Explicit only when the caller sent both coordinates; (0, 0) is a real position
    if item.get('posX') is None and item.get('posY') is None:
        return None, None
    return required_int(item, 'posX', 0), required_int(item, 'posY', 0)


def parse_stage(raw: Any) -> Optional[StageSpec]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise InvalidInput("stage must be an object")
    return StageSpec(
        x=optional_int(raw, 'x', 0) or 0,
        y=optional_int(raw, 'y', 0) or 0,
        width=optional_int(raw, 'width', 0) or 0,
        height=optional_int(raw, 'height', 0) or 0,
    )


def _object_list(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    items = data.get(key) or []
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise InvalidInput(f"{key} must be an array of objects")
    return items


def parse_venue_map_request(data: Dict[str, Any]) -> VenueMapRequest:
    sections = []
    for item in _object_list(data, 'sections'):
        pos_x, pos_y = _position(item)
        sections.append(SectionSpec(
            name=optional_str(item, 'name') or '',
            rows=optional_int(item, 'rows', 1) or 10,
            cols=optional_int(item, 'cols', 1) or 10,
            pos_x=pos_x,
            pos_y=pos_y,
            color=optional_str(item, 'color'),
            ticket_type=optional_str(item, 'ticketType'),
        ))

    tables = []
    for item in _object_list(data, 'tables'):
        pos_x, pos_y = _position(item)
        tables.append(TableSpec(
            name=optional_str(item, 'name') or '',
            seat_count=required_int(item, 'seatCount', 1),
            pos_x=pos_x,
            pos_y=pos_y,
            color=optional_str(item, 'color'),
            ticket_type=optional_str(item, 'ticketType'),
        ))

    if not sections and not tables:
        raise InvalidInput("a venue map needs at least one section or table")

    return VenueMapRequest(
        name=optional_str(data, 'name') or optional_str(data, 'mapName') or '',
        grid_cols=optional_int(data, 'gridCols', 1),
        grid_rows=optional_int(data, 'gridRows', 1),
        stage=parse_stage(data.get('stage')),
        sections=sections,
        tables=tables,
    )


def parse_event_request(data: Dict[str, Any]) -> EventRequest:
    name = optional_str(data, 'name')
    if not name:
        raise InvalidInput("name is required")

    date = None
    raw_date = optional_str(data, 'date')
    if raw_date:
        try:
            date = datetime.fromisoformat(raw_date.replace('Z', '+00:00'))
        except ValueError:
            raise InvalidInput("Invalid date format")

    ticket_types = [
        TicketTypeRequest(name=optional_str(t, 'name') or '', price_cents=required_int(t, 'price', 0))
        for t in _object_list(data, 'ticketTypes')
    ]

    promo_codes = []
    for p in _object_list(data, 'promoCodes'):
        try:
            discount_type = DiscountType(p.get('discountType'))
        except ValueError:
            raise InvalidInput("discountType must be PERCENT or FLAT")
        promo_codes.append(PromoCodeRequest(
            code=optional_str(p, 'code') or '',
            discount_type=discount_type,
            discount_value=required_int(p, 'discountValue'),
        ))

    seating = data.get('seating')
    if seating is not None and not isinstance(seating, dict):
        raise InvalidInput("seating must be an object")

    return EventRequest(
        name=name,
        description=optional_str(data, 'description') or '',
        date=date,
        max_seats=optional_int(data, 'maxSeats', 0),
        ticket_types=ticket_types,
        promo_codes=promo_codes,
        seating=parse_venue_map_request(seating) if seating is not None else None,
    )


# API Endpoints

@api.route('/events', methods=['POST'])
def create_event():
    """Create an event, optionally with its seating layout."""
    event = services().db.create_event(parse_event_request(require_json_object()))
    return jsonify(event), 201


@api.route('/events/<event_id>', methods=['GET'])
def get_event(event_id):
    return jsonify(services().db.get_event(event_id))


@api.route('/events/<event_id>/duplicate', methods=['POST'])
def duplicate_event(event_id):
    return jsonify(services().db.duplicate_event(event_id)), 201


@api.route('/events/<event_id>/venue-map', methods=['POST'])
def create_venue_map(event_id):
    """Create the event's floor plan, auto-placing anything without coordinates."""
    venue_map = services().db.create_venue_map(event_id, parse_venue_map_request(require_json_object()))
    return jsonify(venue_map), 201


@api.route('/venue-maps/<venue_map_id>', methods=['PATCH'])
def update_layout(venue_map_id):
    """Save an operator's manual placement."""
    data = require_json_object()
    venue_map = services().db.update_layout(
        venue_map_id,
        grid_cols=optional_int(data, 'gridCols', 1),
        grid_rows=optional_int(data, 'gridRows', 1),
        stage=parse_stage(data.get('stage')),
        sections=_object_list(data, 'sections'),
        tables=_object_list(data, 'tables'),
    )
    return jsonify(venue_map)


@api.route('/events/<event_id>/seats', methods=['GET'])
def get_seat_status(event_id):
    """Return the live seat summary for an event."""
    return jsonify(services().db.get_seat_status(event_id))


@api.route('/holds', methods=['POST'])
def create_hold():
    """Place a named hold on the requested seats."""
    data = require_json_object()
    hold = services().holds.create_hold(data.get('eventId'), data.get('seatIds'), data.get('label'))
    return jsonify(hold.to_dict()), 201


@api.route('/events/<event_id>/holds', methods=['GET'])
def list_holds(event_id):
    return jsonify([h.to_dict() for h in services().holds.list_holds(event_id)])


@api.route('/holds/<hold_id>', methods=['DELETE'])
def release_hold(hold_id):
    """Release a hold, making its seats available immediately."""
    released = services().holds.release_hold(hold_id)
    return jsonify({"success": True, "releasedSeats": released})


@api.route('/bookings', methods=['POST'])
def create_booking():
    """Book seats directly (box office / admin)."""
    data = require_json_object()
    booking = services().bookings.create_booking(
        data.get('eventId'),
        data.get('seatIds'),
        data.get('attendeeName'),
        data.get('attendeeEmail'),
    )
    return jsonify(booking.to_dict()), 201


@api.route('/bookings/confirm', methods=['POST'])
def confirm_booking():
    """Convert a paid checkout into a booking; safe to call repeatedly."""
    data = require_json_object()
    checkout = services().checkout
    if checkout is None:
        logger.error("Payment confirmation requested but PAYMENT_API_URL is not configured")
        return jsonify({"error": "Payments are not configured", "code": "error"}), 500
    booking = checkout.confirm_booking(data.get('paymentReference'))
    return jsonify(booking.to_dict())


@api.route('/events/<event_id>/bookings', methods=['GET'])
def list_bookings(event_id):
    """Attendee list, newest booking first."""
    return jsonify([b.to_dict() for b in services().bookings.list_bookings(event_id)])


@api.route('/bookings/<booking_id>', methods=['GET'])
def get_booking(booking_id):
    return jsonify(services().bookings.get_booking(booking_id).to_dict())


@api.route('/bookings/<booking_id>', methods=['PATCH'])
def update_booking(booking_id):
    data = require_json_object()
    booking = services().bookings.update_attendee(
        booking_id, data.get('attendeeName'), data.get('attendeeEmail')
    )
    return jsonify(booking.to_dict())


@api.route('/bookings/<booking_id>', methods=['DELETE'])
def delete_booking(booking_id):
    released = services().bookings.delete_booking(booking_id)
    return jsonify({"success": True, "releasedSeats": released})


@api.route('/events/<event_id>/quote', methods=['POST'])
def quote_order(event_id):
    """Price seats for checkout, applying a promo code if given."""
    data = require_json_object()
    quote = services().bookings.quote(event_id, data.get('seatIds'), optional_str(data, 'promoCode'))
    return jsonify(quote.to_dict())


@api.route('/events/<event_id>/check-in', methods=['POST'])
def check_in(event_id):
    data = require_json_object()
    return jsonify(services().bookings.check_in(event_id, data.get('ticketId')))


@api.route('/health', methods=['GET'])
def health_check():
    """Expose the database connectivity and event count."""
    return jsonify(services().db.health_check())


def handle_seating_error(error: SeatingError):
    response = jsonify(error.to_dict())
    response.status_code = error.status_code
    if isinstance(error, Unavailable):
        response.headers['Retry-After'] = '1'
    return response


def handle_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception(f"Unhandled error: {error}")
    return jsonify({"error": "internal error", "code": "error"}), 500


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[DatabaseManager] = None,
    payment_gateway: Optional[PaymentGateway] = None,
) -> Flask:
    """Build the Flask app; tests pass their own database and payment gateway."""
    settings = settings or Settings.from_env()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

    # Instantiate the database layer once so all request handlers reuse the same pool
    if db is None:
        db = DatabaseManager(settings.database_url, lock_timeout_ms=settings.lock_timeout_ms)
    if payment_gateway is None and settings.payment_api_url:
        payment_gateway = HttpPaymentGateway(
            settings.payment_api_url,
            api_key=settings.payment_api_key,
            timeout=settings.payment_timeout_seconds,
        )

    bookings = BookingService(db, default_price_cents=settings.default_seat_price_cents)
    app = Flask(__name__)
    CORS(app)
    app.extensions['seating'] = SimpleNamespace(
        db=db,
        holds=HoldService(db),
        bookings=bookings,
        checkout=CheckoutOrchestrator(bookings, payment_gateway) if payment_gateway else None,
    )
    app.register_blueprint(api)
    app.register_error_handler(SeatingError, handle_seating_error)
    app.register_error_handler(Exception, handle_unexpected_error)

    if settings.seed_demo_event and db.seed_demo_event():
        logger.info("Pre-initialized demo event")
    return app


if __name__ == '__main__':
    settings = Settings.from_env()
    app = create_app(settings)

    logger.info("""
    ================================
    SEAT INVENTORY & BOOKING ENGINE
    ================================
    Concurrency: row-level locking with SELECT FOR UPDATE
    ================================
    """)

    app.run(host="0.0.0.0", port=settings.port, debug=False, threaded=True)
