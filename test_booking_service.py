import pytest
import requests

from conftest import flat_promo, percent_promo, seat_ids_by_number
from booking_service import BookingService
from errors import CapacityExceeded, Conflict, InvalidInput, NotFound, Unavailable
from layout_placer import SectionSpec, TableSpec
from models import Seat, SeatStatus
from payments import HttpPaymentGateway
from schemas import EventRequest
import seat_ledger


def test_row_labels_continue_past_z():
    assert [seat_ledger.row_label(i) for i in (0, 1, 25, 26, 27, 51, 52)] == [
        "A", "B", "Z", "AA", "AB", "AZ", "BA",
    ]
    assert seat_ledger.section_seat_numbers(2, 3) == ["A1", "A2", "A3", "B1", "B2", "B3"]
    assert seat_ledger.table_seat_numbers(3) == ["1", "2", "3"]


@pytest.mark.parametrize("seat_ids", [None, "abc", [], [""], ["a", 1], ["a", " a "]])
def test_normalize_seat_ids_rejects_bad_input(seat_ids):
    with pytest.raises(InvalidInput):
        seat_ledger.normalize_seat_ids(seat_ids)


def test_invariant_violations_flags_mismatched_owner():
    good = Seat(id="s1", seat_number="A1", status=SeatStatus.HELD, hold_id="h1")
    orphan = Seat(id="s2", seat_number="A2", status=SeatStatus.BOOKED)
    stale = Seat(id="s3", seat_number="A3", status=SeatStatus.AVAILABLE, hold_id="h1")

    assert seat_ledger.invariant_violations([good, orphan, stale]) == ["s2", "s3"]


def test_booked_seat_cannot_be_held():
    seat = Seat(seat_number="A1", status=SeatStatus.BOOKED)
    with pytest.raises(Conflict):
        seat_ledger.check_transition(seat, SeatStatus.HELD)


# Holds

def test_hold_and_release_round(make_event, holds, db):
    event = make_event()
    floor = seat_ids_by_number(event, "Floor")

    hold = holds.create_hold(event["id"], [floor["A1"], floor["A2"]], " Press ")

    assert hold.label == "Press"
    assert [s.status for s in hold.seats] == ["HELD", "HELD"]
    assert db.get_seat_status(event["id"])["heldSeats"] == 2
    assert [h.id for h in holds.list_holds(event["id"])] == [hold.id]

    assert holds.release_hold(hold.id) == 2
    assert db.get_seat_status(event["id"])["availableSeats"] == 14
    assert holds.list_holds(event["id"]) == []
    with pytest.raises(NotFound):
        holds.release_hold(hold.id)


def test_overlapping_hold_is_rejected_whole(make_event, holds, db):
    event = make_event()
    floor = seat_ids_by_number(event, "Floor")
    holds.create_hold(event["id"], [floor["A2"]], "VIP")

    with pytest.raises(Conflict) as exc:
        holds.create_hold(event["id"], [floor["A1"], floor["A2"], floor["A3"]], "Press")

    assert exc.value.seats == ["Floor A2"]
    status = db.get_seat_status(event["id"])
    assert status["heldSeats"] == 1
    assert status["invariantsValid"]


def test_event_without_venue_map_is_not_found(db, holds):
    event = db.create_event(EventRequest(name="No map yet"))
    with pytest.raises(NotFound):
        holds.create_hold(event["id"], ["whatever"], "VIP")


# Bookings and capacity

def test_capacity_allows_exact_fill_and_rejects_overflow(make_event, bookings, db):
    event = make_event(max_seats=10, sections=[SectionSpec(name="Floor", rows=2, cols=6)], tables=[])
    ids = list(seat_ids_by_number(event, "Floor").values())

    bookings.create_booking(event["id"], ids[:6], "Ada", "ada@example.com")
    with pytest.raises(CapacityExceeded) as exc:
        bookings.create_booking(event["id"], ids[6:11], "Bob", "bob@example.com")
    assert "6 of 10 seats sold" in exc.value.message

    bookings.create_booking(event["id"], ids[6:10], "Bob", "bob@example.com")
    assert db.get_seat_status(event["id"])["bookedSeats"] == 10


@pytest.mark.parametrize("max_seats", [None, 0])
def test_missing_or_zero_ceiling_means_unlimited(make_event, bookings, max_seats):
    event = make_event(max_seats=max_seats)
    floor = seat_ids_by_number(event, "Floor")

    booking = bookings.create_booking(event["id"], list(floor.values()), "Ada", "ada@example.com")

    assert len(booking.seats) == 10


def test_status_conflict_is_reported_before_capacity(make_event, bookings):
    event = make_event(max_seats=1)
    floor = seat_ids_by_number(event, "Floor")
    bookings.create_booking(event["id"], [floor["A1"]], "Ada", "ada@example.com")

    with pytest.raises(Conflict) as exc:
        bookings.create_booking(event["id"], [floor["A1"]], "Bob", "bob@example.com")

    assert not isinstance(exc.value, CapacityExceeded)


def test_admin_booking_refuses_held_seats(make_event, holds, bookings):
    event = make_event()
    floor = seat_ids_by_number(event, "Floor")
    holds.create_hold(event["id"], [floor["A1"]], "VIP")

    with pytest.raises(Conflict) as exc:
        bookings.create_booking(event["id"], [floor["A1"], floor["A2"]], "Ada", "ada@example.com")

    assert exc.value.seats == ["Floor A1"]


@pytest.mark.parametrize("name, email", [("", "ada@example.com"), ("Ada", ""), ("Ada", "not-an-email")])
def test_booking_requires_attendee_details(make_event, bookings, name, email):
    event = make_event()
    with pytest.raises(InvalidInput):
        bookings.create_booking(event["id"], [seat_ids_by_number(event, "Floor")["A1"]], name, email)


def test_delete_booking_frees_seats_for_rebooking(make_event, bookings, db):
    event = make_event(max_seats=2)
    floor = seat_ids_by_number(event, "Floor")
    booking = bookings.create_booking(event["id"], [floor["A1"], floor["A2"]], "Ada", "ada@example.com")

    assert bookings.delete_booking(booking.id) == 2
    with pytest.raises(NotFound):
        bookings.get_booking(booking.id)

    bookings.create_booking(event["id"], [floor["A1"], floor["A2"]], "Bob", "bob@example.com")
    assert db.get_seat_status(event["id"])["bookedSeats"] == 2


def test_check_in_marks_ticket_once(make_event, bookings):
    event = make_event()
    vip = seat_ids_by_number(event, "VIP 1")
    floor = seat_ids_by_number(event, "Floor")
    booking = bookings.create_booking(event["id"], [floor["A1"], vip["1"]], "Ada", "ada@example.com")

    result = bookings.check_in(event["id"], booking.id)

    assert result["ticketType"] == "General, VIP"
    assert bookings.get_booking(booking.id).checked_in_at is not None
    with pytest.raises(Conflict):
        bookings.check_in(event["id"], booking.id)
    with pytest.raises(NotFound):
        bookings.check_in(event["id"], "unknown-ticket")


# Payment confirmation

def test_confirm_is_idempotent_per_reference(make_event, checkout, gateway, db):
    event = make_event()
    floor = seat_ids_by_number(event, "Floor")
    gateway.register("pay_123", event["id"], [floor["B1"], floor["B2"]])

    first = checkout.confirm_booking("pay_123")
    second = checkout.confirm_booking(" pay_123 ")

    assert first.id == second.id
    assert gateway.lookups == 1
    assert db.get_seat_status(event["id"])["bookedSeats"] == 2


def test_confirm_payment_directly_twice_returns_existing(make_event, bookings, gateway):
    event = make_event()
    gateway.register("pay_direct", event["id"], [seat_ids_by_number(event, "Floor")["A1"]])
    confirmation = gateway.retrieve("pay_direct")

    first = bookings.confirm_payment(confirmation)
    second = bookings.confirm_payment(confirmation)

    assert first.id == second.id
    assert bookings.find_by_payment_reference("pay_direct").id == first.id


def test_confirm_deletes_hold_it_empties(make_event, holds, checkout, gateway):
    event = make_event()
    floor = seat_ids_by_number(event, "Floor")
    hold = holds.create_hold(event["id"], [floor["A1"], floor["A2"]], "Checkout")
    gateway.register("pay_all", event["id"], [floor["A1"], floor["A2"]])

    booking = checkout.confirm_booking("pay_all")

    assert all(s.hold_id is None and s.status == "BOOKED" for s in booking.seats)
    assert holds.list_holds(event["id"]) == []
    with pytest.raises(NotFound):
        holds.release_hold(hold.id)


def test_confirm_respects_capacity(make_event, bookings, checkout, gateway):
    event = make_event(max_seats=1)
    floor = seat_ids_by_number(event, "Floor")
    bookings.create_booking(event["id"], [floor["A1"]], "Ada", "ada@example.com")
    gateway.register("pay_over", event["id"], [floor["A2"]])

    with pytest.raises(CapacityExceeded):
        checkout.confirm_booking("pay_over")
    assert bookings.find_by_payment_reference("pay_over") is None


def test_confirm_rejects_unpaid_session(make_event, checkout, gateway):
    event = make_event()
    gateway.register("pay_pending", event["id"], [seat_ids_by_number(event, "Floor")["A1"]], paid=False)

    with pytest.raises(InvalidInput):
        checkout.confirm_booking("pay_pending")


def test_duplicate_confirmation_missed_by_early_lookup(make_event, bookings, checkout, gateway, monkeypatch):
    """Second request read before the first committed, then queued on the event lock."""
    event = make_event()
    floor = seat_ids_by_number(event, "Floor")
    gateway.register("pay_race", event["id"], [floor["A1"], floor["A2"]])
    first = checkout.confirm_booking("pay_race")

    monkeypatch.setattr(bookings, "find_by_payment_reference", lambda reference: None)
    second = checkout.confirm_booking("pay_race")

    assert second.id == first.id
    assert gateway.lookups == 2
    assert len(bookings.list_bookings(event["id"])) == 1


def test_reference_lookup_runs_under_event_lock(make_event, bookings, gateway, monkeypatch):
    event = make_event()
    gateway.register("pay_order", event["id"], [seat_ids_by_number(event, "Floor")["A1"]])
    calls = []
    load_event = seat_ledger.load_event
    by_reference = BookingService._by_reference

    def recording_load_event(session, event_id, lock=False):
        calls.append(("load_event", lock))
        return load_event(session, event_id, lock=lock)

    def recording_by_reference(session, reference):
        calls.append(("by_reference", reference))
        return by_reference(session, reference)

    monkeypatch.setattr(seat_ledger, "load_event", recording_load_event)
    monkeypatch.setattr(BookingService, "_by_reference", staticmethod(recording_by_reference))

    bookings.confirm_payment(gateway.retrieve("pay_order"))

    assert calls[:2] == [("load_event", True), ("by_reference", "pay_order")]


# Seat labels in errors

def test_conflicts_name_table_seats_with_their_table(make_event, holds, bookings):
    event = make_event(sections=[], tables=[
        TableSpec(name="Table 1", seat_count=2),
        TableSpec(name="Table 2", seat_count=2),
    ])
    first = seat_ids_by_number(event, "Table 1")
    second = seat_ids_by_number(event, "Table 2")
    bookings.create_booking(event["id"], [first["1"], second["1"]], "Ada", "ada@example.com")

    with pytest.raises(Conflict) as exc:
        holds.create_hold(event["id"], [first["1"], second["1"], second["2"]], "VIP")

    assert sorted(exc.value.seats) == ["Table 1 seat 1", "Table 2 seat 1"]
    assert "Table 1 seat 1" in exc.value.message


def test_cross_venue_error_names_seat_labels(make_event, holds):
    event = make_event()
    other = make_event()

    with pytest.raises(InvalidInput) as exc:
        holds.create_hold(event["id"], [seat_ids_by_number(other, "VIP 1")["3"]], "VIP")

    assert exc.value.seats == ["VIP 1 seat 3"]


# Attendee list

def test_list_bookings_newest_first_with_locations(make_event, bookings):
    event = make_event()
    floor = seat_ids_by_number(event, "Floor")
    vip = seat_ids_by_number(event, "VIP 1")
    older = bookings.create_booking(event["id"], [floor["A1"]], "Ada", "ada@example.com")
    newer = bookings.create_booking(event["id"], [floor["A2"], vip["1"]], "Bob", "bob@example.com")
    other = make_event()
    bookings.create_booking(other["id"], [seat_ids_by_number(other, "Floor")["A1"]], "Cy", "cy@example.com")

    listed = bookings.list_bookings(event["id"])

    assert [b.id for b in listed] == [newer.id, older.id]
    latest = listed[0].to_dict()
    assert latest["seatCount"] == 2
    assert {(s["sectionName"], s["tableName"]) for s in latest["seats"]} == {("Floor", None), (None, "VIP 1")}
    assert {s["label"] for s in latest["seats"]} == {"Floor A2", "VIP 1 seat 1"}
    with pytest.raises(NotFound):
        bookings.list_bookings("no-such-event")


# Pricing

def test_quote_uses_ticket_type_prices(make_event, bookings):
    event = make_event(promo_codes=[percent_promo("early10", 10), flat_promo("TENOFF", 1000)])
    floor = seat_ids_by_number(event, "Floor")
    vip = seat_ids_by_number(event, "VIP 1")
    seats = [floor["A1"], vip["1"]]

    assert bookings.quote(event["id"], seats).total_cents == 17000
    early = bookings.quote(event["id"], seats, "EARLY10")
    assert (early.discount_cents, early.total_cents) == (1700, 15300)
    flat = bookings.quote(event["id"], seats, "tenoff")
    assert (flat.discount_cents, flat.total_cents) == (1000, 16000)


def test_quote_falls_back_to_default_price(make_event, bookings):
    event = make_event(sections=[SectionSpec(name="Floor", rows=1, cols=3)], tables=[], ticket_types=[])
    floor = seat_ids_by_number(event, "Floor")

    quote = bookings.quote(event["id"], list(floor.values()))

    assert quote.subtotal_cents == 3 * 5000


def test_percent_promo_is_clamped_on_creation(make_event, bookings, db):
    event = make_event(promo_codes=[percent_promo("ALL", 150), flat_promo("NEG", -500)])
    codes = {p["code"]: p["discountValue"] for p in db.get_event(event["id"])["promoCodes"]}
    assert codes == {"ALL": 100, "NEG": 0}

    seat = seat_ids_by_number(event, "Floor")["A1"]
    assert bookings.quote(event["id"], [seat], "ALL").total_cents == 0
    assert bookings.quote(event["id"], [seat], "NEG").total_cents == 5000


def test_quote_with_unknown_promo(make_event, bookings):
    event = make_event()
    with pytest.raises(NotFound):
        bookings.quote(event["id"], [seat_ids_by_number(event, "Floor")["A1"]], "NOPE")


# Payment service client

class FakeResponse:

    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self.payload = payload

    def json(self):
        if self.payload is None:
            raise ValueError("no body")
        return self.payload


def test_http_gateway_parses_session(monkeypatch):
    gateway = HttpPaymentGateway("https://payments.example.com/", api_key="sk_test", timeout=3)
    calls = []

    def fake_get(url, headers=None, timeout=None):
        calls.append((url, headers, timeout))
        return FakeResponse(200, {
            "paid": True,
            "eventId": "evt-1",
            "seatIds": ["s1", "s2"],
            "attendeeName": " Ada ",
            "attendeeEmail": "ada@example.com",
        })

    monkeypatch.setattr(gateway.http, "get", fake_get)

    confirmation = gateway.retrieve("pay_1")

    assert calls == [("https://payments.example.com/sessions/pay_1", {"Authorization": "Bearer sk_test"}, 3)]
    assert confirmation.paid
    assert confirmation.seat_ids == ["s1", "s2"]
    assert confirmation.attendee_name == "Ada"


@pytest.mark.parametrize("response, error", [
    (FakeResponse(404), InvalidInput),
    (FakeResponse(503), Unavailable),
    (FakeResponse(401), Unavailable),
    (FakeResponse(403), Unavailable),
    (FakeResponse(302), Unavailable),
    (FakeResponse(200, ["s1", "s2"]), Unavailable),
    (FakeResponse(200), Unavailable),
    (FakeResponse(200, {"paid": True, "seatIds": "s1"}), InvalidInput),
])
def test_http_gateway_errors(monkeypatch, response, error):
    gateway = HttpPaymentGateway("https://payments.example.com")
    monkeypatch.setattr(gateway.http, "get", lambda *args, **kwargs: response)

    with pytest.raises(error):
        gateway.retrieve("pay_1")


def test_http_gateway_network_failure_is_retryable(monkeypatch):
    gateway = HttpPaymentGateway("https://payments.example.com")

    def boom(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(gateway.http, "get", boom)

    with pytest.raises(Unavailable) as exc:
        gateway.retrieve("pay_1")
    assert exc.value.retryable
