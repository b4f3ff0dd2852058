"""Turns an external "payment succeeded" signal into a booking.

The signal can arrive more than once (provider webhook retries, the buyer
reloading the success page), so confirmation is idempotent per payment
reference.
"""

import logging

from booking_service import BookingService
from errors import InvalidInput
from payments import PaymentGateway
from schemas import BookingView

logger = logging.getLogger(__name__)


class CheckoutOrchestrator:

    def __init__(self, bookings: BookingService, gateway: PaymentGateway):
        self.bookings = bookings
        self.gateway = gateway

    def confirm_booking(self, payment_reference: str) -> BookingView:
        if not isinstance(payment_reference, str) or not payment_reference.strip():
            raise InvalidInput("paymentReference is required")
        reference = payment_reference.strip()

        existing = self.bookings.find_by_payment_reference(reference)
        if existing is not None:
            logger.info(f"Payment {reference} already confirmed as booking {existing.id}")
            return existing

        confirmation = self.gateway.retrieve(reference)
        if not confirmation.paid:
            raise InvalidInput("Payment has not been completed")
        if not confirmation.seat_ids:
            raise InvalidInput("Invalid session: missing booking data")
        if not confirmation.event_id:
            raise InvalidInput("Invalid session: missing event")
        if not confirmation.attendee_name or not confirmation.attendee_email:
            raise InvalidInput("Invalid session: missing attendee information")

        return self.bookings.confirm_payment(confirmation)
