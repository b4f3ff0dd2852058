"""Client side of the external payment subsystem.

Checkout sessions are created and verified by the payment provider; this
module only reads back what a payment reference resolved to.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import logging

import requests

from errors import InvalidInput, Unavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentConfirmation:
    reference: str
    paid: bool
    event_id: Optional[str] = None
    seat_ids: List[str] = field(default_factory=list)
    attendee_name: str = ""
    attendee_email: str = ""


class PaymentGateway:
    """Looks up a payment reference. Subclasses talk to a concrete provider."""

    def retrieve(self, reference: str) -> PaymentConfirmation:
        raise NotImplementedError


class HttpPaymentGateway(PaymentGateway):
    """Reads ``GET {base_url}/sessions/{reference}`` from the payment service."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.http = requests.Session()

    def retrieve(self, reference: str) -> PaymentConfirmation:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            r = self.http.get(
                f"{self.base_url}/sessions/{reference}",
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Payment lookup failed for {reference}: {e}")
            raise Unavailable("Payment service unreachable, please retry") from e

        if r.status_code in (400, 404, 410):
            raise InvalidInput("Invalid or expired payment reference")
        if r.status_code in (401, 403):
            logger.error(f"Payment service rejected our credentials ({r.status_code})")
            raise Unavailable("Payment service is not accepting requests")
        if r.status_code != 200:
            logger.error(f"Payment lookup for {reference} returned {r.status_code}")
            raise Unavailable("Payment service error, please retry")

        try:
            data = r.json()
        except ValueError:
            raise Unavailable("Payment service returned an unreadable response")
        if not isinstance(data, dict):
            raise Unavailable("Payment service returned an unreadable response")

        seat_ids = data.get("seatIds") or []
        if not isinstance(seat_ids, list):
            raise InvalidInput("Invalid session: invalid seat data")

        return PaymentConfirmation(
            reference=reference,
            paid=bool(data.get("paid")),
            event_id=data.get("eventId"),
            seat_ids=[str(s) for s in seat_ids],
            attendee_name=(data.get("attendeeName") or "").strip(),
            attendee_email=(data.get("attendeeEmail") or "").strip(),
        )
