"""Error taxonomy shared by the hold, booking and checkout services."""

from typing import Iterable, List, Optional


class SeatingError(Exception):
    """Base class for every failure a seat operation reports to its caller."""

    status_code = 500
    code = "error"
    retryable = False

    def __init__(self, message: str, seats: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message
        self.seats: List[str] = list(seats or [])

    def to_dict(self):
        payload = {"error": self.message, "code": self.code}
        if self.seats:
            payload["seats"] = self.seats
        return payload


class InvalidInput(SeatingError):
    """Malformed request, missing fields, or seats that do not belong to the event."""

    status_code = 400
    code = "invalid_input"


class NotFound(SeatingError):
    status_code = 404
    code = "not_found"


class Conflict(SeatingError):
    """A seat is not in the status the requested transition needs."""

    status_code = 409
    code = "conflict"


class CapacityExceeded(SeatingError):
    status_code = 409
    code = "capacity_exceeded"


class Unavailable(SeatingError):
    """Transient persistence failure; the whole operation may be retried."""

    status_code = 503
    code = "unavailable"
    retryable = True
