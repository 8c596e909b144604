"""
Error taxonomy shared by the availability and booking services.

Every failure the core reports is a BookingError whose ``kind`` is one of the
closed ErrorKind values. The HTTP layer maps ``status_code`` directly; callers
that retry look at ``retryable``.
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    invalid_argument = "invalid_argument"
    slot_unavailable = "slot_unavailable"
    not_found = "not_found"
    external_unavailable = "external_unavailable"
    store_failure = "store_failure"


class BookingError(Exception):
    kind: ErrorKind = ErrorKind.store_failure
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class InvalidArgument(BookingError):
    kind = ErrorKind.invalid_argument
    status_code = 400


class SlotUnavailable(BookingError):
    """The requested interval conflicts with a reservation or a busy block."""

    kind = ErrorKind.slot_unavailable
    status_code = 409


class NotFound(BookingError):
    kind = ErrorKind.not_found
    status_code = 404


class ExternalUnavailable(BookingError):
    """The calendar gateway failed or timed out."""

    kind = ErrorKind.external_unavailable
    status_code = 503
    retryable = True


class StoreFailure(BookingError):
    kind = ErrorKind.store_failure
    status_code = 500
