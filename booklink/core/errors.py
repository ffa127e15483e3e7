# booklink/core/errors.py
from __future__ import annotations

from http import HTTPStatus


class BookingError(RuntimeError):
    """
    Base class for every outcome that stops a booking operation.

    Each subclass carries the user-facing copy and the HTTP status the public
    routes answer with, so routes never have to re-derive them.
    """

    status_code: int = HTTPStatus.BAD_REQUEST
    public_message: str = "Something went wrong with this booking link."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class BookingNotFoundError(BookingError):
    status_code = HTTPStatus.NOT_FOUND
    public_message = "Booking link not found."


class BookingExpiredError(BookingError):
    public_message = (
        "This booking link has expired. Please contact our office to schedule your meeting."
    )


class BookingAlreadyBookedError(BookingError):
    public_message = "This link is no longer open. Your meeting has already been booked."


class BookingConflictError(BookingAlreadyBookedError):
    """
    Raised when a concurrent confirmation won the race for the same token.

    Shares the already-booked copy on purpose: the participant is redirected
    to the already-booked view either way.
    """

    status_code = HTTPStatus.CONFLICT


class BookingCancelledError(BookingError):
    public_message = "This appointment was cancelled."


class InvalidSlotError(BookingError):
    public_message = "The selected time is not valid for this meeting."


class InvalidTransitionError(BookingError):
    status_code = HTTPStatus.CONFLICT
    public_message = "This change cannot be made to the booking in its current state."


class BookingChangeWindowError(BookingError):
    public_message = "Changes are not allowed this close to the appointment."


class InvalidTimezoneError(ValueError):
    """
    Raised when an IANA timezone name cannot be resolved.
    """


class CalendarProviderError(RuntimeError):
    """
    Base class for every failure surfaced by a calendar provider adapter.

    Raw transport exceptions are converted into one of these at the adapter
    boundary.
    """


class ProviderError(CalendarProviderError):
    """
    Vendor call failed (non-2xx response or transport error).
    """


class ProviderTimeoutError(ProviderError):
    """
    Vendor call did not answer within the configured timeout.
    """


class AuthorizationExpiredError(CalendarProviderError):
    """
    The access token was rejected and could not be refreshed, or the refreshed
    token was rejected again.
    """


class UnsupportedProviderError(CalendarProviderError):
    """
    A CalendarConnection carries a provider tag with no adapter.
    """


class CredentialRefreshError(RuntimeError):
    """
    Raised by a Credential Store when a refresh cannot produce a new token.
    """
