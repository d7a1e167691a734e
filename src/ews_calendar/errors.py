"""Exception hierarchy for the EWS calendar client."""

from __future__ import annotations


class EWSCalendarError(Exception):
    """Base class for every error raised by this package."""


class DateFormatError(EWSCalendarError, ValueError):
    """A date string matched none of the known EWS formats."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Unable to parse date string '{value}' with known formats")


class InvalidTimezoneError(EWSCalendarError, ValueError):
    """A timezone name is not present in the timezone database."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Invalid timezone: '{name}'")


class TransportError(EWSCalendarError):
    """The HTTP exchange failed or returned a non-200 status.

    ``status_code`` is None when no response was received at all.
    """

    def __init__(self, status_code: int | None, body: str = "", message: str | None = None):
        self.status_code = status_code
        self.body = body
        if message is None:
            message = f"EWS request failed with status {status_code}: {body}"
        super().__init__(message)


class ProtocolError(EWSCalendarError):
    """The server answered, but not with the success sentinel."""

    def __init__(
        self,
        message: str,
        response_code: str | None = None,
        response_class: str | None = None,
    ):
        self.response_code = response_code
        self.response_class = response_class
        super().__init__(message)


class MissingResultError(EWSCalendarError):
    """Success was reported but the expected payload is absent."""


class EmptyUpdateError(EWSCalendarError):
    """An update was requested with no fields set."""


class TokenAcquisitionError(EWSCalendarError):
    """The identity-assumption service failed to issue a token."""


class MalformedTokenResponseError(TokenAcquisitionError):
    """The identity-assumption service answered without a token or expiry."""
