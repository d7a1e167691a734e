"""Exchange Web Services calendar client with WorkMail impersonation."""

from .availability import AvailabilityEngine
from .errors import (
    DateFormatError,
    EmptyUpdateError,
    EWSCalendarError,
    InvalidTimezoneError,
    MalformedTokenResponseError,
    MissingResultError,
    ProtocolError,
    TokenAcquisitionError,
    TransportError,
)
from .models import (
    UNSET,
    Attendee,
    CalendarEvent,
    CalendarItem,
    ConflictResolution,
    DeleteType,
    EventUpdatePatch,
    FreeBusyStatus,
    ItemIdentity,
    Organizer,
    SendCancellations,
    SendInvitations,
    SendInvitationsOrCancellations,
    TimeSlot,
)
from .repository import CalendarRepository
from .session import ImpersonationSession, WorkMailIdentityService
from .timecodec import TimeCodec
from .transport import BasicCredentials, EWSTransport

__all__ = [
    "UNSET",
    "Attendee",
    "AvailabilityEngine",
    "BasicCredentials",
    "CalendarEvent",
    "CalendarItem",
    "CalendarRepository",
    "ConflictResolution",
    "DateFormatError",
    "DeleteType",
    "EWSCalendarError",
    "EWSTransport",
    "EmptyUpdateError",
    "EventUpdatePatch",
    "FreeBusyStatus",
    "ImpersonationSession",
    "InvalidTimezoneError",
    "ItemIdentity",
    "MalformedTokenResponseError",
    "MissingResultError",
    "Organizer",
    "ProtocolError",
    "SendCancellations",
    "SendInvitations",
    "SendInvitationsOrCancellations",
    "TimeCodec",
    "TimeSlot",
    "TokenAcquisitionError",
    "TransportError",
    "WorkMailIdentityService",
]
