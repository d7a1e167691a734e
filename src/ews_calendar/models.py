"""Value types shared by the repository, protocol and availability layers."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class FreeBusyStatus(str, Enum):
    """Legacy free/busy classification of a calendar item."""

    FREE = "Free"
    TENTATIVE = "Tentative"
    BUSY = "Busy"
    OUT_OF_OFFICE = "OOF"
    NO_DATA = "NoData"

    @classmethod
    def from_wire(cls, value: str | None) -> "FreeBusyStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.NO_DATA


class SendInvitations(str, Enum):
    """Meeting invitation disposition for CreateItem."""

    SEND_TO_NONE = "SendToNone"
    SEND_ONLY_TO_ALL = "SendOnlyToAll"
    SEND_TO_ALL_AND_SAVE_COPY = "SendToAllAndSaveCopy"


class SendInvitationsOrCancellations(str, Enum):
    """Invitation or cancellation disposition for UpdateItem."""

    SEND_TO_NONE = "SendToNone"
    SEND_ONLY_TO_ALL = "SendOnlyToAll"
    SEND_ONLY_TO_CHANGED = "SendOnlyToChanged"
    SEND_TO_ALL_AND_SAVE_COPY = "SendToAllAndSaveCopy"
    SEND_TO_CHANGED_AND_SAVE_COPY = "SendToChangedAndSaveCopy"


class SendCancellations(str, Enum):
    """Meeting cancellation disposition for DeleteItem."""

    SEND_TO_NONE = "SendToNone"
    SEND_ONLY_TO_ALL = "SendOnlyToAll"
    SEND_TO_ALL_AND_SAVE_COPY = "SendToAllAndSaveCopy"


class ConflictResolution(str, Enum):
    NEVER_OVERWRITE = "NeverOverwrite"
    AUTO_RESOLVE = "AutoResolve"
    ALWAYS_OVERWRITE = "AlwaysOverwrite"


class DeleteType(str, Enum):
    HARD_DELETE = "HardDelete"
    SOFT_DELETE = "SoftDelete"
    MOVE_TO_DELETED_ITEMS = "MoveToDeletedItems"


@dataclass(frozen=True)
class Attendee:
    """A meeting attendee, identified by address only."""

    name: str
    email: str


@dataclass(frozen=True)
class ItemIdentity:
    """Server-assigned item id plus its change key.

    The change key must come from a prior read or create; never invent one.
    """

    id: str
    change_key: str = ""


@dataclass(frozen=True)
class Organizer:
    name: str = ""
    email: str = ""


@dataclass
class CalendarEvent:
    """A new event to be created in a mailbox calendar."""

    subject: str
    start: datetime
    end: datetime
    body: str = ""
    location: str = ""
    all_day: bool = False
    required_attendees: list[Attendee] = field(default_factory=list)
    optional_attendees: list[Attendee] = field(default_factory=list)
    send_invites: bool = False
    free_busy: FreeBusyStatus = FreeBusyStatus.BUSY
    reminder_is_set: bool = True
    reminder_minutes: int = 15


@dataclass(frozen=True)
class CalendarItem:
    """A calendar item as returned by FindItem.

    ``start`` and ``end`` stay in the server's text format; parse them with a
    TimeCodec when a datetime is needed.
    """

    identity: ItemIdentity
    subject: str = ""
    start: str = ""
    end: str = ""
    location: str = ""
    free_busy: FreeBusyStatus = FreeBusyStatus.NO_DATA
    all_day: bool = False
    organizer: Organizer = field(default_factory=Organizer)

    @property
    def id(self) -> str:
        return self.identity.id


@dataclass(frozen=True)
class TimeSlot:
    """A [start, end) interval. start < end is not enforced."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


class _Unset:
    """Marker for a patch field that was not supplied."""

    _instance: "_Unset | None" = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass
class EventUpdatePatch:
    """Sparse set of changes to an existing event.

    A field left at ``UNSET`` is absent and produces no wire operation.
    ``None`` is a value in its own right, distinct from absent. Attendee
    lists replace the item's list rather than merging into it.
    """

    subject: str | None = UNSET
    body: str | None = UNSET
    start: datetime | None = UNSET
    end: datetime | None = UNSET
    location: str | None = UNSET
    free_busy: FreeBusyStatus | None = UNSET
    required_attendees: list[Attendee] | None = UNSET
    optional_attendees: list[Attendee] | None = UNSET

    def present_fields(self) -> dict[str, Any]:
        """Return the supplied fields in declaration order."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.present_fields()
