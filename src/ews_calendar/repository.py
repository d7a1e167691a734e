"""Calendar operations on top of the EWS transport."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Protocol

from .availability import AvailabilityEngine
from .errors import EmptyUpdateError, MissingResultError, ProtocolError
from .models import (
    CalendarEvent,
    CalendarItem,
    ConflictResolution,
    DeleteType,
    EventUpdatePatch,
    ItemIdentity,
    SendCancellations,
    SendInvitations,
    SendInvitationsOrCancellations,
    TimeSlot,
)
from .protocol import (
    NO_ERROR,
    SUCCESS,
    CalendarItemPayload,
    CreateItemRequest,
    DeleteItemRequest,
    EWSRequest,
    EWSResponse,
    FieldUpdate,
    FindItemRequest,
    UpdateItemRequest,
)
from .timecodec import TimeCodec

logger = logging.getLogger("ews-calendar")

# Padding around a slot when fetching candidate conflicts.
SLOT_QUERY_PADDING = timedelta(minutes=1)

# Patch attribute -> CalendarItem element of the SetItemField.
_PATCH_ELEMENTS = {
    "subject": "Subject",
    "body": "Body",
    "start": "Start",
    "end": "End",
    "location": "Location",
    "free_busy": "LegacyFreeBusyStatus",
    "required_attendees": "RequiredAttendees",
    "optional_attendees": "OptionalAttendees",
}
_NOT_CLEARABLE = {"start", "end", "free_busy"}


class Transport(Protocol):
    def execute(self, request: EWSRequest, target_mailbox: str | None = None) -> EWSResponse: ...


class CalendarRepository:
    """Find, create, update and delete calendar items in one mailbox server.

    ``target_mailbox`` names the impersonated mailbox; it is ignored by a
    transport in direct mode.
    """

    def __init__(self, transport: Transport, codec: TimeCodec | None = None):
        self._transport = transport
        self.codec = codec or TimeCodec()
        self.availability = AvailabilityEngine(self.codec)

    # -- Reads ---------------------------------------------------------------

    def find_items(
        self, start: datetime, end: datetime, target_mailbox: str | None = None
    ) -> list[CalendarItem]:
        request = FindItemRequest(
            start_date=self.codec.format_with_offset(start),
            end_date=self.codec.format_with_offset(end),
        )
        response = self._transport.execute(request, target_mailbox)
        if response.response_code != NO_ERROR:
            raise ProtocolError(
                f"EWS error in FindItem: {response.response_code}",
                response_code=response.response_code,
                response_class=response.response_class,
            )
        return list(response.items)

    # -- Writes --------------------------------------------------------------

    def create_item(
        self,
        event: CalendarEvent,
        send_invitations: SendInvitations | None = None,
        target_mailbox: str | None = None,
    ) -> ItemIdentity:
        """Create ``event`` and return the new item's identity.

        Without an explicit policy, ``event.send_invites`` selects between
        sending to all attendees (keeping a copy) and sending nothing.
        Retrying a failed create may produce a duplicate event.
        """
        if send_invitations is None:
            send_invitations = (
                SendInvitations.SEND_TO_ALL_AND_SAVE_COPY
                if event.send_invites
                else SendInvitations.SEND_TO_NONE
            )
        payload = CalendarItemPayload(
            subject=event.subject,
            body=event.body,
            reminder_is_set=event.reminder_is_set,
            reminder_minutes=event.reminder_minutes,
            start=self.codec.format_local(event.start),
            end=self.codec.format_local(event.end),
            is_all_day=event.all_day,
            free_busy=event.free_busy,
            location=event.location,
            required_attendees=list(event.required_attendees),
            optional_attendees=list(event.optional_attendees),
        )
        response = self._transport.execute(
            CreateItemRequest(item=payload, send_invitations=send_invitations), target_mailbox
        )
        if response.response_class != SUCCESS:
            raise ProtocolError(
                f"EWS error creating event: {response.response_class}. Code: {response.response_code}",
                response_code=response.response_code,
                response_class=response.response_class,
            )
        if not response.item_ids:
            raise MissingResultError("Created item ID not found in EWS response")

        identity = response.item_ids[0]
        logger.info("EWS event created: %s (%s)", event.subject, identity.id)
        return identity

    def _field_updates(self, patch: EventUpdatePatch) -> list[FieldUpdate]:
        updates = []
        for name, value in patch.present_fields().items():
            if value is None and name in _NOT_CLEARABLE:
                raise ValueError(f"Field '{name}' cannot be cleared")
            if name in ("start", "end"):
                value = self.codec.format_with_offset(value)
            elif name in ("required_attendees", "optional_attendees"):
                value = list(value or [])
            updates.append(FieldUpdate(element=_PATCH_ELEMENTS[name], value=value))
        return updates

    def update_item(
        self,
        identity: ItemIdentity,
        patch: EventUpdatePatch,
        conflict_resolution: ConflictResolution = ConflictResolution.AUTO_RESOLVE,
        send_invitations: SendInvitationsOrCancellations = SendInvitationsOrCancellations.SEND_TO_NONE,
        target_mailbox: str | None = None,
    ) -> None:
        """Apply every present field of ``patch`` in a single UpdateItem."""
        if patch.is_empty():
            raise EmptyUpdateError("No updates provided for calendar event")

        request = UpdateItemRequest(
            item_id=identity,
            updates=self._field_updates(patch),
            conflict_resolution=conflict_resolution,
            send_invitations=send_invitations,
        )
        response = self._transport.execute(request, target_mailbox)
        if response.response_class != SUCCESS:
            raise ProtocolError(
                f"EWS error updating event: {response.response_class}. Code: {response.response_code}",
                response_code=response.response_code,
                response_class=response.response_class,
            )
        logger.info("EWS event updated: %s (%d fields)", identity.id, len(request.updates))

    def delete_item(
        self,
        identity: ItemIdentity,
        delete_type: DeleteType = DeleteType.MOVE_TO_DELETED_ITEMS,
        send_cancellations: SendCancellations = SendCancellations.SEND_TO_NONE,
        target_mailbox: str | None = None,
    ) -> None:
        request = DeleteItemRequest(
            item_ids=[identity],
            delete_type=delete_type,
            send_cancellations=send_cancellations,
        )
        response = self._transport.execute(request, target_mailbox)
        if response.response_class != SUCCESS:
            raise ProtocolError(
                f"EWS error deleting event: {response.response_class}. Code: {response.response_code}",
                response_code=response.response_code,
                response_class=response.response_class,
            )
        logger.info("EWS event deleted: %s (%s)", identity.id, delete_type.value)

    # -- Availability --------------------------------------------------------

    def check_slot_availability(
        self, slot: TimeSlot, target_mailbox: str | None = None
    ) -> tuple[bool, list[CalendarItem]]:
        """Fetch items around ``slot`` and report whether it is free."""
        items = self.find_items(
            slot.start - SLOT_QUERY_PADDING, slot.end + SLOT_QUERY_PADDING, target_mailbox
        )
        return self.availability.check_slot(slot, items)

    def find_available_slots(
        self,
        start: datetime,
        end: datetime,
        min_duration: timedelta,
        target_mailbox: str | None = None,
    ) -> list[TimeSlot]:
        """Free slots of at least ``min_duration`` between ``start`` and ``end``."""
        items = self.find_items(start, end, target_mailbox)
        items = self.availability.sort_by_start(items)
        return self.availability.find_free_slots(start, end, min_duration, items)
