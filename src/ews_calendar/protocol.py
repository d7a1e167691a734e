"""EWS SOAP request and response types and their XML encoding.

Requests form a closed set: FindItem, CreateItem, UpdateItem and DeleteItem.
Each request type is registered with its SOAP action, its body encoder and
the decoder for the matching response. Anything else is rejected before a
single byte is written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Union

from lxml import etree

from .errors import ProtocolError
from .models import (
    Attendee,
    CalendarItem,
    ConflictResolution,
    DeleteType,
    FreeBusyStatus,
    ItemIdentity,
    Organizer,
    SendCancellations,
    SendInvitations,
    SendInvitationsOrCancellations,
)

SOAP_NS = "http://schemas.xmlsoap.org/soap/envelope/"
TYPES_NS = "http://schemas.microsoft.com/exchange/services/2006/types"
MESSAGES_NS = "http://schemas.microsoft.com/exchange/services/2006/messages"
NSMAP = {"s": SOAP_NS, "t": TYPES_NS, "m": MESSAGES_NS}

DEFAULT_SERVER_VERSION = "Exchange2010_SP2"
ACTION_PREFIX = "http://schemas.microsoft.com/exchange/services/2006/messages/"

CALENDAR_FOLDER = "calendar"
SUCCESS = "Success"
NO_ERROR = "NoError"

# Field paths for SetItemField, keyed by the CalendarItem child element.
FIELD_URIS = {
    "Subject": "item:Subject",
    "Body": "item:Body",
    "Start": "calendar:Start",
    "End": "calendar:End",
    "Location": "calendar:Location",
    "LegacyFreeBusyStatus": "calendar:LegacyFreeBusyStatus",
    "RequiredAttendees": "calendar:RequiredAttendees",
    "OptionalAttendees": "calendar:OptionalAttendees",
}


def _s(tag: str) -> str:
    return f"{{{SOAP_NS}}}{tag}"


def _t(tag: str) -> str:
    return f"{{{TYPES_NS}}}{tag}"


def _m(tag: str) -> str:
    return f"{{{MESSAGES_NS}}}{tag}"


# ---------------------------------------------------------------------------
# Request variants
# ---------------------------------------------------------------------------

@dataclass
class FindItemRequest:
    """Shallow calendar-view search over the calendar folder."""

    start_date: str
    end_date: str
    traversal: str = "Shallow"
    base_shape: str = "AllProperties"
    folder_id: str = CALENDAR_FOLDER


@dataclass
class CalendarItemPayload:
    """A calendar item as sent in CreateItem. Dates are pre-formatted."""

    subject: str
    start: str
    end: str
    body: str = ""
    body_type: str = "Text"
    reminder_is_set: bool = True
    reminder_minutes: int = 15
    is_all_day: bool = False
    free_busy: FreeBusyStatus = FreeBusyStatus.BUSY
    location: str = ""
    required_attendees: list[Attendee] = field(default_factory=list)
    optional_attendees: list[Attendee] = field(default_factory=list)


@dataclass
class CreateItemRequest:
    item: CalendarItemPayload
    send_invitations: SendInvitations = SendInvitations.SEND_TO_NONE
    folder_id: str = CALENDAR_FOLDER


@dataclass
class FieldUpdate:
    """One SetItemField operation: the CalendarItem child and its new value.

    ``value`` is a string, a FreeBusyStatus, a list of attendees, or None.
    """

    element: str
    value: Any

    @property
    def field_uri(self) -> str:
        return FIELD_URIS[self.element]


@dataclass
class UpdateItemRequest:
    item_id: ItemIdentity
    updates: list[FieldUpdate]
    conflict_resolution: ConflictResolution = ConflictResolution.AUTO_RESOLVE
    send_invitations: SendInvitationsOrCancellations = SendInvitationsOrCancellations.SEND_TO_NONE
    message_disposition: str = "SaveOnly"


@dataclass
class DeleteItemRequest:
    item_ids: list[ItemIdentity]
    delete_type: DeleteType = DeleteType.MOVE_TO_DELETED_ITEMS
    send_cancellations: SendCancellations = SendCancellations.SEND_TO_NONE


EWSRequest = Union[FindItemRequest, CreateItemRequest, UpdateItemRequest, DeleteItemRequest]


# ---------------------------------------------------------------------------
# Response variants
# ---------------------------------------------------------------------------

@dataclass
class FindItemResponse:
    response_class: str
    response_code: str
    items: list[CalendarItem] = field(default_factory=list)
    total_items_in_view: int = 0


@dataclass
class CreateItemResponse:
    response_class: str
    response_code: str
    item_ids: list[ItemIdentity] = field(default_factory=list)


@dataclass
class UpdateItemResponse:
    response_class: str
    response_code: str


@dataclass
class DeleteItemResponse:
    response_class: str
    response_code: str


EWSResponse = Union[FindItemResponse, CreateItemResponse, UpdateItemResponse, DeleteItemResponse]


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def _text(parent: etree._Element, tag: str, value: Any) -> etree._Element:
    el = etree.SubElement(parent, tag)
    if isinstance(value, bool):
        el.text = "true" if value else "false"
    elif value is not None:
        el.text = str(value.value if isinstance(value, FreeBusyStatus) else value)
    return el


def _item_id(parent: etree._Element, identity: ItemIdentity) -> etree._Element:
    el = etree.SubElement(parent, _t("ItemId"), Id=identity.id)
    if identity.change_key:
        el.set("ChangeKey", identity.change_key)
    return el


def _attendees(parent: etree._Element, tag: str, attendees: list[Attendee]) -> etree._Element:
    container = etree.SubElement(parent, _t(tag))
    for attendee in attendees:
        mailbox = etree.SubElement(etree.SubElement(container, _t("Attendee")), _t("Mailbox"))
        _text(mailbox, _t("Name"), attendee.name)
        _text(mailbox, _t("EmailAddress"), attendee.email)
        _text(mailbox, _t("RoutingType"), "SMTP")
    return container


def _body(parent: etree._Element, content: str | None, body_type: str = "Text") -> etree._Element:
    el = etree.SubElement(parent, _t("Body"), BodyType=body_type)
    el.text = content or ""
    return el


def _encode_find(parent: etree._Element, req: FindItemRequest) -> None:
    find = etree.SubElement(parent, _m("FindItem"), Traversal=req.traversal)
    shape = etree.SubElement(find, _m("ItemShape"))
    _text(shape, _t("BaseShape"), req.base_shape)
    etree.SubElement(find, _m("CalendarView"), StartDate=req.start_date, EndDate=req.end_date)
    folders = etree.SubElement(find, _m("ParentFolderIds"))
    etree.SubElement(folders, _t("DistinguishedFolderId"), Id=req.folder_id)


def _encode_create(parent: etree._Element, req: CreateItemRequest) -> None:
    create = etree.SubElement(
        parent, _m("CreateItem"), SendMeetingInvitations=req.send_invitations.value
    )
    saved = etree.SubElement(create, _m("SavedItemFolderId"))
    etree.SubElement(saved, _t("DistinguishedFolderId"), Id=req.folder_id)
    items = etree.SubElement(create, _m("Items"))

    # Child order follows the EWS schema sequence for CalendarItem.
    item = req.item
    cal = etree.SubElement(items, _t("CalendarItem"))
    _text(cal, _t("Subject"), item.subject)
    _body(cal, item.body, item.body_type)
    _text(cal, _t("ReminderIsSet"), item.reminder_is_set)
    _text(cal, _t("ReminderMinutesBeforeStart"), item.reminder_minutes)
    _text(cal, _t("Start"), item.start)
    _text(cal, _t("End"), item.end)
    _text(cal, _t("IsAllDayEvent"), item.is_all_day)
    _text(cal, _t("LegacyFreeBusyStatus"), item.free_busy)
    if item.location:
        _text(cal, _t("Location"), item.location)
    if item.required_attendees:
        _attendees(cal, "RequiredAttendees", item.required_attendees)
    if item.optional_attendees:
        _attendees(cal, "OptionalAttendees", item.optional_attendees)


def _encode_update(parent: etree._Element, req: UpdateItemRequest) -> None:
    update = etree.SubElement(
        parent,
        _m("UpdateItem"),
        ConflictResolution=req.conflict_resolution.value,
        MessageDisposition=req.message_disposition,
        SendMeetingInvitationsOrCancellations=req.send_invitations.value,
    )
    changes = etree.SubElement(update, _m("ItemChanges"))
    change = etree.SubElement(changes, _t("ItemChange"))
    _item_id(change, req.item_id)
    updates = etree.SubElement(change, _t("Updates"))
    for upd in req.updates:
        set_field = etree.SubElement(updates, _t("SetItemField"))
        etree.SubElement(set_field, _t("FieldURI"), FieldURI=upd.field_uri)
        cal = etree.SubElement(set_field, _t("CalendarItem"))
        if upd.element in ("RequiredAttendees", "OptionalAttendees"):
            _attendees(cal, upd.element, upd.value or [])
        elif upd.element == "Body":
            _body(cal, upd.value)
        else:
            _text(cal, _t(upd.element), upd.value)


def _encode_delete(parent: etree._Element, req: DeleteItemRequest) -> None:
    delete = etree.SubElement(
        parent,
        _m("DeleteItem"),
        DeleteType=req.delete_type.value,
        SendMeetingCancellations=req.send_cancellations.value,
    )
    ids = etree.SubElement(delete, _m("ItemIds"))
    for identity in req.item_ids:
        _item_id(ids, identity)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def _response_message(root: etree._Element, operation: str) -> etree._Element | None:
    return root.find(
        f"{_s('Body')}/{_m(operation + 'Response')}/{_m('ResponseMessages')}/"
        f"{_m(operation + 'ResponseMessage')}"
    )


def _status(message: etree._Element | None) -> tuple[str, str]:
    if message is None:
        return "", ""
    return message.get("ResponseClass", ""), message.findtext(_m("ResponseCode"), default="")


def _parse_identity(el: etree._Element | None) -> ItemIdentity | None:
    if el is None or not el.get("Id"):
        return None
    return ItemIdentity(id=el.get("Id"), change_key=el.get("ChangeKey", ""))


def _parse_calendar_item(el: etree._Element) -> CalendarItem:
    mailbox = el.find(f"{_t('Organizer')}/{_t('Mailbox')}")
    organizer = Organizer()
    if mailbox is not None:
        organizer = Organizer(
            name=mailbox.findtext(_t("Name"), default=""),
            email=mailbox.findtext(_t("EmailAddress"), default=""),
        )
    return CalendarItem(
        identity=_parse_identity(el.find(_t("ItemId"))) or ItemIdentity(id=""),
        subject=el.findtext(_t("Subject"), default=""),
        start=el.findtext(_t("Start"), default=""),
        end=el.findtext(_t("End"), default=""),
        location=el.findtext(_t("Location"), default=""),
        free_busy=FreeBusyStatus.from_wire(el.findtext(_t("LegacyFreeBusyStatus"))),
        all_day=el.findtext(_t("IsAllDayEvent"), default="false").strip().lower() == "true",
        organizer=organizer,
    )


def _decode_find(root: etree._Element) -> FindItemResponse:
    message = _response_message(root, "FindItem")
    response_class, response_code = _status(message)
    if message is None:
        return FindItemResponse(response_class, response_code)
    folder = message.find(_m("RootFolder"))
    if folder is None:
        return FindItemResponse(response_class, response_code)
    items = [_parse_calendar_item(el) for el in folder.iterfind(f"{_t('Items')}/{_t('CalendarItem')}")]
    try:
        total = int(folder.get("TotalItemsInView", len(items)))
    except ValueError:
        total = len(items)
    return FindItemResponse(response_class, response_code, items, total)


def _decode_create(root: etree._Element) -> CreateItemResponse:
    message = _response_message(root, "CreateItem")
    response_class, response_code = _status(message)
    ids: list[ItemIdentity] = []
    if message is not None:
        for el in message.iterfind(f"{_m('Items')}/{_t('CalendarItem')}/{_t('ItemId')}"):
            identity = _parse_identity(el)
            if identity is not None:
                ids.append(identity)
    return CreateItemResponse(response_class, response_code, ids)


def _decode_update(root: etree._Element) -> UpdateItemResponse:
    return UpdateItemResponse(*_status(_response_message(root, "UpdateItem")))


def _decode_delete(root: etree._Element) -> DeleteItemResponse:
    return DeleteItemResponse(*_status(_response_message(root, "DeleteItem")))


# ---------------------------------------------------------------------------
# Operation table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Operation:
    name: str
    encode: Callable[[etree._Element, Any], None]
    decode: Callable[[etree._Element], Any]

    @property
    def soap_action(self) -> str:
        return ACTION_PREFIX + self.name


OPERATIONS: dict[type, Operation] = {
    FindItemRequest: Operation("FindItem", _encode_find, _decode_find),
    CreateItemRequest: Operation("CreateItem", _encode_create, _decode_create),
    UpdateItemRequest: Operation("UpdateItem", _encode_update, _decode_update),
    DeleteItemRequest: Operation("DeleteItem", _encode_delete, _decode_delete),
}


def operation_for(request: object) -> Operation:
    """Look up the operation for a request, rejecting unknown types."""
    try:
        return OPERATIONS[type(request)]
    except KeyError:
        raise ProtocolError(f"Unsupported request type: {type(request).__name__}") from None


def build_envelope(
    request: EWSRequest,
    server_version: str = DEFAULT_SERVER_VERSION,
    impersonate: str | None = None,
) -> bytes:
    """Serialize a request into a SOAP envelope.

    ``impersonate`` adds the ExchangeImpersonation header for that address.
    """
    op = operation_for(request)
    envelope = etree.Element(_s("Envelope"), nsmap=NSMAP)
    header = etree.SubElement(envelope, _s("Header"))
    etree.SubElement(header, _t("RequestServerVersion"), Version=server_version)
    if impersonate:
        impersonation = etree.SubElement(header, _t("ExchangeImpersonation"))
        sid = etree.SubElement(impersonation, _t("ConnectingSID"))
        _text(sid, _t("PrimarySmtpAddress"), impersonate)
    body = etree.SubElement(envelope, _s("Body"))
    op.encode(body, request)
    return etree.tostring(envelope, xml_declaration=True, encoding="utf-8", pretty_print=True)


def _parser() -> etree.XMLParser:
    # lxml parsers must not be shared between threads.
    return etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)


def parse_response(request: EWSRequest, payload: bytes) -> EWSResponse:
    """Decode a response envelope into the variant matching ``request``."""
    op = operation_for(request)
    try:
        root = etree.fromstring(payload, parser=_parser())
    except etree.XMLSyntaxError as exc:
        raise ProtocolError(f"Error unmarshalling {op.name} response: {exc}") from exc
    return op.decode(root)
