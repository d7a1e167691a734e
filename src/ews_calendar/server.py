#!/usr/bin/env python3
"""
ews-calendar — MCP server for Exchange Web Services calendars.

Multi-mailbox support via YAML config. Modes: direct (HTTP Basic) and
impersonation (AWS WorkMail bearer token).

Environment variables:
    EWS_CALENDAR_CONFIG — Path to the mailbox config (default: /config/ews_calendar.yaml)
"""

import asyncio
import logging
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from . import config as config_module
from .config import MailboxAccount, load_config
from .errors import DateFormatError
from .mailbox import MailboxCalendar
from .models import (
    Attendee,
    CalendarEvent,
    CalendarItem,
    DeleteType,
    EventUpdatePatch,
    FreeBusyStatus,
    ItemIdentity,
    TimeSlot,
)

# MCP stdio servers must never write to stdout. Log to stderr only.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("ews-calendar")


# ---------------------------------------------------------------------------
# Module-level state
# ---------------------------------------------------------------------------

_accounts: dict[str, MailboxAccount] = {}
_mailboxes: dict[str, MailboxCalendar] = {}


def _get_mailbox(name: str) -> MailboxCalendar | None:
    """Get mailbox by name. Lazy-initializes on first access."""
    if name not in _accounts:
        return None
    if name not in _mailboxes:
        _mailboxes[name] = MailboxCalendar(_accounts[name])
    return _mailboxes[name]


def _validate_mailbox(name: str) -> dict | None:
    """Return error dict if mailbox is invalid, None if valid."""
    if not _accounts:
        return {"error": "No mailboxes configured. Set EWS_CALENDAR_CONFIG env var."}
    if name not in _accounts:
        return {"error": f"Unknown mailbox '{name}'. Available: {list(_accounts.keys())}"}
    return None


def _item_to_dict(mailbox: str, item: CalendarItem) -> dict[str, Any]:
    """Convert CalendarItem to JSON-friendly dict."""
    return {
        "id": item.identity.id,
        "change_key": item.identity.change_key,
        "mailbox": mailbox,
        "subject": item.subject,
        "start": item.start,
        "end": item.end,
        "location": item.location,
        "free_busy": item.free_busy.value,
        "all_day": item.all_day,
        "organizer": {"name": item.organizer.name, "email": item.organizer.email},
    }


def _slot_to_dict(slot: TimeSlot) -> dict[str, Any]:
    return {
        "start": slot.start.isoformat(),
        "end": slot.end.isoformat(),
        "minutes": int(slot.duration.total_seconds() // 60),
    }


def _sort_key(calendar: MailboxCalendar, item: CalendarItem) -> datetime:
    """Start instant in the mailbox's own zone; unparseable starts sort last."""
    try:
        return calendar.parse_time(item.start)
    except DateFormatError:
        return datetime.max.replace(tzinfo=timezone.utc)


def _parse_datetime(value: str) -> datetime:
    """Parse ISO 8601 datetime string. Supports date-only and datetime."""
    from dateutil.parser import parse as parse_dt
    return parse_dt(value)


def _parse_attendees(value: str) -> list[Attendee]:
    """Parse "Name <addr>, addr2" into attendees."""
    attendees = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        if "<" in part and part.endswith(">"):
            name, _, email = part[:-1].partition("<")
            attendees.append(Attendee(name=name.strip(), email=email.strip()))
        else:
            attendees.append(Attendee(name=part, email=part))
    return attendees


# ---------------------------------------------------------------------------
# MCP Server + Tools
# ---------------------------------------------------------------------------

mcp = FastMCP("ews-calendar")


@mcp.tool()
async def list_mailboxes() -> dict:
    """List all configured mailboxes.

    Returns name, label, and mode for each mailbox.
    """
    if not _accounts:
        return {"error": "No mailboxes configured"}
    return {
        "mailboxes": [
            {"name": a.name, "label": a.label, "mode": a.mode, "email": a.email}
            for a in _accounts.values()
        ]
    }


@mcp.tool()
async def list_events(
    mailbox: str = "",
    start: str = "",
    end: str = "",
) -> dict:
    """List calendar items from one or all mailboxes.

    If mailbox is empty, returns merged items from ALL mailboxes sorted chronologically.
    Start/end default to today if not provided.

    Args:
        mailbox: Mailbox name. Empty = all mailboxes.
        start: Start date/time (ISO 8601, e.g. "2026-02-13" or "2026-02-13T09:00:00"). Default: today 00:00.
        end: End date/time (ISO 8601). Default: end of the start day.
    """
    now = datetime.now()
    if start:
        try:
            dt_start = _parse_datetime(start)
        except (ValueError, OverflowError):
            return {"error": f"Invalid start date: {start}"}
    else:
        dt_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if end:
        try:
            dt_end = _parse_datetime(end)
        except (ValueError, OverflowError):
            return {"error": f"Invalid end date: {end}"}
    else:
        dt_end = dt_start.replace(hour=23, minute=59, second=59)

    if mailbox:
        err = _validate_mailbox(mailbox)
        if err:
            return err
        to_query = [mailbox]
    else:
        to_query = list(_accounts.keys())

    found: list[tuple[datetime, str, CalendarItem]] = []
    errors: list[str] = []

    for name in to_query:
        calendar = _get_mailbox(name)
        if not calendar:
            errors.append(f"Mailbox not available: {name}")
            continue
        try:
            items = await calendar.list_items(dt_start, dt_end)
            found.extend((_sort_key(calendar, item), name, item) for item in items)
        except Exception as e:
            logger.warning("Failed to fetch items from '%s': %s", name, e)
            errors.append(f"{name}: {e}")

    found.sort(key=lambda entry: entry[0])

    result: dict[str, Any] = {
        "mailboxes_queried": to_query,
        "start": dt_start.isoformat(),
        "end": dt_end.isoformat(),
        "count": len(found),
        "events": [_item_to_dict(name, item) for _, name, item in found],
    }
    if errors:
        result["errors"] = errors
    return result


@mcp.tool()
async def create_event(
    mailbox: str,
    subject: str,
    start: str,
    end: str,
    body: str = "",
    location: str = "",
    required_attendees: str = "",
    optional_attendees: str = "",
    send_invites: bool = False,
    free_busy: str = "Busy",
) -> dict:
    """Create a new calendar event.

    Args:
        mailbox: Mailbox name
        subject: Event subject
        start: Start date/time (ISO 8601, e.g. "2026-02-14T14:00:00")
        end: End date/time (ISO 8601, e.g. "2026-02-14T15:00:00")
        body: Event body text (optional)
        location: Event location (optional)
        required_attendees: Comma-separated "Name <address>" entries (optional)
        optional_attendees: Comma-separated "Name <address>" entries (optional)
        send_invites: Send meeting invitations to attendees
        free_busy: Free, Tentative, Busy, OOF or NoData
    """
    err = _validate_mailbox(mailbox)
    if err:
        return err

    try:
        dt_start = _parse_datetime(start)
    except (ValueError, OverflowError):
        return {"error": f"Invalid start date: {start}"}
    try:
        dt_end = _parse_datetime(end)
    except (ValueError, OverflowError):
        return {"error": f"Invalid end date: {end}"}
    try:
        status = FreeBusyStatus(free_busy)
    except ValueError:
        return {"error": f"Invalid free/busy status: {free_busy}"}

    calendar = _get_mailbox(mailbox)
    if not calendar:
        return {"error": f"Mailbox not available: {mailbox}"}

    event = CalendarEvent(
        subject=subject,
        start=dt_start,
        end=dt_end,
        body=body,
        location=location,
        required_attendees=_parse_attendees(required_attendees),
        optional_attendees=_parse_attendees(optional_attendees),
        send_invites=send_invites,
        free_busy=status,
    )
    try:
        identity = await calendar.create_event(event)
        return {"success": True, "id": identity.id, "change_key": identity.change_key}
    except Exception as e:
        return {"error": f"Failed to create event: {e}"}


@mcp.tool()
async def update_event(
    mailbox: str,
    event_id: str,
    change_key: str = "",
    subject: str = "",
    start: str = "",
    end: str = "",
    body: str = "",
    location: str = "",
    free_busy: str = "",
    required_attendees: str = "",
    optional_attendees: str = "",
) -> dict:
    """Update an existing calendar event. Only provided fields are changed.

    Attendee lists replace the existing list.

    Args:
        mailbox: Mailbox name
        event_id: Item ID (from list_events)
        change_key: Change key (from list_events or create_event)
        subject: New subject (optional)
        start: New start date/time (optional)
        end: New end date/time (optional)
        body: New body text (optional)
        location: New location (optional)
        free_busy: New free/busy status (optional)
        required_attendees: New required attendees (optional)
        optional_attendees: New optional attendees (optional)
    """
    err = _validate_mailbox(mailbox)
    if err:
        return err

    patch = EventUpdatePatch()
    if subject:
        patch.subject = subject
    if start:
        try:
            patch.start = _parse_datetime(start)
        except (ValueError, OverflowError):
            return {"error": f"Invalid start date: {start}"}
    if end:
        try:
            patch.end = _parse_datetime(end)
        except (ValueError, OverflowError):
            return {"error": f"Invalid end date: {end}"}
    if body:
        patch.body = body
    if location:
        patch.location = location
    if free_busy:
        try:
            patch.free_busy = FreeBusyStatus(free_busy)
        except ValueError:
            return {"error": f"Invalid free/busy status: {free_busy}"}
    if required_attendees:
        patch.required_attendees = _parse_attendees(required_attendees)
    if optional_attendees:
        patch.optional_attendees = _parse_attendees(optional_attendees)

    if patch.is_empty():
        return {"error": "No fields to update"}

    calendar = _get_mailbox(mailbox)
    if not calendar:
        return {"error": f"Mailbox not available: {mailbox}"}

    try:
        await calendar.update_event(ItemIdentity(event_id, change_key), patch)
        return {"success": True, "id": event_id, "fields": list(patch.present_fields())}
    except Exception as e:
        return {"error": f"Failed to update event: {e}"}


@mcp.tool()
async def delete_event(
    mailbox: str,
    event_id: str,
    change_key: str = "",
    delete_type: str = "MoveToDeletedItems",
) -> dict:
    """Delete a calendar event.

    Args:
        mailbox: Mailbox name
        event_id: Item ID (from list_events)
        change_key: Change key (from list_events)
        delete_type: HardDelete, SoftDelete or MoveToDeletedItems
    """
    err = _validate_mailbox(mailbox)
    if err:
        return err
    try:
        kind = DeleteType(delete_type)
    except ValueError:
        return {"error": f"Invalid delete type: {delete_type}"}

    calendar = _get_mailbox(mailbox)
    if not calendar:
        return {"error": f"Mailbox not available: {mailbox}"}

    try:
        await calendar.delete_event(ItemIdentity(event_id, change_key), kind)
        return {"success": True, "message": f"Event deleted from {mailbox}"}
    except Exception as e:
        return {"error": f"Failed to delete event: {e}"}


@mcp.tool()
async def check_availability(mailbox: str, start: str, end: str) -> dict:
    """Check whether a time slot is free in a mailbox calendar.

    Args:
        mailbox: Mailbox name
        start: Slot start (ISO 8601)
        end: Slot end (ISO 8601)
    """
    err = _validate_mailbox(mailbox)
    if err:
        return err
    try:
        slot = TimeSlot(_parse_datetime(start), _parse_datetime(end))
    except (ValueError, OverflowError):
        return {"error": f"Invalid slot: {start} - {end}"}

    calendar = _get_mailbox(mailbox)
    if not calendar:
        return {"error": f"Mailbox not available: {mailbox}"}

    try:
        available, conflicts = await calendar.check_slot(slot)
    except Exception as e:
        return {"error": f"Failed to check availability: {e}"}
    return {
        "available": available,
        "conflicts": [_item_to_dict(mailbox, item) for item in conflicts],
    }


@mcp.tool()
async def find_free_slots(
    mailbox: str,
    start: str,
    end: str,
    min_minutes: int = 30,
) -> dict:
    """Find free slots of at least min_minutes between start and end.

    Args:
        mailbox: Mailbox name
        start: Period start (ISO 8601)
        end: Period end (ISO 8601)
        min_minutes: Minimum slot length in minutes
    """
    err = _validate_mailbox(mailbox)
    if err:
        return err
    try:
        dt_start = _parse_datetime(start)
        dt_end = _parse_datetime(end)
    except (ValueError, OverflowError):
        return {"error": f"Invalid period: {start} - {end}"}
    if min_minutes < 1:
        return {"error": "min_minutes must be at least 1"}

    calendar = _get_mailbox(mailbox)
    if not calendar:
        return {"error": f"Mailbox not available: {mailbox}"}

    try:
        slots = await calendar.find_free_slots(dt_start, dt_end, timedelta(minutes=min_minutes))
    except Exception as e:
        return {"error": f"Failed to find free slots: {e}"}
    return {"count": len(slots), "slots": [_slot_to_dict(s) for s in slots]}


# ---------------------------------------------------------------------------
# Demo: print nearby items for one mailbox
# ---------------------------------------------------------------------------

def _run_check(name: str) -> None:
    """List the items of the last and next two days, then exit."""
    if name not in _accounts:
        print(f"Unknown mailbox: {name}. Available: {list(_accounts.keys())}", file=sys.stderr)
        sys.exit(1)

    calendar = _get_mailbox(name)
    now = datetime.now()
    try:
        items = asyncio.run(calendar.list_items(now - timedelta(days=2), now + timedelta(days=2)))
    except Exception as e:
        print(f"Error getting calendar items for '{name}': {e}", file=sys.stderr)
        sys.exit(1)
    if not items:
        print(f"No calendar items found for '{name}'.", file=sys.stderr)
        return

    print(f"Found {len(items)} calendar items for '{name}':", file=sys.stderr)
    for item in items:
        print(
            f"  Subject: {item.subject}, Start: {item.start}, End: {item.end}, ID: {item.id}",
            file=sys.stderr,
        )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Entry point for console script and python -m."""
    global _accounts

    if not load_dotenv():
        logger.info("No .env file found, relying on environment variables set externally")
    config_module.CONFIG_PATH = os.environ.get("EWS_CALENDAR_CONFIG", config_module.CONFIG_PATH)

    _accounts = load_config()

    # Handle --check flag for a one-off listing
    if "--check" in sys.argv:
        idx = sys.argv.index("--check")
        name = sys.argv[idx + 1] if idx + 1 < len(sys.argv) else ""
        if not name:
            print("Usage: ews-calendar --check <mailbox>", file=sys.stderr)
            sys.exit(1)
        _run_check(name)
        return

    if _accounts:
        logger.info("Loaded %d mailbox(es): %s", len(_accounts), list(_accounts.keys()))
    else:
        logger.warning("No mailboxes loaded (EWS_CALENDAR_CONFIG=%s)", config_module.CONFIG_PATH)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
