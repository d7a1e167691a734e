"""Slot conflict and free-slot computation over fetched calendar items."""

from __future__ import annotations

from datetime import datetime, timedelta

from .models import CalendarItem, TimeSlot
from .timecodec import TimeCodec


class AvailabilityEngine:
    """Pure interval logic; item times are parsed with the given codec."""

    def __init__(self, codec: TimeCodec):
        self._codec = codec

    def _aware(self, t: datetime) -> datetime:
        return t.replace(tzinfo=self._codec.tz) if t.tzinfo is None else t

    def interval(self, item: CalendarItem) -> TimeSlot:
        return TimeSlot(self._codec.parse(item.start), self._codec.parse(item.end))

    def sort_by_start(self, items: list[CalendarItem]) -> list[CalendarItem]:
        return sorted(items, key=lambda item: self._codec.parse(item.start))

    def check_slot(
        self, slot: TimeSlot, items: list[CalendarItem]
    ) -> tuple[bool, list[CalendarItem]]:
        """Return (available, conflicts) for ``slot``.

        An item conflicts when it starts before the slot ends and ends after
        the slot starts; touching boundaries do not conflict.
        """
        slot = TimeSlot(self._aware(slot.start), self._aware(slot.end))
        conflicts = []
        for item in items:
            busy = self.interval(item)
            if busy.start < slot.end and busy.end > slot.start:
                conflicts.append(item)
        return not conflicts, conflicts

    def find_free_slots(
        self,
        start: datetime,
        end: datetime,
        min_duration: timedelta,
        items: list[CalendarItem],
    ) -> list[TimeSlot]:
        """Gaps of at least ``min_duration`` between busy items.

        ``items`` must already be ordered by start time (see ``sort_by_start``).
        With no items the whole period is returned, whatever its length.
        """
        start, end = self._aware(start), self._aware(end)
        if not items:
            return [TimeSlot(start, end)]

        slots = []
        cursor = start
        for item in items:
            busy = self.interval(item)
            if busy.start - cursor >= min_duration:
                slots.append(TimeSlot(cursor, busy.start))
            if busy.end > cursor:
                cursor = busy.end

        if end - cursor >= min_duration:
            slots.append(TimeSlot(cursor, end))
        return slots
