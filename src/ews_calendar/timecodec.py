"""Conversion between datetimes and the EWS date-time text formats."""

from __future__ import annotations

import logging
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import tzlocal

from .errors import DateFormatError, InvalidTimezoneError

logger = logging.getLogger("ews-calendar")

LOCAL_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Tried in order; the first match wins. strptime's %z accepts "+10:00", "Z" and "+1000".
_ZONED_FORMATS = (
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
)
_LOCAL_FORMATS = (
    LOCAL_FORMAT,
    "%Y-%m-%dT%H:%M:%S.%f",
)


def load_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising InvalidTimezoneError if unknown."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(name) from exc


def _in_zone(t: datetime, tz: tzinfo) -> datetime:
    # Naive datetimes are wall-clock times in tz, not in the host's zone.
    if t.tzinfo is None:
        return t.replace(tzinfo=tz)
    return t.astimezone(tz)


def format_with_offset(t: datetime, tz: tzinfo) -> str:
    """Render ``t`` in ``tz`` as ``2024-05-01T09:30:00+10:00``."""
    return _in_zone(t, tz).replace(microsecond=0).isoformat()


def format_local(t: datetime, tz: tzinfo) -> str:
    """Render ``t`` in ``tz`` without offset, e.g. ``2024-05-01T09:30:00``."""
    return _in_zone(t, tz).strftime(LOCAL_FORMAT)


def parse(value: str, tz: tzinfo) -> datetime:
    """Parse an EWS date-time string into an aware datetime in ``tz``.

    Offset-qualified strings keep their instant and are converted into ``tz``.
    Strings without zone information keep their wall-clock fields and are
    attributed to ``tz`` as-is.
    """
    text = value.strip()
    for fmt in _ZONED_FORMATS:
        try:
            return datetime.strptime(text, fmt).astimezone(tz)
        except ValueError:
            continue
    for fmt in _LOCAL_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=tz)
        except ValueError:
            continue
    raise DateFormatError(value)


class TimeCodec:
    """Date formatting anchored to one named timezone.

    The zone defaults to the host's IANA zone when no name is given, so
    offsets follow daylight saving like any named zone.
    """

    def __init__(self, timezone: str | None = None):
        self._tz: tzinfo
        self._tz_name: str | None = None
        if timezone:
            self._tz = load_timezone(timezone)
            self._tz_name = timezone
        else:
            self._tz = tzlocal.get_localzone()

    @property
    def tz(self) -> tzinfo:
        return self._tz

    @property
    def timezone_name(self) -> str | None:
        return self._tz_name

    def set_timezone(self, name: str) -> None:
        """Switch zones. An unknown name raises and leaves the codec unchanged."""
        tz = load_timezone(name)
        self._tz = tz
        self._tz_name = name
        logger.info("Timezone set to %s", name)

    def format_with_offset(self, t: datetime) -> str:
        return format_with_offset(t, self._tz)

    def format_local(self, t: datetime) -> str:
        return format_local(t, self._tz)

    def parse(self, value: str) -> datetime:
        return parse(value, self._tz)
