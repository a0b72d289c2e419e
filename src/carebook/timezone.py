"""
Umrechnung Wanduhrzeit <-> UTC.

Gespeichert wird immer UTC, Ein- und Ausgabe erfolgt lokal. Der Offset (Minuten
östlich von UTC, also -360 für UTC-6) kommt vom Benutzer, der schreibt, und wird
nie aus der Serverzeitzone abgeleitet.
"""
from datetime import date, datetime, time
from typing import Optional, Tuple

from dateutil import tz

from carebook.errors import TimezoneOffsetMissingError, ValidationError

MAX_OFFSET_MINUTES = 14 * 60


def require_offset(offset_minutes: Optional[int]) -> int:
    if offset_minutes is None:
        raise TimezoneOffsetMissingError()
    if isinstance(offset_minutes, bool) or not isinstance(offset_minutes, int):
        raise ValidationError(f"UTC offset must be whole minutes, got {offset_minutes!r}")
    if abs(offset_minutes) > MAX_OFFSET_MINUTES:
        raise ValidationError(f"UTC offset out of range: {offset_minutes}")
    return offset_minutes


def owner_tz(offset_minutes: Optional[int]) -> tz.tzoffset:
    minutes = require_offset(offset_minutes)
    return tz.tzoffset(None, minutes * 60)


def to_absolute(local_date: date, local_time: time, offset_minutes: Optional[int]) -> datetime:
    """Lokales Datum + Uhrzeit -> UTC-Instant (aware)."""
    local = datetime.combine(local_date, local_time.replace(tzinfo=None), tzinfo=owner_tz(offset_minutes))
    return local.astimezone(tz.UTC)


def to_local(instant: datetime, offset_minutes: Optional[int]) -> Tuple[date, time]:
    """UTC-Instant -> (lokales Datum, lokale Uhrzeit)."""
    if instant.tzinfo is None:
        raise ValidationError(f"naive datetime {instant.isoformat()} has no UTC reference")
    local = instant.astimezone(owner_tz(offset_minutes))
    return local.date(), local.time().replace(tzinfo=None)


def to_local_iso(instant: Optional[datetime], offset_minutes: Optional[int]) -> Optional[str]:
    """ISO-8601 in Ortszeit mit explizitem Offset, z. B. 2024-01-01T06:00:00-06:00."""
    if instant is None:
        return None
    if instant.tzinfo is None:
        raise ValidationError(f"naive datetime {instant.isoformat()} has no UTC reference")
    return instant.astimezone(owner_tz(offset_minutes)).isoformat()


def parse_time(text: str) -> time:
    """'HH:MM' (Formularwert) -> time."""
    try:
        hours, minutes = (int(x) for x in text.strip().split(":")[:2])
        return time(hours, minutes)
    except (AttributeError, ValueError) as e:
        raise ValidationError(f"invalid time {text!r}, expected HH:MM") from e


def parse_datetime_local(text: str, offset_minutes: Optional[int]) -> datetime:
    """'YYYY-MM-DDTHH:MM' (datetime-local Eingabe) -> UTC-Instant."""
    try:
        date_part, time_part = text.strip().split("T", 1)
        day = date.fromisoformat(date_part)
    except (AttributeError, ValueError) as e:
        raise ValidationError(f"invalid local datetime {text!r}, expected YYYY-MM-DDTHH:MM") from e
    return to_absolute(day, parse_time(time_part), offset_minutes)


def utc_now() -> datetime:
    return datetime.now(tz.UTC)


def to_storage(instant: Optional[datetime]) -> Optional[str]:
    """UTC-Text für die Datenbank; einheitliches Format, damit UNIQUE und ORDER BY greifen."""
    if instant is None:
        return None
    if instant.tzinfo is None:
        raise ValidationError(f"naive datetime {instant.isoformat()} cannot be stored")
    return instant.astimezone(tz.UTC).replace(microsecond=0).isoformat()


def from_storage(text: Optional[str]) -> Optional[datetime]:
    if not text:
        return None
    return datetime.fromisoformat(text).astimezone(tz.UTC)
