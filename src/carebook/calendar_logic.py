from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from .models import Recurrence, RecurrenceRule
from .timezone import to_absolute


def clip_window(rule: RecurrenceRule, range_start: date, range_end: date) -> Optional[Tuple[date, date]]:
    """Schnittmenge aus Gültigkeit der Regel und angefragtem Zeitraum, None wenn leer."""
    first = max(rule.start_date, range_start)
    last = range_end if rule.end_date is None else min(rule.end_date, range_end)
    if first > last:
        return None
    return first, last


def in_biweekly_phase(anchor: date, day: date) -> bool:
    """Gerade 7-Tage-Blöcke ab dem Anker zählen, ungerade fallen aus."""
    return (day - anchor).days % 14 < 7


def monthly_dates(anchor: date, first: date, last: date) -> List[date]:
    """Tag-im-Monat des Ankers, in kürzeren Monaten auf den Monatsletzten gekürzt."""
    dates: List[date] = []
    step = 0
    # immer vom Anker aus rechnen, sonst bleibt ein 31. nach dem Februar auf dem 29. hängen
    current = anchor
    while current <= last:
        if current >= first:
            dates.append(current)
        step += 1
        current = anchor + relativedelta(months=step)
    return dates


def occurrence_dates(rule: RecurrenceRule, range_start: date, range_end: date) -> List[date]:
    """Alle Termin-Daten einer Regel im Zeitraum [range_start, range_end]."""
    window = clip_window(rule, range_start, range_end)
    if window is None:
        return []
    first, last = window

    if rule.recurrence is Recurrence.ONCE:
        return [rule.start_date] if first <= rule.start_date <= last else []

    if rule.recurrence is Recurrence.MONTHLY:
        return monthly_dates(rule.start_date, first, last)

    dates: List[date] = []
    for wd in rule.days_of_week.indices():
        # ersten Termin dieses Wochentags im Fenster ermitteln
        delta_days = (wd - first.weekday() + 7) % 7
        current = first + timedelta(days=delta_days)
        while current <= last:
            if rule.recurrence is Recurrence.WEEKLY or in_biweekly_phase(rule.start_date, current):
                dates.append(current)
            current += timedelta(weeks=1)

    return sorted(set(dates))


def occurrence_instants(rule: RecurrenceRule, day: date, offset_minutes: int) -> Tuple[datetime, datetime]:
    """(scheduled_start, scheduled_end) in UTC für ein Termin-Datum."""
    start = to_absolute(day, rule.window.start_time, offset_minutes)
    end = to_absolute(day, rule.window.end_time, offset_minutes)
    return start, end
