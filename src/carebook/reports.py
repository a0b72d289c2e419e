from collections import defaultdict
from datetime import date, time, timedelta
from decimal import Decimal
from typing import Dict, List, Tuple

from dateutil.relativedelta import relativedelta

from carebook.billing import amounts_for
from carebook.data import Database
from carebook.errors import ValidationError
from carebook.models import PaymentStatus, SessionStatus
from carebook.money import ZERO, round_money
from carebook.timezone import require_offset, to_absolute, to_local


def _year_bounds(year: int, offset_minutes: int):
    return (to_absolute(date(year, 1, 1), time(0, 0), offset_minutes),
            to_absolute(date(year, 12, 31), time(23, 59, 59), offset_minutes))


def family_year_report(db: Database, family_id: int, year: int, offset_minutes: int) -> Dict:
    """
    Jahresübersicht einer Familie (Ortszeit-Jahr):
      sessions          : Liste je Session mit Datum, Stunden, Betrag, Auslagen, bezahlt
      total_hours       : Summe der Stunden
      total_sessions    : Anzahl nicht stornierter Sessions
      total_amount      : Summe aller Beträge
      total_paid        : davon bezahlt
      total_outstanding : davon offen
    """
    offset = require_offset(offset_minutes)
    family = db.load_family(family_id)
    start, end = _year_bounds(year, offset)
    sessions = db.load_sessions(
        family_id=family_id, start=start, end=end,
        statuses=[SessionStatus.SCHEDULED, SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED],
    )
    amounts = amounts_for(db, sessions)
    expenses = db.expense_totals(s.id for s in sessions)

    rows: List[Dict] = []
    for s in sessions:
        day, _ = to_local(s.scheduled_start, offset)
        rows.append({
            'id': s.id,
            'date': day,
            'hours': s.duration_hours,
            'hourly_rate': s.hourly_rate,
            'expenses': round_money(expenses[s.id]),
            'total_amount': amounts[s.id],
            'status': s.status.value,
            'paid': s.payment_id is not None,
        })

    total_amount = sum((r['total_amount'] for r in rows), ZERO)
    total_paid = sum((r['total_amount'] for r in rows if r['paid']), ZERO)
    return {
        'family_id': family.id,
        'family_name': family.family_name,
        'year': year,
        'sessions': rows,
        'total_hours': sum((r['hours'] for r in rows), Decimal(0)),
        'total_sessions': len(rows),
        'total_amount': total_amount,
        'total_paid': total_paid,
        'total_outstanding': total_amount - total_paid,
    }


def income_by_month(db: Database, year: int, offset_minutes: int) -> Dict[int, Decimal]:
    """Bezahlte Beträge je Monat (1..12) nach lokalem Zahlungsdatum."""
    offset = require_offset(offset_minutes)
    months: Dict[int, Decimal] = defaultdict(lambda: ZERO)
    # tax_year ist UTC-basiert, daher die Nachbarjahre mitnehmen
    for y in (year - 1, year, year + 1):
        for p in db.load_payments(tax_year=y):
            if p.status is not PaymentStatus.PAID or p.paid_date is None:
                continue
            day, _ = to_local(p.paid_date, offset)
            if day.year == year:
                months[day.month] += p.amount
    return {m: months[m] for m in range(1, 13)}


PERIODS = ('this_week', 'last_week', 'month', 'ytd')


def period_bounds(period: str, today: date) -> Tuple[date, date]:
    """Lokale Tage (erster, letzter) eines Zeitraums; Wochen laufen Montag bis Sonntag."""
    if period == 'this_week':
        monday = today - timedelta(days=today.weekday())
        return monday, monday + timedelta(days=6)
    if period == 'last_week':
        monday = today - timedelta(days=today.weekday() + 7)
        return monday, monday + timedelta(days=6)
    if period == 'month':
        first = today.replace(day=1)
        return first, first + relativedelta(months=1) - timedelta(days=1)
    if period == 'ytd':
        return date(today.year, 1, 1), today
    raise ValidationError(f"unknown period {period!r}, expected one of {', '.join(PERIODS)}")


def stats_for_period(db: Database, period: str, today: date, offset_minutes: int) -> Dict:
    """Gearbeitete Stunden und Verdienst (inkl. Auslagen) laufender und abgeschlossener Sessions."""
    offset = require_offset(offset_minutes)
    first, last = period_bounds(period, today)
    sessions = db.load_sessions(
        start=to_absolute(first, time(0, 0), offset),
        end=to_absolute(last, time(23, 59, 59), offset),
        statuses=[SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED],
    )
    amounts = amounts_for(db, sessions)
    return {
        'period': period,
        'start': first,
        'end': last,
        'sessions': len(sessions),
        'hours': sum((s.duration_hours for s in sessions), Decimal(0)),
        'money': sum(amounts.values(), ZERO),
    }


def all_year_end_reports(db: Database, year: int, offset_minutes: int) -> List[Dict]:
    """Jahresübersicht für jede Familie, nach Familienname sortiert."""
    offset = require_offset(offset_minutes)
    return [family_year_report(db, f.id, year, offset) for f in db.load_families()]
