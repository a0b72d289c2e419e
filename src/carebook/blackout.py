from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Tuple

from .errors import ValidationError
from .models import BlackoutPeriod
from .timezone import require_offset, to_absolute, to_local


def validate_blackout(period: BlackoutPeriod) -> None:
    if period.start_date > period.end_date:
        raise ValidationError("Blackout end date must not be before its start date")
    if (period.start_time is None) != (period.end_time is None):
        raise ValidationError("Start and end times are required for specific time blocks")
    if not period.all_day and period.start_time >= period.end_time:
        raise ValidationError("Blackout start time must be before its end time")


def add_blackout(db, period: BlackoutPeriod) -> BlackoutPeriod:
    """Prüft und speichert eine Sperrzeit. Bereits erzeugte Sessions bleiben unberührt."""
    validate_blackout(period)
    return db.save_blackout(period)


class BlackoutIndex:
    """
    Sperrzeiten, umgerechnet mit dem Offset des Besitzers.

    Ganztägige Sperren gelten von 00:00 des ersten bis 24:00 des letzten Tages,
    Sperren mit Uhrzeit gelten an jedem Tag des Zeitraums im angegebenen Fenster.
    """

    def __init__(self, periods: Iterable[BlackoutPeriod], offset_minutes: int):
        self.offset_minutes = require_offset(offset_minutes)
        self.periods: List[BlackoutPeriod] = list(periods)
        for p in self.periods:
            validate_blackout(p)

    @classmethod
    def from_database(cls, db, range_start: date, range_end: date, offset_minutes: int) -> "BlackoutIndex":
        # ein Tag Rand, weil lokale und UTC-Daten auseinanderlaufen
        periods = db.load_blackouts(range_start - timedelta(days=1), range_end + timedelta(days=1))
        return cls(periods, offset_minutes)

    def _intervals_for(self, period: BlackoutPeriod, days: Iterable[date]) -> List[Tuple[datetime, datetime]]:
        if period.all_day:
            return [(
                to_absolute(period.start_date, time(0, 0), self.offset_minutes),
                to_absolute(period.end_date + timedelta(days=1), time(0, 0), self.offset_minutes),
            )]
        return [
            (to_absolute(d, period.start_time, self.offset_minutes),
             to_absolute(d, period.end_time, self.offset_minutes))
            for d in days if period.start_date <= d <= period.end_date
        ]

    def conflicts(self, start: datetime, end: datetime) -> List[BlackoutPeriod]:
        """Alle Sperren, die [start, end) schneiden."""
        first_day, _ = to_local(start, self.offset_minutes)
        last_day, _ = to_local(end, self.offset_minutes)
        span = [first_day + timedelta(days=i) for i in range((last_day - first_day).days + 1)]

        hits = []
        for period in self.periods:
            for b_start, b_end in self._intervals_for(period, span):
                if start < b_end and b_start < end:
                    hits.append(period)
                    break
        return hits

    def is_blocked(self, start: datetime, end: datetime) -> bool:
        return bool(self.conflicts(start, end))

    def __len__(self):
        return len(self.periods)
