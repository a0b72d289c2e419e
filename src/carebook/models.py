# src/carebook/models.py
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum, IntFlag
from typing import List, Optional, Set


class Weekday(IntFlag):
    """Wochentage als Bitmaske, Bit = 1 << date.weekday() (Montag = Bit 0)."""
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 4
    THURSDAY = 8
    FRIDAY = 16
    SATURDAY = 32
    SUNDAY = 64

    @classmethod
    def none(cls) -> "Weekday":
        return cls(0)

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return cls(1 << day.weekday())

    @classmethod
    def from_indices(cls, indices) -> "Weekday":
        """0=Montag … 6=Sonntag, wie date.weekday()."""
        mask = cls(0)
        for i in indices:
            if not 0 <= int(i) <= 6:
                raise ValueError(f"invalid weekday index: {i}")
            mask |= cls(1 << int(i))
        return mask

    def indices(self) -> List[int]:
        return [i for i in range(7) if self & (1 << i)]

    def includes(self, day: date) -> bool:
        return bool(self & (1 << day.weekday()))


class Recurrence(Enum):
    ONCE = "ONCE"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"

    @property
    def is_recurring(self) -> bool:
        return self is not Recurrence.ONCE


class SessionStatus(Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class PricingType(Enum):
    FLAT = "FLAT"
    PER_CHILD = "PER_CHILD"


class SkipReason(Enum):
    BLACKED_OUT = "BLACKED_OUT"
    ALREADY_EXISTS = "ALREADY_EXISTS"


@dataclass
class Family:
    family_name: str
    id: Optional[int] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class Child:
    family_id: int
    first_name: str
    last_name: str = ""
    date_of_birth: Optional[date] = None
    id: Optional[int] = None


@dataclass
class Service:
    """Angebotene Leistung (z. B. Babysitting), bestimmt Preisbildung und Pflicht-Kinder."""
    name: str
    code: str
    default_hourly_rate: Optional[Decimal] = None
    pricing_type: PricingType = PricingType.FLAT
    requires_children: bool = True
    is_active: bool = True
    description: Optional[str] = None
    id: Optional[int] = None


@dataclass
class TimeWindow:
    """Lokale Uhrzeit von/bis, gilt für jedes erzeugte Vorkommen."""
    start_time: time
    end_time: time


@dataclass
class RecurrenceRule:
    """Ein wiederkehrender Betreuungsplan (z. B. Mo/Mi/Fr 06:00-14:30)."""
    family_id: int
    service_id: int
    recurrence: Recurrence
    window: TimeWindow
    start_date: date
    end_date: Optional[date] = None
    days_of_week: Weekday = Weekday.none()
    child_ids: Set[int] = field(default_factory=set)
    hourly_rate_override: Optional[Decimal] = None
    name: str = ""
    notes: Optional[str] = None
    is_active: bool = True
    id: Optional[int] = None


@dataclass
class BlackoutPeriod:
    """Zeitraum, in dem keine neuen Termine entstehen dürfen (ganztägig oder mit Uhrzeit)."""
    start_date: date
    end_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    id: Optional[int] = None

    @property
    def all_day(self) -> bool:
        return self.start_time is None and self.end_time is None


@dataclass
class Session:
    """Ein konkreter Betreuungstermin; Zeiten immer als UTC-Instant."""
    family_id: int
    service_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    hourly_rate: Decimal
    status: SessionStatus = SessionStatus.SCHEDULED
    is_confirmed: bool = False
    child_ids: Set[int] = field(default_factory=set)
    source_rule_id: Optional[int] = None
    # ursprünglicher Beginn laut Plan, bleibt beim Verschieben erhalten
    occurrence_start: Optional[datetime] = None
    payment_id: Optional[int] = None
    notes: Optional[str] = None
    drop_off_by: Optional[str] = None
    drop_off_time: Optional[datetime] = None
    pick_up_by: Optional[str] = None
    pick_up_time: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def duration_hours(self) -> Decimal:
        seconds = int((self.scheduled_end - self.scheduled_start).total_seconds())
        return Decimal(seconds) / Decimal(3600)


@dataclass
class Expense:
    session_id: int
    description: str
    amount: Decimal
    category: Optional[str] = None
    notes: Optional[str] = None
    id: Optional[int] = None


@dataclass
class Payment:
    family_id: int
    amount: Decimal
    tips: Decimal = Decimal("0")
    method: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PENDING
    session_ids: Set[int] = field(default_factory=set)
    notes: Optional[str] = None
    paid_date: Optional[datetime] = None
    invoice_number: Optional[str] = None
    tax_year: Optional[int] = None
    id: Optional[int] = None


@dataclass
class Skipped:
    local_date: date
    scheduled_start: datetime
    reason: SkipReason
    blackout_ids: List[int] = field(default_factory=list)


@dataclass
class ExpansionResult:
    created: List[Session] = field(default_factory=list)
    skipped: List[Skipped] = field(default_factory=list)

    def skipped_for(self, reason: SkipReason) -> List[Skipped]:
        return [s for s in self.skipped if s.reason is reason]

    def summary(self) -> str:
        text = f"{len(self.created)} created"
        if self.skipped:
            parts = []
            blacked = len(self.skipped_for(SkipReason.BLACKED_OUT))
            existing = len(self.skipped_for(SkipReason.ALREADY_EXISTS))
            if blacked:
                parts.append(f"{blacked} skipped (blackout)")
            if existing:
                parts.append(f"{existing} skipped (already exists)")
            text += ", " + ", ".join(parts)
        return text
