from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .data import Database
from .errors import AlreadyPaidError, NotBillableError, ValidationError
from .models import Expense, PricingType, Session, SessionStatus
from .money import ZERO, round_money, sum_money, to_decimal


@dataclass
class PaymentPreview:
    family_id: int
    lines: List[Tuple[int, Decimal]] = field(default_factory=list)
    tips: Decimal = ZERO

    @property
    def subtotal(self) -> Decimal:
        return sum_money(amount for _, amount in self.lines)

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tips

    @property
    def session_ids(self) -> List[int]:
        return [sid for sid, _ in self.lines]


def child_factor(session: Session, pricing_type: PricingType) -> int:
    """Bei PER_CHILD zählt jedes Kind, mindestens aber eins."""
    if pricing_type is PricingType.PER_CHILD:
        return max(1, len(session.child_ids))
    return 1


def session_amount(session: Session, pricing_type: PricingType,
                   expenses: Iterable[Expense] = ()) -> Decimal:
    """
    Betrag einer Session: Dauer in Stunden * Stundensatz (bei PER_CHILD mal
    Anzahl Kinder) plus angehängte Auslagen.
    """
    base = session.duration_hours * session.hourly_rate * child_factor(session, pricing_type)
    return round_money(base) + sum_money(e.amount for e in expenses)


def check_billable(session: Session, family_id: Optional[int] = None) -> None:
    if session.payment_id is not None:
        raise AlreadyPaidError(session.id, session.payment_id)
    if family_id is not None and session.family_id != family_id:
        raise NotBillableError(session.id, f"belongs to family {session.family_id}")
    if session.status is not SessionStatus.COMPLETED:
        raise NotBillableError(session.id, f"status is {session.status.value}")
    if not session.is_confirmed:
        raise NotBillableError(session.id, "not confirmed")


def aggregate(amounts: Sequence[Tuple[Session, Decimal]], tips=ZERO) -> Decimal:
    """Summe aller Session-Beträge plus Trinkgeld; jede nicht abrechenbare Session bricht ab."""
    tips = round_money(to_decimal(tips) or ZERO)
    if tips < 0:
        raise ValidationError("Tips must not be negative")
    for session, _ in amounts:
        check_billable(session)
    return sum_money(a for _, a in amounts) + tips


def compute_session_amount(db: Database, session_id: int) -> Decimal:
    session = db.load_session(session_id)
    service = db.load_service(session.service_id)
    return session_amount(session, service.pricing_type, db.load_expenses(session_id))


def amounts_for(db: Database, sessions: Iterable[Session]) -> Dict[int, Decimal]:
    """Beträge mehrerer Sessions, Leistungen und Auslagen nur einmal geladen."""
    sessions = list(sessions)
    pricing: Dict[int, PricingType] = {}
    for s in sessions:
        if s.service_id not in pricing:
            pricing[s.service_id] = db.load_service(s.service_id).pricing_type
    extra = db.expense_totals(s.id for s in sessions)
    return {
        s.id: round_money(s.duration_hours * s.hourly_rate * child_factor(s, pricing[s.service_id])) + round_money(extra[s.id])
        for s in sessions
    }


def preview_payment(db: Database, family_id: int, session_ids: Sequence[int], tips=ZERO) -> PaymentPreview:
    """Vorschau für das Zahlungsformular; schreibt nichts."""
    if not session_ids:
        raise ValidationError("Please select at least one session")
    sessions = [db.load_session(sid) for sid in dict.fromkeys(session_ids)]
    for s in sessions:
        check_billable(s, family_id)
    amounts = amounts_for(db, sessions)
    preview = PaymentPreview(family_id, [(s.id, amounts[s.id]) for s in sessions])
    preview.tips = round_money(to_decimal(tips) or ZERO)
    aggregate([(s, amounts[s.id]) for s in sessions], preview.tips)
    return preview
