"""
Zahlungsbuch: bucht Zahlungen auf abgeschlossene, bestätigte Sessions.

Jede Session wird höchstens einmal abgerechnet. Die Zahlung und alle
Session-Markierungen entstehen in einer Transaktion; scheitert eine Session,
wird nichts geschrieben.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from dateutil import tz

from .billing import aggregate, amounts_for, check_billable
from .data import Database
from .errors import AlreadyPaidError, NotBillableError, ValidationError
from .lifecycle import is_billable
from .models import Payment, PaymentStatus, Session, SessionStatus
from .money import ZERO, round_money, to_decimal
from .timezone import utc_now

logger = logging.getLogger(__name__)


def next_invoice_number(db: Database, when: datetime, prefix: str = "INV") -> str:
    """INV-YYYYMMDD-NNN, fortlaufend pro Tag."""
    day_prefix = f"{prefix}-{when:%Y%m%d}-"
    return f"{day_prefix}{db.count_invoices_with_prefix(day_prefix) + 1:03d}"


def record_payment(
    db: Database,
    family_id: int,
    session_ids: Sequence[int],
    tips=ZERO,
    method: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    invoice_prefix: str = "INV",
) -> Payment:
    if not session_ids:
        raise ValidationError("Please select at least one session")
    tips = round_money(to_decimal(tips) or ZERO)
    if tips < 0:
        raise ValidationError("Tips must not be negative")
    now = now or utc_now()
    if now.tzinfo is None:
        raise ValidationError("Payment time must carry a UTC offset")
    # Rechnungstag und Steuerjahr nach UTC
    now = now.astimezone(tz.UTC)
    db.load_family(family_id)
    ids = list(dict.fromkeys(session_ids))

    with db.transaction():
        # erneut prüfen, der Client kann veraltete Daten gezeigt haben
        sessions = [db.load_session(sid) for sid in ids]
        for s in sessions:
            check_billable(s, family_id)
        amounts = amounts_for(db, sessions)
        total = aggregate([(s, amounts[s.id]) for s in sessions], tips)
        if total <= 0:
            raise ValidationError("Total amount must be greater than 0")

        payment = Payment(
            family_id=family_id,
            amount=total,
            tips=tips,
            method=method or None,
            status=PaymentStatus.PAID,
            session_ids=set(ids),
            notes=notes or None,
            paid_date=now,
            invoice_number=next_invoice_number(db, now, invoice_prefix),
            tax_year=now.year,
        )
        db.insert_payment(payment)
        for s in sessions:
            if not db.stamp_session_paid(s.id, payment.id):
                current = db.load_session(s.id)
                if current.payment_id is not None:
                    raise AlreadyPaidError(s.id, current.payment_id)
                raise NotBillableError(s.id, "changed while the payment was recorded")

    logger.info(f"Payment {payment.invoice_number}: {payment.amount} for sessions {sorted(ids)}")
    return payment


def cancel_payment(db: Database, payment_id: int) -> Payment:
    """Storniert eine Zahlung; ihre Sessions werden wieder abrechenbar."""
    with db.transaction():
        payment = db.load_payment(payment_id)
        if payment.status is PaymentStatus.CANCELLED:
            return payment
        db.set_payment_status(payment_id, PaymentStatus.CANCELLED)
        released = db.release_payment(payment_id)
        payment.status = PaymentStatus.CANCELLED
    logger.info(f"Cancelled payment {payment.invoice_number}, released {released} session(s)")
    return payment


def list_billable_sessions(db: Database, family_id: int) -> List[Session]:
    return [s for s in db.load_sessions(family_id=family_id, statuses=[SessionStatus.COMPLETED]) if is_billable(s)]


def list_payments(db: Database, family_id: Optional[int] = None, year: Optional[int] = None) -> List[Payment]:
    return db.load_payments(family_id=family_id, tax_year=year)


def outstanding_total(db: Database, family_id: int) -> Decimal:
    """Offener Betrag aller abrechenbaren Sessions einer Familie."""
    return sum(amounts_for(db, list_billable_sessions(db, family_id)).values(), ZERO)
