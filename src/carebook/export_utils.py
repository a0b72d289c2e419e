from decimal import Decimal
from typing import Dict, Optional

from carebook.models import ExpansionResult, Payment, Session
from carebook.money import format_money
from carebook.timezone import to_local, to_local_iso


def session_payload(session: Session, offset_minutes: int, amount: Optional[Decimal] = None) -> Dict:
    """
    Session für die UI-Schicht: alle Zeiten lokal mit explizitem Offset,
    z. B. '2024-01-01T06:00:00-06:00'.
    """
    payload = {
        'id': session.id,
        'source_rule_id': session.source_rule_id,
        'family_id': session.family_id,
        'service_id': session.service_id,
        'scheduled_start': to_local_iso(session.scheduled_start, offset_minutes),
        'scheduled_end': to_local_iso(session.scheduled_end, offset_minutes),
        'status': session.status.value,
        'is_confirmed': session.is_confirmed,
        'hourly_rate': str(session.hourly_rate),
        'child_ids': sorted(session.child_ids),
        'payment_id': session.payment_id,
        'notes': session.notes,
        'drop_off_by': session.drop_off_by,
        'drop_off_time': to_local_iso(session.drop_off_time, offset_minutes),
        'pick_up_by': session.pick_up_by,
        'pick_up_time': to_local_iso(session.pick_up_time, offset_minutes),
    }
    if amount is not None:
        payload['amount'] = str(amount)
    return payload


def payment_payload(payment: Payment, offset_minutes: int) -> Dict:
    return {
        'id': payment.id,
        'family_id': payment.family_id,
        'amount': str(payment.amount),
        'tips': str(payment.tips),
        'method': payment.method,
        'status': payment.status.value,
        'session_ids': sorted(payment.session_ids),
        'notes': payment.notes,
        'paid_date': to_local_iso(payment.paid_date, offset_minutes),
        'invoice_number': payment.invoice_number,
        'tax_year': payment.tax_year,
    }


def format_session_window(session: Session, offset_minutes: int) -> str:
    """Kurzform für Listen: '2024-01-01 06:00-14:30'."""
    day, start = to_local(session.scheduled_start, offset_minutes)
    _, end = to_local(session.scheduled_end, offset_minutes)
    return f"{day.isoformat()} {start:%H:%M}-{end:%H:%M}"


def expansion_payload(result: ExpansionResult, offset_minutes: int) -> Dict:
    return {
        'summary': result.summary(),
        'created': [session_payload(s, offset_minutes) for s in result.created],
        'skipped': [
            {
                'date': sk.local_date.isoformat(),
                'scheduled_start': to_local_iso(sk.scheduled_start, offset_minutes),
                'reason': sk.reason.value,
                'blackout_ids': list(sk.blackout_ids),
            }
            for sk in result.skipped
        ],
    }


def format_amount_line(label: str, amount: Decimal, symbol: str = '$') -> str:
    return f"{label}: {format_money(amount, symbol)}"
