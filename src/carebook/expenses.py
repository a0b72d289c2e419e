from decimal import Decimal
from typing import List, Optional

from .data import Database
from .errors import ValidationError
from .models import Expense, SessionStatus
from .money import ZERO, parse_money, sum_money


def _check_session_open(db: Database, session_id: int):
    session = db.load_session(session_id)
    if session.payment_id is not None:
        raise ValidationError(f"Session {session_id} is already paid; its expenses are final")
    if session.status is SessionStatus.CANCELLED:
        raise ValidationError(f"Session {session_id} is cancelled")


def add_expense(db: Database, session_id: int, description: str, amount,
                category: Optional[str] = None, notes: Optional[str] = None) -> Expense:
    if not description or amount is None or amount == "":
        raise ValidationError("Session ID, description, and amount are required")
    value = parse_money(amount)
    if value <= ZERO:
        raise ValidationError("Expense amount must be greater than 0")
    _check_session_open(db, session_id)
    return db.save_expense(Expense(session_id, description, value, category or None, notes or None))


def delete_expense(db: Database, expense: Expense):
    _check_session_open(db, expense.session_id)
    db.delete_expense(expense.id)


def list_expenses(db: Database, session_id: int) -> List[Expense]:
    return db.load_expenses(session_id)


def session_expense_total(db: Database, session_id: int) -> Decimal:
    return sum_money(e.amount for e in db.load_expenses(session_id))
