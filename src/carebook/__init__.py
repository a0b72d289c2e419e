"""CareBook: Betreuungspläne, Sessions und Abrechnung für Kinderbetreuung."""

from carebook.billing import compute_session_amount
from carebook.ledger import list_billable_sessions, record_payment
from carebook.lifecycle import transition_session
from carebook.scheduling import create_or_update_rule, expand_schedule

__version__ = "0.1.0"

__all__ = [
    "compute_session_amount",
    "create_or_update_rule",
    "expand_schedule",
    "list_billable_sessions",
    "record_payment",
    "transition_session",
]
