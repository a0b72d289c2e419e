import logging
from datetime import date, datetime, time
from typing import Iterable, Optional

from .data import Database
from .errors import InvalidTransitionError, ValidationError
from .models import Session, SessionStatus, TimeWindow
from .scheduling import check_children
from .timezone import require_offset, to_absolute, to_local, utc_now

logger = logging.getLogger(__name__)

S = SessionStatus

# erlaubte Vorwärts-Übergänge; COMPLETED und CANCELLED sind Endzustände
ALLOWED = {
    S.SCHEDULED: {S.IN_PROGRESS, S.COMPLETED, S.CANCELLED},
    S.IN_PROGRESS: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}


def is_terminal(status: SessionStatus) -> bool:
    return not ALLOWED[status]


def is_billable(session: Session) -> bool:
    return session.status is S.COMPLETED and session.is_confirmed and session.payment_id is None


def apply_transition(session: Session, status: Optional[SessionStatus] = None,
                     confirmed: Optional[bool] = None) -> Session:
    """Prüft und setzt Status/Bestätigung am Objekt, ohne zu speichern."""
    if status is not None and status is not session.status:
        if status not in ALLOWED[session.status]:
            raise InvalidTransitionError(session.id, session.status, status)
        if status is S.CANCELLED and session.payment_id is not None:
            raise ValidationError(f"Session {session.id} is paid and cannot be cancelled")
        session.status = status
    if confirmed is not None and confirmed != session.is_confirmed:
        if session.status is S.CANCELLED:
            raise ValidationError(f"Session {session.id} is cancelled; confirmation cannot change")
        session.is_confirmed = confirmed
    return session


def transition_session(db: Database, session_id: int, status: Optional[SessionStatus] = None,
                       confirmed: Optional[bool] = None) -> Session:
    with db.transaction():
        session = db.load_session(session_id)
        before = session.status
        apply_transition(session, status, confirmed)
        db.update_session(session)
    if session.status is not before:
        logger.info(f"Session {session_id}: {before.value} -> {session.status.value}")
    return session


def edit_session(
    db: Database,
    session_id: int,
    offset_minutes: Optional[int] = None,
    local_date: Optional[date] = None,
    window: Optional[TimeWindow] = None,
    child_ids: Optional[Iterable[int]] = None,
    notes: Optional[str] = None,
) -> Session:
    """
    Verschieben, Kinder oder Notizen ändern. Abgeschlossene Sessions dürfen noch
    bearbeitet werden, das wird aber protokolliert, weil Abrechnungen auf den
    gespeicherten Werten beruhen. Stornierte Sessions bleiben unverändert.
    """
    with db.transaction():
        session = db.load_session(session_id)
        if session.status is S.CANCELLED:
            raise ValidationError(f"Session {session_id} is cancelled and cannot be edited")

        if local_date is not None or window is not None:
            offset = require_offset(offset_minutes)
            cur_date, cur_start = to_local(session.scheduled_start, offset)
            _, cur_end = to_local(session.scheduled_end, offset)
            day = local_date or cur_date
            new_window = window or TimeWindow(cur_start, cur_end)
            if new_window.start_time >= new_window.end_time:
                raise ValidationError("Start time must be before end time")
            session.scheduled_start = to_absolute(day, new_window.start_time, offset)
            session.scheduled_end = to_absolute(day, new_window.end_time, offset)
        if child_ids is not None:
            child_ids = set(child_ids)
            check_children(db, session.family_id, child_ids)
            session.child_ids = child_ids
        if notes is not None:
            session.notes = notes

        if session.status is S.COMPLETED:
            logger.warning(
                f"Editing completed session {session_id} (payment_id={session.payment_id}); "
                "billed amounts may no longer match"
            )
        db.update_session(session)
    return session


def _handover_instant(at: Optional[datetime], local_time: Optional[time], offset_minutes: Optional[int],
                      session: Session) -> datetime:
    if at is not None:
        if at.tzinfo is None:
            raise ValidationError("Hand-over time must carry a UTC offset")
        return at
    if local_time is not None:
        offset = require_offset(offset_minutes)
        day, _ = to_local(session.scheduled_start, offset)
        return to_absolute(day, local_time, offset)
    return utc_now()


def record_drop_off(db: Database, session_id: int, dropped_off_by: str, at: Optional[datetime] = None,
                    local_time: Optional[time] = None, offset_minutes: Optional[int] = None) -> Session:
    """Kind wurde gebracht: Session läuft und gilt als bestätigt."""
    if not dropped_off_by:
        raise ValidationError("Drop-off person is required")
    with db.transaction():
        session = db.load_session(session_id)
        apply_transition(session, S.IN_PROGRESS, True)
        session.drop_off_by = dropped_off_by
        session.drop_off_time = _handover_instant(at, local_time, offset_minutes, session)
        db.update_session(session)
    return session


def record_pick_up(db: Database, session_id: int, picked_up_by: str, at: Optional[datetime] = None,
                   local_time: Optional[time] = None, offset_minutes: Optional[int] = None) -> Session:
    """Kind wurde abgeholt: Session ist abgeschlossen und bestätigt."""
    if not picked_up_by:
        raise ValidationError("Pick-up person is required")
    with db.transaction():
        session = db.load_session(session_id)
        apply_transition(session, S.COMPLETED, True)
        session.pick_up_by = picked_up_by
        session.pick_up_time = _handover_instant(at, local_time, offset_minutes, session)
        db.update_session(session)
    return session
