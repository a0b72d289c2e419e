"""
Betreuungspläne anlegen und in konkrete Sessions expandieren.

expand_schedule ist idempotent: Vorkommen, die es schon gibt, werden mit
ALREADY_EXISTS übersprungen, Vorkommen in Sperrzeiten mit BLACKED_OUT. Die
UNIQUE-Bedingung (source_rule_id, scheduled_start) in der Datenbank fängt
gleichzeitige Aufrufe ab.
"""
import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Iterable, List, Optional

from .blackout import BlackoutIndex
from .calendar_logic import occurrence_dates, occurrence_instants
from .data import Database
from .errors import ConflictError, ValidationError
from .models import (
    ExpansionResult, Recurrence, RecurrenceRule, Service, Session, SessionStatus, Skipped, SkipReason, TimeWindow,
    Weekday,
)
from .timezone import require_offset, to_absolute, utc_now

logger = logging.getLogger(__name__)


def validate_rule(rule: RecurrenceRule, service: Service) -> None:
    if rule.window.start_time >= rule.window.end_time:
        raise ValidationError("Start time must be before end time")
    if rule.end_date is not None and rule.start_date > rule.end_date:
        raise ValidationError("End date must not be before start date")
    if rule.recurrence.is_recurring and not rule.days_of_week:
        raise ValidationError("Please select at least one day of the week")
    if service.requires_children and not rule.child_ids:
        raise ValidationError(f"Please select at least one child for {service.name}")
    if rule.hourly_rate_override is not None and rule.hourly_rate_override < 0:
        raise ValidationError("Hourly rate must not be negative")


def check_children(db: Database, family_id: int, child_ids: Iterable[int]) -> None:
    known = {c.id for c in db.load_children(family_id)}
    for cid in child_ids:
        if cid not in known:
            raise ValidationError(f"Child {cid} does not belong to family {family_id}")


def create_or_update_rule(db: Database, rule: RecurrenceRule) -> RecurrenceRule:
    """Prüft und speichert einen Plan; bei ONCE werden die Wochentage verworfen."""
    service = db.load_service(rule.service_id)
    if rule.recurrence is Recurrence.ONCE:
        rule.days_of_week = Weekday.none()
        if not rule.name:
            rule.name = f"Session on {rule.start_date.isoformat()}"
    elif not rule.name:
        raise ValidationError("Schedule name is required")
    validate_rule(rule, service)
    check_children(db, rule.family_id, rule.child_ids)
    db.save_rule(rule)
    logger.info(f"Saved schedule id={rule.id} ({rule.recurrence.value}, {rule.name})")
    return rule


def resolve_rate(rule: RecurrenceRule, service: Service) -> Decimal:
    """Stundensatz für neue Sessions: Override des Plans, sonst Standard der Leistung."""
    if rule.hourly_rate_override is not None:
        return rule.hourly_rate_override
    if service.default_hourly_rate is not None:
        return service.default_hourly_rate
    raise ValidationError(f"No hourly rate for schedule {rule.id}: set an override or a default on {service.name}")


def expand_schedule(
    db: Database,
    rule_id: int,
    range_start: date,
    range_end: date,
    offset_minutes: Optional[int],
) -> ExpansionResult:
    """Erzeuge alle fehlenden Sessions eines Plans im Zeitraum [range_start, range_end]."""
    offset = require_offset(offset_minutes)
    if range_start > range_end:
        raise ValidationError("Range end must not be before range start")

    rule = db.load_rule(rule_id)
    service = db.load_service(rule.service_id)
    if not rule.is_active:
        raise ValidationError("Cannot generate sessions from inactive schedule")
    validate_rule(rule, service)
    rate = resolve_rate(rule, service)

    blackouts = BlackoutIndex.from_database(db, range_start, range_end, offset)
    result = ExpansionResult()

    with db.transaction():
        for day in occurrence_dates(rule, range_start, range_end):
            start, end = occurrence_instants(rule, day, offset)
            hits = blackouts.conflicts(start, end)
            if hits:
                result.skipped.append(Skipped(day, start, SkipReason.BLACKED_OUT, [b.id for b in hits]))
                continue
            if db.session_exists(rule.id, start):
                result.skipped.append(Skipped(day, start, SkipReason.ALREADY_EXISTS))
                continue
            session = Session(
                family_id=rule.family_id,
                service_id=rule.service_id,
                scheduled_start=start,
                scheduled_end=end,
                hourly_rate=rate,
                child_ids=set(rule.child_ids),
                source_rule_id=rule.id,
                occurrence_start=start,
            )
            try:
                db.insert_session(session)
            except ConflictError as e:
                if e.code != "DUPLICATE_OCCURRENCE":
                    raise
                # parallel angelegt
                result.skipped.append(Skipped(day, start, SkipReason.ALREADY_EXISTS))
                continue
            result.created.append(session)

    logger.info(f"Schedule {rule.id} {range_start}..{range_end}: {result.summary()}")
    return result


def create_session(
    db: Database,
    family_id: int,
    service_id: int,
    local_date: date,
    window: TimeWindow,
    offset_minutes: Optional[int],
    child_ids: Iterable[int] = (),
    hourly_rate: Optional[Decimal] = None,
    is_confirmed: bool = True,
    notes: Optional[str] = None,
) -> Session:
    """Einzeltermin ohne Plan. Überschneidung mit einer Sperrzeit ist hier ein Fehler."""
    offset = require_offset(offset_minutes)
    service = db.load_service(service_id)
    child_ids = set(child_ids)
    if window.start_time >= window.end_time:
        raise ValidationError("Start time must be before end time")
    if service.requires_children and not child_ids:
        raise ValidationError(f"Please select at least one child for {service.name}")
    check_children(db, family_id, child_ids)
    rate = hourly_rate if hourly_rate is not None else service.default_hourly_rate
    if rate is None:
        raise ValidationError(f"No hourly rate given and {service.name} has no default")

    start = to_absolute(local_date, window.start_time, offset)
    end = to_absolute(local_date, window.end_time, offset)
    hits = BlackoutIndex.from_database(db, local_date, local_date, offset).conflicts(start, end)
    if hits:
        raise ConflictError(
            f"{local_date.isoformat()} overlaps a blackout period",
            code=SkipReason.BLACKED_OUT.value,
            details={"blackout_ids": [b.id for b in hits]},
        )
    session = Session(
        family_id=family_id, service_id=service_id, scheduled_start=start, scheduled_end=end,
        hourly_rate=rate, is_confirmed=is_confirmed, child_ids=child_ids, notes=notes,
    )
    return db.insert_session(session)


def delete_rule(db: Database, rule_id: int, now: Optional[datetime] = None, cascade: bool = False) -> int:
    """
    Löscht einen Plan. Hängen noch offene zukünftige Sessions daran, wird ohne
    cascade abgelehnt; mit cascade werden diese gelöscht. Vergangene Sessions
    bleiben erhalten und verlieren nur den Verweis auf den Plan.
    """
    now = now or utc_now()
    db.load_rule(rule_id)
    with db.transaction():
        future = [
            s for s in db.load_sessions(rule_id=rule_id, start=now)
            if s.status is not SessionStatus.CANCELLED and s.payment_id is None
        ]
        if future and not cascade:
            raise ConflictError(
                f"Schedule {rule_id} still has {len(future)} upcoming session(s)",
                details={"session_ids": [s.id for s in future]},
            )
        removed = 0
        for s in future:
            if s.status is SessionStatus.SCHEDULED:
                db.delete_session(s.id)
                removed += 1
        db.delete_rule(rule_id)
    logger.info(f"Deleted schedule {rule_id}, removed {removed} upcoming session(s)")
    return removed


def list_sessions_for_range(
    db: Database,
    range_start: date,
    range_end: date,
    offset_minutes: Optional[int],
    family_id: Optional[int] = None,
) -> List[Session]:
    """Sessions, deren Beginn lokal im Zeitraum liegt (beide Tage eingeschlossen)."""
    offset = require_offset(offset_minutes)
    start = to_absolute(range_start, time(0, 0), offset)
    end = to_absolute(range_end, time(23, 59, 59), offset)
    return db.load_sessions(family_id=family_id, start=start, end=end)
