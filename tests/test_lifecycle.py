from datetime import date, datetime, time, timezone

import pytest

from carebook.errors import InvalidTransitionError, TimezoneOffsetMissingError, ValidationError
from carebook.lifecycle import edit_session, record_drop_off, record_pick_up, transition_session
from carebook.models import SessionStatus, TimeWindow
from carebook.scheduling import expand_schedule

from conftest import OFFSET

S = SessionStatus


@pytest.fixture
def session(db, make_rule):
    rule = make_rule()
    return expand_schedule(db, rule.id, date(2024, 1, 1), date(2024, 1, 1), OFFSET).created[0]


def test_forward_transitions(db, session):
    assert transition_session(db, session.id, S.IN_PROGRESS).status is S.IN_PROGRESS
    done = transition_session(db, session.id, S.COMPLETED, confirmed=True)
    assert done.status is S.COMPLETED and done.is_confirmed
    stored = db.load_session(session.id)
    assert stored.status is S.COMPLETED and stored.is_confirmed


def test_scheduled_may_skip_to_completed(db, session):
    assert transition_session(db, session.id, S.COMPLETED).status is S.COMPLETED


@pytest.mark.parametrize("terminal,target", [
    (S.COMPLETED, S.SCHEDULED),
    (S.COMPLETED, S.IN_PROGRESS),
    (S.COMPLETED, S.CANCELLED),
    (S.CANCELLED, S.SCHEDULED),
    (S.CANCELLED, S.COMPLETED),
])
def test_no_way_back_from_terminal_states(db, session, terminal, target):
    transition_session(db, session.id, terminal)
    with pytest.raises(InvalidTransitionError):
        transition_session(db, session.id, target)
    assert db.load_session(session.id).status is terminal


def test_in_progress_cannot_go_back(db, session):
    transition_session(db, session.id, S.IN_PROGRESS)
    with pytest.raises(InvalidTransitionError):
        transition_session(db, session.id, S.SCHEDULED)


def test_confirmation_toggles_independently(db, session):
    assert transition_session(db, session.id, confirmed=True).is_confirmed
    assert not transition_session(db, session.id, confirmed=False).is_confirmed
    assert db.load_session(session.id).status is S.SCHEDULED


def test_cancelled_session_confirmation_is_frozen(db, session):
    transition_session(db, session.id, S.CANCELLED)
    with pytest.raises(ValidationError):
        transition_session(db, session.id, confirmed=True)


def test_edit_session_moves_in_local_time(db, session):
    moved = edit_session(db, session.id, OFFSET, local_date=date(2024, 1, 2),
                         window=TimeWindow(time(7, 0), time(9, 0)), notes="Arzttermin")
    assert moved.scheduled_start == datetime(2024, 1, 2, 13, 0, tzinfo=timezone.utc)
    assert moved.scheduled_end == datetime(2024, 1, 2, 15, 0, tzinfo=timezone.utc)
    stored = db.load_session(session.id)
    assert stored.notes == "Arzttermin"
    assert stored.scheduled_start == moved.scheduled_start


def test_edit_session_keeps_times_when_only_date_changes(db, session):
    moved = edit_session(db, session.id, OFFSET, local_date=date(2024, 1, 4))
    assert moved.scheduled_start == datetime(2024, 1, 4, 12, 0, tzinfo=timezone.utc)
    assert moved.scheduled_end == datetime(2024, 1, 4, 20, 30, tzinfo=timezone.utc)


def test_edit_session_rules(db, session, children):
    with pytest.raises(TimezoneOffsetMissingError):
        edit_session(db, session.id, None, local_date=date(2024, 1, 2))
    with pytest.raises(ValidationError):
        edit_session(db, session.id, OFFSET, window=TimeWindow(time(9, 0), time(8, 0)))
    with pytest.raises(ValidationError):
        edit_session(db, session.id, child_ids=[children[0].id, 9999])
    assert db.load_session(session.id).child_ids == {c.id for c in children}
    assert edit_session(db, session.id, child_ids=[children[0].id]).child_ids == {children[0].id}
    transition_session(db, session.id, S.CANCELLED)
    with pytest.raises(ValidationError):
        edit_session(db, session.id, notes="zu spät")


def test_edit_completed_session_logs_warning(db, session, caplog):
    transition_session(db, session.id, S.COMPLETED)
    with caplog.at_level("WARNING", logger="carebook.lifecycle"):
        edit_session(db, session.id, notes="nachgetragen")
    assert "Editing completed session" in caplog.text


def test_drop_off_and_pick_up(db, session):
    dropped = record_drop_off(db, session.id, "Mom", local_time=time(6, 5), offset_minutes=OFFSET)
    assert dropped.status is S.IN_PROGRESS and dropped.is_confirmed
    assert dropped.drop_off_time == datetime(2024, 1, 1, 12, 5, tzinfo=timezone.utc)

    at = datetime(2024, 1, 1, 20, 40, tzinfo=timezone.utc)
    picked = record_pick_up(db, session.id, "Dad", at=at)
    assert picked.status is S.COMPLETED
    stored = db.load_session(session.id)
    assert stored.drop_off_by == "Mom"
    assert stored.pick_up_by == "Dad"
    assert stored.pick_up_time == at


def test_hand_over_requires_person_and_open_session(db, session):
    with pytest.raises(ValidationError):
        record_drop_off(db, session.id, "")
    with pytest.raises(ValidationError):
        record_pick_up(db, session.id, "Dad", at=datetime(2024, 1, 1, 20, 0))
    transition_session(db, session.id, S.CANCELLED)
    with pytest.raises(InvalidTransitionError):
        record_pick_up(db, session.id, "Dad")
