# tests/test_calendar_logic.py

from datetime import date, datetime, time, timedelta, timezone

import pytest

from carebook.calendar_logic import clip_window, occurrence_dates, occurrence_instants
from carebook.models import Recurrence, RecurrenceRule, TimeWindow, Weekday


def rule(recurrence, days=Weekday.none(), start=date(2024, 1, 1), end=None):
    return RecurrenceRule(
        family_id=1, service_id=1, recurrence=recurrence,
        window=TimeWindow(time(6, 0), time(14, 30)),
        start_date=start, end_date=end, days_of_week=days,
    )


def test_weekly_mon_wed_fri_january_2024():
    r = rule(Recurrence.WEEKLY, Weekday.MONDAY | Weekday.WEDNESDAY | Weekday.FRIDAY, end=date(2024, 1, 31))
    days = occurrence_dates(r, date(2024, 1, 1), date(2024, 1, 31))
    expected = [date(2024, 1, d) for d in (1, 3, 5, 8, 10, 12, 15, 17, 19, 22, 24, 26, 29, 31)]
    assert days == expected
    assert len(days) == 14


def test_occurrence_instants_are_utc():
    r = rule(Recurrence.WEEKLY, Weekday.MONDAY)
    start, end = occurrence_instants(r, date(2024, 1, 1), -360)
    assert start == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert end == datetime(2024, 1, 1, 20, 30, tzinfo=timezone.utc)


def test_biweekly_anchored_on_start_date():
    r = rule(Recurrence.BIWEEKLY, Weekday.MONDAY)
    days = occurrence_dates(r, date(2024, 1, 1), date(2024, 2, 28))
    assert days == [date(2024, 1, 1), date(2024, 1, 15), date(2024, 1, 29), date(2024, 2, 12), date(2024, 2, 26)]
    for skipped in (date(2024, 1, 8), date(2024, 1, 22), date(2024, 2, 5), date(2024, 2, 19)):
        assert skipped not in days


def test_biweekly_parity_survives_a_later_range_start():
    r = rule(Recurrence.BIWEEKLY, Weekday.MONDAY)
    # Abfrage beginnt in einer "freien" Woche, der Rhythmus bleibt am Anker
    days = occurrence_dates(r, date(2024, 1, 8), date(2024, 1, 31))
    assert days == [date(2024, 1, 15), date(2024, 1, 29)]


def test_biweekly_anchor_not_on_selected_weekday():
    # Anker Mittwoch, gewählt sind Freitag und Montag: erster Block Mi..Di
    r = rule(Recurrence.BIWEEKLY, Weekday.FRIDAY | Weekday.MONDAY, start=date(2024, 1, 3))
    days = occurrence_dates(r, date(2024, 1, 1), date(2024, 1, 31))
    assert days == [date(2024, 1, 5), date(2024, 1, 8), date(2024, 1, 19), date(2024, 1, 22)]
    diffs = [(days[i + 2] - days[i]).days for i in range(2)]
    assert all(diff == 14 for diff in diffs)


def test_monthly_clamps_to_last_day():
    r = rule(Recurrence.MONTHLY, Weekday.MONDAY, start=date(2024, 1, 31))
    days = occurrence_dates(r, date(2024, 1, 1), date(2024, 5, 31))
    assert days == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30), date(2024, 5, 31)]


def test_monthly_respects_range_start():
    r = rule(Recurrence.MONTHLY, Weekday.MONDAY, start=date(2024, 1, 15))
    assert occurrence_dates(r, date(2024, 3, 1), date(2024, 4, 30)) == [date(2024, 3, 15), date(2024, 4, 15)]


def test_once_inside_and_outside_window():
    r = rule(Recurrence.ONCE, start=date(2024, 1, 10))
    assert occurrence_dates(r, date(2024, 1, 1), date(2024, 1, 31)) == [date(2024, 1, 10)]
    assert occurrence_dates(r, date(2024, 1, 11), date(2024, 1, 31)) == []


def test_clip_window_empty_and_open_ended():
    r = rule(Recurrence.WEEKLY, Weekday.MONDAY, start=date(2024, 2, 1), end=date(2024, 2, 29))
    assert clip_window(r, date(2024, 3, 1), date(2024, 3, 31)) is None
    assert occurrence_dates(r, date(2024, 3, 1), date(2024, 3, 31)) == []
    open_rule = rule(Recurrence.WEEKLY, Weekday.MONDAY, start=date(2024, 2, 1))
    assert clip_window(open_rule, date(2024, 1, 1), date(2024, 12, 31)) == (date(2024, 2, 1), date(2024, 12, 31))


@pytest.mark.parametrize("wd", range(7))
def test_every_weekday_matches(wd):
    r = rule(Recurrence.WEEKLY, Weekday.from_indices([wd]))
    days = occurrence_dates(r, date(2024, 1, 1), date(2024, 12, 31))
    assert days, "Keine Termine generiert"
    assert all(d.weekday() == wd for d in days)
    assert all((b - a) == timedelta(weeks=1) for a, b in zip(days, days[1:]))
