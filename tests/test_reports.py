from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from carebook.charts import create_income_chart
from carebook.errors import ValidationError
from carebook.expenses import add_expense
from carebook.ledger import cancel_payment, record_payment
from carebook.lifecycle import transition_session
from carebook.models import Family, SessionStatus, TimeWindow
from carebook.reports import (
    all_year_end_reports, family_year_report, income_by_month, period_bounds, stats_for_period,
)
from carebook.scheduling import create_session

from conftest import OFFSET


@pytest.fixture
def year_data(db, family, children, service):
    """Drei Sessions à 4 h: bezahlt, offen, storniert."""
    window = TimeWindow(time(8, 0), time(12, 0))
    ids = [c.id for c in children]
    paid = create_session(db, family.id, service.id, date(2024, 3, 4), window, OFFSET, ids)
    open_ = create_session(db, family.id, service.id, date(2024, 3, 5), window, OFFSET, ids)
    gone = create_session(db, family.id, service.id, date(2024, 3, 6), window, OFFSET, ids)
    add_expense(db, open_.id, "Snacks", "7.25")
    transition_session(db, paid.id, SessionStatus.COMPLETED)
    transition_session(db, open_.id, SessionStatus.COMPLETED)
    transition_session(db, gone.id, SessionStatus.CANCELLED)
    payment = record_payment(db, family.id, [paid.id], tips="5", now=datetime(2024, 3, 4, 20, 0, tzinfo=timezone.utc))
    return paid, open_, gone, payment


def test_family_year_report(db, family, year_data):
    paid, open_, gone, _ = year_data
    report = family_year_report(db, family.id, 2024, OFFSET)

    assert report['family_name'] == "Miller"
    assert [r['id'] for r in report['sessions']] == [paid.id, open_.id]
    assert report['sessions'][0]['date'] == date(2024, 3, 4)
    assert report['sessions'][0]['paid'] is True
    assert report['sessions'][1]['expenses'] == Decimal("7.25")
    assert report['total_sessions'] == 2
    assert report['total_hours'] == Decimal(8)
    assert report['total_amount'] == Decimal("327.25")
    assert report['total_paid'] == Decimal("160.00")
    assert report['total_outstanding'] == Decimal("167.25")


def test_report_year_uses_local_dates(db, family, children, service):
    # 31.12. 20:00 lokal ist in UTC schon 2024
    create_session(db, family.id, service.id, date(2023, 12, 31), TimeWindow(time(20, 0), time(22, 0)),
                   OFFSET, [children[0].id])
    assert family_year_report(db, family.id, 2023, OFFSET)['total_sessions'] == 1
    assert family_year_report(db, family.id, 2024, OFFSET)['total_sessions'] == 0


def test_income_by_month(db, family, year_data):
    *_, payment = year_data
    months = income_by_month(db, 2024, OFFSET)
    assert sorted(months) == list(range(1, 13))
    assert months[3] == Decimal("165.00")
    assert sum(months.values()) == Decimal("165.00")

    cancel_payment(db, payment.id)
    assert income_by_month(db, 2024, OFFSET)[3] == Decimal("0.00")


def test_income_chart_written(tmp_path, db, year_data):
    out = tmp_path / "income.png"
    create_income_chart(income_by_month(db, 2024, OFFSET), str(out), subtitle="2024")
    assert out.exists() and out.stat().st_size > 0


def test_empty_income_chart_placeholder(tmp_path):
    out = tmp_path / "empty.png"
    create_income_chart({}, str(out))
    assert out.exists() and out.stat().st_size > 0


@pytest.mark.parametrize("period,today,first,last", [
    ("this_week", date(2024, 3, 6), date(2024, 3, 4), date(2024, 3, 10)),
    ("this_week", date(2024, 3, 10), date(2024, 3, 4), date(2024, 3, 10)),
    ("last_week", date(2024, 3, 13), date(2024, 3, 4), date(2024, 3, 10)),
    ("month", date(2024, 2, 10), date(2024, 2, 1), date(2024, 2, 29)),
    ("ytd", date(2024, 3, 4), date(2024, 1, 1), date(2024, 3, 4)),
])
def test_period_bounds(period, today, first, last):
    assert period_bounds(period, today) == (first, last)


def test_stats_for_period(db, family, children, service, year_data):
    running = create_session(db, family.id, service.id, date(2024, 3, 7), TimeWindow(time(8, 0), time(10, 0)),
                             OFFSET, [children[0].id])
    transition_session(db, running.id, SessionStatus.IN_PROGRESS)
    # geplante Sessions zählen nicht
    create_session(db, family.id, service.id, date(2024, 3, 8), TimeWindow(time(8, 0), time(10, 0)),
                   OFFSET, [children[0].id])

    week = stats_for_period(db, "this_week", date(2024, 3, 6), OFFSET)
    assert week['start'] == date(2024, 3, 4)
    assert week['sessions'] == 3
    assert week['hours'] == Decimal(10)
    assert week['money'] == Decimal("367.25")

    first_day = stats_for_period(db, "ytd", date(2024, 3, 4), OFFSET)
    assert first_day['sessions'] == 1
    assert first_day['money'] == Decimal("160.00")

    empty = stats_for_period(db, "last_week", date(2024, 3, 6), OFFSET)
    assert empty['sessions'] == 0
    assert empty['money'] == Decimal(0)

    with pytest.raises(ValidationError):
        stats_for_period(db, "fortnight", date(2024, 3, 6), OFFSET)


def test_all_year_end_reports(db, family, year_data):
    db.save_family(Family("Adams"))
    reports = all_year_end_reports(db, 2024, OFFSET)
    assert [r['family_name'] for r in reports] == ["Adams", "Miller"]
    assert reports[0]['total_sessions'] == 0
    assert reports[0]['total_amount'] == Decimal(0)
    assert reports[1]['total_amount'] == Decimal("327.25")
