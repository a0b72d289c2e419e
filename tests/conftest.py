from datetime import date, time
from decimal import Decimal

import pytest

from carebook.data import Database
from carebook.models import (
    Child, Family, PricingType, Recurrence, RecurrenceRule, Service, TimeWindow, Weekday,
)
from carebook.scheduling import create_or_update_rule

# UTC-6, wie in den Beispielen des Betriebs
OFFSET = -360


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "carebook.db"))
    try:
        yield database
    finally:
        database.close()


@pytest.fixture
def family(db):
    return db.save_family(Family("Miller"))


@pytest.fixture
def children(db, family):
    return [db.save_child(Child(family.id, "Ava")), db.save_child(Child(family.id, "Ben"))]


@pytest.fixture
def service(db):
    return db.save_service(Service(name="Babysitting", code="sit", default_hourly_rate=Decimal("20"),
                                   pricing_type=PricingType.PER_CHILD, requires_children=True))


@pytest.fixture
def make_rule(db, family, children, service):
    def _make(**kw):
        data = dict(
            family_id=family.id,
            service_id=service.id,
            recurrence=Recurrence.WEEKLY,
            window=TimeWindow(time(6, 0), time(14, 30)),
            start_date=date(2024, 1, 1),
            end_date=date(2024, 1, 31),
            days_of_week=Weekday.MONDAY | Weekday.WEDNESDAY | Weekday.FRIDAY,
            child_ids={c.id for c in children},
            name="School days",
        )
        data.update(kw)
        return create_or_update_rule(db, RecurrenceRule(**data))
    return _make
