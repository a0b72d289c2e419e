# src/carebook/main.py

from datetime import date, timedelta
from decimal import Decimal

from .config import load_config, setup_logging
from .data import Database
from .errors import CareBookError
from .export_utils import format_session_window
from .models import Child, Family, PricingType, Recurrence, RecurrenceRule, Service, TimeWindow, Weekday
from .scheduling import create_or_update_rule, expand_schedule
from .timezone import parse_time


def _ask(prompt: str, default: str = "") -> str:
    value = input(prompt).strip()
    return value or default


def _ask_date(prompt: str, default: date = None) -> date:
    text = _ask(prompt)
    if not text and default is not None:
        return default
    return date.fromisoformat(text)


def _ask_offset() -> int:
    while True:
        text = _ask("  UTC-Offset in Minuten (z.B. -360 für UTC-6): ")
        try:
            return int(text)
        except ValueError:
            print("  Bitte einen Offset angeben, ohne Offset wird nichts gespeichert.")


def input_service(db: Database) -> Service:
    code = _ask("  Leistungs-Code (z.B. CARE): ").upper()
    svc = db.load_service_by_code(code)
    if svc:
        return svc
    print("  Neue Leistung:")
    name = _ask("    Name: ", code.title())
    rate = _ask("    Standard-Stundensatz (leer=keiner): ")
    per_child = _ask("    Preis pro Kind? (j/n) ", "n").lower() == "j"
    requires = _ask("    Kinder erforderlich? (j/n) ", "j").lower() == "j"
    return db.save_service(Service(
        name=name, code=code,
        default_hourly_rate=Decimal(rate) if rate else None,
        pricing_type=PricingType.PER_CHILD if per_child else PricingType.FLAT,
        requires_children=requires,
    ))


def input_rule(family: Family, service: Service, children) -> RecurrenceRule:
    print("\n✏️  Neuer Betreuungsplan:")
    name = _ask("  Name: ")
    recurrence = Recurrence(_ask("  Rhythmus [ONCE/WEEKLY/BIWEEKLY/MONTHLY]: ", "WEEKLY").upper())
    days = Weekday.none()
    if recurrence.is_recurring:
        days_str = _ask("  Wochentage (0=Mo … 6=So), kommasepariert: ")
        days = Weekday.from_indices(int(x) for x in days_str.split(",") if x.strip().isdigit())
    start_time = parse_time(_ask("  Beginn (HH:MM): "))
    end_time = parse_time(_ask("  Ende (HH:MM): "))
    start = _ask_date("  Startdatum (YYYY-MM-DD) [leer=heute]: ", date.today())
    end_str = _ask("  Enddatum (YYYY-MM-DD) [leer=offen]: ")
    rate = _ask("  Stundensatz (leer=Standard der Leistung): ")
    return RecurrenceRule(
        family_id=family.id, service_id=service.id, recurrence=recurrence,
        window=TimeWindow(start_time, end_time), start_date=start,
        end_date=date.fromisoformat(end_str) if end_str else None,
        days_of_week=days, child_ids={c.id for c in children},
        hourly_rate_override=Decimal(rate) if rate else None, name=name,
    )


def run_wizard():
    cfg = load_config()
    setup_logging(cfg)
    db = Database(cfg.get('db_path'))
    print("🎯 Willkommen zum CareBook Setup Wizard 🎯")
    try:
        # 1) Familie und Kinder
        family = db.save_family(Family(_ask("Familienname: ")))
        names = _ask("Kinder (Vornamen, kommasepariert): ")
        children = [db.save_child(Child(family.id, n.strip())) for n in names.split(",") if n.strip()]

        # 2) Leistung und Plan
        service = input_service(db)
        rule = create_or_update_rule(db, input_rule(family, service, children))

        # 3) Termine generieren
        offset = _ask_offset()
        range_start = _ask_date(f"Termine erzeugen ab (YYYY-MM-DD) [{rule.start_date}]: ", rule.start_date)
        default_end = rule.end_date or range_start + timedelta(days=30)
        range_end = _ask_date(f"Termine erzeugen bis (YYYY-MM-DD) [{default_end}]: ", default_end)
        result = expand_schedule(db, rule.id, range_start, range_end, offset)

        # 4) Ausgabe
        print(f"\n✅ {result.summary()}")
        for s in result.created:
            print(" ", format_session_window(s, offset))
        for sk in result.skipped:
            print(f"  übersprungen {sk.local_date.isoformat()}: {sk.reason.value}")
    except (CareBookError, ValueError) as e:
        print(f"❌ {e}")
    finally:
        db.close()


if __name__ == "__main__":
    run_wizard()
