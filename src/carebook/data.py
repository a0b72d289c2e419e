import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from carebook.errors import ConflictError, NotFoundError
from carebook.models import (
    BlackoutPeriod, Child, Expense, Family, Payment, PaymentStatus, PricingType,
    Recurrence, RecurrenceRule, Service, Session, SessionStatus, TimeWindow, Weekday,
)
from carebook.timezone import from_storage, to_storage

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS families (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  family_name TEXT NOT NULL,
  email TEXT,
  phone TEXT,
  notes TEXT
);
CREATE TABLE IF NOT EXISTS children (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  family_id INTEGER NOT NULL REFERENCES families(id) ON DELETE CASCADE,
  first_name TEXT NOT NULL,
  last_name TEXT NOT NULL DEFAULT '',
  date_of_birth TEXT
);
CREATE TABLE IF NOT EXISTS services (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  code TEXT NOT NULL UNIQUE,
  description TEXT,
  default_hourly_rate TEXT,
  pricing_type TEXT NOT NULL DEFAULT 'FLAT',
  requires_children INTEGER NOT NULL DEFAULT 1,
  is_active INTEGER NOT NULL DEFAULT 1
);
CREATE TABLE IF NOT EXISTS schedules (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  family_id INTEGER NOT NULL REFERENCES families(id),
  service_id INTEGER NOT NULL REFERENCES services(id),
  name TEXT NOT NULL DEFAULT '',
  recurrence TEXT NOT NULL,
  days_of_week INTEGER NOT NULL DEFAULT 0,
  start_time TEXT NOT NULL,
  end_time TEXT NOT NULL,
  start_date TEXT NOT NULL,
  end_date TEXT,
  hourly_rate_override TEXT,
  notes TEXT,
  is_active INTEGER NOT NULL DEFAULT 1
);
CREATE TABLE IF NOT EXISTS schedule_children (
  schedule_id INTEGER NOT NULL REFERENCES schedules(id) ON DELETE CASCADE,
  child_id INTEGER NOT NULL REFERENCES children(id) ON DELETE CASCADE,
  PRIMARY KEY (schedule_id, child_id)
);
CREATE TABLE IF NOT EXISTS payments (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  family_id INTEGER NOT NULL REFERENCES families(id),
  amount TEXT NOT NULL,
  tips TEXT NOT NULL DEFAULT '0.00',
  method TEXT,
  status TEXT NOT NULL,
  notes TEXT,
  paid_date TEXT,
  invoice_number TEXT UNIQUE,
  tax_year INTEGER
);
CREATE TABLE IF NOT EXISTS sessions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  family_id INTEGER NOT NULL REFERENCES families(id),
  service_id INTEGER NOT NULL REFERENCES services(id),
  source_rule_id INTEGER REFERENCES schedules(id) ON DELETE SET NULL,
  occurrence_start TEXT,
  scheduled_start TEXT NOT NULL,
  scheduled_end TEXT NOT NULL,
  status TEXT NOT NULL DEFAULT 'SCHEDULED',
  is_confirmed INTEGER NOT NULL DEFAULT 0,
  hourly_rate TEXT NOT NULL,
  payment_id INTEGER REFERENCES payments(id),
  notes TEXT,
  drop_off_by TEXT,
  drop_off_time TEXT,
  pick_up_by TEXT,
  pick_up_time TEXT,
  UNIQUE (source_rule_id, occurrence_start),
  CHECK (scheduled_start < scheduled_end),
  CHECK (NOT (status = 'CANCELLED' AND payment_id IS NOT NULL))
);
CREATE INDEX IF NOT EXISTS idx_sessions_family ON sessions(family_id, scheduled_start);
CREATE TABLE IF NOT EXISTS session_children (
  session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
  child_id INTEGER NOT NULL REFERENCES children(id) ON DELETE CASCADE,
  PRIMARY KEY (session_id, child_id)
);
CREATE TABLE IF NOT EXISTS payment_sessions (
  payment_id INTEGER NOT NULL REFERENCES payments(id) ON DELETE CASCADE,
  session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
  PRIMARY KEY (payment_id, session_id)
);
CREATE TABLE IF NOT EXISTS blackouts (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  start_date TEXT NOT NULL,
  end_date TEXT NOT NULL,
  start_time TEXT,
  end_time TEXT,
  reason TEXT,
  notes TEXT
);
CREATE TABLE IF NOT EXISTS expenses (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
  description TEXT NOT NULL,
  amount TEXT NOT NULL,
  category TEXT,
  notes TEXT
);
"""

# Reihenfolge beim Löschen: abhängige Tabellen zuerst
_TABLES = (
    'expenses', 'payment_sessions', 'session_children', 'sessions', 'payments',
    'blackouts', 'schedule_children', 'schedules', 'services', 'children', 'families',
)


def _d(text: Optional[str]) -> Optional[date]:
    return date.fromisoformat(text) if text else None


def _t(text: Optional[str]) -> Optional[time]:
    return time.fromisoformat(text) if text else None


def _money(text: Optional[str]) -> Optional[Decimal]:
    return Decimal(text) if text is not None else None


def _text(value) -> Optional[str]:
    return None if value is None else str(value)


class Database:
    def __init__(self, db_path: str = None):
        try:
            self.db_path = db_path or os.path.join(os.path.expanduser("~"), ".carebook", "carebook.db")
            if self.db_path != ':memory:':
                os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
            # autocommit; Schreibvorgänge laufen explizit über transaction()
            self.conn = sqlite3.connect(self.db_path, isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON;")
            self._ensure_tables()
        except sqlite3.Error as e:
            logger.error(f"Database connection error: {e}")
            raise

    def _ensure_tables(self):
        self.conn.executescript(_SCHEMA)

    @contextmanager
    def transaction(self):
        """
        Schreibtransaktion mit BEGIN IMMEDIATE: die Schreibsperre wird sofort
        geholt, damit Prüfung und Schreiben nicht von einer zweiten Verbindung
        unterbrochen werden. Verschachtelte Aufrufe laufen in der äußeren mit.
        """
        if self.conn.in_transaction:
            yield self.conn
            return
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self.conn
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    # Export/Import
    def export_to_sql(self, filename: str):
        """Dump aller Tabellen als SQL-Statements"""
        with open(filename, 'w', encoding='utf-8') as f:
            for line in self.conn.iterdump():
                f.write(f"{line}\n")

    def import_from_sql(self, filename: str):
        """Vorhandene Tabellen löschen, Dump einlesen und ausführen"""
        with open(filename, 'r', encoding='utf-8') as f:
            script = f.read()
        self.conn.execute("PRAGMA foreign_keys = OFF;")
        try:
            for tbl in _TABLES:
                self.conn.execute(f"DROP TABLE IF EXISTS {tbl}")
            self.conn.executescript(script)
            self._ensure_tables()
        except sqlite3.Error as e:
            logger.error(f"Restore from {filename} failed: {e}")
            raise
        finally:
            self.conn.execute("PRAGMA foreign_keys = ON;")

    # Familien und Kinder
    def save_family(self, family: Family) -> Family:
        cur = self.conn.cursor()
        if family.id is not None:
            cur.execute(
                "UPDATE families SET family_name=?, email=?, phone=?, notes=? WHERE id=?",
                (family.family_name, family.email, family.phone, family.notes, family.id)
            )
        else:
            cur.execute(
                "INSERT INTO families (family_name, email, phone, notes) VALUES (?,?,?,?)",
                (family.family_name, family.email, family.phone, family.notes)
            )
            family.id = cur.lastrowid
        return family

    def load_family(self, family_id: int) -> Family:
        row = self.conn.execute("SELECT * FROM families WHERE id=?", (family_id,)).fetchone()
        if row is None:
            raise NotFoundError("Family", family_id)
        return Family(row['family_name'], id=row['id'], email=row['email'],
                      phone=row['phone'], notes=row['notes'])

    def load_families(self) -> List[Family]:
        rows = self.conn.execute("SELECT * FROM families ORDER BY family_name, id").fetchall()
        return [Family(r['family_name'], id=r['id'], email=r['email'], phone=r['phone'], notes=r['notes'])
                for r in rows]

    def save_child(self, child: Child) -> Child:
        cur = self.conn.cursor()
        dob = child.date_of_birth.isoformat() if child.date_of_birth else None
        if child.id is not None:
            cur.execute(
                "UPDATE children SET family_id=?, first_name=?, last_name=?, date_of_birth=? WHERE id=?",
                (child.family_id, child.first_name, child.last_name, dob, child.id)
            )
        else:
            cur.execute(
                "INSERT INTO children (family_id, first_name, last_name, date_of_birth) VALUES (?,?,?,?)",
                (child.family_id, child.first_name, child.last_name, dob)
            )
            child.id = cur.lastrowid
        return child

    def load_children(self, family_id: int) -> List[Child]:
        rows = self.conn.execute(
            "SELECT * FROM children WHERE family_id=? ORDER BY first_name", (family_id,)
        ).fetchall()
        return [Child(r['family_id'], r['first_name'], r['last_name'], _d(r['date_of_birth']), id=r['id'])
                for r in rows]

    # Leistungen
    def save_service(self, svc: Service) -> Service:
        svc.code = svc.code.upper()
        params = (svc.name, svc.code, svc.description, _text(svc.default_hourly_rate),
                  svc.pricing_type.value, int(svc.requires_children), int(svc.is_active))
        cur = self.conn.cursor()
        try:
            if svc.id is not None:
                cur.execute(
                    "UPDATE services SET name=?, code=?, description=?, default_hourly_rate=?, "
                    "pricing_type=?, requires_children=?, is_active=? WHERE id=?",
                    params + (svc.id,)
                )
            else:
                cur.execute(
                    "INSERT INTO services (name, code, description, default_hourly_rate, pricing_type, "
                    "requires_children, is_active) VALUES (?,?,?,?,?,?,?)",
                    params
                )
                svc.id = cur.lastrowid
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Service with code {svc.code} already exists") from e
        return svc

    def _row_to_service(self, row) -> Service:
        return Service(
            name=row['name'], code=row['code'], description=row['description'],
            default_hourly_rate=_money(row['default_hourly_rate']),
            pricing_type=PricingType(row['pricing_type']),
            requires_children=bool(row['requires_children']),
            is_active=bool(row['is_active']), id=row['id'],
        )

    def load_service(self, service_id: int) -> Service:
        row = self.conn.execute("SELECT * FROM services WHERE id=?", (service_id,)).fetchone()
        if row is None:
            raise NotFoundError("Service", service_id)
        return self._row_to_service(row)

    def load_service_by_code(self, code: str) -> Optional[Service]:
        row = self.conn.execute("SELECT * FROM services WHERE code=?", (code.upper(),)).fetchone()
        return self._row_to_service(row) if row else None

    # Regel-Methoden
    def save_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        params = (
            rule.family_id, rule.service_id, rule.name, rule.recurrence.value, int(rule.days_of_week),
            rule.window.start_time.strftime('%H:%M'), rule.window.end_time.strftime('%H:%M'),
            rule.start_date.isoformat(), rule.end_date.isoformat() if rule.end_date else None,
            _text(rule.hourly_rate_override), rule.notes, int(rule.is_active),
        )
        with self.transaction():
            cur = self.conn.cursor()
            if rule.id is not None:
                cur.execute(
                    "UPDATE schedules SET family_id=?, service_id=?, name=?, recurrence=?, days_of_week=?, "
                    "start_time=?, end_time=?, start_date=?, end_date=?, hourly_rate_override=?, notes=?, "
                    "is_active=? WHERE id=?",
                    params + (rule.id,)
                )
                if cur.rowcount == 0:
                    raise NotFoundError("Schedule", rule.id)
                cur.execute("DELETE FROM schedule_children WHERE schedule_id=?", (rule.id,))
            else:
                cur.execute(
                    "INSERT INTO schedules (family_id, service_id, name, recurrence, days_of_week, start_time, "
                    "end_time, start_date, end_date, hourly_rate_override, notes, is_active) "
                    "VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
                    params
                )
                rule.id = cur.lastrowid
            cur.executemany(
                "INSERT INTO schedule_children (schedule_id, child_id) VALUES (?,?)",
                [(rule.id, cid) for cid in sorted(rule.child_ids)]
            )
        return rule

    def _row_to_rule(self, row) -> RecurrenceRule:
        child_ids = {r['child_id'] for r in self.conn.execute(
            "SELECT child_id FROM schedule_children WHERE schedule_id=?", (row['id'],))}
        return RecurrenceRule(
            family_id=row['family_id'], service_id=row['service_id'],
            recurrence=Recurrence(row['recurrence']),
            window=TimeWindow(_t(row['start_time']), _t(row['end_time'])),
            start_date=_d(row['start_date']), end_date=_d(row['end_date']),
            days_of_week=Weekday(row['days_of_week']), child_ids=child_ids,
            hourly_rate_override=_money(row['hourly_rate_override']),
            name=row['name'], notes=row['notes'], is_active=bool(row['is_active']), id=row['id'],
        )

    def load_rule(self, rule_id: int) -> RecurrenceRule:
        row = self.conn.execute("SELECT * FROM schedules WHERE id=?", (rule_id,)).fetchone()
        if row is None:
            raise NotFoundError("Schedule", rule_id)
        return self._row_to_rule(row)

    def load_rules(self, family_id: Optional[int] = None) -> List[RecurrenceRule]:
        if family_id is None:
            rows = self.conn.execute("SELECT * FROM schedules ORDER BY start_date DESC").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM schedules WHERE family_id=? ORDER BY start_date DESC", (family_id,)
            ).fetchall()
        return [self._row_to_rule(r) for r in rows]

    def delete_rule(self, rule_id: int):
        self.conn.execute("DELETE FROM schedules WHERE id=?", (rule_id,))

    # Session-Methoden
    def insert_session(self, s: Session) -> Session:
        """Legt eine Session an; doppeltes (source_rule_id, occurrence_start) -> ConflictError."""
        with self.transaction():
            cur = self.conn.cursor()
            try:
                cur.execute(
                    "INSERT INTO sessions (family_id, service_id, source_rule_id, occurrence_start, scheduled_start, "
                    "scheduled_end, status, is_confirmed, hourly_rate, payment_id, notes) "
                    "VALUES (?,?,?,?,?,?,?,?,?,?,?)",
                    (s.family_id, s.service_id, s.source_rule_id, to_storage(s.occurrence_start),
                     to_storage(s.scheduled_start), to_storage(s.scheduled_end), s.status.value,
                     int(s.is_confirmed), str(s.hourly_rate), s.payment_id, s.notes)
                )
                s.id = cur.lastrowid
                cur.executemany(
                    "INSERT INTO session_children (session_id, child_id) VALUES (?,?)",
                    [(s.id, cid) for cid in sorted(s.child_ids)]
                )
            except sqlite3.IntegrityError as e:
                s.id = None
                if "UNIQUE" in str(e):
                    raise ConflictError(
                        f"Schedule {s.source_rule_id} already has a session for {to_storage(s.occurrence_start)}",
                        code="DUPLICATE_OCCURRENCE",
                        details={"source_rule_id": s.source_rule_id,
                                 "occurrence_start": to_storage(s.occurrence_start)},
                    ) from e
                raise ConflictError(f"Session violates a constraint: {e}", code="CONSTRAINT_VIOLATION") from e
        return s

    def update_session(self, s: Session) -> Session:
        with self.transaction():
            cur = self.conn.cursor()
            try:
                cur.execute(
                    "UPDATE sessions SET scheduled_start=?, scheduled_end=?, status=?, is_confirmed=?, "
                    "hourly_rate=?, notes=?, drop_off_by=?, drop_off_time=?, pick_up_by=?, pick_up_time=? "
                    "WHERE id=?",
                    (to_storage(s.scheduled_start), to_storage(s.scheduled_end), s.status.value,
                     int(s.is_confirmed), str(s.hourly_rate), s.notes, s.drop_off_by,
                     to_storage(s.drop_off_time), s.pick_up_by, to_storage(s.pick_up_time), s.id)
                )
                if cur.rowcount == 0:
                    raise NotFoundError("Session", s.id)
                cur.execute("DELETE FROM session_children WHERE session_id=?", (s.id,))
                cur.executemany(
                    "INSERT INTO session_children (session_id, child_id) VALUES (?,?)",
                    [(s.id, cid) for cid in sorted(s.child_ids)]
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(f"Session {s.id} update violates a constraint: {e}",
                                    code="CONSTRAINT_VIOLATION") from e
        return s

    def _row_to_session(self, row) -> Session:
        child_ids = {r['child_id'] for r in self.conn.execute(
            "SELECT child_id FROM session_children WHERE session_id=?", (row['id'],))}
        return Session(
            family_id=row['family_id'], service_id=row['service_id'],
            scheduled_start=from_storage(row['scheduled_start']),
            scheduled_end=from_storage(row['scheduled_end']),
            hourly_rate=Decimal(row['hourly_rate']), status=SessionStatus(row['status']),
            is_confirmed=bool(row['is_confirmed']), child_ids=child_ids,
            source_rule_id=row['source_rule_id'], occurrence_start=from_storage(row['occurrence_start']),
            payment_id=row['payment_id'], notes=row['notes'],
            drop_off_by=row['drop_off_by'], drop_off_time=from_storage(row['drop_off_time']),
            pick_up_by=row['pick_up_by'], pick_up_time=from_storage(row['pick_up_time']),
            id=row['id'],
        )

    def load_session(self, session_id: int) -> Session:
        row = self.conn.execute("SELECT * FROM sessions WHERE id=?", (session_id,)).fetchone()
        if row is None:
            raise NotFoundError("Session", session_id)
        return self._row_to_session(row)

    def load_sessions(
        self,
        family_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        rule_id: Optional[int] = None,
        statuses: Optional[Iterable[SessionStatus]] = None,
    ) -> List[Session]:
        query = "SELECT * FROM sessions WHERE 1=1"
        params: list = []
        if family_id is not None:
            query += " AND family_id=?"
            params.append(family_id)
        if rule_id is not None:
            query += " AND source_rule_id=?"
            params.append(rule_id)
        if start is not None:
            query += " AND scheduled_start >= ?"
            params.append(to_storage(start))
        if end is not None:
            query += " AND scheduled_start <= ?"
            params.append(to_storage(end))
        if statuses is not None:
            values = [st.value for st in statuses]
            query += f" AND status IN ({','.join('?' * len(values))})"
            params.extend(values)
        query += " ORDER BY scheduled_start, id"
        return [self._row_to_session(r) for r in self.conn.execute(query, params).fetchall()]

    def session_exists(self, rule_id: int, occurrence_start: datetime) -> bool:
        """Gibt es das Vorkommen schon? Verschobene Sessions behalten ihr occurrence_start."""
        row = self.conn.execute(
            "SELECT 1 FROM sessions WHERE source_rule_id=? AND occurrence_start=?",
            (rule_id, to_storage(occurrence_start))
        ).fetchone()
        return row is not None

    def delete_session(self, session_id: int):
        self.conn.execute("DELETE FROM sessions WHERE id=?", (session_id,))

    def stamp_session_paid(self, session_id: int, payment_id: int) -> bool:
        """Compare-and-set: True nur wenn die Session noch unbezahlt und abrechenbar war."""
        cur = self.conn.execute(
            "UPDATE sessions SET payment_id=? WHERE id=? AND payment_id IS NULL "
            "AND status='COMPLETED' AND is_confirmed=1",
            (payment_id, session_id)
        )
        return cur.rowcount == 1

    def release_payment(self, payment_id: int) -> int:
        cur = self.conn.execute("UPDATE sessions SET payment_id=NULL WHERE payment_id=?", (payment_id,))
        return cur.rowcount

    # Sperrzeiten
    def save_blackout(self, b: BlackoutPeriod) -> BlackoutPeriod:
        params = (b.start_date.isoformat(), b.end_date.isoformat(),
                  b.start_time.strftime('%H:%M') if b.start_time else None,
                  b.end_time.strftime('%H:%M') if b.end_time else None, b.reason, b.notes)
        cur = self.conn.cursor()
        if b.id is not None:
            cur.execute(
                "UPDATE blackouts SET start_date=?, end_date=?, start_time=?, end_time=?, reason=?, notes=? "
                "WHERE id=?",
                params + (b.id,)
            )
        else:
            cur.execute(
                "INSERT INTO blackouts (start_date, end_date, start_time, end_time, reason, notes) "
                "VALUES (?,?,?,?,?,?)",
                params
            )
            b.id = cur.lastrowid
        return b

    def load_blackouts(self, start: Optional[date] = None, end: Optional[date] = None) -> List[BlackoutPeriod]:
        """Sperrzeiten, die [start, end] berühren (ohne Grenzen: alle)."""
        query = "SELECT * FROM blackouts WHERE 1=1"
        params: list = []
        if end is not None:
            query += " AND start_date <= ?"
            params.append(end.isoformat())
        if start is not None:
            query += " AND end_date >= ?"
            params.append(start.isoformat())
        query += " ORDER BY start_date"
        return [
            BlackoutPeriod(_d(r['start_date']), _d(r['end_date']), _t(r['start_time']), _t(r['end_time']),
                           reason=r['reason'], notes=r['notes'], id=r['id'])
            for r in self.conn.execute(query, params).fetchall()
        ]

    def delete_blackout(self, blackout_id: int):
        self.conn.execute("DELETE FROM blackouts WHERE id=?", (blackout_id,))

    # Auslagen
    def save_expense(self, e: Expense) -> Expense:
        cur = self.conn.cursor()
        if e.id is not None:
            cur.execute(
                "UPDATE expenses SET session_id=?, description=?, amount=?, category=?, notes=? WHERE id=?",
                (e.session_id, e.description, str(e.amount), e.category, e.notes, e.id)
            )
        else:
            cur.execute(
                "INSERT INTO expenses (session_id, description, amount, category, notes) VALUES (?,?,?,?,?)",
                (e.session_id, e.description, str(e.amount), e.category, e.notes)
            )
            e.id = cur.lastrowid
        return e

    def load_expenses(self, session_id: int) -> List[Expense]:
        rows = self.conn.execute("SELECT * FROM expenses WHERE session_id=? ORDER BY id", (session_id,)).fetchall()
        return [Expense(r['session_id'], r['description'], Decimal(r['amount']), r['category'], r['notes'],
                        id=r['id']) for r in rows]

    def delete_expense(self, expense_id: int):
        self.conn.execute("DELETE FROM expenses WHERE id=?", (expense_id,))

    # Zahlungen
    def insert_payment(self, p: Payment) -> Payment:
        with self.transaction():
            cur = self.conn.cursor()
            cur.execute(
                "INSERT INTO payments (family_id, amount, tips, method, status, notes, paid_date, "
                "invoice_number, tax_year) VALUES (?,?,?,?,?,?,?,?,?)",
                (p.family_id, str(p.amount), str(p.tips), p.method, p.status.value, p.notes,
                 to_storage(p.paid_date), p.invoice_number, p.tax_year)
            )
            p.id = cur.lastrowid
            cur.executemany(
                "INSERT INTO payment_sessions (payment_id, session_id) VALUES (?,?)",
                [(p.id, sid) for sid in sorted(p.session_ids)]
            )
        return p

    def _row_to_payment(self, row) -> Payment:
        session_ids = {r['session_id'] for r in self.conn.execute(
            "SELECT session_id FROM payment_sessions WHERE payment_id=?", (row['id'],))}
        return Payment(
            family_id=row['family_id'], amount=Decimal(row['amount']), tips=Decimal(row['tips']),
            method=row['method'], status=PaymentStatus(row['status']), session_ids=session_ids,
            notes=row['notes'], paid_date=from_storage(row['paid_date']),
            invoice_number=row['invoice_number'], tax_year=row['tax_year'], id=row['id'],
        )

    def load_payment(self, payment_id: int) -> Payment:
        row = self.conn.execute("SELECT * FROM payments WHERE id=?", (payment_id,)).fetchone()
        if row is None:
            raise NotFoundError("Payment", payment_id)
        return self._row_to_payment(row)

    def load_payments(self, family_id: Optional[int] = None, tax_year: Optional[int] = None) -> List[Payment]:
        query = "SELECT * FROM payments WHERE 1=1"
        params: list = []
        if family_id is not None:
            query += " AND family_id=?"
            params.append(family_id)
        if tax_year is not None:
            query += " AND tax_year=?"
            params.append(tax_year)
        query += " ORDER BY id DESC"
        return [self._row_to_payment(r) for r in self.conn.execute(query, params).fetchall()]

    def set_payment_status(self, payment_id: int, status: PaymentStatus):
        cur = self.conn.execute("UPDATE payments SET status=? WHERE id=?", (status.value, payment_id))
        if cur.rowcount == 0:
            raise NotFoundError("Payment", payment_id)

    def count_invoices_with_prefix(self, prefix: str) -> int:
        # kein LIKE: _ und % im Präfix sind normale Zeichen
        row = self.conn.execute(
            "SELECT COUNT(*) AS n FROM payments WHERE substr(invoice_number, 1, length(?)) = ?",
            (prefix, prefix)
        ).fetchone()
        return row['n']

    def expense_totals(self, session_ids: Iterable[int]) -> Dict[int, Decimal]:
        ids = list(session_ids)
        totals = {sid: Decimal("0") for sid in ids}
        if not ids:
            return totals
        rows = self.conn.execute(
            f"SELECT session_id, amount FROM expenses WHERE session_id IN ({','.join('?' * len(ids))})", ids
        ).fetchall()
        for r in rows:
            totals[r['session_id']] += Decimal(r['amount'])
        return totals

    def close(self):
        """Schließe die Datenbankverbindung sauber"""
        if self.conn:
            self.conn.close()
            self.conn = None
