from carebook.data import Database
from carebook.main import run_wizard


def _answers(monkeypatch, answers):
    it = iter(answers)
    monkeypatch.setattr("builtins.input", lambda prompt="": next(it))


def test_wizard_creates_schedule_and_sessions(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("HOME", str(tmp_path))
    _answers(monkeypatch, [
        "Miller",          # Familienname
        "Ava, Ben",        # Kinder
        "sit",             # Leistungs-Code
        "Babysitting",     # Name
        "20",              # Stundensatz
        "j",               # pro Kind
        "j",               # Kinder erforderlich
        "School days",     # Planname
        "weekly",          # Rhythmus
        "0,2,4",           # Mo, Mi, Fr
        "06:00",
        "14:30",
        "2024-01-01",
        "2024-01-31",
        "",                # Stundensatz der Leistung
        "abc",             # ungültiger Offset -> erneut fragen
        "-360",
        "",                # ab Startdatum
        "",                # bis Enddatum
    ])
    run_wizard()
    out = capsys.readouterr().out
    assert "14 created" in out
    assert "2024-01-01 06:00-14:30" in out
    assert "Bitte einen Offset angeben" in out

    db = Database(str(tmp_path / ".carebook" / "carebook.db"))
    try:
        assert len(db.load_sessions()) == 14
        assert db.load_service_by_code("SIT").default_hourly_rate == 20
    finally:
        db.close()


def test_wizard_reports_validation_errors(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("HOME", str(tmp_path))
    _answers(monkeypatch, [
        "Miller", "",       # keine Kinder
        "sit", "Babysitting", "20", "n", "j",
        "Plan", "WEEKLY", "0", "06:00", "14:30", "2024-01-01", "", "",
    ])
    run_wizard()
    out = capsys.readouterr().out
    assert "❌" in out
    assert "at least one child" in out
