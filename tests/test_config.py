import json
import logging

from carebook.config import DEFAULTS, load_config, save_config, setup_logging


def test_defaults_without_file(tmp_path):
    assert load_config(str(tmp_path)) == DEFAULTS


def test_save_and_load_merges_defaults(tmp_path):
    save_config({'currency_symbol': '€', 'invoice_prefix': 'CB'}, str(tmp_path))
    cfg = load_config(str(tmp_path))
    assert cfg['currency_symbol'] == '€'
    assert cfg['invoice_prefix'] == 'CB'
    assert cfg['log_level'] == 'INFO'
    stored = json.loads((tmp_path / 'carebook_config.json').read_text(encoding='utf-8'))
    assert stored == {'currency_symbol': '€', 'invoice_prefix': 'CB'}


def test_broken_file_falls_back(tmp_path, caplog):
    (tmp_path / 'carebook_config.json').write_text("{kaputt", encoding='utf-8')
    with caplog.at_level(logging.WARNING):
        assert load_config(str(tmp_path)) == DEFAULTS
    assert "Ignoring unreadable config" in caplog.text


def test_setup_logging_passes_level_and_file(monkeypatch):
    seen = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kw: seen.update(kw))
    setup_logging({'log_level': 'debug', 'log_file': '/tmp/carebook.log'})
    assert seen['level'] == logging.DEBUG
    assert seen['filename'] == '/tmp/carebook.log'

    setup_logging({'log_level': 'nonsense'})
    assert seen['level'] == logging.INFO
    assert seen['filename'] is None
