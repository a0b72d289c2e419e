import json
import logging
import os

DEFAULTS = {
    'db_path': None,
    'currency_symbol': '$',
    'invoice_prefix': 'INV',
    'log_level': 'INFO',
    'log_file': None,
}


def _config_path(base_dir: str = None):
    base = base_dir or os.path.join(os.path.expanduser('~'), '.carebook')
    os.makedirs(base, exist_ok=True)
    return os.path.join(base, 'carebook_config.json')


def load_config(base_dir: str = None) -> dict:
    """Konfiguration lesen; fehlende Schlüssel oder kaputte Datei -> Standardwerte."""
    path = _config_path(base_dir)
    cfg = dict(DEFAULTS)
    if not os.path.exists(path):
        return cfg
    try:
        with open(path, 'r', encoding='utf-8') as f:
            stored = json.load(f)
    except (OSError, ValueError) as e:
        logging.warning(f"Ignoring unreadable config {path}: {e}")
        return cfg
    if isinstance(stored, dict):
        cfg.update(stored)
    return cfg


def save_config(cfg: dict, base_dir: str = None):
    path = _config_path(base_dir)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(cfg, f, ensure_ascii=False, indent=2)


def setup_logging(cfg: dict):
    level = getattr(logging, str(cfg.get('log_level') or 'INFO').upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        filename=cfg.get('log_file') or None,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
