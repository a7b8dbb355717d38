"""Terminal settings stored in the ``settings`` table.

Each key holds a JSON value; keys that were never saved fall back to
``DEFAULTS``.
"""
import copy
import json
import logging

from database import get_connection
from models import TaxConfig, TAX_TYPES, PAYMENT_METHODS

logger = logging.getLogger(__name__)

DEFAULTS = {
    "currency": "MAD",
    "tax_rate": 0.0,
    "tax_type": "added",
    "tax_name": "Tax",
    "low_stock_threshold": 5,
    "payment_methods": {"cash": True, "card": True},
    "use_num_pad": False,
    "store_name": "My POS Store",
    "store_address": "",
    "store_phone": "",
    "receipt_message": "Thank you for your purchase!",
}


class Settings:
    def __init__(self, **values):
        merged = copy.deepcopy(DEFAULTS)
        merged.update(values)
        for key, value in merged.items():
            setattr(self, key, value)

    def tax_config(self):
        return TaxConfig(type=self.tax_type, rate=float(self.tax_rate or 0), name=self.tax_name or "Tax")

    def payment_enabled(self, method):
        return bool((self.payment_methods or {}).get(method))

    def as_dict(self):
        return {key: getattr(self, key) for key in DEFAULTS}


def get_settings():
    conn = get_connection()
    try:
        rows = conn.execute("SELECT key, value FROM settings").fetchall()
    finally:
        conn.close()

    values = {}
    for r in rows:
        if r["key"] not in DEFAULTS:
            logger.debug("Ignoring unknown setting %s", r["key"])
            continue
        values[r["key"]] = json.loads(r["value"])
    return Settings(**values)


def update_settings(**changes):
    unknown = set(changes) - set(DEFAULTS)
    if unknown:
        raise KeyError(f"Unknown settings: {', '.join(sorted(unknown))}")
    if "tax_type" in changes and changes["tax_type"] not in TAX_TYPES:
        raise ValueError(f"tax_type must be one of {TAX_TYPES}")
    if "tax_rate" in changes and float(changes["tax_rate"]) < 0:
        raise ValueError("tax_rate must not be negative")
    if "payment_methods" in changes:
        bad = set(changes["payment_methods"]) - set(PAYMENT_METHODS)
        if bad:
            raise ValueError(f"Unknown payment methods: {', '.join(sorted(bad))}")

    conn = get_connection()
    try:
        for key, value in changes.items():
            conn.execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                         (key, json.dumps(value)))
        conn.commit()
    finally:
        conn.close()
    return get_settings()
