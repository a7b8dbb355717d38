import argparse
import json
import logging
import time
import sqlite3

import database
from settings import DEFAULTS

logger = logging.getLogger(__name__)


def commit_with_retry(conn, retries=6, initial_delay=0.5):
    """Attempt to commit, retrying on `sqlite3.OperationalError: database is locked`.

    Retries use exponential backoff (initial_delay * 2**attempt).
    """
    last_exc = None
    for attempt in range(retries):
        try:
            conn.commit()
            return
        except sqlite3.OperationalError as e:
            last_exc = e
            msg = str(e).lower()
            if 'locked' in msg or 'busy' in msg:
                delay = initial_delay * (2 ** attempt)
                logger.warning("Database busy, retrying commit in %.1fs", delay)
                time.sleep(delay)
                continue
            raise
    # If we exhausted retries, re-raise last exception
    raise last_exc


# (category, [(name, price, stock, barcode)])
CATALOG = [
    ("Electronics", [
        ("Smartphone Charger", 15.99, 25, "7891234567890"),
        ("Wireless Earbuds", 89.99, 8, "7891234567891"),
        ("USB Flash Drive 32GB", 19.99, 40, "7891234567892"),
        ("Bluetooth Speaker", 49.99, 6, "7891234567893"),
        ("HDMI Cable 6ft", 12.99, 30, "7891234567894"),
        ("Wireless Mouse", 24.99, 15, "7891234567895"),
    ]),
    ("Food & Beverages", [
        ("Organic Coffee Beans", 12.99, 20, "6891234567890"),
        ("Chocolate Bar", 3.99, 80, "6891234567891"),
        ("Sparkling Water", 1.99, 120, "6891234567892"),
        ("Protein Bar", 2.49, 60, "6891234567893"),
        ("Mixed Nuts 250g", 7.99, 25, "6891234567894"),
        ("Organic Green Tea", 5.99, 4, "6891234567895"),
    ]),
    ("Clothing", [
        ("Cotton T-Shirt", 19.99, 30, "5891234567890"),
        ("Denim Jeans", 49.99, 12, "5891234567891"),
        ("Wool Socks", 9.99, 45, "5891234567892"),
        ("Baseball Cap", 14.99, 18, "5891234567893"),
        ("Leather Belt", 29.99, 3, "5891234567894"),
    ]),
    ("Others", [
        # sold by hand from the grid, never scanned
        ("Gift Wrapping", 2.50, 100, None),
        ("Paper Bag", 0.50, 500, None),
    ]),
]


def seed():
    conn = database.get_connection()
    c = conn.cursor()

    for category, items in CATALOG:
        c.execute("INSERT OR IGNORE INTO categories (name) VALUES (?)", (category,))
        cat_id = c.execute("SELECT id FROM categories WHERE name = ?", (category,)).fetchone()["id"]

        for name, price, stock, barcode in items:
            exists = c.execute("SELECT 1 FROM products WHERE name = ? AND category_id = ?",
                               (name, cat_id)).fetchone()
            if exists:
                continue
            c.execute("INSERT INTO products (name, barcode, price, stock, category_id) VALUES (?, ?, ?, ?, ?)",
                      (name, barcode, price, stock, cat_id))

    # Default settings, keeping anything already configured
    for key, value in DEFAULTS.items():
        c.execute("INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)", (key, json.dumps(value)))

    # Commit with retry to handle brief locks
    try:
        commit_with_retry(conn)
    finally:
        conn.close()

    logger.info("Database seeded.")


def is_empty():
    conn = database.get_connection()
    try:
        return conn.execute('SELECT COUNT(*) AS c FROM products').fetchone()['c'] == 0
    finally:
        conn.close()


def seed_if_needed():
    if is_empty():
        logger.info('No products found in DB, seeding initial catalog...')
        seed()
        return True
    return False


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = argparse.ArgumentParser()
    parser.add_argument('--if-empty', action='store_true', help='Only seed when the catalog is empty')
    args = parser.parse_args()

    if args.if_empty:
        seed_if_needed()
    else:
        seed()
