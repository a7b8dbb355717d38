import logging
import sqlite3
import os
from datetime import datetime

logger = logging.getLogger(__name__)

# Use a DB file located next to this module so the terminal uses a consistent
# database file regardless of the current working directory when launched.
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DB_NAME = os.environ.get("POS_DB_PATH") or os.path.join(BASE_DIR, "pos_terminal.db")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def now_str():
    return datetime.now().strftime(TIMESTAMP_FORMAT)


class DatabaseManager:
    def __init__(self, db_name=DB_NAME):
        self.db_name = db_name
        self.check_schema()

    def connect(self):
        # Wait for locks instead of failing fast; keep default check_same_thread.
        conn = sqlite3.connect(self.db_name, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute('PRAGMA foreign_keys = ON')
        return conn

    def check_schema(self):
        conn = self.connect()
        c = conn.cursor()
        # WAL lets the reporting side read while a sale is being written
        c.execute('PRAGMA journal_mode=WAL')
        c.execute('PRAGMA busy_timeout = 30000')

        # Categories
        c.execute('''CREATE TABLE IF NOT EXISTS categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE
        )''')

        # Products
        c.execute('''CREATE TABLE IF NOT EXISTS products (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            barcode TEXT UNIQUE,
            price REAL NOT NULL CHECK (price >= 0),
            stock INTEGER NOT NULL CHECK (stock >= 0),
            category_id INTEGER,
            active INTEGER DEFAULT 1,
            FOREIGN KEY(category_id) REFERENCES categories(id)
        )''')

        # Settings (one JSON value per key)
        c.execute('''CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )''')

        # Transactions
        c.execute('''CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            receipt_id TEXT UNIQUE,
            created_at TEXT NOT NULL,
            subtotal REAL NOT NULL,
            discount_amount REAL NOT NULL DEFAULT 0,
            discount_type TEXT,
            discount_value REAL NOT NULL DEFAULT 0,
            tax_amount REAL NOT NULL DEFAULT 0,
            tax_name TEXT,
            tax_rate REAL NOT NULL DEFAULT 0,
            tax_type TEXT NOT NULL,
            total REAL NOT NULL,
            payment_method TEXT NOT NULL,
            payment_amount REAL NOT NULL,
            change REAL NOT NULL DEFAULT 0,
            refunded INTEGER DEFAULT 0
        )''')

        # Transaction Items (snapshot of the cart at sale time)
        c.execute('''CREATE TABLE IF NOT EXISTS transaction_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            transaction_id INTEGER NOT NULL,
            product_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            barcode TEXT,
            unit_price REAL NOT NULL,
            quantity INTEGER NOT NULL CHECK (quantity >= 1),
            line_total REAL NOT NULL,
            refunded_quantity INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(transaction_id) REFERENCES transactions(id)
        )''')

        # Refunds
        c.execute('''CREATE TABLE IF NOT EXISTS refunds (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            transaction_id INTEGER NOT NULL,
            receipt_id TEXT NOT NULL,
            reason TEXT NOT NULL,
            refund_amount REAL NOT NULL,
            payment_method TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY(transaction_id) REFERENCES transactions(id)
        )''')

        c.execute('''CREATE TABLE IF NOT EXISTS refund_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            refund_id INTEGER NOT NULL,
            transaction_item_id INTEGER NOT NULL,
            product_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            unit_price REAL NOT NULL,
            quantity INTEGER NOT NULL CHECK (quantity >= 1),
            return_to_stock INTEGER NOT NULL DEFAULT 1,
            FOREIGN KEY(refund_id) REFERENCES refunds(id),
            FOREIGN KEY(transaction_item_id) REFERENCES transaction_items(id)
        )''')

        # Stock Movements
        c.execute('''CREATE TABLE IF NOT EXISTS stock_movements (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            product_id INTEGER NOT NULL,
            change INTEGER NOT NULL,
            reason TEXT NOT NULL,
            reference TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY(product_id) REFERENCES products(id)
        )''')

        # Audit logs for sales, refunds and partial failures
        c.execute('''CREATE TABLE IF NOT EXISTS audit_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            event_type TEXT NOT NULL,
            detail TEXT,
            created_at TEXT NOT NULL
        )''')

        # Older terminals created transaction_items before partial refunds existed
        existing = [r[1] for r in c.execute("PRAGMA table_info('transaction_items')").fetchall()]
        if 'refunded_quantity' not in existing:
            c.execute('ALTER TABLE transaction_items ADD COLUMN refunded_quantity INTEGER NOT NULL DEFAULT 0')

        conn.commit()
        conn.close()


db = DatabaseManager()


def get_connection():
    return db.connect()


def write_audit(event_type, detail):
    """Write a row into audit_logs.

    Audit rows record what happened at the till; a failure to write one is
    logged and never masks the result of the operation being audited.
    """
    try:
        conn = get_connection()
        try:
            conn.execute("INSERT INTO audit_logs (event_type, detail, created_at) VALUES (?, ?, ?)",
                         (event_type, detail, now_str()))
            conn.commit()
        finally:
            conn.close()
    except sqlite3.Error:
        logger.exception("Could not write audit log entry %s: %s", event_type, detail)
