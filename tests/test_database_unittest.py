import os
import sqlite3
import tempfile
import unittest
import sys
from unittest import mock
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
os.environ.setdefault('POS_DB_PATH', os.path.join(tempfile.gettempdir(), 'pos_terminal_test.db'))

import database
from database import DatabaseManager


class DatabaseTests(unittest.TestCase):
    def setUp(self):
        tf = tempfile.NamedTemporaryFile(delete=False)
        tf.close()
        self.db_path = tf.name

    def tearDown(self):
        for suffix in ('', '-wal', '-shm'):
            try:
                os.unlink(self.db_path + suffix)
            except OSError:
                pass

    def test_check_schema_creates_tables(self):
        mgr = DatabaseManager(db_name=self.db_path)
        conn = mgr.connect()
        cur = conn.cursor()
        cur.execute("SELECT name FROM sqlite_master WHERE type='table'")
        names = {r[0] for r in cur.fetchall()}
        expected = {'categories', 'products', 'settings', 'transactions', 'transaction_items',
                    'refunds', 'refund_items', 'stock_movements', 'audit_logs'}
        self.assertTrue(expected.issubset(names))
        conn.close()

    def test_check_schema_adds_refunded_quantity_to_old_table(self):
        conn = sqlite3.connect(self.db_path)
        conn.execute('''CREATE TABLE transaction_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            transaction_id INTEGER NOT NULL,
            product_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            barcode TEXT,
            unit_price REAL NOT NULL,
            quantity INTEGER NOT NULL,
            line_total REAL NOT NULL
        )''')
        conn.commit()
        conn.close()

        mgr = DatabaseManager(db_name=self.db_path)
        conn = mgr.connect()
        cols = [r[1] for r in conn.execute("PRAGMA table_info('transaction_items')").fetchall()]
        conn.close()
        self.assertIn('refunded_quantity', cols)

    def test_stock_cannot_go_negative(self):
        mgr = DatabaseManager(db_name=self.db_path)
        conn = mgr.connect()
        with self.assertRaises(sqlite3.IntegrityError):
            conn.execute("INSERT INTO products (name, price, stock) VALUES (?, ?, ?)", ('Bad', 1.0, -1))
        conn.close()

    def test_write_audit_inserts_row(self):
        mgr = DatabaseManager(db_name=self.db_path)
        with mock.patch.object(database, 'db', mgr):
            database.write_audit('sale', 'INV000001 total=10.00')
        conn = mgr.connect()
        row = conn.execute("SELECT event_type, detail FROM audit_logs").fetchone()
        conn.close()
        self.assertEqual(row['event_type'], 'sale')
        self.assertEqual(row['detail'], 'INV000001 total=10.00')

    def test_write_audit_failure_is_logged_not_raised(self):
        with mock.patch.object(database, 'get_connection', side_effect=sqlite3.OperationalError('disk I/O error')):
            with self.assertLogs('database', level='ERROR'):
                database.write_audit('sale', 'x')


if __name__ == '__main__':
    unittest.main()
