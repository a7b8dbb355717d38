import os
import shutil
import tempfile
import unittest
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
os.environ.setdefault('POS_DB_PATH', os.path.join(tempfile.gettempdir(), 'pos_terminal_test.db'))

from PIL import Image

from models import Transaction, TransactionItem
from receipt import ReceiptGenerator, build_receipt
from settings import Settings


def make_transaction(tax_type='added', discount_type='percentage'):
    items = [
        TransactionItem(1, 1, 'Cola', 10.0, 2, 20.0, barcode='123'),
        TransactionItem(2, 2, 'A very long product name that has to wrap on the receipt', 2.5, 1, 2.5),
    ]
    return Transaction(
        1, 'INV000001', items, 22.5, 2.25, 4.05, 24.3, 'cash', 30.0, 5.7, '2024-01-05 10:30:00',
        discount_type=discount_type, discount_value=10.0, tax_name='VAT', tax_rate=20.0, tax_type=tax_type,
    )


class ReceiptTests(unittest.TestCase):
    def setUp(self):
        self.settings = Settings(store_name='Corner Shop', store_phone='0522 000 000')

    def test_build_receipt(self):
        receipt = build_receipt(make_transaction(), self.settings)
        self.assertEqual(receipt['receipt_id'], 'INV000001')
        self.assertEqual(receipt['timestamp'], '2024-01-05 10:30:00')
        self.assertEqual(receipt['store']['name'], 'Corner Shop')
        self.assertEqual(receipt['currency'], 'MAD')
        self.assertEqual(len(receipt['items']), 2)
        self.assertEqual(receipt['items'][0], {'name': 'Cola', 'quantity': 2, 'unit_price': 10.0, 'line_total': 20.0})
        self.assertEqual(receipt['discount'], {'type': 'percentage', 'value': 10.0, 'amount': 2.25})
        self.assertEqual(receipt['tax']['name'], 'VAT')
        self.assertEqual(receipt['change'], 5.7)

    def test_summary_lines(self):
        lines = ReceiptGenerator.summary_lines(build_receipt(make_transaction(), self.settings))
        self.assertEqual(lines, [
            ('Subtotal', 'MAD 22.50'),
            ('Discount (10%)', '-MAD 2.25'),
            ('VAT (20%)', 'MAD 4.05'),
            ('Total', 'MAD 24.30'),
        ])

    def test_summary_lines_included_and_disabled_tax(self):
        included = ReceiptGenerator.summary_lines(build_receipt(make_transaction('included', 'flat'), self.settings))
        self.assertIn(('VAT (20%) incl.', 'MAD 4.05'), included)
        self.assertIn(('Discount', '-MAD 2.25'), included)

        disabled = ReceiptGenerator.summary_lines(build_receipt(make_transaction('disabled'), self.settings))
        self.assertEqual([label for label, _ in disabled], ['Subtotal', 'Discount (10%)', 'Total'])

    def test_generate_png(self):
        out = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, out, True)
        path = ReceiptGenerator.generate(build_receipt(make_transaction(), self.settings), output_dir=out)
        self.assertEqual(path, os.path.join(out, 'INV000001.png'))
        with Image.open(path) as img:
            self.assertEqual(img.width, 800)
            self.assertEqual(img.mode, 'RGB')


if __name__ == '__main__':
    unittest.main()
