import os
import sqlite3
import tempfile
import unittest
import sys
from unittest import mock
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
os.environ.setdefault('POS_DB_PATH', os.path.join(tempfile.gettempdir(), 'pos_terminal_test.db'))

import database
import services
from database import DatabaseManager
from errors import (
    AlreadyRefundedError,
    ConflictError,
    InvalidQuantityError,
    MissingReasonError,
    NotFoundError,
    NothingToRefundError,
    PersistenceError,
    ValidationError,
)
from models import TaxConfig
from products import add_product, get_product
from settings import Settings, update_settings
from transactions import get_refunds, get_transaction_by_receipt_id


class RefundTestCase(unittest.TestCase):
    tax = TaxConfig('disabled')

    def setUp(self):
        tf = tempfile.NamedTemporaryFile(delete=False)
        tf.close()
        self.db_path = tf.name
        self.mgr = DatabaseManager(db_name=self.db_path)
        patcher = mock.patch.object(database, 'db', self.mgr)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.cola_id = add_product('Cola', 10.0, 5, barcode='123')
        self.chips_id = add_product('Chips', 2.5, 10, barcode='456')
        self.receipt_id = self._sell({self.cola_id: 2})
        self.service = services.RefundService()

    def tearDown(self):
        for suffix in ('', '-wal', '-shm'):
            try:
                os.unlink(self.db_path + suffix)
            except OSError:
                pass

    def _sell(self, quantities):
        cart_service = services.CartService()
        for product_id, qty in quantities.items():
            for _ in range(qty):
                cart_service.add_to_cart(product_id)
        result = services.CheckoutService(settings=Settings()).checkout(cart_service.cart, self.tax, 'card')
        return result.transaction.receipt_id


class RefundServiceTests(RefundTestCase):
    def test_unknown_receipt(self):
        with self.assertRaises(NotFoundError):
            self.service.find_by_receipt_id('INV999999')
        with self.assertRaises(ValidationError):
            self.service.find_by_receipt_id('  ')

    def test_lookup_failure_is_persistence_error(self):
        with mock.patch.object(services, 'get_transaction_by_receipt_id',
                               side_effect=sqlite3.OperationalError('disk I/O error')):
            with self.assertRaises(PersistenceError):
                self.service.find_by_receipt_id(self.receipt_id)

    def test_candidate_defaults_to_full_quantity(self):
        tx = self.service.find_by_receipt_id(self.receipt_id.lower())
        candidate = self.service.build_candidate(tx)
        item = candidate.items[0]
        self.assertEqual((item.quantity, item.max_quantity), (2, 2))
        self.assertTrue(item.return_to_stock)
        self.assertAlmostEqual(candidate.refund_amount(), 20.0)

    def test_partial_refund_restores_stock(self):
        tx = self.service.find_by_receipt_id(self.receipt_id)
        candidate = self.service.build_candidate(tx)
        item_id = candidate.items[0].item_id
        candidate.adjust_quantity(item_id, 1)

        result = self.service.execute(candidate, 'Damaged')

        self.assertTrue(result.ok)
        self.assertFalse(result.fully_refunded)
        self.assertAlmostEqual(result.refund.refund_amount, 10.0)
        self.assertEqual(get_product(self.cola_id).stock, 4)

        stored = get_transaction_by_receipt_id(self.receipt_id)
        self.assertFalse(stored.refunded)
        self.assertEqual(stored.items[0].refunded_quantity, 1)

        refunds = get_refunds(stored.id)
        self.assertEqual(len(refunds), 1)
        self.assertEqual(refunds[0].reason, 'Damaged')
        self.assertEqual(refunds[0].items[0].quantity, 1)

    def test_remaining_quantity_can_be_refunded_later(self):
        tx = self.service.find_by_receipt_id(self.receipt_id)
        candidate = self.service.build_candidate(tx)
        candidate.adjust_quantity(candidate.items[0].item_id, 1)
        self.service.execute(candidate, 'Damaged')

        tx = self.service.find_by_receipt_id(self.receipt_id)
        candidate = self.service.build_candidate(tx)
        self.assertEqual(candidate.items[0].max_quantity, 1)
        result = self.service.execute(candidate, 'Changed mind')

        self.assertTrue(result.fully_refunded)
        self.assertEqual(get_product(self.cola_id).stock, 5)
        with self.assertRaises(AlreadyRefundedError):
            self.service.find_by_receipt_id(self.receipt_id)

    def test_full_refund_blocks_second_attempt(self):
        tx = self.service.find_by_receipt_id(self.receipt_id)
        result = self.service.execute(self.service.build_candidate(tx), 'Wrong item')
        self.assertTrue(result.fully_refunded)
        with self.assertRaises(AlreadyRefundedError):
            self.service.find_by_receipt_id(self.receipt_id)

    def test_stale_candidate_is_rejected(self):
        tx = self.service.find_by_receipt_id(self.receipt_id)
        first = self.service.build_candidate(tx)
        second = self.service.build_candidate(tx)
        self.service.execute(first, 'Wrong item')
        with self.assertRaises(ConflictError):
            self.service.execute(second, 'Wrong item')
        self.assertEqual(get_product(self.cola_id).stock, 5)

    def test_adjust_quantity_clamps(self):
        tx = self.service.find_by_receipt_id(self.receipt_id)
        candidate = self.service.build_candidate(tx)
        item_id = candidate.items[0].item_id
        self.assertEqual(candidate.adjust_quantity(item_id, 5), 2)
        self.assertEqual(candidate.adjust_quantity(item_id, -1), 0)
        with self.assertRaises(InvalidQuantityError):
            candidate.adjust_quantity(item_id, 1.5)
        with self.assertRaises(NotFoundError):
            candidate.adjust_quantity(999, 1)

    def test_reason_and_selection_required(self):
        tx = self.service.find_by_receipt_id(self.receipt_id)
        candidate = self.service.build_candidate(tx)
        with self.assertRaises(MissingReasonError):
            self.service.execute(candidate, '   ')
        candidate.adjust_quantity(candidate.items[0].item_id, 0)
        with self.assertRaises(NothingToRefundError):
            self.service.execute(candidate, 'Damaged')
        self.assertEqual(get_refunds(tx.id), [])

    def test_item_kept_out_of_stock(self):
        tx = self.service.find_by_receipt_id(self.receipt_id)
        candidate = self.service.build_candidate(tx)
        candidate.set_return_to_stock(candidate.items[0].item_id, False)
        self.service.execute(candidate, 'Damaged')
        self.assertEqual(get_product(self.cola_id).stock, 3)

    def test_stock_restore_failure_is_reported(self):
        tx = self.service.find_by_receipt_id(self.receipt_id)
        candidate = self.service.build_candidate(tx)
        with mock.patch.object(services, 'adjust_stock', side_effect=sqlite3.OperationalError('locked')):
            result = self.service.execute(candidate, 'Damaged')
        self.assertFalse(result.ok)
        self.assertEqual(len(result.stock_warnings), 1)
        self.assertEqual(len(get_refunds(tx.id)), 1)

    def test_save_failure_writes_nothing(self):
        tx = self.service.find_by_receipt_id(self.receipt_id)
        candidate = self.service.build_candidate(tx)
        with mock.patch.object(services, 'process_refund', side_effect=sqlite3.OperationalError('locked')):
            with self.assertRaises(PersistenceError):
                self.service.execute(candidate, 'Damaged')
        self.assertEqual(get_product(self.cola_id).stock, 3)


class RefundTaxTests(RefundTestCase):
    tax = TaxConfig('added', 20.0, 'VAT')

    def test_refund_includes_tax_charged_on_sale(self):
        # later settings changes must not affect the refund
        update_settings(tax_rate=5.0, tax_type='included')
        tx = self.service.find_by_receipt_id(self.receipt_id)
        candidate = self.service.build_candidate(tx)
        candidate.adjust_quantity(candidate.items[0].item_id, 1)
        self.assertAlmostEqual(candidate.refund_amount(), 12.0)


class RefundFlowTests(RefundTestCase):
    def test_happy_path(self):
        flow = services.RefundFlow()
        self.assertTrue(flow.search(self.receipt_id))
        self.assertEqual(flow.state, services.REVIEW)
        item_id = flow.candidate.items[0].item_id
        self.assertTrue(flow.adjust_quantity(item_id, 1))
        self.assertAlmostEqual(flow.refund_amount, 10.0)
        self.assertTrue(flow.confirm(' Damaged '))
        self.assertEqual(flow.state, services.CONFIRM)
        self.assertTrue(flow.submit())
        self.assertEqual(flow.state, services.SUCCESS)
        self.assertEqual(flow.result.refund.reason, 'Damaged')
        self.assertFalse(flow.cancel())

    def test_search_failure_moves_to_error(self):
        flow = services.RefundFlow()
        self.assertFalse(flow.search('INV404404'))
        self.assertEqual(flow.state, services.ERROR)
        self.assertTrue(flow.error)
        self.assertTrue(flow.search(self.receipt_id))
        self.assertIsNone(flow.error)

    def test_confirm_requires_reason(self):
        flow = services.RefundFlow()
        flow.search(self.receipt_id)
        self.assertFalse(flow.confirm(''))
        self.assertEqual(flow.state, services.REVIEW)
        self.assertEqual(flow.error, MissingReasonError().message)

    def test_editing_after_confirm_returns_to_review(self):
        flow = services.RefundFlow()
        flow.search(self.receipt_id)
        flow.confirm('Damaged')
        flow.set_return_to_stock(flow.candidate.items[0].item_id, False)
        self.assertEqual(flow.state, services.REVIEW)

    def test_submit_out_of_order(self):
        flow = services.RefundFlow()
        with self.assertRaises(ConflictError):
            flow.submit()

    def test_submit_failure_keeps_review(self):
        flow = services.RefundFlow()
        flow.search(self.receipt_id)
        flow.confirm('Damaged')
        with mock.patch.object(services, 'process_refund', side_effect=sqlite3.OperationalError('locked')):
            self.assertFalse(flow.submit())
        self.assertEqual(flow.state, services.ERROR)
        self.assertIsNotNone(flow.candidate)
        self.assertTrue(flow.submit())
        self.assertEqual(flow.state, services.SUCCESS)

    def test_open_refunded_transaction(self):
        tx = get_transaction_by_receipt_id(self.receipt_id)
        services.RefundService().execute(services.RefundCandidate(tx), 'Damaged')
        flow = services.RefundFlow()
        self.assertFalse(flow.open(get_transaction_by_receipt_id(self.receipt_id)))
        self.assertEqual(flow.state, services.ERROR)

    def test_cancel_resets(self):
        flow = services.RefundFlow()
        flow.search(self.receipt_id)
        self.assertTrue(flow.cancel())
        self.assertEqual(flow.state, services.SEARCH)
        self.assertIsNone(flow.candidate)

    def test_back_from_confirm(self):
        flow = services.RefundFlow()
        flow.search(self.receipt_id)
        flow.confirm('Damaged')
        flow.back()
        self.assertEqual(flow.state, services.REVIEW)
        self.assertTrue(flow.confirm('Damaged'))

    def test_new_search_after_success(self):
        flow = services.RefundFlow()
        flow.search(self.receipt_id)
        flow.adjust_quantity(flow.candidate.items[0].item_id, 1)
        flow.confirm('Damaged')
        self.assertTrue(flow.submit())
        self.assertTrue(flow.search(self.receipt_id))
        self.assertEqual(flow.state, services.REVIEW)
        self.assertEqual(flow.candidate.items[0].max_quantity, 1)

    def test_submit_after_failed_search_returns_false(self):
        flow = services.RefundFlow()
        self.assertFalse(flow.search('INV404404'))
        self.assertFalse(flow.submit())
        self.assertEqual(flow.state, services.ERROR)
        self.assertTrue(flow.error)


if __name__ == '__main__':
    unittest.main()
