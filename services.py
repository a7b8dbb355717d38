import logging
import sqlite3

from cart import Cart
from database import write_audit
from errors import (
    AlreadyRefundedError,
    ConflictError,
    EmptyCartError,
    InsufficientPaymentError,
    InvalidPaymentMethodError,
    InvalidQuantityError,
    MissingReasonError,
    NotFoundError,
    NothingToRefundError,
    OutOfStockError,
    PersistenceError,
    PosError,
    ValidationError,
)
from models import Transaction, TransactionItem, Refund, RefundItem, PAYMENT_CARD, PAYMENT_METHODS, TAX_ADDED
from pricing import calculate_totals, is_payment_sufficient, to_money
from products import (
    adjust_stock,
    get_categories,
    get_low_stock_products,
    get_product,
    get_product_by_barcode,
    get_products,
    update_product_stock,
)
from settings import get_settings
from transactions import (
    create_transaction,
    get_transaction_by_receipt_id,
    mark_refunded_if_complete,
    process_refund,
)

logger = logging.getLogger(__name__)


#Product Service
class ProductService:

    def get_all_products(self, category_id=None, search=None):
        return get_products(category_id=category_id, search=search)

    def get_categories(self):
        return get_categories()

    def get_product_by_id(self, id):
        return get_product(id)

    def get_product_by_barcode(self, barcode):
        return get_product_by_barcode(barcode)

    def get_low_stock(self, threshold):
        return get_low_stock_products(threshold)


#Cart service
class CartService:
    """Cart operations addressed by product id or scanned barcode."""

    def __init__(self, cart=None):
        self.cart = cart or Cart()

    def add_to_cart(self, product_id):
        product = get_product(product_id)
        if product is None or not product.active:
            raise NotFoundError(f"Product {product_id} not found")
        return self.cart.add(product)

    def scan(self, barcode):
        barcode = (barcode or "").strip()
        if not barcode:
            raise ValidationError("Please scan or enter a barcode")
        product = get_product_by_barcode(barcode)
        if product is None:
            raise NotFoundError(f"Product with barcode {barcode} not found")
        return self.cart.add(product, origin_verified_barcode=True)

    def set_quantity(self, product_id, quantity):
        return self.cart.set_quantity(product_id, quantity)

    def remove_from_cart(self, product_id):
        self.cart.remove(product_id)

    def clear_cart(self):
        self.cart.clear()

    def apply_discount(self, type, value):
        return self.cart.apply_discount(type, value)

    def reload_products(self):
        self.cart.refresh_products(get_products())

    def get_items(self):
        return self.cart.lines

    def get_totals(self, tax, payment_amount=None):
        return self.cart.totals(tax, payment_amount)


#Check-out service
class CheckoutResult:
    def __init__(self, transaction, pricing, stock_warnings=(), low_stock=()):
        self.transaction = transaction
        self.pricing = pricing
        self.stock_warnings = list(stock_warnings)
        self.low_stock = list(low_stock)

    @property
    def ok(self):
        return not self.stock_warnings


class CheckoutService:
    """Turns the open cart into a persisted sale.

    Nothing is written until every check passes. Once the sale row is saved it
    is never rolled back: stock decrements that fail afterwards are reported
    on the result as warnings and recorded in the audit log.
    """

    def __init__(self, settings=None):
        self.settings = settings

    def _settings(self):
        return self.settings if self.settings is not None else get_settings()

    def validate(self, cart, tax, payment_method, payment_amount=None, settings=None):
        """Run every pre-persistence check and return the pricing snapshot."""
        settings = settings or self._settings()
        if cart.is_empty:
            raise EmptyCartError()
        if payment_method not in PAYMENT_METHODS or not settings.payment_enabled(payment_method):
            raise InvalidPaymentMethodError(f"Payment method '{payment_method}' is not available")

        snapshot = calculate_totals(cart.lines, cart.discount, tax)
        if payment_method == PAYMENT_CARD:
            # card payments are always exact
            payment_amount = snapshot.total
        if payment_amount is None or not is_payment_sufficient(payment_amount, snapshot.total):
            raise InsufficientPaymentError(
                f"Payment amount is insufficient: {to_money(payment_amount or 0):.2f} < {to_money(snapshot.total):.2f}"
            )

        for line in cart.lines:
            try:
                product = get_product(line.product_id)
            except sqlite3.Error as e:
                raise PersistenceError(f"Could not read stock for {line.name}: {e}") from e
            if product is None:
                raise OutOfStockError(f"{line.name} is no longer available")
            if line.quantity > product.stock:
                raise OutOfStockError(f"Only {product.stock} of {line.name} left in stock")

        snapshot = calculate_totals(cart.lines, cart.discount, tax, payment_amount)
        # payment already covers the total to the cent
        snapshot.change = max(0.0, to_money(snapshot.change))
        return snapshot

    def checkout(self, cart, tax, payment_method, payment_amount=None, settings=None):
        settings = settings or self._settings()
        snapshot = self.validate(cart, tax, payment_method, payment_amount, settings)

        items = [{
            "product_id": line.product_id,
            "name": line.name,
            "barcode": line.barcode,
            "price": line.price,
            "quantity": line.quantity,
        } for line in cart.lines]
        discount = cart.discount
        data = {
            "items": items,
            "subtotal": snapshot.subtotal,
            "discount_amount": snapshot.discount_amount,
            "discount_type": discount.type if discount and snapshot.discount_amount else None,
            "discount_value": discount.value if discount else 0,
            "tax_amount": snapshot.tax_amount,
            "tax_name": tax.name,
            "tax_rate": tax.rate,
            "tax_type": tax.type,
            "total": snapshot.total,
            "payment_method": payment_method,
            "payment_amount": snapshot.payment_amount,
            "change": snapshot.change,
        }

        try:
            saved = create_transaction(data)
        except sqlite3.Error as e:
            logger.error("Transaction save failed; cart left intact: %s", e)
            raise PersistenceError(f"Transaction failed: {e}") from e

        receipt_id = saved["receipt_id"]
        transaction = Transaction(
            saved["id"], receipt_id,
            [TransactionItem(item_id, it["product_id"], it["name"], it["price"], it["quantity"],
                             it["price"] * it["quantity"], barcode=it["barcode"])
             for item_id, it in zip(saved["item_ids"], items)],
            snapshot.subtotal, snapshot.discount_amount, snapshot.tax_amount, snapshot.total,
            payment_method, snapshot.payment_amount, snapshot.change, saved.get("created_at"),
            discount_type=data["discount_type"], discount_value=data["discount_value"],
            tax_name=tax.name, tax_rate=tax.rate, tax_type=tax.type,
        )
        logger.info("Sale %s saved: total %.2f via %s", receipt_id, snapshot.total, payment_method)
        write_audit("sale", f"{receipt_id} total={to_money(snapshot.total):.2f} method={payment_method}")

        acks = update_product_stock(
            [{"product_id": it["product_id"], "quantity": it["quantity"]} for it in items],
            reason="sale", reference=receipt_id,
        )
        warnings = []
        for ack in acks:
            if not ack["success"]:
                msg = f"Stock not updated for product {ack['product_id']}: {ack['message']}"
                warnings.append(msg)
                logger.warning("Sale %s: %s", receipt_id, msg)
                write_audit("sale_stock_failure", f"{receipt_id}: {msg}")

        cart.clear()

        sold = {it["product_id"] for it in items}
        try:
            low_stock = [p for p in get_low_stock_products(settings.low_stock_threshold) if p.id in sold]
        except sqlite3.Error:
            logger.exception("Low stock check failed after sale %s", receipt_id)
            low_stock = []
        for p in low_stock:
            logger.info("Low stock: %s has %d left", p.name, p.stock)

        return CheckoutResult(transaction, snapshot, warnings, low_stock)


#Refund service
class RefundCandidateItem:
    def __init__(self, item):
        self.item_id = item.id
        self.product_id = item.product_id
        self.name = item.name
        self.unit_price = item.unit_price
        self.max_quantity = item.refundable_quantity
        self.quantity = self.max_quantity
        self.return_to_stock = True


class RefundCandidate:
    """The editable list of items a cashier is about to refund."""

    def __init__(self, transaction):
        self.transaction = transaction
        self.items = [RefundCandidateItem(item) for item in transaction.items]

    def item(self, item_id):
        for it in self.items:
            if it.item_id == item_id:
                return it
        raise NotFoundError(f"Item {item_id} is not part of receipt {self.transaction.receipt_id}")

    def adjust_quantity(self, item_id, quantity):
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidQuantityError(f"Quantity must be a whole number, got {quantity!r}")
        it = self.item(item_id)
        it.quantity = max(0, min(quantity, it.max_quantity))
        return it.quantity

    def set_return_to_stock(self, item_id, value):
        self.item(item_id).return_to_stock = bool(value)

    @property
    def selected_items(self):
        return [it for it in self.items if it.quantity > 0]

    def refund_amount(self):
        amount = sum(it.unit_price * it.quantity for it in self.selected_items)
        # tax as charged on the original sale, not the current settings
        tx = self.transaction
        if tx.tax_type == TAX_ADDED and (tx.tax_rate or 0) > 0:
            amount += amount * (tx.tax_rate / 100)
        return to_money(amount)


class RefundResult:
    def __init__(self, refund, stock_warnings=(), fully_refunded=False):
        self.refund = refund
        self.stock_warnings = list(stock_warnings)
        self.fully_refunded = fully_refunded

    @property
    def ok(self):
        return not self.stock_warnings


class RefundService:

    def find_by_receipt_id(self, receipt_id):
        if not (receipt_id or "").strip():
            raise ValidationError("Please enter a receipt ID")
        try:
            transaction = get_transaction_by_receipt_id(receipt_id)
        except sqlite3.Error as e:
            raise PersistenceError(f"An error occurred while searching for the receipt: {e}") from e
        if transaction is None:
            raise NotFoundError(f"Receipt {receipt_id} not found")
        self.check_refundable(transaction)
        return transaction

    def check_refundable(self, transaction):
        if transaction.refunded or transaction.refundable_quantity <= 0:
            raise AlreadyRefundedError(f"Transaction {transaction.receipt_id} has already been refunded")

    def build_candidate(self, transaction):
        return RefundCandidate(transaction)

    def execute(self, candidate, reason):
        selected = candidate.selected_items
        if not selected:
            raise NothingToRefundError()
        reason = (reason or "").strip()
        if not reason:
            raise MissingReasonError()

        tx = candidate.transaction
        amount = candidate.refund_amount()
        data = {
            "transaction_id": tx.id,
            "receipt_id": tx.receipt_id,
            "reason": reason,
            "refund_amount": amount,
            "payment_method": tx.payment_method,
            "items": [{
                "transaction_item_id": it.item_id,
                "product_id": it.product_id,
                "name": it.name,
                "unit_price": it.unit_price,
                "quantity": it.quantity,
                "return_to_stock": it.return_to_stock,
            } for it in selected],
        }

        try:
            saved = process_refund(data)
        except sqlite3.Error as e:
            logger.error("Refund save failed for %s: %s", tx.receipt_id, e)
            raise PersistenceError(f"Failed to process refund: {e}") from e
        if not saved["success"]:
            raise ConflictError(saved.get("message") or "Failed to process refund")

        logger.info("Refund %s saved for %s: %.2f", saved["refund_id"], tx.receipt_id, amount)
        write_audit("refund", f"{tx.receipt_id} refund={amount:.2f} reason={reason}")

        warnings = []
        for it in selected:
            if not it.return_to_stock:
                continue
            try:
                adjust_stock(it.product_id, it.quantity, "refund", reference=tx.receipt_id)
            except (LookupError, sqlite3.Error) as e:
                msg = f"Stock not restored for {it.name}: {e}"
                warnings.append(msg)
                logger.warning("Refund %s: %s", tx.receipt_id, msg)
                write_audit("refund_stock_failure", f"{tx.receipt_id}: {msg}")

        fully_refunded = False
        try:
            fully_refunded = mark_refunded_if_complete(tx.id)
        except sqlite3.Error as e:
            msg = f"Refund status not updated: {e}"
            warnings.append(msg)
            logger.warning("Refund %s: %s", tx.receipt_id, msg)
            write_audit("refund_status_failure", f"{tx.receipt_id}: {msg}")

        refund = Refund(
            saved["refund_id"], tx.id, tx.receipt_id,
            [RefundItem(it.item_id, it.product_id, it.name, it.unit_price, it.quantity, it.return_to_stock)
             for it in selected],
            reason, amount, saved.get("created_at"), payment_method=tx.payment_method,
        )
        return RefundResult(refund, warnings, fully_refunded)


#Refund flow states
SEARCH = "search"
REVIEW = "review"
CONFIRM = "confirm"
SUCCESS = "success"
ERROR = "error"


class RefundFlow:
    """Drives one refund from receipt lookup to the saved refund.

    Each step returns True on success. On failure it returns False and keeps
    the message in ``error``; the review state survives so the cashier can
    correct it and retry. A new search may start from any finished state.
    Calling a step the current state does not allow raises ConflictError.
    """

    def __init__(self, service=None):
        self.service = service or RefundService()
        self.reset()

    def reset(self):
        self.state = SEARCH
        self.transaction = None
        self.candidate = None
        self.reason = ""
        self.result = None
        self.error = None

    def _require(self, *states):
        if self.state not in states:
            raise ConflictError(f"Refund is in state '{self.state}', expected one of {', '.join(states)}")

    def _fail(self, e, state=None):
        self.error = e.message
        if state is not None:
            self.state = state
        logger.info("Refund step failed (%s): %s", e.code, e.message)
        return False

    def search(self, receipt_id):
        self._require(SEARCH, ERROR, SUCCESS)
        self.reset()
        try:
            self.transaction = self.service.find_by_receipt_id(receipt_id)
        except PosError as e:
            return self._fail(e, ERROR)
        self.candidate = self.service.build_candidate(self.transaction)
        self.state = REVIEW
        return True

    def open(self, transaction):
        """Start from an already selected transaction, skipping the search."""
        self._require(SEARCH, ERROR, SUCCESS)
        self.reset()
        try:
            self.service.check_refundable(transaction)
        except PosError as e:
            return self._fail(e, ERROR)
        self.transaction = transaction
        self.candidate = self.service.build_candidate(transaction)
        self.state = REVIEW
        return True

    def _editing(self):
        if self.state in (CONFIRM, ERROR) and self.candidate is not None:
            self.state = REVIEW
        self._require(REVIEW)

    def adjust_quantity(self, item_id, quantity):
        self._editing()
        try:
            self.candidate.adjust_quantity(item_id, quantity)
        except PosError as e:
            return self._fail(e)
        self.error = None
        return True

    def set_return_to_stock(self, item_id, value):
        self._editing()
        try:
            self.candidate.set_return_to_stock(item_id, value)
        except PosError as e:
            return self._fail(e)
        self.error = None
        return True

    @property
    def refund_amount(self):
        return self.candidate.refund_amount() if self.candidate else 0.0

    def confirm(self, reason):
        self._require(REVIEW)
        if not self.candidate.selected_items:
            return self._fail(NothingToRefundError())
        if not (reason or "").strip():
            return self._fail(MissingReasonError())
        self.reason = reason.strip()
        self.error = None
        self.state = CONFIRM
        return True

    def back(self):
        self._editing()

    def submit(self):
        self._require(CONFIRM, ERROR)
        if self.candidate is None:
            return self._fail(ConflictError("Nothing to submit; search for a receipt first"), ERROR)
        try:
            self.result = self.service.execute(self.candidate, self.reason)
        except PosError as e:
            return self._fail(e, ERROR)
        self.error = None
        self.state = SUCCESS
        return True

    def cancel(self):
        """Abandon the refund; only possible before it has been saved."""
        if self.state == SUCCESS:
            return False
        self.reset()
        return True
