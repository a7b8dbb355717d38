import logging

from errors import MissingBarcodeError, NotFoundError, OutOfStockError, InvalidQuantityError
from models import CartLine, DiscountSpec
from pricing import calculate_subtotal, calculate_totals, validate_discount

logger = logging.getLogger(__name__)


#stock reservation
class StockReservationTracker:
    """Stock still free to sell while items sit in the open cart.

    The hold lives only in memory for the current session; nothing is written
    and nothing is locked.
    """

    def __init__(self, cart):
        self.cart = cart

    def held(self, product_id):
        return self.cart.quantity_of(product_id)

    def effective_stock(self, product):
        return max(0, product.stock - self.held(product.id))


#cart model
class Cart:
    def __init__(self):
        self._lines = {}
        self._products = {}
        self.discount = None
        self.reservations = StockReservationTracker(self)

    @property
    def lines(self):
        return list(self._lines.values())

    @property
    def is_empty(self):
        return not self._lines

    @property
    def subtotal(self):
        return calculate_subtotal(self._lines.values())

    def quantity_of(self, product_id):
        line = self._lines.get(product_id)
        return line.quantity if line else 0

    def add(self, product, origin_verified_barcode=False):
        if origin_verified_barcode and not (product.barcode or "").strip():
            raise MissingBarcodeError(f"{product.name} has no barcode")

        self._products[product.id] = product
        if self.reservations.effective_stock(product) <= 0:
            raise OutOfStockError(f"{product.name} is out of stock")

        line = self._lines.get(product.id)
        if line:
            line.quantity += 1
        else:
            line = CartLine(product.id, product.name, product.price, 1, barcode=product.barcode)
            self._lines[product.id] = line
        logger.debug("Cart: %s x%d", product.name, line.quantity)
        return line

    def set_quantity(self, product_id, quantity):
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidQuantityError(f"Quantity must be a whole number, got {quantity!r}")

        line = self._lines.get(product_id)
        if line is None:
            raise NotFoundError(f"Product {product_id} is not in the cart")

        if quantity <= 0:
            self.remove(product_id)
            return None

        if quantity > line.quantity:
            # Only an increase needs a stock check
            product = self._products[product_id]
            available_to_add = product.stock - line.quantity
            if available_to_add <= 0:
                raise OutOfStockError(f"Not enough stock available for {product.name}")
            line.quantity = min(quantity, line.quantity + available_to_add)
        else:
            line.quantity = quantity
        return line

    def remove(self, product_id):
        self._lines.pop(product_id, None)

    def clear(self):
        self._lines.clear()
        self.discount = None

    def apply_discount(self, type, value):
        discount = DiscountSpec(type, value)
        validate_discount(discount, self.subtotal)
        self.discount = DiscountSpec(type, float(value))
        return self.discount

    def remove_discount(self):
        self.discount = None

    def refresh_products(self, products):
        """Replace the stock figures used for quantity checks after a catalog reload."""
        for product in products:
            if product.id in self._products:
                self._products[product.id] = product

    def totals(self, tax, payment_amount=None):
        return calculate_totals(self.lines, self.discount, tax, payment_amount)
