TAX_ADDED = "added"
TAX_INCLUDED = "included"
TAX_DISABLED = "disabled"
TAX_TYPES = (TAX_ADDED, TAX_INCLUDED, TAX_DISABLED)

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FLAT = "flat"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FLAT)

PAYMENT_CASH = "cash"
PAYMENT_CARD = "card"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_CARD)


#product model
class Product:
    def __init__(self, id, name, price, stock, barcode=None, category_id=None, active=True):
        self.id = id
        self.name = name
        self.price = price
        self.stock = stock
        self.barcode = barcode
        self.category_id = category_id
        self.active = active

    @classmethod
    def from_row(cls, row):
        return cls(row["id"], row["name"], row["price"], row["stock"],
                   barcode=row["barcode"], category_id=row["category_id"],
                   active=bool(row["active"]))

    def __repr__(self):
        return f"Product(id={self.id!r}, name={self.name!r}, stock={self.stock!r})"


#category model
class Category:
    def __init__(self, id, name):
        self.id = id
        self.name = name

    @classmethod
    def from_row(cls, row):
        return cls(row["id"], row["name"])


#cart line model
class CartLine:
    """One product in the open cart; name and price are captured when added."""

    def __init__(self, product_id, name, price, quantity=1, barcode=None):
        self.product_id = product_id
        self.name = name
        self.price = price
        self.quantity = quantity
        self.barcode = barcode

    @property
    def line_total(self):
        return self.price * self.quantity


class DiscountSpec:
    def __init__(self, type, value):
        self.type = type
        self.value = value

    def __eq__(self, other):
        return isinstance(other, DiscountSpec) and (self.type, self.value) == (other.type, other.value)

    def __repr__(self):
        return f"DiscountSpec({self.type!r}, {self.value!r})"


class TaxConfig:
    def __init__(self, type=TAX_ADDED, rate=0.0, name="Tax"):
        self.type = type
        self.rate = rate
        self.name = name

    def __repr__(self):
        return f"TaxConfig({self.type!r}, {self.rate!r}, {self.name!r})"


class PricingSnapshot:
    def __init__(self, subtotal, discount_amount, taxable_base, tax_amount, total,
                 payment_amount=None, change=None):
        self.subtotal = subtotal
        self.discount_amount = discount_amount
        self.taxable_base = taxable_base
        self.tax_amount = tax_amount
        self.total = total
        self.payment_amount = payment_amount
        self.change = change


#transaction item model (immutable snapshot)
class TransactionItem:
    __slots__ = ("id", "product_id", "name", "barcode", "unit_price", "quantity",
                 "line_total", "refunded_quantity")

    def __init__(self, id, product_id, name, unit_price, quantity, line_total,
                 barcode=None, refunded_quantity=0):
        object.__setattr__(self, "id", id)
        object.__setattr__(self, "product_id", product_id)
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "barcode", barcode)
        object.__setattr__(self, "unit_price", unit_price)
        object.__setattr__(self, "quantity", quantity)
        object.__setattr__(self, "line_total", line_total)
        object.__setattr__(self, "refunded_quantity", refunded_quantity)

    def __setattr__(self, name, value):
        raise AttributeError("transaction items are read-only")

    @classmethod
    def from_row(cls, row):
        return cls(row["id"], row["product_id"], row["name"], row["unit_price"],
                   row["quantity"], row["line_total"], barcode=row["barcode"],
                   refunded_quantity=row["refunded_quantity"])

    @property
    def refundable_quantity(self):
        return max(0, self.quantity - self.refunded_quantity)


#transaction model
class Transaction:
    def __init__(self, id, receipt_id, items, subtotal, discount_amount, tax_amount, total,
                 payment_method, payment_amount, change, created_at, discount_type=None,
                 discount_value=0.0, tax_name="Tax", tax_rate=0.0, tax_type=TAX_ADDED,
                 refunded=False):
        self.id = id
        self.receipt_id = receipt_id
        self.items = tuple(items)
        self.subtotal = subtotal
        self.discount_amount = discount_amount
        self.discount_type = discount_type
        self.discount_value = discount_value
        self.tax_amount = tax_amount
        self.tax_name = tax_name
        self.tax_rate = tax_rate
        self.tax_type = tax_type
        self.total = total
        self.payment_method = payment_method
        self.payment_amount = payment_amount
        self.change = change
        self.created_at = created_at
        self.refunded = refunded

    @classmethod
    def from_row(cls, row, item_rows):
        return cls(
            row["id"], row["receipt_id"], [TransactionItem.from_row(r) for r in item_rows],
            row["subtotal"], row["discount_amount"], row["tax_amount"], row["total"],
            row["payment_method"], row["payment_amount"], row["change"], row["created_at"],
            discount_type=row["discount_type"], discount_value=row["discount_value"],
            tax_name=row["tax_name"], tax_rate=row["tax_rate"], tax_type=row["tax_type"],
            refunded=bool(row["refunded"]),
        )

    @property
    def items_total(self):
        return sum(item.line_total for item in self.items)

    @property
    def refundable_quantity(self):
        return sum(item.refundable_quantity for item in self.items)


#refund models
class RefundItem:
    def __init__(self, transaction_item_id, product_id, name, unit_price, quantity, return_to_stock=True):
        self.transaction_item_id = transaction_item_id
        self.product_id = product_id
        self.name = name
        self.unit_price = unit_price
        self.quantity = quantity
        self.return_to_stock = return_to_stock


class Refund:
    def __init__(self, id, transaction_id, receipt_id, items, reason, refund_amount,
                 created_at, payment_method=None):
        self.id = id
        self.transaction_id = transaction_id
        self.receipt_id = receipt_id
        self.items = tuple(items)
        self.reason = reason
        self.refund_amount = refund_amount
        self.created_at = created_at
        self.payment_method = payment_method
