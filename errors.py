"""Errors raised by the cart, checkout and refund operations.

Validation errors are raised before anything is written, so the cart or the
refund review can simply be corrected and retried. Persistence errors wrap the
underlying sqlite failure.
"""


class PosError(Exception):
    code = "POS_ERROR"

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


# --- validation ---
class ValidationError(PosError):
    code = "VALIDATION_ERROR"


class OutOfStockError(ValidationError):
    """Not enough stock available."""
    code = "OUT_OF_STOCK"


class InvalidDiscountError(ValidationError):
    """Invalid discount."""
    code = "INVALID_DISCOUNT"


class InsufficientPaymentError(ValidationError):
    """Payment amount is insufficient."""
    code = "INSUFFICIENT_PAYMENT"


class EmptyCartError(ValidationError):
    """Cart is empty."""
    code = "EMPTY_CART"


class MissingBarcodeError(ValidationError):
    """Product has no barcode."""
    code = "MISSING_BARCODE"


class MissingReasonError(ValidationError):
    """Please provide a reason for the refund."""
    code = "MISSING_REASON"


class NothingToRefundError(ValidationError):
    """Please select at least one item to refund."""
    code = "NOTHING_TO_REFUND"


class InvalidPaymentMethodError(ValidationError):
    """Payment method is not available."""
    code = "INVALID_PAYMENT_METHOD"


class InvalidQuantityError(ValidationError):
    """Quantity must be a whole number."""
    code = "INVALID_QUANTITY"


# --- lookup / state ---
class NotFoundError(PosError):
    """Not found."""
    code = "NOT_FOUND"


class ConflictError(PosError):
    code = "CONFLICT"


class AlreadyRefundedError(ConflictError):
    """This transaction has already been refunded."""
    code = "ALREADY_REFUNDED"


# --- storage ---
class PersistenceError(PosError):
    """Could not save to the database."""
    code = "PERSISTENCE_ERROR"
