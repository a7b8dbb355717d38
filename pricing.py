"""Cart totals: subtotal, discount, tax, total and change.

Everything here is a pure function of its arguments. The tax configuration is
always passed in by the caller, never read from the settings table, so a
receipt can be recomputed with the tax that applied when it was issued.
"""
from errors import InvalidDiscountError
from models import (
    PricingSnapshot,
    DISCOUNT_FLAT,
    DISCOUNT_PERCENTAGE,
    DISCOUNT_TYPES,
    TAX_DISABLED,
    TAX_INCLUDED,
)


def to_money(amount):
    # adding 0.0 turns a rounded -0.0 into 0.0
    return round(float(amount), 2) + 0.0


def calculate_subtotal(lines):
    return sum(line.price * line.quantity for line in lines)


def calculate_discount(subtotal, discount):
    if discount is None or not discount.value:
        return 0.0
    if discount.type == DISCOUNT_PERCENTAGE:
        return subtotal * min(discount.value, 100) / 100
    return min(discount.value, subtotal)


def calculate_tax(taxable_base, tax):
    if tax is None or tax.type == TAX_DISABLED:
        return 0.0
    rate = tax.rate or 0
    if tax.type == TAX_INCLUDED:
        # the price already carries the tax; extract it
        return taxable_base - taxable_base / (1 + rate / 100)
    return taxable_base * rate / 100


def calculate_totals(lines, discount=None, tax=None, payment_amount=None):
    subtotal = calculate_subtotal(lines)
    discount_amount = calculate_discount(subtotal, discount)
    taxable_base = subtotal - discount_amount
    tax_amount = calculate_tax(taxable_base, tax)

    if tax is not None and tax.type == TAX_INCLUDED:
        total = taxable_base
    else:
        total = taxable_base + tax_amount

    change = None
    if payment_amount is not None:
        change = payment_amount - total

    return PricingSnapshot(subtotal, discount_amount, taxable_base, tax_amount, total,
                           payment_amount=payment_amount, change=change)


def validate_discount(discount, subtotal):
    if discount.type not in DISCOUNT_TYPES:
        raise InvalidDiscountError(f"Unknown discount type: {discount.type}")
    try:
        value = float(discount.value)
    except (TypeError, ValueError):
        raise InvalidDiscountError("Please enter a valid discount value")
    if value <= 0:
        raise InvalidDiscountError("Please enter a valid discount value")
    if discount.type == DISCOUNT_PERCENTAGE and value > 100:
        raise InvalidDiscountError("Percentage discount cannot exceed 100%")
    if discount.type == DISCOUNT_FLAT and to_money(value) > to_money(subtotal):
        raise InvalidDiscountError("Discount cannot be greater than subtotal")


def is_payment_sufficient(payment_amount, total):
    return to_money(payment_amount) >= to_money(total)
