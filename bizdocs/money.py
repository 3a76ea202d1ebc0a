"""
bizdocs/money.py

Money and tax arithmetic for documents.

Rules:
- Everything is Decimal. Floats are converted through str() first.
- Round half-up to 2 places at every monetary boundary (line total, tax, total).
  Unrounded fractional cents are never carried between steps, so the displayed
  subtotal + tax always equals the displayed total.
- Tax rates are ALWAYS percents (7.5 means 7.5%).
- Input stored as-is (quantity, unit price, rate, payment amount) must fit its
  Numeric column exactly: extra decimal places or oversized values are a
  ValidationError, never silently rounded (fit_numeric).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from .errors import InvalidPrice, InvalidQuantity, InvalidTaxRate, ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# (digits, places) of the Numeric columns that store each kind of value
QUANTITY_SCALE = (12, 3)
PRICE_SCALE = (12, 2)
AMOUNT_SCALE = (14, 2)
RATE_SCALE = (5, 2)

AMOUNT_LIMIT = Decimal(10) ** (AMOUNT_SCALE[0] - AMOUNT_SCALE[1])

# Ceiling for any parsed input (10**30)
_MAX_EXPONENT = 30


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


def to_decimal(value, field: str = "value") -> Decimal:
    """Convert user/DB input to Decimal (accepts comma or dot). None becomes 0.00."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValidationError(f"Invalid {field}")
    else:
        raw = str(value).strip().replace(",", ".")
        if raw == "":
            raise ValidationError(f"Invalid {field}")
        try:
            result = Decimal(raw)
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid {field}: {value!r}") from None
    if not result.is_finite():
        raise ValidationError(f"Invalid {field}: {value!r}")
    if result.adjusted() > _MAX_EXPONENT:
        raise ValidationError(f"{field} is out of range")
    return result


def round2(value) -> Decimal:
    try:
        return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"Value out of range: {value!r}") from None


def fit_numeric(value, field: str, scale: tuple[int, int]) -> Decimal:
    """
    Exact Decimal for a Numeric(digits, places) column.

    Values that would need rounding or do not fit the column are rejected,
    never adjusted.
    """
    digits, places = scale
    result = to_decimal(value, field)
    if abs(result) >= Decimal(10) ** (digits - places):
        raise ValidationError(f"{field} is out of range")
    exact = result.quantize(Decimal(1).scaleb(-places))
    if exact != result:
        raise ValidationError(f"{field} allows at most {places} decimal places")
    return exact


def line_total(quantity, unit_price) -> Decimal:
    """round2(quantity * unit_price). Quantity must be > 0, unit price >= 0."""
    qty = to_decimal(quantity, "quantity")
    price = to_decimal(unit_price, "unit price")
    if qty <= 0:
        raise InvalidQuantity("Quantity must be greater than zero")
    if price < 0:
        raise InvalidPrice("Unit price cannot be negative")
    product = qty * price
    if product >= AMOUNT_LIMIT:
        raise ValidationError("Line total is out of range")
    return round2(product)


def tax(subtotal, tax_rate_percent) -> Decimal:
    rate = to_decimal(tax_rate_percent, "tax rate")
    if rate < 0:
        raise InvalidTaxRate("Tax rate cannot be negative")
    return round2(to_decimal(subtotal, "subtotal") * rate / HUNDRED)


def document_totals(line_totals: Iterable, tax_rate_percent) -> DocumentTotals:
    """
    Totals for a document.

    The subtotal is the sum of the already rounded line totals; it is not
    re-derived from quantity x price.
    """
    subtotal = round2(sum((to_decimal(t) for t in line_totals), ZERO))
    tax_amount = tax(subtotal, tax_rate_percent)
    total = round2(subtotal + tax_amount)
    if total >= AMOUNT_LIMIT:
        raise ValidationError("Document total is out of range")
    return DocumentTotals(subtotal=subtotal, tax_amount=tax_amount, total=total)
