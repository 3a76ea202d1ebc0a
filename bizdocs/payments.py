"""
bizdocs/payments.py

Payments against invoices.

Rules:
- Only "sent" invoices accept payments (draft must be sent first; paid and
  cancelled are settled).
- A payment cannot exceed the outstanding balance.
- When the balance reaches zero the invoice transitions to "paid" in the same
  transaction.
"""

from __future__ import annotations

import logging
from datetime import date

from .documents import parse_date
from .errors import InvalidTransition, ValidationError
from .extensions import db
from .models import Invoice, Payment
from .money import AMOUNT_SCALE, ZERO, fit_numeric, round2, to_decimal
from .utils import clean_text

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "bank_transfer", "card", "cheque", "pos", "other")


def record_payment(invoice: Invoice, data: dict) -> Payment:
    if invoice.status != "sent":
        raise InvalidTransition(f"Payments can only be recorded against sent invoices (status is {invoice.status})")

    amount = fit_numeric(data.get("amount"), "amount", AMOUNT_SCALE)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than zero")

    balance = invoice.balance_due
    if amount > balance:
        raise ValidationError(f"Payment amount {amount} exceeds outstanding balance {balance}")

    method = (str(data.get("paymentMethod") or "bank_transfer")).strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid paymentMethod: {method!r}")

    payment = Payment(
        invoice=invoice,
        amount=amount,
        payment_date=parse_date(data.get("paymentDate"), "paymentDate") or date.today(),
        payment_method=method,
        reference=clean_text(data.get("reference")),
        notes=clean_text(data.get("notes")),
    )
    db.session.add(payment)
    db.session.flush()

    if invoice.balance_due <= ZERO:
        invoice.transition("paid")
        db.session.flush()
        logger.info("Invoice %s fully paid", invoice.invoice_number)

    logger.info("Payment %s of %s recorded on invoice %s", payment.id, amount, invoice.invoice_number)
    return payment


def invoice_payments(invoice: Invoice) -> list[Payment]:
    return sorted(invoice.payments, key=lambda p: (p.payment_date, p.id), reverse=True)


def customer_payments(customer_id: int) -> list[Payment]:
    """All payments on a customer's invoices, newest first."""
    return (
        Payment.query.join(Invoice, Payment.invoice_id == Invoice.id)
        .filter(Invoice.customer_id == customer_id)
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
        .all()
    )


def outstanding(invoice: Invoice):
    return max(round2(to_decimal(invoice.total) - invoice.amount_paid), ZERO)
