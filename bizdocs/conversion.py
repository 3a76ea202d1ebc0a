"""
bizdocs/conversion.py

Conversion workflows:
- Quotation -> Invoice (source quotation becomes ACCEPTED)
- Invoice -> DeliveryNote (source invoice status untouched)

Each workflow is a sequence of writes (number, document, cloned line items,
source status). The caller runs it inside extensions.atomic() so either every
write lands or none do.

Repeated conversion of one quotation is governed by ALLOW_REPEATED_CONVERSION.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from flask import current_app
from sqlalchemy.orm import selectinload

from .errors import ConflictError, InvalidTransition, NotFoundError
from .extensions import db
from .models import DeliveryNote, Invoice, Quotation
from .numbering import next_delivery_number, next_invoice_number

logger = logging.getLogger(__name__)


def convert_quotation_to_invoice(quotation_id: int, today: date | None = None) -> Invoice:
    today = today or date.today()

    quotation = db.session.get(Quotation, quotation_id, options=[selectinload(Quotation.line_items)])
    if quotation is None:
        raise NotFoundError("Quotation not found")

    if not current_app.config.get("ALLOW_REPEATED_CONVERSION", False):
        existing = (
            Invoice.query.filter_by(quotation_id=quotation.id).order_by(Invoice.id.asc()).first()
        )
        if existing is not None:
            raise ConflictError(
                "Invoice already exists for this quotation",
                invoiceId=existing.id,
                invoiceNumber=existing.invoice_number,
            )

    number = next_invoice_number(today)

    due_days = int(current_app.config.get("INVOICE_DUE_DAYS", 30))
    invoice = Invoice(
        customer_id=quotation.customer_id,
        quotation_id=quotation.id,
        invoice_number=number,
        issue_date=today,
        due_date=today + timedelta(days=due_days),
        status=Invoice.INITIAL_STATUS,
        notes=quotation.notes,
        currency=quotation.currency,
        subtotal=quotation.subtotal,
        tax_rate=quotation.tax_rate,
        tax_amount=quotation.tax_amount,
        total=quotation.total,
    )
    db.session.add(invoice)
    db.session.flush()

    for source in quotation.line_items:
        invoice.attach_line_item(source.clone())
    db.session.flush()

    quotation.status = "ACCEPTED"
    db.session.flush()

    logger.info(
        "Quotation %s converted to invoice %s (%s line items)",
        quotation.id,
        number,
        len(invoice.line_items),
    )
    return invoice


def create_delivery_note_from_invoice(invoice_id: int, today: date | None = None) -> DeliveryNote:
    today = today or date.today()

    invoice = db.session.get(Invoice, invoice_id, options=[selectinload(Invoice.line_items)])
    if invoice is None:
        raise NotFoundError("Invoice not found")
    if invoice.status == "cancelled":
        raise InvalidTransition("Cannot create a delivery note for a cancelled invoice")

    number = next_delivery_number()

    note = DeliveryNote(
        customer_id=invoice.customer_id,
        invoice_id=invoice.id,
        delivery_number=number,
        issue_date=today,
        status=DeliveryNote.INITIAL_STATUS,
        notes=f"Delivery note for invoice {invoice.invoice_number}",
        currency=invoice.currency,
        subtotal=invoice.subtotal,
        tax_rate=invoice.tax_rate,
        tax_amount=invoice.tax_amount,
        total=invoice.total,
    )
    db.session.add(note)
    db.session.flush()

    for source in invoice.line_items:
        note.attach_line_item(source.clone())
    db.session.flush()

    logger.info("Delivery note %s created from invoice %s", number, invoice.invoice_number)
    return note
