"""
bizdocs/documents.py

Document services: create / update / transition / delete for quotations,
invoices and delivery notes, and the line item builder.

IMPORTANT:
- These functions add and flush only. The caller owns the transaction
  (see extensions.atomic) so a document and its line items land together.
- Input dicts use the API's camelCase keys.
- Input is never trusted: customers and catalog references are resolved
  server-side and every amount goes through money.py.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal

from flask import current_app

from .errors import ConflictError, InvalidTaxRate, NotFoundError, ValidationError
from .extensions import db
from .models import (
    ITEM_TYPES,
    Customer,
    DeliveryNote,
    Invoice,
    LineItem,
    Product,
    Quotation,
    Service,
)
from .money import HUNDRED, PRICE_SCALE, QUANTITY_SCALE, RATE_SCALE, fit_numeric, line_total
from .numbering import next_delivery_number, next_invoice_number
from .utils import clean_text

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def parse_optional_int(value, field: str) -> int | None:
    """Parse optional int from JSON input. Empty values become None."""
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}: {value!r}") from None


def parse_date(value, field: str) -> date | None:
    """Accept YYYY-MM-DD or a full ISO timestamp. Empty values become None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r}") from None


def _tax_rate(value) -> Decimal:
    if value is None or value == "":
        value = current_app.config.get("DEFAULT_TAX_RATE", "0")
    rate = fit_numeric(value, "tax rate", RATE_SCALE)
    if rate < 0:
        raise InvalidTaxRate("Tax rate cannot be negative")
    if rate > HUNDRED:
        raise InvalidTaxRate("Tax rate cannot exceed 100%")
    return rate


def _currency(value) -> str:
    code = (clean_text(value) or current_app.config.get("DEFAULT_CURRENCY", "NGN")).upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"Invalid currency code: {code!r}")
    return code


# ---------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------
def get_or_raise(model, object_id, label: str | None = None):
    """Fetch by primary key or raise NotFoundError."""
    label = label or model.__name__
    obj = db.session.get(model, object_id) if object_id is not None else None
    if obj is None:
        raise NotFoundError(f"{label} not found")
    return obj


def resolve_customer(customer_id) -> Customer:
    """Customer reference from input. Missing or unknown is a validation error."""
    cid = parse_optional_int(customer_id, "customerId")
    if cid is None:
        raise ValidationError("customerId is required")
    customer = db.session.get(Customer, cid)
    if customer is None:
        raise ValidationError(f"Customer {cid} does not exist")
    return customer


# ---------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------
def build_line_item(data: dict) -> LineItem:
    """
    Build a transient LineItem from input.

    Catalog references default description and unit price from the catalog
    snapshot at creation time; explicit input always wins.
    """
    if not isinstance(data, dict):
        raise ValidationError("Each line item must be an object")

    item_type = str(data.get("itemType") or "CUSTOM").strip().upper()
    if item_type not in ITEM_TYPES:
        raise ValidationError(f"Invalid itemType: {data.get('itemType')!r}")

    product_id = parse_optional_int(data.get("productId"), "productId")
    service_id = parse_optional_int(data.get("serviceId"), "serviceId")
    description = clean_text(data.get("description"))
    raw_price = data.get("unitPrice")
    if raw_price == "":
        raw_price = None

    if item_type == "PRODUCT":
        if product_id is None:
            raise ValidationError("productId is required for product line items")
        product = db.session.get(Product, product_id)
        if product is None:
            raise ValidationError(f"Product {product_id} does not exist")
        description = description or product.name
        if raw_price is None:
            raw_price = product.price
        service_id = None
    elif item_type == "SERVICE":
        if service_id is None:
            raise ValidationError("serviceId is required for service line items")
        service = db.session.get(Service, service_id)
        if service is None:
            raise ValidationError(f"Service {service_id} does not exist")
        description = description or service.name
        if raw_price is None:
            raw_price = service.base_price
        product_id = None
    else:
        if not description:
            raise ValidationError("description is required for custom line items")
        if raw_price is None:
            raise ValidationError("unitPrice is required for custom line items")
        product_id = None
        service_id = None

    quantity = fit_numeric(data.get("quantity"), "quantity", QUANTITY_SCALE)
    unit_price = fit_numeric(raw_price, "unit price", PRICE_SCALE)

    return LineItem(
        item_type=item_type,
        product_id=product_id,
        service_id=service_id,
        description=description,
        quantity=quantity,
        unit_price=unit_price,
        total=line_total(quantity, unit_price),
    )


def build_line_items(inputs) -> list[LineItem]:
    if not isinstance(inputs, list) or not inputs:
        raise ValidationError("At least one line item is required")
    return [build_line_item(item) for item in inputs]


# ---------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------
def create_quotation(data: dict, today: date | None = None) -> Quotation:
    today = today or date.today()
    customer = resolve_customer(data.get("customerId"))
    items = build_line_items(data.get("lineItems"))

    validity_days = int(current_app.config.get("QUOTATION_VALIDITY_DAYS", 30))
    quotation = Quotation(
        customer_id=customer.id,
        issue_date=parse_date(data.get("date"), "date") or today,
        valid_until=parse_date(data.get("validUntil"), "validUntil") or today + timedelta(days=validity_days),
        status=Quotation.INITIAL_STATUS,
        notes=clean_text(data.get("notes")),
        currency=_currency(data.get("currency")),
        tax_rate=_tax_rate(data.get("taxRate")),
    )
    quotation.replace_line_items(items)

    db.session.add(quotation)
    db.session.flush()
    logger.info("Quotation %s created for customer %s (total %s)", quotation.id, customer.id, quotation.total)
    return quotation


def create_invoice(data: dict, today: date | None = None) -> Invoice:
    today = today or date.today()
    customer = resolve_customer(data.get("customerId"))
    items = build_line_items(data.get("lineItems"))

    quotation_id = parse_optional_int(data.get("quotationId"), "quotationId")
    if quotation_id is not None and db.session.get(Quotation, quotation_id) is None:
        raise ValidationError(f"Quotation {quotation_id} does not exist")

    due_days = int(current_app.config.get("INVOICE_DUE_DAYS", 30))
    issue_date = parse_date(data.get("date"), "date") or today

    # First write of the transaction.
    number = next_invoice_number(issue_date)

    invoice = Invoice(
        customer_id=customer.id,
        quotation_id=quotation_id,
        invoice_number=number,
        issue_date=issue_date,
        due_date=parse_date(data.get("dueDate"), "dueDate") or issue_date + timedelta(days=due_days),
        status=Invoice.INITIAL_STATUS,
        notes=clean_text(data.get("notes")),
        currency=_currency(data.get("currency")),
        tax_rate=_tax_rate(data.get("taxRate")),
    )
    invoice.replace_line_items(items)

    db.session.add(invoice)
    db.session.flush()
    logger.info("Invoice %s created for customer %s (total %s)", number, customer.id, invoice.total)
    return invoice


def create_delivery_note(data: dict, today: date | None = None) -> DeliveryNote:
    today = today or date.today()
    customer = resolve_customer(data.get("customerId"))
    items = build_line_items(data.get("lineItems"))

    invoice_id = parse_optional_int(data.get("invoiceId"), "invoiceId")
    if invoice_id is not None:
        invoice = db.session.get(Invoice, invoice_id)
        if invoice is None:
            raise ValidationError(f"Invoice {invoice_id} does not exist")
        if invoice.customer_id != customer.id:
            raise ValidationError("Delivery note customer must match the invoice customer")

    number = next_delivery_number()

    note = DeliveryNote(
        customer_id=customer.id,
        invoice_id=invoice_id,
        delivery_number=number,
        issue_date=parse_date(data.get("date"), "date") or today,
        delivered_date=parse_date(data.get("deliveredDate"), "deliveredDate"),
        status=DeliveryNote.INITIAL_STATUS,
        notes=clean_text(data.get("notes")),
        currency=_currency(data.get("currency")),
        tax_rate=_tax_rate(data.get("taxRate")),
    )
    note.replace_line_items(items)

    db.session.add(note)
    db.session.flush()
    logger.info("Delivery note %s created for customer %s", number, customer.id)
    return note


# ---------------------------------------------------------------------
# Update / transition / delete
# ---------------------------------------------------------------------
_DATE_FIELDS = {
    Quotation: (("validUntil", "valid_until"),),
    Invoice: (("dueDate", "due_date"),),
    DeliveryNote: (("deliveredDate", "delivered_date"),),
}


def _check_customer_change(document, customer: Customer) -> None:
    """Linked documents must keep sharing one customer."""
    if isinstance(document, Quotation) and document.invoices:
        raise ConflictError("Quotation has invoices; its customer cannot change")
    if isinstance(document, Invoice) and (document.delivery_notes or document.payments):
        raise ConflictError("Invoice has delivery notes or payments; its customer cannot change")
    if isinstance(document, DeliveryNote) and document.invoice is not None:
        if document.invoice.customer_id != customer.id:
            raise ValidationError("Delivery note customer must match the invoice customer")


def update_document(document, data: dict):
    """
    Update header fields and, when "lineItems" is present, replace the full
    line item set. Totals are always recomputed.

    Paid and cancelled invoices are read-only, and an invoice total can never
    drop below what has already been paid. Such a failure is raised after the
    changes are applied; the caller's atomic() rolls them back.
    """
    if isinstance(document, Invoice) and document.status in Invoice.SETTLED_STATUSES:
        raise ConflictError(f"Invoice is {document.status} and cannot be edited")

    if "customerId" in data:
        customer = resolve_customer(data.get("customerId"))
        if customer.id != document.customer_id:
            _check_customer_change(document, customer)
            document.customer_id = customer.id
    if "notes" in data:
        document.notes = clean_text(data.get("notes"))
    if "currency" in data:
        document.currency = _currency(data.get("currency"))
    if "taxRate" in data:
        document.tax_rate = _tax_rate(data.get("taxRate"))
    if "date" in data:
        document.issue_date = parse_date(data.get("date"), "date") or document.issue_date

    for key, attr in _DATE_FIELDS.get(type(document), ()):
        if key in data:
            value = parse_date(data.get(key), key)
            if value is None and attr == "due_date":
                raise ValidationError("dueDate cannot be empty")
            setattr(document, attr, value)

    if "lineItems" in data:
        document.replace_line_items(build_line_items(data.get("lineItems")))
    else:
        document.recalc_totals()

    if isinstance(document, Invoice) and document.total < document.amount_paid:
        raise ConflictError(
            f"Invoice total {document.total} would fall below the amount already paid {document.amount_paid}"
        )

    new_status = clean_text(data.get("status"))
    if new_status and new_status != document.status:
        change_status(document, new_status)

    db.session.flush()
    return document


def change_status(document, new_status) -> str:
    """Apply a status transition. Returns the previous stored status."""
    if not new_status or not isinstance(new_status, str):
        raise ValidationError("status is required")
    previous = document.transition(new_status.strip())
    db.session.flush()
    logger.info(
        "%s %s status %s -> %s", document.DOCUMENT_TYPE, document.id, previous, document.status
    )
    return previous


def delete_document(document) -> None:
    """Hard delete, refused while dependent documents reference it."""
    if isinstance(document, Quotation) and document.invoices:
        raise ConflictError("Quotation has invoices and cannot be deleted")
    if isinstance(document, Invoice):
        if document.delivery_notes:
            raise ConflictError("Invoice has delivery notes and cannot be deleted")
        if document.payments:
            raise ConflictError("Invoice has payments and cannot be deleted")
    db.session.delete(document)
    db.session.flush()
    logger.info("%s %s deleted", document.DOCUMENT_TYPE, document.id)
