"""
bizdocs/blueprints/customers/routes.py

Customer routes (JSON).

Includes:
- List with search (name/email/phone) and pagination
- CRUD; email is unique (duplicate -> 409)
- Customer invoices, payments and financial summary

IMPORTANT:
- A customer with documents cannot be deleted (documents RESTRICT the FK).
"""

from __future__ import annotations

from datetime import date

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from ...audit import log_action, serialize_model
from ...documents import get_or_raise
from ...errors import ConflictError, NotFoundError, ValidationError
from ...extensions import atomic, db
from ...models import Customer, DeliveryNote, Invoice, Quotation
from ...money import ZERO, round2, to_decimal
from ...payments import customer_payments, outstanding, record_payment
from ...security import permission_required
from ...utils import clean_text, json_body, paginate

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _email_taken(email: str, exclude_id: int | None = None) -> bool:
    q = Customer.query.filter(func.lower(Customer.email) == email.lower())
    if exclude_id is not None:
        q = q.filter(Customer.id != exclude_id)
    return db.session.query(q.exists()).scalar()


def financial_summary(customer: Customer, today: date | None = None) -> dict:
    """
    Invoiced / paid / outstanding figures for a customer.

    Cancelled invoices are excluded. Overdue uses the projected invoice status.
    """
    today = today or date.today()
    invoices = (
        Invoice.query.filter(Invoice.customer_id == customer.id, Invoice.status != "cancelled")
        .order_by(Invoice.issue_date.asc())
        .all()
    )

    total_invoiced = ZERO
    total_paid = ZERO
    total_outstanding = ZERO
    overdue_amount = ZERO
    paid_count = 0
    overdue_count = 0
    payment_days = []

    for inv in invoices:
        total_invoiced += to_decimal(inv.total)
        total_paid += inv.amount_paid
        balance = outstanding(inv)
        total_outstanding += balance

        if balance == ZERO:
            paid_count += 1
            if inv.payments:
                last_payment = max(p.payment_date for p in inv.payments)
                payment_days.append((last_payment - inv.issue_date).days)
        elif inv.reported_status(today) == "overdue":
            overdue_amount += balance
            overdue_count += 1

    average_days = round(sum(payment_days) / len(payment_days)) if payment_days else 0

    return {
        "totalInvoiced": round2(total_invoiced),
        "totalPaid": round2(total_paid),
        "totalOutstanding": round2(total_outstanding),
        "overdueAmount": round2(overdue_amount),
        "averagePaymentDays": average_days,
        "invoiceCount": len(invoices),
        "paidInvoiceCount": paid_count,
        "overdueInvoiceCount": overdue_count,
    }


# ---------------------------------------------------------------------
# List / create
# ---------------------------------------------------------------------
@customers_bp.route("", methods=["GET"])
@permission_required("customers", "read")
def list_customers():
    q = Customer.query
    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Customer.name.ilike(like),
                Customer.email.ilike(like),
                func.coalesce(Customer.phone, "").ilike(like),
            )
        )
    customers, pagination = paginate(q.order_by(Customer.created_at.desc(), Customer.id.desc()))
    return jsonify({"customers": [c.to_dict() for c in customers], "pagination": pagination})


@customers_bp.route("", methods=["POST"])
@permission_required("customers", "create")
def create_customer():
    data = json_body()
    name = clean_text(data.get("name"))
    email = clean_text(data.get("email"))
    if not name or not email:
        raise ValidationError("Name and email are required")
    if _email_taken(email):
        raise ConflictError("Customer with this email already exists")

    with atomic():
        customer = Customer(
            name=name,
            email=email,
            phone=clean_text(data.get("phone")),
            address=clean_text(data.get("address")),
            tax_id=clean_text(data.get("taxId")),
        )
        db.session.add(customer)
        db.session.flush()
        log_action(customer, "CREATE", after=serialize_model(customer))

    return jsonify({"customer": customer.to_dict()}), 201


# ---------------------------------------------------------------------
# Detail
# ---------------------------------------------------------------------
@customers_bp.route("/<int:customer_id>", methods=["GET"])
@permission_required("customers", "read")
def get_customer(customer_id: int):
    customer = get_or_raise(Customer, customer_id, "Customer")
    data = customer.to_dict()
    data["quotationCount"] = Quotation.query.filter_by(customer_id=customer.id).count()
    data["invoiceCount"] = Invoice.query.filter_by(customer_id=customer.id).count()
    data["deliveryNoteCount"] = DeliveryNote.query.filter_by(customer_id=customer.id).count()
    return jsonify({"customer": data})


@customers_bp.route("/<int:customer_id>", methods=["PUT"])
@permission_required("customers", "update")
def update_customer(customer_id: int):
    customer = get_or_raise(Customer, customer_id, "Customer")
    data = json_body()

    with atomic():
        before = serialize_model(customer)
        if "name" in data:
            name = clean_text(data.get("name"))
            if not name:
                raise ValidationError("Name cannot be empty")
            customer.name = name
        if "email" in data:
            email = clean_text(data.get("email"))
            if not email:
                raise ValidationError("Email cannot be empty")
            if _email_taken(email, exclude_id=customer.id):
                raise ConflictError("Customer with this email already exists")
            customer.email = email
        for key, attr in (("phone", "phone"), ("address", "address"), ("taxId", "tax_id")):
            if key in data:
                setattr(customer, attr, clean_text(data.get(key)))
        db.session.flush()
        log_action(customer, "UPDATE", before=before, after=serialize_model(customer))

    return jsonify({"customer": customer.to_dict()})


@customers_bp.route("/<int:customer_id>", methods=["DELETE"])
@permission_required("customers", "delete")
def delete_customer(customer_id: int):
    customer = get_or_raise(Customer, customer_id, "Customer")

    has_documents = any(
        model.query.filter_by(customer_id=customer.id).first() is not None
        for model in (Quotation, Invoice, DeliveryNote)
    )
    if has_documents:
        raise ConflictError("Customer has documents and cannot be deleted")

    with atomic():
        before = serialize_model(customer)
        log_action(customer, "DELETE", before=before)
        db.session.delete(customer)

    return jsonify({"message": "Customer deleted successfully"})


@customers_bp.route("/<int:customer_id>/invoices", methods=["GET"])
@permission_required("invoices", "read")
def customer_invoices(customer_id: int):
    customer = get_or_raise(Customer, customer_id, "Customer")
    invoices = (
        Invoice.query.filter_by(customer_id=customer.id)
        .order_by(Invoice.issue_date.desc(), Invoice.id.desc())
        .all()
    )
    return jsonify({"invoices": [inv.to_dict() for inv in invoices]})


@customers_bp.route("/<int:customer_id>/financial-summary", methods=["GET"])
@permission_required("customers", "read")
def customer_financial_summary(customer_id: int):
    customer = get_or_raise(Customer, customer_id, "Customer")
    return jsonify(financial_summary(customer))


@customers_bp.route("/<int:customer_id>/payments", methods=["GET"])
@permission_required("payments", "read")
def list_customer_payments(customer_id: int):
    customer = get_or_raise(Customer, customer_id, "Customer")
    payments = []
    for payment in customer_payments(customer.id):
        data = payment.to_dict()
        data["invoiceNumber"] = payment.invoice.invoice_number
        payments.append(data)
    return jsonify({"payments": payments})


@customers_bp.route("/<int:customer_id>/payments", methods=["POST"])
@permission_required("payments", "create")
def add_customer_payment(customer_id: int):
    """Record a payment against one of this customer's invoices (body carries invoiceId)."""
    customer = get_or_raise(Customer, customer_id, "Customer")
    data = json_body()

    invoice_id = data.get("invoiceId")
    invoice = db.session.get(Invoice, invoice_id) if str(invoice_id).isdigit() else None
    if invoice is None or invoice.customer_id != customer.id:
        raise NotFoundError("Invoice not found for this customer")

    with atomic():
        before = serialize_model(invoice)
        payment = record_payment(invoice, data)
        log_action(payment, "PAYMENT", after=serialize_model(payment))
        if invoice.status != before["status"]:
            log_action(invoice, "STATUS", before=before, after=serialize_model(invoice))

    data = payment.to_dict()
    data["invoiceNumber"] = invoice.invoice_number
    return jsonify({"payment": data, "invoice": invoice.to_dict()}), 201
