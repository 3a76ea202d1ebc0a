"""
bizdocs/blueprints/invoices/routes.py

Invoice routes (JSON).

Includes:
- List (filter by customer / stored status / projected status) and detail
- Create, full update, status change, delete
- Delivery note creation from an invoice
- Payments

IMPORTANT:
- "overdue" is never stored. ?status=overdue filters on the projected status;
  every response carries both status (stored) and displayStatus (projected).
"""

from __future__ import annotations

from datetime import date

from flask import Blueprint, jsonify, request
from sqlalchemy.orm import selectinload

from ...audit import log_action, serialize_model
from ...conversion import create_delivery_note_from_invoice
from ...documents import (
    change_status,
    create_invoice,
    delete_document,
    get_or_raise,
    parse_optional_int,
    update_document,
)
from ...extensions import atomic
from ...models import Invoice
from ...payments import invoice_payments, record_payment
from ...security import permission_required
from ...utils import json_body

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _load(invoice_id: int) -> Invoice:
    return get_or_raise(Invoice, invoice_id, "Invoice")


@invoices_bp.route("", methods=["GET"])
@permission_required("invoices", "read")
def list_invoices():
    q = Invoice.query.options(selectinload(Invoice.line_items), selectinload(Invoice.payments))

    customer_id = parse_optional_int(request.args.get("customerId"), "customerId")
    if customer_id is not None:
        q = q.filter(Invoice.customer_id == customer_id)

    status = (request.args.get("status") or "").strip()
    projected = status == "overdue"
    if status and not projected:
        q = q.filter(Invoice.status == status)

    today = date.today()
    invoices = q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()
    if projected:
        invoices = [inv for inv in invoices if inv.reported_status(today) == "overdue"]

    return jsonify({"invoices": [inv.to_dict(today) for inv in invoices]})


@invoices_bp.route("", methods=["POST"])
@permission_required("invoices", "create")
def create():
    data = json_body()
    with atomic():
        invoice = create_invoice(data)
        log_action(invoice, "CREATE", after=serialize_model(invoice))

    return jsonify({"invoice": invoice.to_dict()}), 201


@invoices_bp.route("/<int:invoice_id>", methods=["GET"])
@permission_required("invoices", "read")
def detail(invoice_id: int):
    return jsonify({"invoice": _load(invoice_id).to_dict()})


@invoices_bp.route("/<int:invoice_id>", methods=["PUT"])
@permission_required("invoices", "update")
def update(invoice_id: int):
    invoice = _load(invoice_id)
    data = json_body()

    with atomic():
        before = serialize_model(invoice)
        update_document(invoice, data)
        log_action(invoice, "UPDATE", before=before, after=serialize_model(invoice))

    return jsonify({"invoice": invoice.to_dict()})


@invoices_bp.route("/<int:invoice_id>/status", methods=["PATCH"])
@permission_required("invoices", "update")
def set_status(invoice_id: int):
    invoice = _load(invoice_id)
    data = json_body()

    with atomic():
        before = serialize_model(invoice)
        change_status(invoice, data.get("status"))
        log_action(invoice, "STATUS", before=before, after=serialize_model(invoice))

    return jsonify({"invoice": invoice.to_dict()})


@invoices_bp.route("/<int:invoice_id>", methods=["DELETE"])
@permission_required("invoices", "delete")
def delete(invoice_id: int):
    invoice = _load(invoice_id)

    with atomic():
        log_action(invoice, "DELETE", before=serialize_model(invoice))
        delete_document(invoice)

    return jsonify({"message": "Invoice deleted successfully"})


# ---------------------------------------------------------------------
# Delivery notes
# ---------------------------------------------------------------------
@invoices_bp.route("/<int:invoice_id>/create-delivery-note", methods=["POST"])
@permission_required("delivery_notes", "create")
def create_delivery_note(invoice_id: int):
    with atomic():
        note = create_delivery_note_from_invoice(invoice_id)
        log_action(note, "CONVERT", after=serialize_model(note))

    return jsonify({"message": "Delivery note created from invoice", "deliveryNote": note.to_dict()}), 201


# ---------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------
@invoices_bp.route("/<int:invoice_id>/payments", methods=["GET"])
@permission_required("payments", "read")
def list_payments(invoice_id: int):
    invoice = _load(invoice_id)
    return jsonify(
        {
            "payments": [p.to_dict() for p in invoice_payments(invoice)],
            "amountPaid": invoice.amount_paid,
            "balanceDue": invoice.balance_due,
        }
    )


@invoices_bp.route("/<int:invoice_id>/payments", methods=["POST"])
@permission_required("payments", "create")
def add_payment(invoice_id: int):
    invoice = _load(invoice_id)
    data = json_body()

    with atomic():
        before = serialize_model(invoice)
        payment = record_payment(invoice, data)
        log_action(payment, "PAYMENT", after=serialize_model(payment))
        if invoice.status != before["status"]:
            log_action(invoice, "STATUS", before=before, after=serialize_model(invoice))

    return jsonify({"payment": payment.to_dict(), "invoice": invoice.to_dict()}), 201
