"""
bizdocs/blueprints/quotations/routes.py

Quotation routes (JSON).

Includes:
- List (filter by customer / stored status) and detail
- Create, full update (line items are replaced, never merged), status change, delete
- Conversion to invoice

IMPORTANT:
- Every composite write runs inside atomic(): the quotation, its line items
  and the audit rows commit together or not at all.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy.orm import selectinload

from ...audit import log_action, serialize_model
from ...conversion import convert_quotation_to_invoice
from ...documents import (
    change_status,
    create_quotation,
    delete_document,
    get_or_raise,
    parse_optional_int,
    update_document,
)
from ...extensions import atomic
from ...models import Quotation
from ...security import permission_required
from ...utils import json_body

quotations_bp = Blueprint("quotations", __name__, url_prefix="/api/quotations")


def _load(quotation_id: int) -> Quotation:
    return get_or_raise(Quotation, quotation_id, "Quotation")


@quotations_bp.route("", methods=["GET"])
@permission_required("quotations", "read")
def list_quotations():
    q = Quotation.query.options(selectinload(Quotation.line_items))

    customer_id = parse_optional_int(request.args.get("customerId"), "customerId")
    if customer_id is not None:
        q = q.filter(Quotation.customer_id == customer_id)

    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(Quotation.status == status)

    quotations = q.order_by(Quotation.created_at.desc(), Quotation.id.desc()).all()
    return jsonify({"quotations": [quo.to_dict() for quo in quotations]})


@quotations_bp.route("", methods=["POST"])
@permission_required("quotations", "create")
def create():
    data = json_body()
    with atomic():
        quotation = create_quotation(data)
        log_action(quotation, "CREATE", after=serialize_model(quotation))

    return jsonify({"quotation": quotation.to_dict()}), 201


@quotations_bp.route("/<int:quotation_id>", methods=["GET"])
@permission_required("quotations", "read")
def detail(quotation_id: int):
    return jsonify({"quotation": _load(quotation_id).to_dict()})


@quotations_bp.route("/<int:quotation_id>", methods=["PUT"])
@permission_required("quotations", "update")
def update(quotation_id: int):
    quotation = _load(quotation_id)
    data = json_body()

    with atomic():
        before = serialize_model(quotation)
        update_document(quotation, data)
        log_action(quotation, "UPDATE", before=before, after=serialize_model(quotation))

    return jsonify({"quotation": quotation.to_dict()})


@quotations_bp.route("/<int:quotation_id>/status", methods=["PATCH"])
@permission_required("quotations", "update")
def set_status(quotation_id: int):
    quotation = _load(quotation_id)
    data = json_body()

    with atomic():
        before = serialize_model(quotation)
        change_status(quotation, data.get("status"))
        log_action(quotation, "STATUS", before=before, after=serialize_model(quotation))

    return jsonify({"quotation": quotation.to_dict()})


@quotations_bp.route("/<int:quotation_id>", methods=["DELETE"])
@permission_required("quotations", "delete")
def delete(quotation_id: int):
    quotation = _load(quotation_id)

    with atomic():
        before = serialize_model(quotation)
        log_action(quotation, "DELETE", before=before)
        delete_document(quotation)

    return jsonify({"message": "Quotation deleted successfully"})


@quotations_bp.route("/<int:quotation_id>/convert-to-invoice", methods=["POST"])
@permission_required("invoices", "create")
def convert_to_invoice(quotation_id: int):
    with atomic():
        invoice = convert_quotation_to_invoice(quotation_id)
        log_action(invoice, "CONVERT", after=serialize_model(invoice))
        log_action(invoice.quotation, "STATUS", after=serialize_model(invoice.quotation))

    return jsonify({"message": "Quotation converted to invoice", "invoice": invoice.to_dict()}), 201
