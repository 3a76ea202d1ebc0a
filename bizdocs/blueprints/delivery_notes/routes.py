"""
bizdocs/blueprints/delivery_notes/routes.py

Delivery note routes (JSON): list, detail, create, full update, status, delete.

Status flow: pending -> in_transit -> delivered (delivered_date stamped on
arrival), with cancellation allowed before delivery.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy.orm import selectinload

from ...audit import log_action, serialize_model
from ...documents import (
    change_status,
    create_delivery_note,
    delete_document,
    get_or_raise,
    parse_optional_int,
    update_document,
)
from ...extensions import atomic
from ...models import DeliveryNote
from ...security import permission_required
from ...utils import json_body

delivery_notes_bp = Blueprint("delivery_notes", __name__, url_prefix="/api/delivery-notes")


def _load(note_id: int) -> DeliveryNote:
    return get_or_raise(DeliveryNote, note_id, "Delivery note")


@delivery_notes_bp.route("", methods=["GET"])
@permission_required("delivery_notes", "read")
def list_delivery_notes():
    q = DeliveryNote.query.options(selectinload(DeliveryNote.line_items))

    invoice_id = parse_optional_int(request.args.get("invoiceId"), "invoiceId")
    if invoice_id is not None:
        q = q.filter(DeliveryNote.invoice_id == invoice_id)

    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(DeliveryNote.status == status)

    notes = q.order_by(DeliveryNote.created_at.desc(), DeliveryNote.id.desc()).all()
    return jsonify({"deliveryNotes": [n.to_dict() for n in notes]})


@delivery_notes_bp.route("", methods=["POST"])
@permission_required("delivery_notes", "create")
def create():
    data = json_body()
    with atomic():
        note = create_delivery_note(data)
        log_action(note, "CREATE", after=serialize_model(note))

    return jsonify({"deliveryNote": note.to_dict()}), 201


@delivery_notes_bp.route("/<int:note_id>", methods=["GET"])
@permission_required("delivery_notes", "read")
def detail(note_id: int):
    return jsonify({"deliveryNote": _load(note_id).to_dict()})


@delivery_notes_bp.route("/<int:note_id>", methods=["PUT"])
@permission_required("delivery_notes", "update")
def update(note_id: int):
    note = _load(note_id)
    data = json_body()

    with atomic():
        before = serialize_model(note)
        update_document(note, data)
        log_action(note, "UPDATE", before=before, after=serialize_model(note))

    return jsonify({"deliveryNote": note.to_dict()})


@delivery_notes_bp.route("/<int:note_id>/status", methods=["PATCH"])
@permission_required("delivery_notes", "update")
def set_status(note_id: int):
    note = _load(note_id)
    data = json_body()

    with atomic():
        before = serialize_model(note)
        change_status(note, data.get("status"))
        log_action(note, "STATUS", before=before, after=serialize_model(note))

    return jsonify({"deliveryNote": note.to_dict()})


@delivery_notes_bp.route("/<int:note_id>", methods=["DELETE"])
@permission_required("delivery_notes", "delete")
def delete(note_id: int):
    note = _load(note_id)

    with atomic():
        log_action(note, "DELETE", before=serialize_model(note))
        delete_document(note)

    return jsonify({"message": "Delivery note deleted successfully"})
