"""
bizdocs/blueprints/catalog/routes.py

Catalog routes (JSON): products, services, service categories.

Line items snapshot description and price from the catalog when they are
created, so editing a price here never changes existing documents.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from ...audit import log_action, serialize_model
from ...documents import get_or_raise, parse_optional_int
from ...errors import ConflictError, ValidationError
from ...extensions import atomic, db
from ...models import LineItem, Product, Service, ServiceCategory
from ...money import PRICE_SCALE, fit_numeric
from ...security import permission_required
from ...utils import clean_text, json_body

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


def _price(value, field: str):
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    price = fit_numeric(value, field, PRICE_SCALE)
    if price < 0:
        raise ValidationError(f"{field} cannot be negative")
    return price


def _active_filter(q, model):
    if request.args.get("active") in ("1", "true"):
        q = q.filter(model.is_active.is_(True))
    return q


# ---------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------
def _apply_product_fields(product: Product, data: dict, creating: bool) -> None:
    if creating or "name" in data:
        name = clean_text(data.get("name"))
        if not name:
            raise ValidationError("Name is required")
        product.name = name
    if creating or "price" in data:
        product.price = _price(data.get("price"), "price")
    if creating or "unit" in data:
        unit = clean_text(data.get("unit"))
        if not unit:
            raise ValidationError("Unit is required")
        product.unit = unit
    if "description" in data:
        product.description = clean_text(data.get("description"))
    if "category" in data:
        product.category = clean_text(data.get("category"))
    if "stock" in data:
        stock = parse_optional_int(data.get("stock"), "stock") or 0
        if stock < 0:
            raise ValidationError("stock cannot be negative")
        product.stock = stock
    if "isActive" in data:
        product.is_active = bool(data.get("isActive"))


@catalog_bp.route("/products", methods=["GET"])
@permission_required("products", "read")
def list_products():
    q = _active_filter(Product.query, Product)
    products = q.order_by(Product.name.asc()).all()
    return jsonify({"products": [p.to_dict() for p in products]})


@catalog_bp.route("/products", methods=["POST"])
@permission_required("products", "create")
def create_product():
    data = json_body()
    product = Product()
    _apply_product_fields(product, data, creating=True)

    with atomic():
        db.session.add(product)
        db.session.flush()
        log_action(product, "CREATE", after=serialize_model(product))

    return jsonify({"product": product.to_dict()}), 201


@catalog_bp.route("/products/<int:product_id>", methods=["GET"])
@permission_required("products", "read")
def get_product(product_id: int):
    return jsonify({"product": get_or_raise(Product, product_id, "Product").to_dict()})


@catalog_bp.route("/products/<int:product_id>", methods=["PUT"])
@permission_required("products", "update")
def update_product(product_id: int):
    product = get_or_raise(Product, product_id, "Product")
    data = json_body()

    with atomic():
        before = serialize_model(product)
        _apply_product_fields(product, data, creating=False)
        db.session.flush()
        log_action(product, "UPDATE", before=before, after=serialize_model(product))

    return jsonify({"product": product.to_dict()})


@catalog_bp.route("/products/<int:product_id>", methods=["DELETE"])
@permission_required("products", "delete")
def delete_product(product_id: int):
    product = get_or_raise(Product, product_id, "Product")
    if LineItem.query.filter_by(product_id=product.id).first() is not None:
        raise ConflictError("Product is used by documents; deactivate it instead")

    with atomic():
        log_action(product, "DELETE", before=serialize_model(product))
        db.session.delete(product)

    return jsonify({"message": "Product deleted successfully"})


# ---------------------------------------------------------------------
# Service categories
# ---------------------------------------------------------------------
@catalog_bp.route("/service-categories", methods=["GET"])
@permission_required("services", "read")
def list_service_categories():
    categories = ServiceCategory.query.order_by(ServiceCategory.name.asc()).all()
    return jsonify({"categories": [c.to_dict() for c in categories]})


@catalog_bp.route("/service-categories", methods=["POST"])
@permission_required("services", "create")
def create_service_category():
    data = json_body()
    name = clean_text(data.get("name"))
    if not name:
        raise ValidationError("Name is required")
    if ServiceCategory.query.filter_by(name=name).first():
        raise ConflictError("Service category already exists")

    with atomic():
        category = ServiceCategory(name=name, description=clean_text(data.get("description")))
        db.session.add(category)
        db.session.flush()
        log_action(category, "CREATE", after=serialize_model(category))

    return jsonify({"category": category.to_dict()}), 201


# ---------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------
def _apply_service_fields(service: Service, data: dict, creating: bool) -> None:
    if creating or "name" in data:
        name = clean_text(data.get("name"))
        if not name:
            raise ValidationError("Name is required")
        service.name = name
    if creating or "basePrice" in data:
        service.base_price = _price(data.get("basePrice"), "basePrice")
    if "unit" in data or creating:
        service.unit = clean_text(data.get("unit")) or "hour"
    if "description" in data:
        service.description = clean_text(data.get("description"))
    if "categoryId" in data:
        category_id = parse_optional_int(data.get("categoryId"), "categoryId")
        if category_id is not None and db.session.get(ServiceCategory, category_id) is None:
            raise ValidationError(f"Service category {category_id} does not exist")
        service.category_id = category_id
    if "isActive" in data:
        service.is_active = bool(data.get("isActive"))


@catalog_bp.route("/services", methods=["GET"])
@permission_required("services", "read")
def list_services():
    q = _active_filter(Service.query, Service)
    services = q.order_by(Service.name.asc()).all()
    return jsonify({"services": [s.to_dict() for s in services]})


@catalog_bp.route("/services", methods=["POST"])
@permission_required("services", "create")
def create_service():
    data = json_body()
    service = Service()
    _apply_service_fields(service, data, creating=True)

    with atomic():
        db.session.add(service)
        db.session.flush()
        log_action(service, "CREATE", after=serialize_model(service))

    return jsonify({"service": service.to_dict()}), 201


@catalog_bp.route("/services/<int:service_id>", methods=["GET"])
@permission_required("services", "read")
def get_service(service_id: int):
    return jsonify({"service": get_or_raise(Service, service_id, "Service").to_dict()})


@catalog_bp.route("/services/<int:service_id>", methods=["PUT"])
@permission_required("services", "update")
def update_service(service_id: int):
    service = get_or_raise(Service, service_id, "Service")
    data = json_body()

    with atomic():
        before = serialize_model(service)
        _apply_service_fields(service, data, creating=False)
        db.session.flush()
        log_action(service, "UPDATE", before=before, after=serialize_model(service))

    return jsonify({"service": service.to_dict()})


@catalog_bp.route("/services/<int:service_id>", methods=["DELETE"])
@permission_required("services", "delete")
def delete_service(service_id: int):
    service = get_or_raise(Service, service_id, "Service")
    if LineItem.query.filter_by(service_id=service.id).first() is not None:
        raise ConflictError("Service is used by documents; deactivate it instead")

    with atomic():
        log_action(service, "DELETE", before=serialize_model(service))
        db.session.delete(service)

    return jsonify({"message": "Service deleted successfully"})
