"""
Business Documents domain models.

Entities:
- Users / Roles / Permissions (resource:action RBAC)
- Customers, Products, Services (+ ServiceCategory)
- Documents: Quotation, Invoice, DeliveryNote
- LineItem: one polymorphic table owned by exactly one document
- Payment (against invoices)
- DocumentSequence (atomic counters for invoice / delivery numbers)
- AuditLog

Document rules:
- subtotal == sum(line.total), tax_amount == round2(subtotal * tax_rate / 100),
  total == round2(subtotal + tax_amount). See money.py.
- Stored status vs reported status: Invoice "overdue" and Quotation "EXPIRED"
  are computed on read from the due/validity date and never written by reads.

IMPORTANT:
- Line item ownership is enforced when an item is attached to a document
  (attach_line_item) and backed by a CHECK constraint on the table.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from flask_login import UserMixin
from sqlalchemy import event
from sqlalchemy.orm import declared_attr
from werkzeug.security import generate_password_hash, check_password_hash

from .errors import InvalidTransition, ValidationError
from .extensions import db
from .money import ZERO, document_totals, line_total, round2, to_decimal


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------
# Users, roles, permissions
# ---------------------------------------------------------------------
user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)

role_permissions = db.Table(
    "role_permissions",
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    db.Column("permission_id", db.Integer, db.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

SUPER_ADMIN_ROLE = "super_admin"


class Permission(db.Model):
    """A single resource:action grant (e.g. invoices:create)."""

    __tablename__ = "permissions"

    id = db.Column(db.Integer, primary_key=True)
    resource = db.Column(db.String(50), nullable=False, index=True)
    action = db.Column(db.String(20), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    __table_args__ = (db.UniqueConstraint("resource", "action", name="uq_permission_resource_action"),)

    @property
    def key(self) -> str:
        return f"{self.resource}:{self.action}"

    def to_dict(self) -> dict:
        return {"id": self.id, "resource": self.resource, "action": self.action, "description": self.description}


class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow)

    permissions = db.relationship("Permission", secondary=role_permissions, lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "permissions": sorted(p.key for p in self.permissions),
        }


class User(UserMixin, db.Model):
    """System login user."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(120), nullable=False, default="")
    last_name = db.Column(db.String(120), nullable=False, default="")
    password_hash = db.Column(db.String(255), nullable=False)

    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    roles = db.relationship("Role", secondary=user_roles, lazy="selectin")

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_super_admin(self) -> bool:
        return any(r.name == SUPER_ADMIN_ROLE for r in self.roles)

    def permission_keys(self) -> set[str]:
        return {p.key for r in self.roles for p in r.permissions}

    def has_permission(self, resource: str, action: str) -> bool:
        if self.is_super_admin:
            return True
        return f"{resource}:{action}" in self.permission_keys()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "isActive": self.is_active,
            "roles": sorted(r.name for r in self.roles),
            "permissions": sorted(self.permission_keys()),
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.username}>"


# ---------------------------------------------------------------------
# Customers & catalog
# ---------------------------------------------------------------------
class Customer(db.Model):
    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(50), nullable=True)
    address = db.Column(db.Text, nullable=True)
    tax_id = db.Column(db.String(50), nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def summary_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}

    def to_dict(self) -> dict:
        data = self.summary_dict()
        data.update(
            {
                "phone": self.phone,
                "address": self.address,
                "taxId": self.tax_id,
                "createdAt": _iso(self.created_at),
            }
        )
        return data

    def __repr__(self):
        return f"<Customer {self.email}>"


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    unit = db.Column(db.String(50), nullable=False, default="pcs")
    category = db.Column(db.String(120), nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": round2(self.price),
            "unit": self.unit,
            "category": self.category,
            "stock": self.stock,
            "isActive": self.is_active,
        }


class ServiceCategory(db.Model):
    __tablename__ = "service_categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True, index=True)
    description = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}


class Service(db.Model):
    __tablename__ = "services"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    base_price = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    unit = db.Column(db.String(50), nullable=False, default="hour")
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    category_id = db.Column(
        db.Integer,
        db.ForeignKey("service_categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    category = db.relationship("ServiceCategory", backref=db.backref("services", lazy=True))

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "basePrice": round2(self.base_price),
            "unit": self.unit,
            "isActive": self.is_active,
            "category": self.category.to_dict() if self.category else None,
        }


# ---------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------
class DocumentSequence(db.Model):
    """Per-series counter. Incremented atomically by numbering.next_value()."""

    __tablename__ = "document_sequences"

    name = db.Column(db.String(50), primary_key=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)


# ---------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------
ITEM_TYPES = ("PRODUCT", "SERVICE", "CUSTOM")

DOCUMENT_TYPES = ("quotation", "invoice", "delivery_note")


class LineItem(db.Model):
    """
    One priced row of a document.

    Ownership tag: document_type names the owner kind and exactly the matching
    FK (quotation_id / invoice_id / delivery_note_id) is set. document_id
    mirrors that FK and is filled at insert time.
    """

    __tablename__ = "line_items"

    id = db.Column(db.Integer, primary_key=True)

    document_type = db.Column(db.String(20), nullable=False, index=True)
    document_id = db.Column(db.Integer, nullable=True, index=True)

    quotation_id = db.Column(
        db.Integer, db.ForeignKey("quotations.id", ondelete="CASCADE"), nullable=True, index=True
    )
    invoice_id = db.Column(
        db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=True, index=True
    )
    delivery_note_id = db.Column(
        db.Integer, db.ForeignKey("delivery_notes.id", ondelete="CASCADE"), nullable=True, index=True
    )

    position = db.Column(db.Integer, nullable=False, default=0)

    item_type = db.Column(db.String(20), nullable=False, default="CUSTOM")
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id", ondelete="SET NULL"), nullable=True)

    description = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    total = db.Column(db.Numeric(14, 2), nullable=False)

    created_at = db.Column(db.DateTime, default=_utcnow)

    quotation = db.relationship("Quotation", back_populates="line_items")
    invoice = db.relationship("Invoice", back_populates="line_items")
    delivery_note = db.relationship("DeliveryNote", back_populates="line_items")

    product = db.relationship("Product")
    service = db.relationship("Service")

    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_line_item_quantity_positive"),
        db.CheckConstraint("unit_price >= 0", name="ck_line_item_price_non_negative"),
        db.CheckConstraint(
            "(document_type = 'quotation' AND quotation_id IS NOT NULL"
            " AND invoice_id IS NULL AND delivery_note_id IS NULL)"
            " OR (document_type = 'invoice' AND invoice_id IS NOT NULL"
            " AND quotation_id IS NULL AND delivery_note_id IS NULL)"
            " OR (document_type = 'delivery_note' AND delivery_note_id IS NOT NULL"
            " AND quotation_id IS NULL AND invoice_id IS NULL)",
            name="ck_line_item_single_owner",
        ),
    )

    def recompute(self) -> Decimal:
        """Recompute total from current quantity and unit price."""
        self.total = line_total(self.quantity, self.unit_price)
        return self.total

    def owner(self):
        return self.quotation or self.invoice or self.delivery_note

    def clone(self) -> "LineItem":
        """Detached copy of the priced content (no owner)."""
        return LineItem(
            item_type=self.item_type,
            product_id=self.product_id,
            service_id=self.service_id,
            description=self.description,
            quantity=to_decimal(self.quantity),
            unit_price=round2(self.unit_price),
            total=round2(self.total),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "documentType": self.document_type,
            "documentId": self.document_id,
            "itemType": self.item_type,
            "productId": self.product_id,
            "serviceId": self.service_id,
            "description": self.description,
            "quantity": to_decimal(self.quantity),
            "unitPrice": round2(self.unit_price),
            "total": round2(self.total),
            "product": {"id": self.product.id, "name": self.product.name, "unit": self.product.unit}
            if self.product
            else None,
            "service": {"id": self.service.id, "name": self.service.name, "unit": self.service.unit}
            if self.service
            else None,
        }


@event.listens_for(LineItem, "before_insert")
def _fill_document_id(mapper, connection, target: LineItem):
    target.document_id = target.quotation_id or target.invoice_id or target.delivery_note_id


# ---------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------
class DocumentMixin:
    """
    Shared columns and behaviour of Quotation / Invoice / DeliveryNote.

    Subclasses define DOCUMENT_TYPE, STATUSES, INITIAL_STATUS and
    ALLOWED_TRANSITIONS (status -> set of reachable statuses).
    """

    DOCUMENT_TYPE = ""
    STATUSES = ()
    INITIAL_STATUS = ""
    ALLOWED_TRANSITIONS = {}

    id = db.Column(db.Integer, primary_key=True)

    @declared_attr
    def customer_id(cls):
        return db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False, index=True)

    @declared_attr
    def customer(cls):
        return db.relationship("Customer")

    issue_date = db.Column(db.Date, nullable=False, default=date.today, index=True)
    notes = db.Column(db.Text, nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="NGN")

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=ZERO)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)
    total = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    # -----------------------------
    # Line items & totals
    # -----------------------------
    def attach_line_item(self, item: LineItem) -> LineItem:
        owner = item.owner()
        if owner is not None and owner is not self:
            raise ValidationError("Line item already belongs to another document")
        item.document_type = self.DOCUMENT_TYPE
        item.position = len(self.line_items)
        self.line_items.append(item)
        return item

    def replace_line_items(self, items: list[LineItem]) -> None:
        """Full replace: previous items are deleted (delete-orphan)."""
        self.line_items.clear()
        for item in items:
            self.attach_line_item(item)
        self.recalc_totals()

    def recalc_totals(self):
        totals = document_totals([li.total for li in self.line_items], self.tax_rate)
        self.subtotal = totals.subtotal
        self.tax_amount = totals.tax_amount
        self.total = totals.total
        return totals

    # -----------------------------
    # Status
    # -----------------------------
    def transition(self, new_status: str) -> str:
        if new_status not in self.STATUSES:
            raise ValidationError(f"Unknown {self.DOCUMENT_TYPE} status: {new_status!r}")
        allowed = self.ALLOWED_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransition(f"Cannot change {self.DOCUMENT_TYPE} status from {self.status} to {new_status}")
        previous = self.status
        self.status = new_status
        self._on_status_changed(previous, new_status)
        return previous

    def _on_status_changed(self, previous: str, new_status: str) -> None:
        return None

    def reported_status(self, today: date | None = None) -> str:
        return self.status

    def _base_dict(self, today: date | None = None) -> dict:
        return {
            "id": self.id,
            "customerId": self.customer_id,
            "customer": self.customer.summary_dict() if self.customer else None,
            "date": _iso(self.issue_date),
            "status": self.status,
            "displayStatus": self.reported_status(today),
            "notes": self.notes,
            "currency": self.currency,
            "subtotal": round2(self.subtotal),
            "taxRate": round2(self.tax_rate),
            "taxAmount": round2(self.tax_amount),
            "total": round2(self.total),
            "lineItems": [li.to_dict() for li in self.line_items],
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Quotation(DocumentMixin, db.Model):
    __tablename__ = "quotations"

    DOCUMENT_TYPE = "quotation"
    STATUSES = ("DRAFT", "SENT", "ACCEPTED", "REJECTED", "EXPIRED")
    INITIAL_STATUS = "DRAFT"
    ALLOWED_TRANSITIONS = {
        "DRAFT": {"SENT", "ACCEPTED", "REJECTED", "EXPIRED"},
        "SENT": {"ACCEPTED", "REJECTED", "EXPIRED"},
    }

    valid_until = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="DRAFT", index=True)

    line_items = db.relationship(
        "LineItem",
        back_populates="quotation",
        cascade="all, delete-orphan",
        order_by="LineItem.position",
    )
    invoices = db.relationship("Invoice", back_populates="quotation", lazy=True)

    def reported_status(self, today: date | None = None) -> str:
        today = today or date.today()
        if self.status in ("DRAFT", "SENT") and self.valid_until and today > self.valid_until:
            return "EXPIRED"
        return self.status

    def to_dict(self, today: date | None = None) -> dict:
        data = self._base_dict(today)
        data.update(
            {
                "validUntil": _iso(self.valid_until),
                "invoiceIds": [inv.id for inv in self.invoices],
            }
        )
        return data

    def __repr__(self):
        return f"<Quotation {self.id} {self.status}>"


class Invoice(DocumentMixin, db.Model):
    __tablename__ = "invoices"

    DOCUMENT_TYPE = "invoice"
    STATUSES = ("draft", "sent", "paid", "overdue", "cancelled")
    INITIAL_STATUS = "draft"
    ALLOWED_TRANSITIONS = {
        "draft": {"sent", "cancelled"},
        "sent": {"paid", "cancelled"},
    }
    SETTLED_STATUSES = ("paid", "cancelled")

    invoice_number = db.Column(db.String(50), nullable=False, unique=True, index=True)
    due_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="draft", index=True)

    quotation_id = db.Column(
        db.Integer, db.ForeignKey("quotations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    quotation = db.relationship("Quotation", back_populates="invoices")

    line_items = db.relationship(
        "LineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="LineItem.position",
    )
    payments = db.relationship(
        "Payment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Payment.payment_date",
    )
    delivery_notes = db.relationship("DeliveryNote", back_populates="invoice", lazy=True)

    def reported_status(self, today: date | None = None) -> str:
        """overdue is a read-time projection; the stored status is untouched."""
        today = today or date.today()
        if self.status not in self.SETTLED_STATUSES and self.due_date and today > self.due_date:
            return "overdue"
        return self.status

    @property
    def amount_paid(self) -> Decimal:
        return round2(sum((to_decimal(p.amount) for p in self.payments), ZERO))

    @property
    def balance_due(self) -> Decimal:
        return round2(to_decimal(self.total) - self.amount_paid)

    def to_dict(self, today: date | None = None) -> dict:
        data = self._base_dict(today)
        data.update(
            {
                "invoiceNumber": self.invoice_number,
                "dueDate": _iso(self.due_date),
                "quotationId": self.quotation_id,
                "amountPaid": self.amount_paid,
                "balanceDue": self.balance_due,
                "deliveryNoteIds": [dn.id for dn in self.delivery_notes],
            }
        )
        return data

    def __repr__(self):
        return f"<Invoice {self.invoice_number} {self.status}>"


class DeliveryNote(DocumentMixin, db.Model):
    __tablename__ = "delivery_notes"

    DOCUMENT_TYPE = "delivery_note"
    STATUSES = ("pending", "in_transit", "delivered", "cancelled")
    INITIAL_STATUS = "pending"
    ALLOWED_TRANSITIONS = {
        "pending": {"in_transit", "delivered", "cancelled"},
        "in_transit": {"delivered", "cancelled"},
    }

    delivery_number = db.Column(db.String(50), nullable=False, unique=True, index=True)
    delivered_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    invoice_id = db.Column(
        db.Integer, db.ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True
    )
    invoice = db.relationship("Invoice", back_populates="delivery_notes")

    line_items = db.relationship(
        "LineItem",
        back_populates="delivery_note",
        cascade="all, delete-orphan",
        order_by="LineItem.position",
    )

    def _on_status_changed(self, previous: str, new_status: str) -> None:
        if new_status == "delivered" and self.delivered_date is None:
            self.delivered_date = date.today()

    def to_dict(self, today: date | None = None) -> dict:
        data = self._base_dict(today)
        data.update(
            {
                "deliveryNumber": self.delivery_number,
                "deliveredDate": _iso(self.delivered_date),
                "invoiceId": self.invoice_id,
                "invoiceNumber": self.invoice.invoice_number if self.invoice else None,
            }
        )
        return data

    def __repr__(self):
        return f"<DeliveryNote {self.delivery_number} {self.status}>"


# ---------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------
class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)

    invoice_id = db.Column(
        db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    payment_date = db.Column(db.Date, nullable=False, default=date.today)
    payment_method = db.Column(db.String(50), nullable=False, default="bank_transfer")
    reference = db.Column(db.String(120), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    invoice = db.relationship("Invoice", back_populates="payments")

    __table_args__ = (db.CheckConstraint("amount > 0", name="ck_payment_amount_positive"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoiceId": self.invoice_id,
            "amount": round2(self.amount),
            "paymentDate": _iso(self.payment_date),
            "paymentMethod": self.payment_method,
            "reference": self.reference,
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


# ---------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------
class AuditLog(db.Model):
    """Who did what to which entity, with before/after snapshots."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    username_snapshot = db.Column(db.String(150), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)

    user = db.relationship("User", backref=db.backref("audit_entries", lazy=True))
