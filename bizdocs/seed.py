"""
bizdocs/seed.py

Seed permissions, default roles and the first administrator.

Rules:
- Safe to run multiple times (idempotent).
- Permissions are the full RESOURCES x ACTIONS grid from security.py.
- Default roles:
  - super_admin: every permission (and bypasses checks anyway)
  - sales: customers/catalog read, documents + payments create/read/update
  - viewer: read-only on everything except users/roles

NOTE:
- Customers and catalog items are not seeded; they are first-class data.
"""

from __future__ import annotations

from .extensions import db
from .models import Permission, Role, User, SUPER_ADMIN_ROLE
from .security import ACTIONS, RESOURCES

_DOCUMENT_RESOURCES = ("quotations", "invoices", "delivery_notes", "payments")

DEFAULT_ROLES = [
    (SUPER_ADMIN_ROLE, "Full access", [(r, a) for r in RESOURCES for a in ACTIONS]),
    (
        "sales",
        "Creates and manages quotations, invoices and deliveries",
        [(r, a) for r in _DOCUMENT_RESOURCES for a in ("create", "read", "update")]
        + [("customers", a) for a in ("create", "read", "update")]
        + [("products", "read"), ("services", "read")],
    ),
    (
        "viewer",
        "Read-only access",
        [(r, "read") for r in RESOURCES if r not in ("users", "roles")],
    ),
]


def seed_permissions_and_roles() -> None:
    """Create missing permissions and roles; keep default role grants in sync."""
    by_key: dict[tuple[str, str], Permission] = {}
    for resource in RESOURCES:
        for action in ACTIONS:
            perm = Permission.query.filter_by(resource=resource, action=action).first()
            if not perm:
                perm = Permission(resource=resource, action=action, description=f"{action} {resource}")
                db.session.add(perm)
            by_key[(resource, action)] = perm

    db.session.flush()

    for name, description, grants in DEFAULT_ROLES:
        role = Role.query.filter_by(name=name).first()
        if not role:
            role = Role(name=name, description=description)
            db.session.add(role)
        wanted = [by_key[g] for g in grants]
        for perm in wanted:
            if perm not in role.permissions:
                role.permissions.append(perm)

    db.session.commit()


def create_admin(email: str, username: str, password: str) -> User:
    """Create a super_admin user. Roles are seeded first if needed."""
    if User.query.filter((User.email == email) | (User.username == username)).first():
        raise ValueError("A user with this email or username already exists.")

    seed_permissions_and_roles()
    role = Role.query.filter_by(name=SUPER_ADMIN_ROLE).one()

    user = User(email=email, username=username, first_name="System", last_name="Administrator", is_active=True)
    user.set_password(password)
    user.roles.append(role)

    db.session.add(user)
    db.session.commit()
    return user
