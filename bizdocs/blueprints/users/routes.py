"""
User, role and permission management (JSON).

Rules enforced:
- email and username are unique (409 on duplicates).
- Roles are assigned by name; unknown role names are rejected.
- Password hashes never leave the server and never enter audit snapshots.

Audit:
- CREATE / UPDATE logged
"""

from flask import Blueprint, jsonify

from ...audit import log_action, serialize_model
from ...documents import get_or_raise
from ...errors import ConflictError, ValidationError
from ...extensions import atomic, db
from ...models import Permission, Role, User
from ...security import permission_required
from ...utils import clean_text, json_body

users_bp = Blueprint("users", __name__, url_prefix="/api")


def _roles_from_names(names) -> list[Role]:
    if names is None:
        return []
    if not isinstance(names, list):
        raise ValidationError("roles must be a list of role names")
    roles = []
    for name in names:
        role = Role.query.filter_by(name=str(name)).first()
        if role is None:
            raise ValidationError(f"Unknown role: {name!r}")
        roles.append(role)
    return roles


def _identity_taken(email: str | None, username: str | None, exclude_user_id: int | None = None) -> bool:
    conditions = []
    if email:
        conditions.append(User.email == email)
    if username:
        conditions.append(User.username == username)
    if not conditions:
        return False
    q = User.query.filter(db.or_(*conditions))
    if exclude_user_id is not None:
        q = q.filter(User.id != exclude_user_id)
    return q.first() is not None


# ---------------------------------------------------------------------
# USERS
# ---------------------------------------------------------------------
@users_bp.route("/users", methods=["GET"])
@permission_required("users", "read")
def list_users():
    users = User.query.order_by(User.username.asc()).all()
    return jsonify({"users": [u.to_dict() for u in users]})


@users_bp.route("/users", methods=["POST"])
@permission_required("users", "create")
def create_user():
    """
    Create a new system user.

    Required: email, username, password (8+ chars). Optional: firstName,
    lastName, roles (list of role names).
    """
    data = json_body()
    email = clean_text(data.get("email"))
    username = clean_text(data.get("username"))
    password = data.get("password") or ""

    if not email or not username or not password:
        raise ValidationError("email, username and password are required")
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters")
    if _identity_taken(email, username):
        raise ConflictError("A user with this email or username already exists")

    roles = _roles_from_names(data.get("roles"))

    with atomic():
        user = User(
            email=email,
            username=username,
            first_name=clean_text(data.get("firstName")) or "",
            last_name=clean_text(data.get("lastName")) or "",
            is_active=True,
        )
        user.set_password(password)
        user.roles = roles
        db.session.add(user)
        db.session.flush()
        log_action(user, "CREATE", after=serialize_model(user))

    return jsonify({"user": user.to_dict()}), 201


@users_bp.route("/users/<int:user_id>", methods=["GET"])
@permission_required("users", "read")
def get_user(user_id: int):
    return jsonify({"user": get_or_raise(User, user_id, "User").to_dict()})


@users_bp.route("/users/<int:user_id>", methods=["PUT"])
@permission_required("users", "update")
def update_user(user_id: int):
    """
    Edit an existing user: names, email/username, active flag, roles,
    password reset.
    """
    user = get_or_raise(User, user_id, "User")
    data = json_body()

    email = clean_text(data.get("email")) if "email" in data else None
    username = clean_text(data.get("username")) if "username" in data else None
    if _identity_taken(email, username, exclude_user_id=user.id):
        raise ConflictError("A user with this email or username already exists")

    with atomic():
        before = serialize_model(user)
        if email:
            user.email = email
        if username:
            user.username = username
        if "firstName" in data:
            user.first_name = clean_text(data.get("firstName")) or ""
        if "lastName" in data:
            user.last_name = clean_text(data.get("lastName")) or ""
        if "isActive" in data:
            user.is_active = bool(data.get("isActive"))
        if "roles" in data:
            user.roles = _roles_from_names(data.get("roles"))

        new_password = data.get("password") or ""
        if new_password:
            if len(new_password) < 8:
                raise ValidationError("Password must be at least 8 characters")
            user.set_password(new_password)

        db.session.flush()
        log_action(user, "UPDATE", before=before, after=serialize_model(user))

    return jsonify({"user": user.to_dict()})


# ---------------------------------------------------------------------
# ROLES & PERMISSIONS
# ---------------------------------------------------------------------
@users_bp.route("/roles", methods=["GET"])
@permission_required("roles", "read")
def list_roles():
    roles = Role.query.order_by(Role.name.asc()).all()
    return jsonify({"roles": [r.to_dict() for r in roles]})


@users_bp.route("/roles", methods=["POST"])
@permission_required("roles", "create")
def create_role():
    """Create a role from a name and a list of "resource:action" keys."""
    data = json_body()
    name = clean_text(data.get("name"))
    if not name:
        raise ValidationError("Role name is required")
    if Role.query.filter_by(name=name).first():
        raise ConflictError("Role already exists")

    keys = data.get("permissions") or []
    if not isinstance(keys, list):
        raise ValidationError("permissions must be a list of resource:action keys")

    permissions = []
    for key in keys:
        resource, _, action = str(key).partition(":")
        perm = Permission.query.filter_by(resource=resource, action=action).first()
        if perm is None:
            raise ValidationError(f"Unknown permission: {key!r}")
        permissions.append(perm)

    with atomic():
        role = Role(name=name, description=clean_text(data.get("description")))
        role.permissions = permissions
        db.session.add(role)
        db.session.flush()
        log_action(role, "CREATE", after=serialize_model(role))

    return jsonify({"role": role.to_dict()}), 201


@users_bp.route("/permissions", methods=["GET"])
@permission_required("roles", "read")
def list_permissions():
    permissions = Permission.query.order_by(Permission.resource.asc(), Permission.action.asc()).all()
    return jsonify({"permissions": [p.to_dict() for p in permissions]})
