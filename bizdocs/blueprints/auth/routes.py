"""
Authentication Routes (JSON)

Provides:
- POST /api/auth/login            (email or username + password)
- POST /api/auth/logout
- GET  /api/auth/me
- POST /api/auth/change-password
- GET  /api/auth/csrf-token       (token for the X-CSRFToken header)

Rules:
- Only active users may log in.
- Credentials validated via password hash; failures never say which part was wrong.
"""

import logging

from flask import Blueprint, jsonify
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from ...errors import ValidationError
from ...extensions import atomic
from ...models import User
from ...utils import json_body

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    return jsonify({"csrfToken": generate_csrf()})


@auth_bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    identifier = (data.get("email") or data.get("username") or "").strip()
    password = data.get("password") or ""

    if not identifier or not password:
        raise ValidationError("Email/username and password are required")

    user = User.query.filter((User.email == identifier) | (User.username == identifier)).first()

    if not user or not user.check_password(password):
        logger.warning("Failed login for %s", identifier)
        return jsonify({"error": "Invalid credentials"}), 401

    if not user.is_active:
        return jsonify({"error": "Account is disabled"}), 403

    login_user(user)
    logger.info("User %s logged in", user.username)
    return jsonify({"user": user.to_dict()})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"message": "Logged out"})


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"user": current_user.to_dict()})


@auth_bp.route("/change-password", methods=["POST"])
@login_required
def change_password():
    data = json_body()
    current_password = data.get("currentPassword") or ""
    new_password = data.get("newPassword") or ""

    if not current_user.check_password(current_password):
        raise ValidationError("Current password is incorrect")
    if len(new_password) < 8:
        raise ValidationError("New password must be at least 8 characters")

    with atomic():
        current_user.set_password(new_password)

    return jsonify({"message": "Password changed"})
