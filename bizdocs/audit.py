"""
bizdocs/audit.py

Audit logging helpers.

Goals:
- Capture WHO did WHAT to WHICH document/entity, with BEFORE/AFTER snapshots.
- Store username snapshot to preserve identity even if username changes later.
- Store IP address for traceability.

IMPORTANT:
- This helper ADDS AuditLog entries to the current SQLAlchemy session.
  The calling route controls transaction boundaries (extensions.atomic), so an
  audit row only persists together with the change it describes.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from flask import has_request_context, request
from flask_login import current_user

from .extensions import db
from .models import AuditLog


_REDACTED_COLUMNS = {"password_hash"}


def _safe_str(value: Any) -> Optional[str]:
    """Stable string for JSON/DB storage. Decimal/date/datetime go through str()."""
    if value is None:
        return None
    return str(value)


def serialize_model(instance: Any) -> Dict[str, Optional[str]]:
    """
    Snapshot of a model's scalar columns (relationships are not followed,
    password hashes are never copied).

    Values are strings for JSON safety and SQLite/PostgreSQL portability.
    """
    data: Dict[str, Optional[str]] = {}
    for column in instance.__table__.columns:
        if column.name in _REDACTED_COLUMNS:
            continue
        data[column.name] = _safe_str(getattr(instance, column.name))
    return data


def _actor():
    if not has_request_context():
        return None
    if current_user and current_user.is_authenticated:
        return current_user
    return None


def log_action(
    entity: Any,
    action: str,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Add an AuditLog entry for `entity` (must be flushed, i.e. have an id).

    action: CREATE / UPDATE / DELETE / STATUS / CONVERT / PAYMENT

    SECURITY NOTE:
    - request.remote_addr is as Flask sees it. Behind a reverse proxy configure
      ProxyFix so the real client IP is captured.
    """
    entity_id = getattr(entity, "id", None)
    if entity_id is None:
        raise ValueError("log_action entity must have an 'id' attribute (after flush).")

    user = _actor()
    entry = AuditLog(
        user_id=user.id if user else None,
        username_snapshot=user.username if user else None,
        entity_type=entity.__class__.__name__,
        entity_id=int(entity_id),
        action=str(action),
        before_data=json.dumps(before, ensure_ascii=False) if before else None,
        after_data=json.dumps(after, ensure_ascii=False) if after else None,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)
    return entry
