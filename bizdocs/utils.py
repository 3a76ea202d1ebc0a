"""
Utility functions shared across the API blueprints:
- json_body: the request's JSON object (400 when missing or not an object).
- pagination_args: page/limit from the query string with sane bounds.
- paginate: apply page/limit to a query and build the pagination block.
- clean_text: strip free-text input; blank becomes None.
"""

from flask import request

from .errors import ValidationError

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def clean_text(value) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def pagination_args() -> tuple[int, int]:
    """Return (page, limit). Invalid values fall back to defaults."""
    try:
        page = max(int(request.args.get("page", 1)), 1)
    except ValueError:
        page = 1
    try:
        limit = int(request.args.get("limit", DEFAULT_PAGE_SIZE))
    except ValueError:
        limit = DEFAULT_PAGE_SIZE
    return page, min(max(limit, 1), MAX_PAGE_SIZE)


def paginate(query):
    """Return (items, pagination dict) for the current request's page/limit."""
    page, limit = pagination_args()
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    pages = (total + limit - 1) // limit
    return items, {"page": page, "limit": limit, "total": total, "pages": pages}
