"""
bizdocs/numbering.py

Sequential human-readable numbers for invoices and delivery notes.

Formats:
- Invoice:       INV-<year>-<000001>  (series restarts every year)
- Delivery note: DN-<000001>

Each series lives in one DocumentSequence row that is bumped with a single
UPDATE ... SET last_value = last_value + 1. The UPDATE takes the row (or, on
SQLite, the database) write lock, so two concurrent requests can never read
the same value; the unique constraints on invoice_number / delivery_number
are the second line of defence.

IMPORTANT:
- Allocate the number BEFORE adding anything else to the session. The first
  use of a series inserts its counter row; if another request wins that insert
  the session is rolled back and the bump retried.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from .errors import ConflictError
from .extensions import db
from .models import DocumentSequence

logger = logging.getLogger(__name__)

INVOICE_PREFIX = "INV"
DELIVERY_NOTE_PREFIX = "DN"

_MAX_ATTEMPTS = 3


def _bump(name: str) -> int | None:
    result = db.session.execute(
        update(DocumentSequence)
        .where(DocumentSequence.name == name)
        .values(last_value=DocumentSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    return db.session.execute(
        select(DocumentSequence.last_value).where(DocumentSequence.name == name)
    ).scalar_one()


def next_value(name: str) -> int:
    """Atomically increment series `name` and return the new value."""
    for attempt in range(1, _MAX_ATTEMPTS + 1):
        value = _bump(name)
        if value is not None:
            return value

        db.session.add(DocumentSequence(name=name, last_value=1))
        try:
            db.session.flush()
            return 1
        except IntegrityError:
            # Another request created the series first.
            db.session.rollback()
            logger.info("Sequence %s created concurrently, retrying (attempt %s)", name, attempt)

    raise ConflictError(f"Could not allocate a number for series {name!r}")


def next_invoice_number(today: date | None = None) -> str:
    year = (today or date.today()).year
    seq = next_value(f"invoice-{year}")
    return f"{INVOICE_PREFIX}-{year}-{seq:06d}"


def next_delivery_number() -> str:
    seq = next_value("delivery_note")
    return f"{DELIVERY_NOTE_PREFIX}-{seq:06d}"
