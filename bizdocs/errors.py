"""
bizdocs/errors.py

Typed domain errors and their JSON mapping.

The core (money, models, workflows) raises these; the API layer never
builds error responses by hand. register_error_handlers() maps each kind to
its HTTP status with a {"error": "..."} body.
"""

from __future__ import annotations

import logging

from flask import jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base class for errors raised by the business core."""

    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        payload.update(self.extra)
        return payload


class ValidationError(DomainError):
    """Bad or missing input."""

    status_code = 400


class InvalidQuantity(ValidationError):
    pass


class InvalidPrice(ValidationError):
    pass


class InvalidTaxRate(ValidationError):
    pass


class NotFoundError(DomainError):
    status_code = 404


class InvalidTransition(DomainError):
    """Status change not permitted by the document's transition table."""

    status_code = 409


class ConflictError(DomainError):
    """Duplicate unique key or a state that blocks the operation."""

    status_code = 409


class InternalError(DomainError):
    status_code = 500


def register_error_handlers(app) -> None:
    """Wire JSON error responses for domain, HTTP and unexpected errors."""

    @app.errorhandler(DomainError)
    def _domain_error(err: DomainError):
        if err.status_code >= 500:
            logger.error("Internal error: %s", err.message)
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(IntegrityError)
    def _integrity_error(err: IntegrityError):
        logger.warning("Integrity error: %s", err.orig)
        return jsonify({"error": "Conflicting record already exists"}), 409

    @app.errorhandler(HTTPException)
    def _http_error(err: HTTPException):
        return jsonify({"error": err.description or err.name}), err.code

    @app.errorhandler(Exception)
    def _unexpected_error(err: Exception):
        logger.exception("Unhandled error")
        return jsonify(InternalError("Internal server error").to_dict()), 500
