"""Standardised API error responses.

Usage
-----
    from portal.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Report not found")
    return api_error(E.VALIDATION_INVALID, "Invalid input", details={"errors": [...]})

``register_error_handlers(app)`` maps the exceptions in
``portal.core.exceptions`` onto these payloads for every blueprint.
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from portal.core.exceptions import (
    AuthenticationError,
    ConflictError,
    GatewayError,
    NotFoundError,
    PermissionDeniedError,
    TransitionError,
    ValidationError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (the ``code`` discriminator)."""

    # Authentication – HTTP 401
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Validation – HTTP 400
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_VERSION = "ERR_CONFLICT_VERSION"

    # Request shape
    PAYLOAD_TOO_LARGE = "ERR_PAYLOAD_TOO_LARGE"
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 5xx
    INTEGRATION = "ERR_INTEGRATION"
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_VERSION: 409,
    E.PAYLOAD_TOO_LARGE: 413,
    E.METHOD_NOT_ALLOWED: 405,
    E.RATE_LIMITED: 429,
    E.INTEGRATION: 502,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, required permission, ...).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app):
    """Translate domain exceptions into ``api_error`` payloads app-wide."""
    from portal.models import db

    @app.errorhandler(AuthenticationError)
    def _handle_unauthenticated(error: AuthenticationError):
        return api_error(E.UNAUTHENTICATED, error.message)

    @app.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error: PermissionDeniedError):
        logger.info("Forbidden: %s (%s) on %s", error, error.reason, request.endpoint)
        return api_error(E.FORBIDDEN, str(error))

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details={"errors": error.errors})

    @app.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(
            E.CONFLICT_DUPLICATE,
            f"{error.resource} with this {error.field} already exists",
            details={"field": error.field},
        )

    @app.errorhandler(VersionConflictError)
    def _handle_version_conflict(error: VersionConflictError):
        db.session.rollback()
        details = {}
        if error.actual is not None:
            details["current_version"] = error.actual
        return api_error(E.CONFLICT_VERSION, str(error), details=details or None)

    @app.errorhandler(StaleDataError)
    def _handle_stale(error: StaleDataError):
        db.session.rollback()
        logger.warning("Concurrent modification detected on %s: %s", request.path, error)
        return api_error(E.CONFLICT_VERSION, "Resource was modified concurrently; reload and retry")

    @app.errorhandler(TransitionError)
    def _handle_transition(error: TransitionError):
        return api_error(
            E.CONFLICT_STATE, str(error),
            details={"action": error.action, "current_status": error.current_status},
        )

    @app.errorhandler(GatewayError)
    def _handle_gateway(error: GatewayError):
        logger.error("Attachment gateway failure: %s (status=%s)", error.message, error.status_code)
        return api_error(E.INTEGRATION, "Attachment storage unavailable")

    @app.errorhandler(SQLAlchemyError)
    def _handle_database(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error on %s %s", request.method, request.path)
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def _not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.METHOD_NOT_ALLOWED, "Method not allowed")

    @app.errorhandler(413)
    def _too_large(e):
        return api_error(E.PAYLOAD_TOO_LARGE, "Request body too large")

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            code = E.VALIDATION_INVALID if error.code and error.code < 500 else E.INTERNAL
            return api_error(code, error.description or error.name, status=error.code)
        db.session.rollback()
        logger.exception("Unexpected error on %s %s", request.method, request.path)
        return api_error(E.INTERNAL, "Internal server error")
