"""
Route guards — authentication, role and permission decorators.

Usage:
    @bp.route("/reports", methods=["POST"])
    @require_permission(Permission.CREATE)
    def create_report():
        ...

    @bp.route("/reports/<int:report_id>", methods=["DELETE"])
    @require_role(Role.ADMIN)
    def delete_report(report_id):
        ...

Guards stack in the order they are listed. Every guard implies
``login_required``; a failed guard short-circuits with a JSON error
response and the view never runs.
"""

import functools
import logging

from flask import g

from portal.services.policy import has_permission, has_role
from portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def _unauthenticated():
    reason = getattr(g, "auth_error", None) or "No token, authorization denied"
    return api_error(E.UNAUTHENTICATED, reason)


def login_required(f):
    """Decorator: require a valid bearer credential."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "identity", None) is None:
            return _unauthenticated()
        return f(*args, **kwargs)
    return decorated


def require_role(*roles):
    """
    Decorator: require the caller's role to be one of ``roles``.
    """
    allowed = [getattr(r, "value", r) for r in roles]

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            identity = getattr(g, "identity", None)
            if identity is None:
                return _unauthenticated()

            if not has_role(identity, allowed):
                logger.warning(
                    "User %s denied: role '%s' not in %s on %s",
                    identity.user_id, identity.role, allowed, f.__name__,
                )
                return api_error(
                    E.FORBIDDEN, "User not authorized",
                    details={"required_role": allowed},
                )

            return f(*args, **kwargs)
        return decorated
    return decorator


def require_permission(permission):
    """
    Decorator: require ``permission`` in the caller's permission set.
    """
    codename = getattr(permission, "value", permission)

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            identity = getattr(g, "identity", None)
            if identity is None:
                return _unauthenticated()

            if not has_permission(identity, codename):
                logger.warning(
                    "User %s denied: missing permission '%s' on %s",
                    identity.user_id, codename, f.__name__,
                )
                return api_error(
                    E.FORBIDDEN, "Insufficient permissions",
                    details={"required": codename},
                )

            return f(*args, **kwargs)
        return decorated
    return decorator
