"""
JWT Auth Middleware — the authentication gate.

Parses the bearer credential and sets the request-scoped identity:

    g.identity    Identity | None
    g.auth_error  why the credential was rejected (None if absent or valid)

Accepted headers:
  1. Authorization: Bearer <token>
  2. x-auth-token: <token>          (legacy clients)

This hook never rejects a request by itself; ``login_required`` and the
role/permission decorators turn a missing identity into a 401 before the
view runs, so public routes (login, register, health) need no skip list.
"""

import logging

import jwt as pyjwt
from flask import g, request

from portal.services.jwt_service import identity_from_token

logger = logging.getLogger(__name__)

LEGACY_TOKEN_HEADER = "x-auth-token"


def extract_bearer_token() -> str | None:
    """Return the raw credential from the request headers, if any."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header:
        scheme, _, token = auth_header.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
        return ""  # present but malformed
    legacy = request.headers.get(LEGACY_TOKEN_HEADER)
    if legacy is not None:
        return legacy.strip()
    return None


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.identity = None
        g.auth_error = None

        if not request.path.startswith("/api/"):
            return

        token = extract_bearer_token()
        if token is None:
            return
        if not token:
            g.auth_error = "Malformed authorization header"
            return

        try:
            g.identity = identity_from_token(token)
        except pyjwt.ExpiredSignatureError:
            g.auth_error = "Token has expired"
        except (pyjwt.InvalidTokenError, KeyError, ValueError, TypeError):
            g.auth_error = "Token is not valid"

        if g.auth_error:
            logger.debug("Rejected credential on %s: %s", request.path, g.auth_error)
