"""
JWT Service — signing and verifying portal access tokens.

Only one token kind exists: a short-lived HS256 access token whose claims
carry everything the request gate needs (user id, role, permissions), so
authenticating a request never touches the database.

Claims:
    sub          user id as a string
    role         one of Role
    permissions  sorted list of Permission values
    type         always "access"
    iat / exp    issue and expiry time (JWT_ACCESS_EXPIRES seconds apart)
    jti          random id, unique per token
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from portal.services.policy import Identity

ALGORITHM = "HS256"
TOKEN_TYPE = "access"
REQUIRED_CLAIMS = ["sub", "iat", "exp"]


def _signing_key() -> str:
    cfg = current_app.config
    return cfg.get("JWT_SECRET_KEY") or cfg["SECRET_KEY"]


def access_token_lifetime() -> int:
    """Seconds an access token stays valid."""
    return int(current_app.config.get("JWT_ACCESS_EXPIRES", 12 * 3600))


def generate_access_token(user_id: int, role: str, permissions) -> str:
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "permissions": sorted(permissions),
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + timedelta(seconds=access_token_lifetime()),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def issue_token_for_user(user) -> dict:
    """Login / registration response fragment: token, type and lifetime."""
    return {
        "token": generate_access_token(user.id, user.role, user.permission_set),
        "token_type": "Bearer",
        "expires_in": access_token_lifetime(),
    }


def decode_access_token(token: str) -> dict:
    """Verify signature, expiry and token type and return the claims.

    PyJWT exceptions propagate unchanged (ExpiredSignatureError,
    InvalidSignatureError, DecodeError, ...); a token of another type raises
    InvalidTokenError.
    """
    claims = jwt.decode(
        token,
        _signing_key(),
        algorithms=[ALGORITHM],
        options={"require": REQUIRED_CLAIMS},
    )
    if claims.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"Unexpected token type: {claims.get('type')!r}")
    return claims


def identity_from_token(token: str) -> Identity:
    return Identity.from_claims(decode_access_token(token))
