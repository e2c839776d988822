"""
JWT service and password hashing unit tests.
"""

from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import pytest

from portal.services.jwt_service import (
    decode_access_token,
    generate_access_token,
    identity_from_token,
    issue_token_for_user,
)
from portal.utils.crypto import hash_password, verify_password


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Crypto — bcrypt
# ═══════════════════════════════════════════════════════════════

class TestCrypto:
    def test_hash_and_verify(self):
        hashed = hash_password("MySecretPassword123!")
        assert hashed != "MySecretPassword123!"
        assert verify_password("MySecretPassword123!", hashed) is True

    def test_wrong_password(self):
        hashed = hash_password("correct")
        assert verify_password("wrong", hashed) is False

    def test_empty_hash(self):
        assert verify_password("anything", "") is False
        assert verify_password("anything", None) is False

    def test_different_hashes_per_call(self):
        h1 = hash_password("same")
        h2 = hash_password("same")
        assert h1 != h2  # bcrypt uses random salt
        assert verify_password("same", h1)
        assert verify_password("same", h2)


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: JWT Service
# ═══════════════════════════════════════════════════════════════

def _secret(app):
    return app.config["JWT_SECRET_KEY"] or app.config["SECRET_KEY"]


class TestJWTService:
    def test_generate_access_token(self, app):
        token = generate_access_token(42, "faculty", ["edit", "create"])
        payload = decode_access_token(token)
        assert payload["sub"] == "42"
        assert payload["role"] == "faculty"
        assert payload["permissions"] == ["create", "edit"]
        assert payload["type"] == "access"
        assert payload["exp"] - payload["iat"] == app.config["JWT_ACCESS_EXPIRES"]

    def test_issue_token_for_user(self, app, contributor):
        body = issue_token_for_user(contributor)
        assert body["token_type"] == "Bearer"
        assert body["expires_in"] == app.config["JWT_ACCESS_EXPIRES"]
        assert decode_access_token(body["token"])["sub"] == str(contributor.id)

    def test_expired_token(self, app):
        now = datetime.now(timezone.utc)
        token = pyjwt.encode({
            "sub": "1", "role": "admin", "permissions": [], "type": "access",
            "iat": now - timedelta(hours=2),
            "exp": now - timedelta(hours=1),
        }, _secret(app), algorithm="HS256")
        with pytest.raises(pyjwt.ExpiredSignatureError):
            decode_access_token(token)

    def test_wrong_token_type(self, app):
        now = datetime.now(timezone.utc)
        token = pyjwt.encode({
            "sub": "1", "type": "refresh", "iat": now, "exp": now + timedelta(hours=1),
        }, _secret(app), algorithm="HS256")
        with pytest.raises(pyjwt.InvalidTokenError):
            decode_access_token(token)

    def test_wrong_signature(self, app):
        now = datetime.now(timezone.utc)
        token = pyjwt.encode({
            "sub": "1", "type": "access", "iat": now, "exp": now + timedelta(hours=1),
        }, "some-other-secret-that-is-long-enough-32b", algorithm="HS256")
        with pytest.raises(pyjwt.InvalidSignatureError):
            decode_access_token(token)

    def test_invalid_token(self, app):
        with pytest.raises(pyjwt.exceptions.DecodeError):
            decode_access_token("not.a.valid.jwt.token")

    def test_identity_from_token(self, app):
        token = generate_access_token(7, "admin", ["approve", "create", "bogus"])
        identity = identity_from_token(token)
        assert identity.user_id == 7
        assert identity.is_admin
        assert identity.permissions == frozenset({"approve", "create"})
