"""
Crypto utilities — bcrypt password hashing.
"""

import os

import bcrypt


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds unless BCRYPT_ROUNDS is set)."""
    salt = bcrypt.gensalt(rounds=int(os.getenv("BCRYPT_ROUNDS", "12")))
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its bcrypt hash."""
    if not password_hash or not plain_password:
        return False
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )
    except ValueError:
        # Not a bcrypt hash
        return False
