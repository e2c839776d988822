"""
Authorization Policy — pure predicates over a request identity.

Two independent checks, applied after authentication:
  - role membership        (has_role)
  - permission membership  (has_permission)

and the report-level membership rules built from them:
  - is_contributor / is_approver
  - can_edit_report  : ``edit`` permission AND (contributor OR admin)
  - can_view_report  : admin, contributor or approver

Nothing here touches Flask, the database session or a logger; the route
decorators in ``portal.middleware.permission_required`` and the report
service both call into these functions.

Usage:
    from portal.services.policy import Identity, can_edit_report

    identity = Identity(user_id=7, role="contributor", permissions=frozenset({"edit"}))
    if not can_edit_report(identity, report):
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from portal.models.auth import PERMISSIONS, ROLES, Permission, Role


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, derived from a verified access token."""

    user_id: int
    role: str
    permissions: frozenset = field(default_factory=frozenset)

    @classmethod
    def from_claims(cls, claims: dict) -> "Identity":
        """Build an identity from decoded token claims.

        Unknown permission strings are dropped; an unknown role is kept as-is
        and simply never satisfies a role guard.
        """
        perms = frozenset(p for p in (claims.get("permissions") or []) if is_valid_permission(p))
        return cls(user_id=int(claims["sub"]), role=str(claims.get("role", "")), permissions=perms)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


@dataclass(frozen=True)
class RequestContext:
    """What a service call needs to know about the request that made it."""

    identity: Identity
    log: logging.Logger | logging.LoggerAdapter


def _value(item) -> str:
    return item.value if isinstance(item, (Role, Permission)) else str(item)


# ═══════════════════════════════════════════════════════════════
# Role / permission predicates
# ═══════════════════════════════════════════════════════════════

def has_role(identity: Identity | None, allowed: Iterable) -> bool:
    """True iff the caller's role is one of ``allowed``."""
    if identity is None:
        return False
    return identity.role in {_value(r) for r in allowed}


def has_permission(identity: Identity | None, permission) -> bool:
    """True iff ``permission`` is in the caller's permission set."""
    if identity is None:
        return False
    return _value(permission) in identity.permissions


def is_valid_role(role: str) -> bool:
    return isinstance(role, str) and role in ROLES


def is_valid_permission(permission: str) -> bool:
    return isinstance(permission, str) and permission in PERMISSIONS


# ═══════════════════════════════════════════════════════════════
# Report membership
# ═══════════════════════════════════════════════════════════════

def is_contributor(identity: Identity, report) -> bool:
    return identity.user_id in report.contributor_ids()


def is_approver(identity: Identity, report) -> bool:
    return identity.user_id in report.approver_ids()


def can_edit_report(identity: Identity, report) -> bool:
    """``edit`` permission AND (contributor OR admin)."""
    if not has_permission(identity, Permission.EDIT):
        return False
    return identity.is_admin or is_contributor(identity, report)


def can_view_report(identity: Identity, report) -> bool:
    return identity.is_admin or is_contributor(identity, report) or is_approver(identity, report)
