"""
Auth Models — users, roles and the closed permission set.

Roles and permissions are closed enumerations. A user carries exactly one
role and an explicit subset of permissions; the two are checked
independently by the authorization policy.
"""

from datetime import datetime, timezone
from enum import Enum

from portal.models import db


class Role(str, Enum):
    ADMIN = "admin"
    HOD = "hod"                  # head of department
    FACULTY = "faculty"
    CONTRIBUTOR = "contributor"
    VIEWER = "viewer"


class Permission(str, Enum):
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    APPROVE = "approve"


ROLES = frozenset(r.value for r in Role)
PERMISSIONS = frozenset(p.value for p in Permission)

# Permissions granted when an account is created without an explicit set
DEFAULT_ROLE_PERMISSIONS = {
    Role.ADMIN.value: [p.value for p in Permission],
    Role.HOD.value: [Permission.CREATE.value, Permission.EDIT.value, Permission.APPROVE.value],
    Role.FACULTY.value: [Permission.CREATE.value, Permission.EDIT.value],
    Role.CONTRIBUTOR.value: [Permission.CREATE.value, Permission.EDIT.value],
    Role.VIEWER.value: [],
}


def _utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(30), nullable=False, default=Role.CONTRIBUTOR.value)
    permissions = db.Column(db.JSON, nullable=False, default=list)
    department = db.Column(db.String(200))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.Index("ix_users_department", "department"),
    )

    @property
    def permission_set(self) -> frozenset:
        return frozenset(self.permissions or [])

    def to_summary(self):
        """Short form used when a user is embedded in a report."""
        return {"id": self.id, "username": self.username, "email": self.email}

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "permissions": sorted(self.permission_set),
            "department": self.department,
            "is_active": self.is_active,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<User {self.id} {self.username} role={self.role}>"
