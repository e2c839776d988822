"""
User Service — registration, authentication, profile and admin updates.

Users are never hard-deleted; admins deactivate them instead.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError

from portal.core.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from portal.models import db
from portal.models.auth import DEFAULT_ROLE_PERMISSIONS, Role, User
from portal.services.policy import RequestContext, is_valid_permission, is_valid_role
from portal.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_USERNAME_LENGTH = 100


# ═══════════════════════════════════════════════════════════════
# Validation helpers
# ═══════════════════════════════════════════════════════════════
def _normalise_email(email, errors: list[dict]) -> str | None:
    if not isinstance(email, str) or not email.strip():
        message = "Email must be a string" if email is not None and not isinstance(email, str) else "Email is required"
        errors.append({"field": "email", "message": message})
        return None
    try:
        return validate_email(email, check_deliverability=False).normalized.lower()
    except EmailNotValidError as e:
        errors.append({"field": "email", "message": f"Invalid email: {e}"})
        return None


def _check_username(username, errors: list[dict]) -> str | None:
    if username is not None and not isinstance(username, str):
        errors.append({"field": "username", "message": "Username must be a string"})
        return None
    username = (username or "").strip()
    if not username:
        errors.append({"field": "username", "message": "Username is required"})
        return None
    if len(username) > MAX_USERNAME_LENGTH:
        errors.append({"field": "username", "message": f"Username must be at most {MAX_USERNAME_LENGTH} characters"})
        return None
    return username


def _check_password(password, errors: list[dict], field: str = "password"):
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        errors.append({"field": field, "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"})


def _clean_department(department, errors: list[dict]) -> str | None:
    if department is not None and not isinstance(department, str):
        errors.append({"field": "department", "message": "Department must be a string"})
        return None
    return (department or "").strip() or None


def _check_permissions(permissions, errors: list[dict]):
    if not isinstance(permissions, list):
        errors.append({"field": "permissions", "message": "Permissions must be a list"})
        return
    for p in permissions:
        if not is_valid_permission(p):
            errors.append({"field": "permissions", "message": f"Unknown permission: {p!r}"})


def _ensure_unique(user_id: int | None, username: str | None, email: str | None):
    if username:
        q = User.query.filter(User.username == username)
        if user_id is not None:
            q = q.filter(User.id != user_id)
        if q.first():
            raise ConflictError("User", "username", username)
    if email:
        q = User.query.filter(User.email == email)
        if user_id is not None:
            q = q.filter(User.id != user_id)
        if q.first():
            raise ConflictError("User", "email", email)


def _commit_user(user: User):
    try:
        db.session.commit()
    except IntegrityError as exc:
        # Lost a race with a concurrent registration of the same name/email
        db.session.rollback()
        logger.warning("Integrity error saving user %s: %s", user.username, exc.orig)
        raise ConflictError("User", "username or email") from exc


# ═══════════════════════════════════════════════════════════════
# Registration / authentication
# ═══════════════════════════════════════════════════════════════
def create_user(
    username: str,
    email: str,
    password: str,
    department: str | None = None,
    role: str = Role.CONTRIBUTOR.value,
    permissions: list[str] | None = None,
) -> User:
    """Create a user. Permissions default to the role's default set."""
    errors: list[dict] = []
    username = _check_username(username, errors)
    email = _normalise_email(email, errors)
    _check_password(password, errors)
    department = _clean_department(department, errors)
    if not is_valid_role(role):
        errors.append({"field": "role", "message": f"Unknown role: {role!r}"})
    if permissions is not None:
        _check_permissions(permissions, errors)
    if errors:
        raise ValidationError("Invalid user data", errors=errors)

    _ensure_unique(None, username, email)

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        permissions=sorted(set(permissions if permissions is not None else DEFAULT_ROLE_PERMISSIONS[role])),
        department=department,
        is_active=True,
    )
    db.session.add(user)
    _commit_user(user)
    logger.info("Created user id=%s username=%s role=%s", user.id, user.username, user.role)
    return user


def register_user(data: dict) -> User:
    """Self-registration: always a contributor with the default permissions."""
    return create_user(
        username=data.get("username"),
        email=data.get("email"),
        password=data.get("password"),
        department=data.get("department"),
    )


def authenticate_user(email: str, password: str) -> User:
    """Check credentials and stamp last_login_at."""
    errors = [
        {"field": field, "message": f"{field.capitalize()} is required"}
        for field, value in (("email", email), ("password", password))
        if not isinstance(value, str) or not value.strip()
    ]
    if errors:
        raise ValidationError("Email and password are required", errors=errors)
    email = email.strip().lower()

    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated")

    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    return user


def get_user_by_id(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User", user_id)
    return user


def change_password(ctx: RequestContext, current_password: str, new_password: str) -> None:
    errors: list[dict] = []
    if not isinstance(current_password, str) or not current_password:
        errors.append({"field": "current_password", "message": "Current password is required"})
    _check_password(new_password, errors, field="new_password")
    if errors:
        raise ValidationError("Invalid password change", errors=errors)

    user = get_user_by_id(ctx.identity.user_id)
    if not verify_password(current_password, user.password_hash):
        raise PermissionDeniedError("change password", "current password is incorrect")

    user.password_hash = hash_password(new_password)
    db.session.commit()
    ctx.log.info("Password changed for user %s", user.id)


# ═══════════════════════════════════════════════════════════════
# Profile / admin management
# ═══════════════════════════════════════════════════════════════
def list_users(
    ctx: RequestContext,
    department: str | None = None,
    role: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    q = User.query
    if department:
        q = q.filter(User.department == department)
    if role:
        q = q.filter(User.role == role)
    total = q.count()
    users = q.order_by(User.username).limit(limit).offset((page - 1) * limit).all()
    return {
        "users": [u.to_dict() for u in users],
        "total": total,
        "total_pages": -(-total // limit),
        "current_page": page,
    }


def get_user(ctx: RequestContext, user_id: int) -> User:
    """Users may read themselves; admins may read anyone."""
    if not ctx.identity.is_admin and ctx.identity.user_id != user_id:
        raise PermissionDeniedError("view user", f"user {ctx.identity.user_id} requested {user_id}")
    return get_user_by_id(user_id)


_PROFILE_FIELDS = ("username", "email", "department")
_ADMIN_FIELDS = ("role", "permissions", "department", "is_active")


def update_profile(ctx: RequestContext, data: dict) -> User:
    """Caller updates their own username / email / department."""
    unknown = sorted(set(data) - set(_PROFILE_FIELDS))
    if unknown:
        raise ValidationError("Unsupported profile fields", errors=[
            {"field": f, "message": "Field cannot be changed here"} for f in unknown
        ])

    user = get_user_by_id(ctx.identity.user_id)
    errors: list[dict] = []
    username = _check_username(data["username"], errors) if "username" in data else None
    email = _normalise_email(data["email"], errors) if "email" in data else None
    department = _clean_department(data["department"], errors) if "department" in data else None
    if errors:
        raise ValidationError("Invalid profile data", errors=errors)

    _ensure_unique(user.id, username, email)
    if username:
        user.username = username
    if email:
        user.email = email
    if "department" in data:
        user.department = department

    _commit_user(user)
    ctx.log.info("Profile updated for user %s", user.id)
    return user


def admin_update_user(ctx: RequestContext, user_id: int, data: dict) -> User:
    """Admin changes role, permission set, department or active flag.

    Role/permission changes take effect at the user's next login, since
    access tokens carry the claims they were issued with.
    """
    unknown = sorted(set(data) - set(_ADMIN_FIELDS))
    errors: list[dict] = [
        {"field": f, "message": "Field cannot be changed here"} for f in unknown
    ]

    role = data.get("role")
    if "role" in data and not is_valid_role(role):
        errors.append({"field": "role", "message": f"Unknown role: {role!r}"})

    permissions = data.get("permissions")
    if "permissions" in data:
        _check_permissions(permissions, errors)
    department = _clean_department(data["department"], errors) if "department" in data else None

    if "is_active" in data and not isinstance(data["is_active"], bool):
        errors.append({"field": "is_active", "message": "is_active must be a boolean"})
    if errors:
        raise ValidationError("Invalid user update", errors=errors)

    user = get_user_by_id(user_id)
    if user.id == ctx.identity.user_id and (
        data.get("is_active") is False or ("role" in data and role != Role.ADMIN.value)
    ):
        raise ValidationError("Admins cannot demote or deactivate themselves", errors=[
            {"field": "role" if "role" in data else "is_active", "message": "Not allowed on own account"}
        ])

    if "role" in data:
        user.role = role
    if "permissions" in data:
        user.permissions = sorted(set(permissions))
    if "department" in data:
        user.department = department
    if "is_active" in data:
        user.is_active = data["is_active"]

    db.session.commit()
    ctx.log.info("Admin updated user %s: %s", user.id, sorted(data))
    return user
