"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/login       — Email + password → access token
  POST /api/v1/auth/register    — Self-registration (role contributor) → access token
  GET  /api/v1/auth/me          — Current user profile + permissions
  POST /api/v1/auth/logout      — Stateless acknowledgement
  PUT  /api/v1/auth/password    — Change own password
"""

import logging

from flask import Blueprint, jsonify

from portal.blueprints import json_body
from portal.middleware.permission_required import login_required
from portal.middleware.request_context import current_context
from portal.services.jwt_service import issue_token_for_user
from portal.services.user_service import (
    authenticate_user,
    change_password,
    get_user_by_id,
    register_user,
)

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with email + password.

    Body: { "email": "...", "password": "..." }
    """
    data = json_body()
    user = authenticate_user(data.get("email"), data.get("password"))
    logger.info("User %s logged in", user.id)
    return jsonify({**issue_token_for_user(user), "user": user.to_dict()}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/register
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/register", methods=["POST"])
def register():
    """
    Create a contributor account and log it in.

    Body: { "username": "...", "email": "...", "password": "...", "department": "..." }
    """
    user = register_user(json_body())
    return jsonify({**issue_token_for_user(user), "user": user.to_dict()}), 201


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    ctx = current_context()
    user = get_user_by_id(ctx.identity.user_id)
    return jsonify({
        "user": user.to_dict(),
        "permissions": sorted(ctx.identity.permissions),
    }), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    """Tokens are self-contained; the client discards its copy."""
    ctx = current_context()
    ctx.log.info("User %s logged out", ctx.identity.user_id)
    return jsonify({"message": "Logged out"}), 200


# ═══════════════════════════════════════════════════════════════
# PUT /api/v1/auth/password
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/password", methods=["PUT"])
@login_required
def update_password():
    """
    Body: { "current_password": "...", "new_password": "..." }
    """
    data = json_body()
    change_password(current_context(), data.get("current_password"), data.get("new_password"))
    return jsonify({"message": "Password updated"}), 200
