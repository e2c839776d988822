"""
Users Blueprint — profile and admin user management.

  GET /api/v1/users            — List users (admin; filter department, role)
  PUT /api/v1/users/me         — Update own username / email / department
  GET /api/v1/users/<id>       — User detail (self or admin)
  PUT /api/v1/users/<id>       — Admin update: role, permissions, department, is_active
"""

from flask import Blueprint, jsonify, request

from portal.blueprints import json_body, pagination_args
from portal.middleware.permission_required import login_required, require_role
from portal.middleware.request_context import current_context
from portal.models.auth import Role
from portal.services import user_service

users_bp = Blueprint("users_bp", __name__, url_prefix="/api/v1/users")


@users_bp.route("", methods=["GET"])
@require_role(Role.ADMIN)
def list_users():
    page, limit = pagination_args(default_limit=20)
    result = user_service.list_users(
        current_context(),
        department=request.args.get("department"),
        role=request.args.get("role"),
        page=page,
        limit=limit,
    )
    return jsonify(result), 200


@users_bp.route("/me", methods=["PUT"])
@login_required
def update_me():
    user = user_service.update_profile(current_context(), json_body())
    return jsonify(user.to_dict()), 200


@users_bp.route("/<int:user_id>", methods=["GET"])
@login_required
def get_user(user_id):
    user = user_service.get_user(current_context(), user_id)
    return jsonify(user.to_dict()), 200


@users_bp.route("/<int:user_id>", methods=["PUT"])
@require_role(Role.ADMIN)
def update_user(user_id):
    user = user_service.admin_update_user(current_context(), user_id, json_body())
    return jsonify(user.to_dict()), 200
