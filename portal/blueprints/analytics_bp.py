"""
Analytics Blueprint — read-only report aggregations.

  GET /api/v1/analytics/dashboard        — status / department / monthly trend
  GET /api/v1/analytics/departments      — per-department outcomes
  GET /api/v1/analytics/user-activity    — per-contributor activity (admin)
  GET /api/v1/analytics/completion-time  — creation → decision time (admin)
"""

from flask import Blueprint, jsonify

from portal.middleware.permission_required import login_required, require_role
from portal.middleware.request_context import current_context
from portal.models.auth import Role
from portal.services import analytics_service

analytics_bp = Blueprint("analytics_bp", __name__, url_prefix="/api/v1/analytics")


@analytics_bp.route("/dashboard", methods=["GET"])
@login_required
def dashboard():
    return jsonify(analytics_service.dashboard(current_context())), 200


@analytics_bp.route("/departments", methods=["GET"])
@login_required
def departments():
    return jsonify(analytics_service.departments(current_context())), 200


@analytics_bp.route("/user-activity", methods=["GET"])
@require_role(Role.ADMIN)
def user_activity():
    return jsonify(analytics_service.user_activity(current_context())), 200


@analytics_bp.route("/completion-time", methods=["GET"])
@require_role(Role.ADMIN)
def completion_time():
    return jsonify(analytics_service.completion_time(current_context())), 200
