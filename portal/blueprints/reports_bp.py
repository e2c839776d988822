"""
Reports Blueprint — report lifecycle API.

Endpoints:
    GET    /api/v1/reports                              — List (filter, search, paginate)
    POST   /api/v1/reports                              — Create draft (create permission)
    GET    /api/v1/reports/<id>                         — Detail
    PUT    /api/v1/reports/<id>                         — Allowlisted patch (edit)
    DELETE /api/v1/reports/<id>                         — Hard delete (admin)
    POST   /api/v1/reports/<id>/sections                — Append section (edit)
    POST   /api/v1/reports/<id>/submit                  — draft/rejected → review (edit)
    POST   /api/v1/reports/<id>/review                  — review → approved/rejected (admin)
    POST   /api/v1/reports/<id>/publish                 — approved → published (admin)
    POST   /api/v1/reports/<id>/archive                 — Toggle archived flag (admin)
    POST   /api/v1/reports/<id>/contributors            — Add contributor (edit)
    DELETE /api/v1/reports/<id>/contributors/<user_id>  — Remove contributor (edit)
    POST   /api/v1/reports/<id>/attachments             — Upload + link a file (edit)
"""

from flask import Blueprint, jsonify, request

from portal.blueprints import json_body, pagination_args
from portal.integrations.attachment_gateway import get_attachment_gateway
from portal.middleware.permission_required import login_required, require_permission, require_role
from portal.middleware.request_context import current_context
from portal.models.auth import Permission, Role
from portal.services import report_service
from portal.utils.helpers import parse_bool
from portal.utils.uploads import spooled_upload

reports_bp = Blueprint("reports_bp", __name__, url_prefix="/api/v1/reports")


# ═════════════════════════════════════════════════════════════════════════════
# Listing / create / detail
# ═════════════════════════════════════════════════════════════════════════════

@reports_bp.route("", methods=["GET"])
@login_required
def list_reports():
    """
    Query params: page, limit, status, academic_year, department, search,
    include_archived
    """
    page, limit = pagination_args()
    result = report_service.list_reports(
        current_context(),
        status=request.args.get("status") or None,
        academic_year=request.args.get("academic_year") or None,
        department=request.args.get("department") or None,
        search=request.args.get("search") or None,
        include_archived=parse_bool(request.args.get("include_archived")),
        page=page,
        limit=limit,
    )
    result["reports"] = [r.to_list_dict() for r in result["reports"]]
    return jsonify(result), 200


@reports_bp.route("", methods=["POST"])
@require_permission(Permission.CREATE)
def create_report():
    report = report_service.create_report(current_context(), json_body())
    return jsonify(report.to_dict()), 201


@reports_bp.route("/<int:report_id>", methods=["GET"])
@login_required
def get_report(report_id):
    report = report_service.get_report(current_context(), report_id)
    return jsonify(report.to_dict()), 200


@reports_bp.route("/<int:report_id>", methods=["PUT"])
@require_permission(Permission.EDIT)
def update_report(report_id):
    report = report_service.update_report(current_context(), report_id, json_body())
    return jsonify(report.to_dict()), 200


@reports_bp.route("/<int:report_id>", methods=["DELETE"])
@require_role(Role.ADMIN)
def delete_report(report_id):
    report_service.delete_report(current_context(), report_id, gateway=get_attachment_gateway())
    return jsonify({"message": "Report deleted successfully"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Sections
# ═════════════════════════════════════════════════════════════════════════════

@reports_bp.route("/<int:report_id>/sections", methods=["POST"])
@require_permission(Permission.EDIT)
def add_section(report_id):
    """Body: { "title": "...", "content": "...", "data": {...}, "charts": [...] }"""
    report = report_service.add_section(current_context(), report_id, json_body())
    return jsonify(report.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════

@reports_bp.route("/<int:report_id>/submit", methods=["POST"])
@require_permission(Permission.EDIT)
def submit_report(report_id):
    report = report_service.submit_report(current_context(), report_id)
    return jsonify(report.to_dict()), 200


@reports_bp.route("/<int:report_id>/review", methods=["POST"])
@require_role(Role.ADMIN)
def review_report(report_id):
    """Body: { "status": "approved" | "rejected", "comments": "..." }"""
    data = json_body()
    report = report_service.review_report(
        current_context(), report_id, data.get("status"), data.get("comments"),
    )
    return jsonify(report.to_dict()), 200


@reports_bp.route("/<int:report_id>/publish", methods=["POST"])
@require_role(Role.ADMIN)
def publish_report(report_id):
    """Body (optional): { "published_url": "..." }"""
    data = json_body()
    report = report_service.publish_report(current_context(), report_id, data.get("published_url"))
    return jsonify(report.to_dict()), 200


@reports_bp.route("/<int:report_id>/archive", methods=["POST"])
@require_role(Role.ADMIN)
def archive_report(report_id):
    """Body: { "archived": true | false } (defaults to true)"""
    data = json_body()
    report = report_service.archive_report(current_context(), report_id, data.get("archived", True))
    return jsonify(report.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════════
# Contributors
# ═════════════════════════════════════════════════════════════════════════════

@reports_bp.route("/<int:report_id>/contributors", methods=["POST"])
@require_permission(Permission.EDIT)
def add_contributor(report_id):
    """Body: { "user_id": 7, "role": "reviewer" }"""
    data = json_body()
    report = report_service.add_contributor(
        current_context(), report_id, data.get("user_id"), data.get("role"),
    )
    return jsonify(report.to_dict()), 201


@reports_bp.route("/<int:report_id>/contributors/<int:user_id>", methods=["DELETE"])
@require_permission(Permission.EDIT)
def remove_contributor(report_id, user_id):
    report = report_service.remove_contributor(current_context(), report_id, user_id)
    return jsonify(report.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════════
# Attachments
# ═════════════════════════════════════════════════════════════════════════════

@reports_bp.route("/<int:report_id>/attachments", methods=["POST"])
@require_permission(Permission.EDIT)
def add_attachment(report_id):
    """Multipart form with a ``file`` field."""
    ctx = current_context()
    with spooled_upload(request.files.get("file")) as upload:
        report = report_service.add_attachment(
            ctx, report_id, get_attachment_gateway(), upload.stream,
            filename=upload.filename,
            content_type=upload.content_type,
            size=upload.size,
        )
    return jsonify(report.to_dict()), 201
