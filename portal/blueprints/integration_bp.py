"""
Integration Blueprint — direct access to the attachment gateway.

Endpoints:
    POST   /api/v1/integration/upload           — Store a file (edit permission)
    GET    /api/v1/integration/file/<id>        — Stored file metadata (report viewers only when linked)
    DELETE /api/v1/integration/file/<id>        — Remove stored file (admin)
    GET    /api/v1/integration/uploads/<id>     — Download a locally stored file
"""

from flask import Blueprint, jsonify, request, send_file

from portal.core.exceptions import NotFoundError
from portal.integrations.attachment_gateway import LocalAttachmentGateway, get_attachment_gateway
from portal.middleware.permission_required import login_required, require_permission, require_role
from portal.middleware.request_context import current_context
from portal.models.auth import Permission, Role
from portal.services import report_service
from portal.utils.uploads import spooled_upload

integration_bp = Blueprint("integration_bp", __name__, url_prefix="/api/v1/integration")


@integration_bp.route("/upload", methods=["POST"])
@require_permission(Permission.EDIT)
def upload():
    """Multipart form with a ``file`` field."""
    ctx = current_context()
    gateway = get_attachment_gateway()
    with spooled_upload(request.files.get("file")) as spooled:
        stored = gateway.store(spooled.stream, spooled.metadata(uploaded_by=ctx.identity.user_id))
    ctx.log.info("Uploaded %s as %s", spooled.filename, stored.id)
    return jsonify({
        "id": stored.id,
        "url": stored.url,
        "name": stored.name or spooled.filename,
        "size": stored.size if stored.size is not None else spooled.size,
    }), 201


@integration_bp.route("/file/<file_id>", methods=["GET"])
@login_required
def file_metadata(file_id):
    report_service.check_file_access(current_context(), file_id)
    return jsonify(get_attachment_gateway().get(file_id).to_dict()), 200


@integration_bp.route("/file/<file_id>", methods=["DELETE"])
@require_role(Role.ADMIN)
def delete_file(file_id):
    gateway = get_attachment_gateway()
    gateway.get(file_id)
    gateway.delete(file_id)
    current_context().log.info("Deleted stored file %s", file_id)
    return jsonify({"message": "File deleted successfully"}), 200


@integration_bp.route("/uploads/<file_id>", methods=["GET"])
@login_required
def download(file_id):
    gateway = get_attachment_gateway()
    if not isinstance(gateway, LocalAttachmentGateway):
        raise NotFoundError("File", file_id)
    report_service.check_file_access(current_context(), file_id)
    stored = gateway.get(file_id)
    return send_file(
        gateway.path_for(file_id),
        mimetype=stored.content_type or "application/octet-stream",
        as_attachment=True,
        download_name=stored.name or file_id,
    )
