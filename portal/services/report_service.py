"""
Report Service — lifecycle, patching and listing of report aggregates.

Every mutating operation is one read of the aggregate followed by a single
commit. Guards run before anything is changed; a failed guard raises and
leaves the stored report untouched.

Lifecycle:
    draft ──submit──▶ review ──review(approved)──▶ approved ──publish──▶ published
                        │
                        └──review(rejected)──▶ rejected ──submit──▶ review

Concurrent writers are detected by ``Report.version`` (the mapper's
version_id_col); the losing commit raises StaleDataError, which the app
error handlers turn into a 409.
"""

from sqlalchemy import or_

from portal.core.exceptions import (
    ConflictError,
    GatewayError,
    NotFoundError,
    PermissionDeniedError,
    TransitionError,
    ValidationError,
    VersionConflictError,
)
from portal.models import db
from portal.models.auth import Permission, User
from portal.models.report import (
    CHART_TYPES,
    CREATOR_ROLE,
    REPORT_STATUSES,
    REPORT_TRANSITIONS,
    REVIEW_DECISIONS,
    Report,
    ReportApproval,
    ReportAttachment,
    ReportContributor,
    ReportSection,
)
from portal.services.policy import (
    RequestContext,
    can_edit_report,
    can_view_report,
    has_permission,
)
from portal.utils.helpers import utcnow

_INSTITUTION_FIELDS = ("name", "address", "contact")
_METADATA_FIELDS = ("institution", "department", "tags")
_PATCH_FIELDS = ("title", "academic_year", "metadata", "sections", "version")
_SERVER_MANAGED = (
    "status", "contributors", "approvers", "attachments",
    "published_url", "is_archived", "created_at", "updated_at", "id",
)
_SECTION_FIELDS = ("title", "content", "data", "charts")


# ═══════════════════════════════════════════════════════════════
# Validation helpers
# ═══════════════════════════════════════════════════════════════
def _is_blank(value) -> bool:
    return not isinstance(value, str) or not value.strip()


def _validate_charts(charts, field: str, errors: list[dict]) -> list:
    if charts is None:
        return []
    if not isinstance(charts, list):
        errors.append({"field": field, "message": "Charts must be a list"})
        return []
    cleaned = []
    for i, chart in enumerate(charts):
        path = f"{field}[{i}]"
        if not isinstance(chart, dict):
            errors.append({"field": path, "message": "Chart must be an object"})
            continue
        chart_type = chart.get("type")
        if not isinstance(chart_type, str) or chart_type not in CHART_TYPES:
            errors.append({
                "field": f"{path}.type",
                "message": f"Chart type must be one of {sorted(CHART_TYPES)}",
            })
            continue
        cleaned.append({
            "type": chart_type,
            "data": chart.get("data", {}),
            "options": chart.get("options", {}),
        })
    return cleaned


def _validate_section(raw, field: str, errors: list[dict]) -> dict | None:
    if not isinstance(raw, dict):
        errors.append({"field": field, "message": "Section must be an object"})
        return None
    before = len(errors)
    unknown = sorted(set(raw) - set(_SECTION_FIELDS))
    for key in unknown:
        errors.append({"field": f"{field}.{key}", "message": "Unknown section field"})
    if _is_blank(raw.get("title")):
        errors.append({"field": f"{field}.title", "message": "Section title is required"})
    content = raw.get("content", "")
    if content is not None and not isinstance(content, str):
        errors.append({"field": f"{field}.content", "message": "Content must be a string"})
    charts = _validate_charts(raw.get("charts"), f"{field}.charts", errors)
    if len(errors) > before:
        return None
    return {
        "title": raw["title"].strip(),
        "content": (content or "").strip(),
        "data": raw.get("data"),
        "charts": charts,
    }


def _validate_sections(raw, errors: list[dict]) -> list[dict]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        errors.append({"field": "sections", "message": "Sections must be a list"})
        return []
    cleaned = []
    for i, item in enumerate(raw):
        section = _validate_section(item, f"sections[{i}]", errors)
        if section:
            cleaned.append(section)
    return cleaned


def _validate_tags(tags, errors: list[dict]) -> list[str]:
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        errors.append({"field": "metadata.tags", "message": "Tags must be a list of strings"})
        return []
    return [t.strip() for t in tags if t.strip()]


def _validate_metadata(meta, errors: list[dict], *, creating: bool) -> dict:
    """Return the subset of flattened Report columns named by ``meta``."""
    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        errors.append({"field": "metadata", "message": "Metadata must be an object"})
        return {}

    out = {}
    for key in sorted(set(meta) - set(_METADATA_FIELDS)):
        errors.append({"field": f"metadata.{key}", "message": "Field cannot be set"})

    if "institution" in meta:
        inst = meta["institution"]
        if not isinstance(inst, dict):
            errors.append({"field": "metadata.institution", "message": "Institution must be an object"})
        else:
            for key in sorted(set(inst) - set(_INSTITUTION_FIELDS)):
                errors.append({"field": f"metadata.institution.{key}", "message": "Unknown institution field"})
            for key in _INSTITUTION_FIELDS:
                if key in inst:
                    value = inst[key]
                    if value is not None and not isinstance(value, str):
                        errors.append({"field": f"metadata.institution.{key}", "message": "Must be a string"})
                    else:
                        out[f"institution_{key}"] = (value or "").strip() or None

    if "department" in meta or creating:
        if _is_blank(meta.get("department")):
            errors.append({"field": "metadata.department", "message": "Department is required"})
        else:
            out["department"] = meta["department"].strip()

    if "tags" in meta:
        out["tags"] = _validate_tags(meta["tags"], errors)

    return out


def _build_section(data: dict, position: int, user_id: int) -> ReportSection:
    return ReportSection(
        position=position,
        title=data["title"],
        content=data["content"],
        data=data["data"],
        charts=data["charts"],
        last_modified=utcnow(),
        modified_by_id=user_id,
    )


# ═══════════════════════════════════════════════════════════════
# Internal helpers
# ═══════════════════════════════════════════════════════════════
def _load(report_id: int) -> Report:
    report = db.session.get(Report, report_id)
    if not report:
        raise NotFoundError("Report", report_id)
    return report


def _require_edit(ctx: RequestContext, report: Report, action: str):
    if not can_edit_report(ctx.identity, report):
        raise PermissionDeniedError(
            action, f"user {ctx.identity.user_id} is not an editor of report {report.id}",
        )


def _require_admin(ctx: RequestContext, action: str):
    if not ctx.identity.is_admin:
        raise PermissionDeniedError(action, f"role '{ctx.identity.role}' is not admin")


def _transition(report: Report, target: str, action: str):
    if target not in REPORT_TRANSITIONS.get(report.status, set()):
        raise TransitionError(action, report.status)
    report.status = target


def _save(ctx: RequestContext, report: Report, event_type: str, message: str):
    """Stamp, reindex and commit the aggregate, then log the event."""
    report.updated_at = utcnow()
    report.refresh_search_text()
    db.session.commit()
    ctx.log.info(message, report.id, extra={"report_id": report.id, "event_type": event_type})


# ═══════════════════════════════════════════════════════════════
# Create / read
# ═══════════════════════════════════════════════════════════════
def create_report(ctx: RequestContext, data: dict) -> Report:
    """Create a draft report with the caller as its ``creator`` contributor."""
    if not has_permission(ctx.identity, Permission.CREATE):
        raise PermissionDeniedError("create report", "missing 'create' permission")

    errors: list[dict] = []
    if _is_blank(data.get("title")):
        errors.append({"field": "title", "message": "Title is required"})
    if _is_blank(data.get("academic_year")):
        errors.append({"field": "academic_year", "message": "Academic year is required"})

    meta = data.get("metadata")
    if meta is None and "department" in data:
        # Flat form: {"department": ...} alongside title / academic_year
        meta = {"department": data.get("department")}
    columns = _validate_metadata(meta, errors, creating=True)
    sections = _validate_sections(data.get("sections"), errors)
    if errors:
        raise ValidationError("Invalid report", errors=errors)

    columns.setdefault("tags", [])
    report = Report(
        title=data["title"].strip(),
        academic_year=data["academic_year"].strip(),
        status="draft",
        **columns,
    )
    report.contributors.append(ReportContributor(user_id=ctx.identity.user_id, role=CREATOR_ROLE))
    for position, section in enumerate(sections):
        report.sections.append(_build_section(section, position, ctx.identity.user_id))
    report.refresh_search_text()

    db.session.add(report)
    db.session.commit()
    ctx.log.info("Report %s created", report.id,
                 extra={"report_id": report.id, "event_type": "report.created"})
    return report


def get_report(ctx: RequestContext, report_id: int) -> Report:
    report = _load(report_id)
    if not can_view_report(ctx.identity, report):
        raise PermissionDeniedError("view report", f"user {ctx.identity.user_id} has no access")
    return report


def list_reports(
    ctx: RequestContext,
    *,
    status: str | None = None,
    academic_year: str | None = None,
    department: str | None = None,
    search: str | None = None,
    include_archived: bool = False,
    page: int = 1,
    limit: int = 10,
) -> dict:
    """Filtered, paginated listing, newest first."""
    if status and status not in REPORT_STATUSES:
        raise ValidationError("Invalid status filter", errors=[
            {"field": "status", "message": f"Must be one of {list(REPORT_STATUSES)}"}
        ])

    q = Report.query
    if status:
        q = q.filter(Report.status == status)
    if academic_year:
        q = q.filter(Report.academic_year == academic_year)
    if department:
        q = q.filter(Report.department == department)
    if not include_archived:
        q = q.filter(Report.is_archived.is_(False))

    if not ctx.identity.is_admin:
        uid = ctx.identity.user_id
        q = q.filter(or_(
            Report.contributors.any(ReportContributor.user_id == uid),
            Report.approvals.any(ReportApproval.approver_id == uid),
        ))

    terms = (search or "").lower().split()
    if terms:
        q = q.filter(or_(*[Report.search_text.contains(t, autoescape=True) for t in terms]))

    total = q.count()
    reports = (
        q.order_by(Report.created_at.desc(), Report.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
        .all()
    )
    return {
        "reports": reports,
        "total": total,
        "total_pages": -(-total // limit),
        "current_page": page,
    }


# ═══════════════════════════════════════════════════════════════
# Edit
# ═══════════════════════════════════════════════════════════════
def update_report(ctx: RequestContext, report_id: int, data: dict) -> Report:
    """Allowlisted patch of title, academic year, metadata and sections.

    ``sections`` replaces the whole list. ``version``, when supplied, must
    match the stored version.
    """
    report = _load(report_id)
    _require_edit(ctx, report, "edit report")

    errors: list[dict] = []
    for key in sorted(set(data) - set(_PATCH_FIELDS)):
        message = "Field is managed by the server" if key in _SERVER_MANAGED else "Unknown field"
        errors.append({"field": key, "message": message})

    if "title" in data and _is_blank(data["title"]):
        errors.append({"field": "title", "message": "Title cannot be empty"})
    if "academic_year" in data and _is_blank(data["academic_year"]):
        errors.append({"field": "academic_year", "message": "Academic year cannot be empty"})
    columns = _validate_metadata(data["metadata"], errors, creating=False) if "metadata" in data else {}
    sections = _validate_sections(data["sections"], errors) if "sections" in data else None

    expected = data.get("version")
    if expected is not None and (isinstance(expected, bool) or not isinstance(expected, int)):
        errors.append({"field": "version", "message": "Version must be an integer"})
        expected = None
    if errors:
        raise ValidationError("Invalid report update", errors=errors)

    if expected is not None and expected != report.version:
        raise VersionConflictError("Report", report.id, expected=expected, actual=report.version)

    if "title" in data:
        report.title = data["title"].strip()
    if "academic_year" in data:
        report.academic_year = data["academic_year"].strip()
    for column, value in columns.items():
        setattr(report, column, value)
    if sections is not None:
        report.sections = [
            _build_section(s, position, ctx.identity.user_id)
            for position, s in enumerate(sections)
        ]

    _save(ctx, report, "report.updated", "Report %s updated")
    return report


def add_section(ctx: RequestContext, report_id: int, data: dict) -> Report:
    report = _load(report_id)
    _require_edit(ctx, report, "add section")

    errors: list[dict] = []
    section = _validate_section(data, "section", errors)
    if errors:
        raise ValidationError("Invalid section", errors=[
            {**e, "field": e["field"].removeprefix("section.")} for e in errors
        ])

    position = max((s.position for s in report.sections), default=-1) + 1
    report.sections.append(_build_section(section, position, ctx.identity.user_id))
    _save(ctx, report, "report.section_added", "Section appended to report %s")
    return report


# ═══════════════════════════════════════════════════════════════
# Lifecycle transitions
# ═══════════════════════════════════════════════════════════════
def submit_report(ctx: RequestContext, report_id: int) -> Report:
    """draft / rejected → review."""
    report = _load(report_id)
    _require_edit(ctx, report, "submit report")
    _transition(report, "review", "submit")
    _save(ctx, report, "report.submitted", "Report %s submitted for review")
    return report


def review_report(ctx: RequestContext, report_id: int, decision, comments=None) -> Report:
    """review → approved / rejected, recording an approval entry."""
    _require_admin(ctx, "review report")

    errors: list[dict] = []
    if not isinstance(decision, str) or decision not in REVIEW_DECISIONS:
        errors.append({"field": "status", "message": f"Must be one of {sorted(REVIEW_DECISIONS)}"})
    if comments is not None and not isinstance(comments, str):
        errors.append({"field": "comments", "message": "Comments must be a string"})
    if errors:
        raise ValidationError("Invalid review", errors=errors)

    report = _load(report_id)
    _transition(report, decision, "review")
    report.approvals.append(ReportApproval(
        approver_id=ctx.identity.user_id,
        decision=decision,
        comments=(comments or "").strip(),
        decided_at=utcnow(),
    ))
    _save(ctx, report, f"report.{decision}", f"Report %s {decision}")
    return report


def publish_report(ctx: RequestContext, report_id: int, published_url=None) -> Report:
    """approved → published."""
    _require_admin(ctx, "publish report")
    if published_url is not None and _is_blank(published_url):
        raise ValidationError("Invalid publish request", errors=[
            {"field": "published_url", "message": "Must be a non-empty string"}
        ])

    report = _load(report_id)
    _transition(report, "published", "publish")
    if published_url:
        report.published_url = published_url.strip()
    _save(ctx, report, "report.published", "Report %s published")
    return report


def archive_report(ctx: RequestContext, report_id: int, archived) -> Report:
    _require_admin(ctx, "archive report")
    if not isinstance(archived, bool):
        raise ValidationError("Invalid archive request", errors=[
            {"field": "archived", "message": "Must be a boolean"}
        ])

    report = _load(report_id)
    report.is_archived = archived
    event = "report.archived" if archived else "report.unarchived"
    _save(ctx, report, event, f"Report %s {'archived' if archived else 'unarchived'}")
    return report


# ═══════════════════════════════════════════════════════════════
# Contributors
# ═══════════════════════════════════════════════════════════════
def add_contributor(ctx: RequestContext, report_id: int, user_id, role=None) -> Report:
    report = _load(report_id)
    _require_edit(ctx, report, "manage contributors")

    errors: list[dict] = []
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        errors.append({"field": "user_id", "message": "User id must be an integer"})
    label = "contributor" if role is None else role
    if _is_blank(label):
        errors.append({"field": "role", "message": "Role must be a non-empty string"})
    elif label.strip() == CREATOR_ROLE:
        errors.append({"field": "role", "message": "The creator role cannot be assigned"})
    if errors:
        raise ValidationError("Invalid contributor", errors=errors)

    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise NotFoundError("User", user_id)
    if user_id in report.contributor_ids():
        raise ConflictError("Contributor", "user_id", str(user_id))

    report.contributors.append(ReportContributor(user_id=user_id, role=label.strip()))
    _save(ctx, report, "report.contributor_added", "Contributor added to report %s")
    return report


def remove_contributor(ctx: RequestContext, report_id: int, user_id: int) -> Report:
    report = _load(report_id)
    _require_edit(ctx, report, "manage contributors")

    entry = next((c for c in report.contributors if c.user_id == user_id), None)
    if entry is None:
        raise NotFoundError("Contributor", user_id)
    if entry.role == CREATOR_ROLE:
        raise ValidationError("Cannot remove the report creator", errors=[
            {"field": "user_id", "message": "The creator cannot be removed"}
        ])

    report.contributors.remove(entry)
    _save(ctx, report, "report.contributor_removed", "Contributor removed from report %s")
    return report


# ═══════════════════════════════════════════════════════════════
# Attachments / delete
# ═══════════════════════════════════════════════════════════════
def add_attachment(ctx: RequestContext, report_id: int, gateway, stream, *,
                   filename: str, content_type: str | None, size: int) -> Report:
    """Relay the file to the attachment gateway and link it to the report.

    The stored object is removed again if the report cannot be saved.
    """
    report = _load(report_id)
    _require_edit(ctx, report, "attach file")

    stored = gateway.store(stream, {
        "name": filename,
        "content_type": content_type,
        "size": size,
        "report_id": report.id,
        "uploaded_by": ctx.identity.user_id,
    })
    report.attachments.append(ReportAttachment(
        name=filename,
        content_type=content_type,
        size=size,
        external_id=stored.id,
        url=stored.url,
        uploaded_by_id=ctx.identity.user_id,
        uploaded_at=utcnow(),
    ))
    try:
        _save(ctx, report, "report.attachment_added", "Attachment added to report %s")
    except Exception:
        db.session.rollback()
        gateway.delete(stored.id)
        raise
    return report


def check_file_access(ctx: RequestContext, file_id: str) -> None:
    """Stored files linked to a report are readable only by its viewers.

    Files uploaded directly through the integration API and never linked
    to a report stay readable by any authenticated user.
    """
    attachment = ReportAttachment.query.filter_by(external_id=file_id).first()
    if attachment is not None and not can_view_report(ctx.identity, attachment.report):
        raise PermissionDeniedError(
            "read file", f"user {ctx.identity.user_id} has no access to report {attachment.report_id}",
        )


def delete_report(ctx: RequestContext, report_id: int, gateway=None) -> None:
    """Hard-delete the report with all its children.

    Stored attachment objects are removed afterwards; a storage failure is
    logged and does not resurrect the report.
    """
    _require_admin(ctx, "delete report")
    report = _load(report_id)
    external_ids = [a.external_id for a in report.attachments]

    db.session.delete(report)
    db.session.commit()
    ctx.log.info("Report %s deleted", report_id,
                 extra={"report_id": report_id, "event_type": "report.deleted"})

    if gateway is None:
        return
    for external_id in external_ids:
        try:
            gateway.delete(external_id)
        except GatewayError as e:
            ctx.log.warning("Orphaned attachment %s of deleted report %s: %s",
                            external_id, report_id, e.message,
                            extra={"report_id": report_id, "event_type": "attachment.orphaned"})
