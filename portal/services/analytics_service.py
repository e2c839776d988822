"""
Analytics Service — read-only aggregations over reports.

All figures are computed on demand from the reports table; nothing is
cached or maintained incrementally.

    dashboard()        totals by status / department + monthly trend
    departments()      per-department outcome counts
    user_activity()    per-contributor report counts (admin)
    completion_time()  creation → last decision elapsed time (admin)
"""

from datetime import datetime, timezone

from sqlalchemy import case, func

from portal.models import db
from portal.models.auth import User
from portal.models.report import REPORT_STATUSES, Report, ReportContributor
from portal.utils.helpers import as_utc

COMPLETED_STATUSES = ("approved", "published")


def dashboard(ctx, now: datetime | None = None) -> dict:
    """Totals for the dashboard widgets.

    ``trend_data`` holds twelve month buckets for the current calendar year.
    """
    now = now or datetime.now(timezone.utc)

    total = db.session.query(func.count(Report.id)).scalar() or 0

    status_data = {s: 0 for s in REPORT_STATUSES}
    for status, count in db.session.query(Report.status, func.count(Report.id)).group_by(Report.status):
        status_data[status] = count

    department_data = {}
    rows = (
        db.session.query(Report.department, func.count(Report.id))
        .filter(Report.department.isnot(None))
        .group_by(Report.department)
    )
    for department, count in rows:
        department_data[department] = count

    # Month extraction differs between SQLite and PostgreSQL; bucket in Python
    year_start = datetime(now.year, 1, 1)
    trend_data = [0] * 12
    created = db.session.query(Report.created_at).filter(Report.created_at >= year_start)
    for (created_at,) in created:
        created_at = as_utc(created_at)
        if created_at.year == now.year:
            trend_data[created_at.month - 1] += 1

    ctx.log.debug("Dashboard computed over %d reports", total)
    return {
        "total_reports": total,
        "status_data": status_data,
        "department_data": department_data,
        "trend_data": trend_data,
    }


def _count_status(status):
    return func.sum(case((Report.status == status, 1), else_=0))


def departments(ctx) -> list[dict]:
    rows = (
        db.session.query(
            Report.department,
            func.count(Report.id),
            _count_status("approved"),
            _count_status("rejected"),
            _count_status("review"),
            _count_status("published"),
        )
        .filter(Report.department.isnot(None))
        .group_by(Report.department)
        .order_by(Report.department)
    )
    return [
        {
            "department": department,
            "total_reports": total,
            "approved": int(approved or 0),
            "rejected": int(rejected or 0),
            "pending": int(pending or 0),
            "published": int(published or 0),
        }
        for department, total, approved, rejected, pending, published in rows
    ]


def user_activity(ctx) -> list[dict]:
    """One row per user appearing in any contributor list."""
    rows = (
        db.session.query(
            User.id,
            User.username,
            User.department,
            func.count(ReportContributor.report_id),
            func.max(Report.updated_at),
        )
        .join(ReportContributor, ReportContributor.user_id == User.id)
        .join(Report, Report.id == ReportContributor.report_id)
        .group_by(User.id, User.username, User.department)
        .order_by(func.count(ReportContributor.report_id).desc(), User.username)
    )
    return [
        {
            "user_id": user_id,
            "username": username,
            "department": department,
            "report_count": count,
            "last_activity": as_utc(last).isoformat() if last else None,
        }
        for user_id, username, department, count, last in rows
    ]


def completion_time(ctx) -> list[dict]:
    """Per department: elapsed seconds from creation to the last approval entry.

    Only reports in approved / published with at least one approval entry
    are counted.
    """
    reports = Report.query.filter(Report.status.in_(COMPLETED_STATUSES)).all()

    buckets: dict[str, list[float]] = {}
    for report in reports:
        last = report.last_approval()
        if last is None or report.created_at is None:
            continue
        elapsed = (as_utc(last.decided_at) - as_utc(report.created_at)).total_seconds()
        buckets.setdefault(report.department or "", []).append(elapsed)

    result = []
    for department in sorted(buckets):
        values = buckets[department]
        result.append({
            "department": department or None,
            "average_seconds": sum(values) / len(values),
            "min_seconds": min(values),
            "max_seconds": max(values),
            "report_count": len(values),
        })
    ctx.log.debug("Completion time computed over %d reports", sum(len(v) for v in buckets.values()))
    return result
