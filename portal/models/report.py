"""
Annual Report Portal
Report aggregate models.

Models:
    - Report:             the aggregate root (status, metadata, version)
    - ReportSection:      ordered sections with opaque data + chart specs
    - ReportContributor:  users participating in editing (role label)
    - ReportApproval:     review decisions (append-only)
    - ReportAttachment:   files stored through the attachment gateway

Children are owned by the report: they are created through it and removed
with it (``cascade="all, delete-orphan"``).

``Report.version`` is the mapper's ``version_id_col``: every UPDATE of the
report row is conditioned on the version that was read, which turns the
read-then-write of each mutation into a compare-and-swap.
"""

from datetime import datetime, timezone

from portal.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

REPORT_STATUSES = ("draft", "review", "approved", "rejected", "published")

# status -> statuses reachable from it
REPORT_TRANSITIONS = {
    "draft": {"review"},
    "review": {"approved", "rejected"},
    "approved": {"published"},
    "rejected": {"review"},
    "published": set(),
}

REVIEW_DECISIONS = frozenset({"approved", "rejected"})
CHART_TYPES = frozenset({"bar", "line", "pie", "radar", "scatter"})

CREATOR_ROLE = "creator"


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════
# 1. Report
# ═════════════════════════════════════════════════════════════════════════

class Report(db.Model):
    __tablename__ = "reports"

    id = db.Column(db.Integer, primary_key=True)
    academic_year = db.Column(db.String(20), nullable=False, index=True)
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="draft", index=True)

    # metadata.* (flattened; ``metadata`` is reserved by SQLAlchemy)
    institution_name = db.Column(db.String(300))
    institution_address = db.Column(db.String(500))
    institution_contact = db.Column(db.String(300))
    department = db.Column(db.String(200), index=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    version = db.Column(db.Integer, nullable=False)

    published_url = db.Column(db.String(1000))
    is_archived = db.Column(db.Boolean, nullable=False, default=False)

    search_text = db.Column(
        db.Text, nullable=False, default="",
        comment="Lower-cased title + section titles/content + tags, rebuilt on write",
    )

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    sections = db.relationship(
        "ReportSection", back_populates="report", lazy="selectin",
        cascade="all, delete-orphan", order_by="ReportSection.position",
    )
    contributors = db.relationship(
        "ReportContributor", back_populates="report", lazy="selectin",
        cascade="all, delete-orphan", order_by="ReportContributor.id",
    )
    approvals = db.relationship(
        "ReportApproval", back_populates="report", lazy="selectin",
        cascade="all, delete-orphan", order_by="ReportApproval.id",
    )
    attachments = db.relationship(
        "ReportAttachment", back_populates="report", lazy="selectin",
        cascade="all, delete-orphan", order_by="ReportAttachment.id",
    )

    def contributor_ids(self) -> set[int]:
        return {c.user_id for c in self.contributors}

    def approver_ids(self) -> set[int]:
        return {a.approver_id for a in self.approvals}

    def last_approval(self):
        return self.approvals[-1] if self.approvals else None

    def refresh_search_text(self):
        parts = [self.title or ""]
        for section in self.sections:
            parts.append(section.title or "")
            parts.append(section.content or "")
        parts.extend(str(t) for t in (self.tags or []))
        self.search_text = " ".join(p for p in parts if p).lower()

    def metadata_dict(self):
        return {
            "institution": {
                "name": self.institution_name,
                "address": self.institution_address,
                "contact": self.institution_contact,
            },
            "department": self.department,
            "tags": list(self.tags or []),
            "version": self.version,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "academic_year": self.academic_year,
            "title": self.title,
            "status": self.status,
            "sections": [s.to_dict() for s in self.sections],
            "contributors": [c.to_dict() for c in self.contributors],
            "approvers": [a.to_dict() for a in self.approvals],
            "metadata": self.metadata_dict(),
            "attachments": [a.to_dict() for a in self.attachments],
            "published_url": self.published_url,
            "is_archived": self.is_archived,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def to_list_dict(self):
        """Listing form: no section bodies or attachments."""
        d = self.to_dict()
        d["section_count"] = len(self.sections)
        d.pop("sections")
        d.pop("attachments")
        return d

    def __repr__(self):
        return f"<Report {self.id} {self.title!r} status={self.status}>"


# ═════════════════════════════════════════════════════════════════════════
# 2. Sections
# ═════════════════════════════════════════════════════════════════════════

class ReportSection(db.Model):
    __tablename__ = "report_sections"

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.Integer, db.ForeignKey("reports.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    title = db.Column(db.String(300), nullable=False)
    content = db.Column(db.Text, default="")
    data = db.Column(db.JSON, comment="Opaque JSON payload supplied by the client")
    charts = db.Column(
        db.JSON, nullable=False, default=list,
        comment="[{type: bar|line|pie|radar|scatter, data, options}]",
    )
    last_modified = db.Column(db.DateTime, default=_utcnow)
    modified_by_id = db.Column(db.Integer, db.ForeignKey("users.id"))

    report = db.relationship("Report", back_populates="sections")
    modified_by = db.relationship("User", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "position": self.position,
            "title": self.title,
            "content": self.content or "",
            "data": self.data if self.data is not None else {},
            "charts": list(self.charts or []),
            "last_modified": _iso(self.last_modified),
            "modified_by": self.modified_by.to_summary() if self.modified_by else None,
        }


# ═════════════════════════════════════════════════════════════════════════
# 3. Contributors
# ═════════════════════════════════════════════════════════════════════════

class ReportContributor(db.Model):
    __tablename__ = "report_contributors"

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.Integer, db.ForeignKey("reports.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    role = db.Column(db.String(50), nullable=False, default="contributor")
    added_at = db.Column(db.DateTime, default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("report_id", "user_id", name="uq_report_contributor"),
    )

    report = db.relationship("Report", back_populates="contributors")
    user = db.relationship("User", lazy="joined")

    def to_dict(self):
        return {
            "user": self.user.to_summary() if self.user else {"id": self.user_id},
            "role": self.role,
            "added_at": _iso(self.added_at),
        }


# ═════════════════════════════════════════════════════════════════════════
# 4. Approval entries
# ═════════════════════════════════════════════════════════════════════════

class ReportApproval(db.Model):
    __tablename__ = "report_approvals"

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.Integer, db.ForeignKey("reports.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    decision = db.Column(db.String(20), nullable=False, default="pending")
    comments = db.Column(db.Text, default="")
    decided_at = db.Column(db.DateTime, nullable=False, default=_utcnow)

    report = db.relationship("Report", back_populates="approvals")
    approver = db.relationship("User", lazy="joined")

    def to_dict(self):
        return {
            "user": self.approver.to_summary() if self.approver else {"id": self.approver_id},
            "status": self.decision,
            "comments": self.comments or "",
            "date": _iso(self.decided_at),
        }


# ═════════════════════════════════════════════════════════════════════════
# 5. Attachments
# ═════════════════════════════════════════════════════════════════════════

class ReportAttachment(db.Model):
    __tablename__ = "report_attachments"

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.Integer, db.ForeignKey("reports.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(300), nullable=False)
    content_type = db.Column(db.String(200))
    size = db.Column(db.Integer)
    external_id = db.Column(db.String(300), nullable=False)
    url = db.Column(db.String(1000), nullable=False)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    uploaded_at = db.Column(db.DateTime, default=_utcnow)

    report = db.relationship("Report", back_populates="attachments")
    uploaded_by = db.relationship("User", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "type": self.content_type,
            "size": self.size,
            "external_id": self.external_id,
            "url": self.url,
            "uploaded_by": self.uploaded_by.to_summary() if self.uploaded_by else None,
            "upload_date": _iso(self.uploaded_at),
        }
