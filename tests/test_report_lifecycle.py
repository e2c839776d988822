"""
Report lifecycle tests — create, patch, sections, submit / review /
publish transitions, contributors, archive and delete.
"""

import logging
from datetime import datetime

import pytest
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from portal.models import db
from portal.models.report import Report
from portal.services import report_service
from portal.services.policy import Identity, RequestContext

REPORTS = "/api/v1/reports"


def _url(report, suffix=""):
    return f"{REPORTS}/{report['id']}{suffix}"


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Create
# ═══════════════════════════════════════════════════════════════

class TestCreate:
    def test_creator_is_sole_contributor(self, contributor, create_report):
        report = create_report(contributor)
        assert report["status"] == "draft"
        assert len(report["contributors"]) == 1
        assert report["contributors"][0]["user"]["id"] == contributor.id
        assert report["contributors"][0]["role"] == "creator"
        assert report["approvers"] == []
        assert report["metadata"]["version"] == 1
        assert report["metadata"]["institution"]["name"] == "State University"
        assert report["metadata"]["tags"] == ["annual", "cs"]

    def test_requires_create_permission(self, client, viewer, headers_for, payload):
        res = client.post(REPORTS, json=payload(), headers=headers_for(viewer))
        assert res.status_code == 403
        assert res.get_json()["error"] == "Insufficient permissions"

    def test_requires_token(self, client, payload):
        assert client.post(REPORTS, json=payload()).status_code == 401

    def test_collects_all_field_errors(self, client, contributor, headers_for):
        res = client.post(REPORTS, json={"title": " "}, headers=headers_for(contributor))
        assert res.status_code == 400
        fields = {e["field"] for e in res.get_json()["details"]["errors"]}
        assert fields == {"title", "academic_year", "metadata.department"}

    def test_flat_department(self, client, contributor, headers_for):
        res = client.post(REPORTS, headers=headers_for(contributor), json={
            "title": "FY24 CS Report", "academic_year": "2024", "department": "Computer Science",
        })
        assert res.status_code == 201
        assert res.get_json()["metadata"]["department"] == "Computer Science"

    def test_rejects_unknown_chart_type(self, client, contributor, headers_for, payload):
        body = payload(sections=[{"title": "Intro", "charts": [{"type": "donut", "data": {}}]}])
        res = client.post(REPORTS, json=body, headers=headers_for(contributor))
        assert res.status_code == 400
        assert res.get_json()["details"]["errors"][0]["field"] == "sections[0].charts[0].type"

    def test_initial_sections(self, contributor, create_report):
        report = create_report(contributor, sections=[
            {"title": "Intro", "content": "hello", "charts": [{"type": "bar", "data": {"x": [1]}}]},
            {"title": "Outlook", "data": {"k": 1}},
        ])
        assert [s["title"] for s in report["sections"]] == ["Intro", "Outlook"]
        assert [s["position"] for s in report["sections"]] == [0, 1]
        assert report["sections"][0]["charts"][0] == {"type": "bar", "data": {"x": [1]}, "options": {}}
        assert report["sections"][1]["data"] == {"k": 1}


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: Lifecycle transitions
# ═══════════════════════════════════════════════════════════════

class TestLifecycle:
    def test_concrete_scenario(self, client, make_user, admin, headers_for):
        """create → draft; submit → review; admin approves "ok" → approved."""
        author = make_user(role="contributor", permissions=["create"], username="u")
        res = client.post(REPORTS, headers=headers_for(author), json={
            "title": "FY24 CS Report", "academic_year": "2024", "department": "Computer Science",
        })
        assert res.status_code == 201
        report = res.get_json()
        assert report["status"] == "draft"
        assert [(c["user"]["id"], c["role"]) for c in report["contributors"]] == [(author.id, "creator")]

        # author lacks "edit"; the admin (edit + admin override) submits
        res = client.post(_url(report, "/submit"), headers=headers_for(admin))
        assert res.status_code == 200
        assert res.get_json()["status"] == "review"

        res = client.post(_url(report, "/review"), headers=headers_for(admin),
                          json={"status": "approved", "comments": "ok"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "approved"
        assert len(body["approvers"]) == 1
        entry = body["approvers"][0]
        assert entry["user"]["id"] == admin.id
        assert entry["status"] == "approved"
        assert entry["comments"] == "ok"
        assert datetime.fromisoformat(entry["date"]) >= datetime.fromisoformat(body["created_at"])

    def test_contributor_submits(self, client, contributor, headers_for, create_report):
        report = create_report(contributor)
        res = client.post(_url(report, "/submit"), headers=headers_for(contributor))
        assert res.status_code == 200
        assert res.get_json()["status"] == "review"
        assert res.get_json()["metadata"]["version"] == 2

    def test_submit_needs_edit_permission(self, client, make_user, headers_for, create_report):
        author = make_user(permissions=["create"])
        report = create_report(author)
        res = client.post(_url(report, "/submit"), headers=headers_for(author))
        assert res.status_code == 403

    def test_non_contributor_cannot_submit(self, client, contributor, make_user, headers_for, create_report):
        report = create_report(contributor)
        outsider = make_user(role="faculty")
        res = client.post(_url(report, "/submit"), headers=headers_for(outsider))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_submit_from_approved_is_conflict(self, client, contributor, admin, headers_for, create_report):
        report = create_report(contributor)
        client.post(_url(report, "/submit"), headers=headers_for(contributor))
        client.post(_url(report, "/review"), headers=headers_for(admin), json={"status": "approved"})

        res = client.post(_url(report, "/submit"), headers=headers_for(contributor))
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["current_status"] == "approved"

        stored = client.get(_url(report), headers=headers_for(contributor)).get_json()
        assert stored["status"] == "approved"

    def test_review_requires_review_status(self, client, contributor, admin, headers_for, create_report):
        report = create_report(contributor)
        res = client.post(_url(report, "/review"), headers=headers_for(admin), json={"status": "approved"})
        assert res.status_code == 409
        stored = client.get(_url(report), headers=headers_for(admin)).get_json()
        assert stored["approvers"] == []

    def test_review_rejects_unknown_decision(self, client, contributor, admin, headers_for, create_report):
        report = create_report(contributor)
        client.post(_url(report, "/submit"), headers=headers_for(contributor))
        res = client.post(_url(report, "/review"), headers=headers_for(admin), json={"status": "maybe"})
        assert res.status_code == 400

    def test_review_decision_must_be_a_string(self, client, contributor, admin, headers_for, create_report):
        report = create_report(contributor)
        client.post(_url(report, "/submit"), headers=headers_for(contributor))
        res = client.post(_url(report, "/review"), headers=headers_for(admin), json={"status": ["approved"]})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        assert res.get_json()["details"]["errors"][0]["field"] == "status"
        stored = client.get(_url(report), headers=headers_for(admin)).get_json()
        assert stored["status"] == "review"
        assert stored["approvers"] == []

    def test_review_is_admin_only(self, client, contributor, make_user, headers_for, create_report):
        report = create_report(contributor)
        client.post(_url(report, "/submit"), headers=headers_for(contributor))
        hod = make_user(role="hod")
        res = client.post(_url(report, "/review"), headers=headers_for(hod), json={"status": "approved"})
        assert res.status_code == 403
        assert res.get_json()["error"] == "User not authorized"

    def test_rejected_report_can_be_resubmitted(self, client, contributor, admin, headers_for, create_report):
        report = create_report(contributor)
        client.post(_url(report, "/submit"), headers=headers_for(contributor))
        res = client.post(_url(report, "/review"), headers=headers_for(admin),
                          json={"status": "rejected", "comments": "needs figures"})
        assert res.get_json()["status"] == "rejected"

        res = client.post(_url(report, "/submit"), headers=headers_for(contributor))
        assert res.status_code == 200
        assert res.get_json()["status"] == "review"
        assert [a["status"] for a in res.get_json()["approvers"]] == ["rejected"]

    def test_publish(self, client, contributor, admin, headers_for, create_report):
        report = create_report(contributor)
        client.post(_url(report, "/submit"), headers=headers_for(contributor))
        client.post(_url(report, "/review"), headers=headers_for(admin), json={"status": "approved"})
        res = client.post(_url(report, "/publish"), headers=headers_for(admin),
                          json={"published_url": "https://reports.stateuni.edu/fy24-cs"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "published"
        assert res.get_json()["published_url"] == "https://reports.stateuni.edu/fy24-cs"

    def test_publish_from_draft_is_conflict(self, client, contributor, admin, headers_for, create_report):
        report = create_report(contributor)
        res = client.post(_url(report, "/publish"), headers=headers_for(admin))
        assert res.status_code == 409


# ═══════════════════════════════════════════════════════════════
# BLOCK 3: Edit (allowlisted patch) and sections
# ═══════════════════════════════════════════════════════════════

class TestEdit:
    def test_patch_fields_bumps_version(self, client, contributor, headers_for, create_report):
        report = create_report(contributor)
        res = client.put(_url(report), headers=headers_for(contributor), json={
            "title": "FY24 Computer Science Report",
            "metadata": {"institution": {"contact": "dean@stateuni.edu"}, "tags": ["final"]},
        })
        assert res.status_code == 200
        body = res.get_json()
        assert body["title"] == "FY24 Computer Science Report"
        assert body["metadata"]["institution"] == {
            "name": "State University", "address": "1 Campus Way", "contact": "dean@stateuni.edu",
        }
        assert body["metadata"]["tags"] == ["final"]
        assert body["metadata"]["version"] == 2

    def test_server_managed_fields_rejected(self, client, contributor, headers_for, create_report):
        report = create_report(contributor)
        res = client.put(_url(report), headers=headers_for(contributor), json={
            "status": "published", "approvers": [], "title": "x",
        })
        assert res.status_code == 400
        fields = {e["field"] for e in res.get_json()["details"]["errors"]}
        assert fields == {"status", "approvers"}

        stored = client.get(_url(report), headers=headers_for(contributor)).get_json()
        assert stored["status"] == "draft"
        assert stored["title"] == "FY24 CS Report"

    def test_stale_version_rejected(self, client, contributor, headers_for, create_report):
        report = create_report(contributor)
        client.put(_url(report), headers=headers_for(contributor), json={"title": "second", "version": 1})
        res = client.put(_url(report), headers=headers_for(contributor), json={"title": "third", "version": 1})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_VERSION"
        assert res.get_json()["details"]["current_version"] == 2

    def test_sections_full_replacement(self, client, contributor, headers_for, create_report):
        report = create_report(contributor, sections=[{"title": "Old"}])
        res = client.put(_url(report), headers=headers_for(contributor), json={
            "sections": [{"title": "New A"}, {"title": "New B", "content": "body"}],
        })
        assert res.status_code == 200
        assert [s["title"] for s in res.get_json()["sections"]] == ["New A", "New B"]

    def test_non_contributor_cannot_edit(self, client, contributor, make_user, headers_for, create_report):
        report = create_report(contributor)
        other = make_user(role="faculty")
        res = client.put(_url(report), headers=headers_for(other), json={"title": "hijack"})
        assert res.status_code == 403

    def test_admin_edits_any_report(self, client, contributor, admin, headers_for, create_report):
        report = create_report(contributor)
        res = client.put(_url(report), headers=headers_for(admin), json={"academic_year": "2024-25"})
        assert res.status_code == 200
        assert res.get_json()["academic_year"] == "2024-25"

    def test_append_section(self, client, contributor, headers_for, create_report):
        report = create_report(contributor, sections=[{"title": "Intro"}])
        res = client.post(_url(report, "/sections"), headers=headers_for(contributor), json={
            "title": "Research", "content": "  Grants up 20%  ", "charts": [{"type": "line", "data": {}}],
        })
        assert res.status_code == 200
        sections = res.get_json()["sections"]
        assert [s["title"] for s in sections] == ["Intro", "Research"]
        assert sections[1]["position"] == 1
        assert sections[1]["content"] == "Grants up 20%"
        assert sections[1]["modified_by"]["id"] == contributor.id
        assert sections[1]["last_modified"] is not None

    def test_append_section_requires_title(self, client, contributor, headers_for, create_report):
        report = create_report(contributor)
        res = client.post(_url(report, "/sections"), headers=headers_for(contributor), json={"content": "x"})
        assert res.status_code == 400
        assert res.get_json()["details"]["errors"][0]["field"] == "title"

    def test_append_section_chart_type_must_be_a_string(self, client, contributor, headers_for, create_report):
        report = create_report(contributor)
        res = client.post(_url(report, "/sections"), headers=headers_for(contributor), json={
            "title": "Charts", "charts": [{"type": ["bar"]}, {"type": {"kind": "pie"}}],
        })
        assert res.status_code == 400
        fields = [e["field"] for e in res.get_json()["details"]["errors"]]
        assert fields == ["charts[0].type", "charts[1].type"]

    def test_concurrent_write_detected(self, contributor, create_report):
        report = create_report(contributor)
        ctx = RequestContext(
            identity=Identity(user_id=contributor.id, role="contributor", permissions=frozenset({"edit"})),
            log=logging.getLogger("test"),
        )
        loaded = db.session.get(Report, report["id"])
        assert loaded.version == 1

        # Another writer bumps the version behind this session's back
        db.session.execute(
            update(Report).where(Report.id == report["id"]).values(version=2),
            execution_options={"synchronize_session": False},
        )

        with pytest.raises(StaleDataError):
            report_service.update_report(ctx, report["id"], {"title": "lost update"})
        db.session.rollback()


# ═══════════════════════════════════════════════════════════════
# BLOCK 4: Read access, contributors, archive, delete
# ═══════════════════════════════════════════════════════════════

class TestAccessAndMembership:
    def test_get_unknown_report(self, client, admin, headers_for):
        res = client.get(f"{REPORTS}/999", headers=headers_for(admin))
        assert res.status_code == 404

    def test_outsider_cannot_read(self, client, contributor, viewer, headers_for, create_report):
        report = create_report(contributor)
        assert client.get(_url(report), headers=headers_for(viewer)).status_code == 403

    def test_add_and_remove_contributor(self, client, contributor, viewer, headers_for, create_report):
        report = create_report(contributor)
        res = client.post(_url(report, "/contributors"), headers=headers_for(contributor),
                          json={"user_id": viewer.id, "role": "editor"})
        assert res.status_code == 201
        assert [(c["user"]["id"], c["role"]) for c in res.get_json()["contributors"]] == [
            (contributor.id, "creator"), (viewer.id, "editor"),
        ]
        assert client.get(_url(report), headers=headers_for(viewer)).status_code == 200

        res = client.delete(_url(report, f"/contributors/{viewer.id}"), headers=headers_for(contributor))
        assert res.status_code == 200
        assert len(res.get_json()["contributors"]) == 1

    def test_duplicate_contributor(self, client, contributor, headers_for, create_report):
        report = create_report(contributor)
        res = client.post(_url(report, "/contributors"), headers=headers_for(contributor),
                          json={"user_id": contributor.id})
        assert res.status_code == 409

    def test_unknown_contributor_user(self, client, contributor, headers_for, create_report):
        report = create_report(contributor)
        res = client.post(_url(report, "/contributors"), headers=headers_for(contributor), json={"user_id": 4242})
        assert res.status_code == 404

    def test_creator_cannot_be_removed(self, client, contributor, admin, headers_for, create_report):
        report = create_report(contributor)
        res = client.delete(_url(report, f"/contributors/{contributor.id}"), headers=headers_for(admin))
        assert res.status_code == 400

    def test_archive_toggle(self, client, contributor, admin, headers_for, create_report):
        report = create_report(contributor)
        res = client.post(_url(report, "/archive"), headers=headers_for(admin), json={"archived": True})
        assert res.status_code == 200
        assert res.get_json()["is_archived"] is True
        res = client.post(_url(report, "/archive"), headers=headers_for(admin), json={"archived": False})
        assert res.get_json()["is_archived"] is False

    def test_archive_admin_only(self, client, contributor, headers_for, create_report):
        report = create_report(contributor)
        res = client.post(_url(report, "/archive"), headers=headers_for(contributor), json={"archived": True})
        assert res.status_code == 403

    def test_delete(self, client, contributor, admin, headers_for, create_report):
        report = create_report(contributor, sections=[{"title": "Intro"}])
        res = client.delete(_url(report), headers=headers_for(admin))
        assert res.status_code == 200
        assert client.get(_url(report), headers=headers_for(admin)).status_code == 404

    def test_delete_admin_only(self, client, contributor, headers_for, create_report):
        report = create_report(contributor)
        assert client.delete(_url(report), headers=headers_for(contributor)).status_code == 403
