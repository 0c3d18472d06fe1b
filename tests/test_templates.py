"""
Template store tests.

Tests cover:
  - create / get / list filters
  - update: owner-only, schema frozen after first share
  - delete: refused while assignments are live, soft delete otherwise
  - clone: unshared, unfrozen copy owned by the caller
  - share / unshare / reminders
"""

from conftest import BASIC_FIELDS, create_template, share
from formflow.models import db
from formflow.models.form import FormTemplate
from formflow.models.notification import Notification
from formflow.models.workflow import FormAssignment, Submission


# ═════════════════════════════════════════════════════════════════════════
# CREATE / READ
# ═════════════════════════════════════════════════════════════════════════

class TestCreateAndRead:
    def test_create_template(self, client, auth, users):
        res = client.post(
            "/api/v1/templates",
            json={"title": "Staff Census", "fields": BASIC_FIELDS, "deadline": "2030-01-31"},
            headers=auth(users["dist"]),
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["success"] is True
        data = body["data"]
        assert data["title"] == "Staff Census"
        assert data["created_by"] == users["dist"].id
        assert data["shared_with_users"] == []
        assert data["schema_frozen"] is False
        assert data["allow_delegation"] is True
        assert data["deadline"].startswith("2030-01-31")

    def test_create_with_sharing_list(self, client, auth, users):
        tpl = create_template(
            client, auth, users["dist"], sharedWithUsers=[users["alice"].id, users["bob"].id],
        )
        assert sorted(tpl["shared_with_users"]) == sorted([users["alice"].id, users["bob"].id])
        assert tpl["schema_frozen"] is True
        assert FormAssignment.query.filter_by(template_id=tpl["id"]).count() == 2

    def test_title_required(self, client, auth, users):
        res = client.post("/api/v1/templates", json={"fields": BASIC_FIELDS}, headers=auth(users["dist"]))
        assert res.status_code == 422
        assert res.get_json()["errors"] == {"title": "required"}

    def test_invalid_field_definitions(self, client, auth, users):
        res = client.post(
            "/api/v1/templates",
            json={"title": "Bad", "fields": [
                {"id": "a", "type": "text", "label": "A"},
                {"id": "a", "type": "text", "label": "Again"},
                {"id": "b", "type": "hologram", "label": "B"},
                {"id": "c", "type": "select", "label": "C"},
            ]},
            headers=auth(users["dist"]),
        )
        assert res.status_code == 422
        errors = res.get_json()["errors"]
        assert set(errors) == {"a", "b", "c"}
        assert FormTemplate.query.count() == 0

    def test_invalid_deadline(self, client, auth, users):
        res = client.post(
            "/api/v1/templates",
            json={"title": "T", "fields": BASIC_FIELDS, "deadline": "someday"},
            headers=auth(users["dist"]),
        )
        assert res.status_code == 422

    def test_get_requires_access(self, client, auth, users, template, shared):
        assert client.get(f"/api/v1/templates/{template['id']}", headers=auth(users["alice"])).status_code == 200
        assert client.get(f"/api/v1/templates/{template['id']}", headers=auth(users["carol"])).status_code == 403
        assert client.get(f"/api/v1/templates/{template['id']}", headers=auth(users["admin"])).status_code == 200

    def test_get_unknown(self, client, auth, users):
        assert client.get("/api/v1/templates/999", headers=auth(users["dist"])).status_code == 404


class TestListFilters:
    def _titles(self, client, auth, user, filter_):
        res = client.get(f"/api/v1/templates?filter={filter_}", headers=auth(user))
        assert res.status_code == 200
        return sorted(t["title"] for t in res.get_json()["data"]["items"])

    def test_filters(self, client, auth, users):
        dist, alice = users["dist"], users["alice"]
        owned = create_template(client, auth, alice, title="Mine")
        shared = create_template(client, auth, dist, title="Shared")
        create_template(client, auth, dist, title="Public", isPublic=True)
        create_template(client, auth, dist, title="Private")
        share(client, auth, dist, shared["id"], alice)

        assert self._titles(client, auth, alice, "owned") == [owned["title"]]
        assert self._titles(client, auth, alice, "shared_with_me") == ["Shared"]
        assert self._titles(client, auth, alice, "public") == ["Public"]
        assert self._titles(client, auth, alice, "all") == ["Mine", "Public", "Shared"]
        assert len(self._titles(client, auth, users["admin"], "all")) == 4

    def test_unknown_filter(self, client, auth, users):
        res = client.get("/api/v1/templates?filter=everything", headers=auth(users["dist"]))
        assert res.status_code == 422

    def test_active_only(self, client, auth, users, template):
        client.put(f"/api/v1/templates/{template['id']}", json={"isActive": False}, headers=auth(users["dist"]))
        res = client.get("/api/v1/templates?filter=owned&active=true", headers=auth(users["dist"]))
        assert res.get_json()["data"]["total"] == 0


# ═════════════════════════════════════════════════════════════════════════
# UPDATE
# ═════════════════════════════════════════════════════════════════════════

class TestUpdate:
    def test_owner_updates(self, client, auth, users, template):
        res = client.put(
            f"/api/v1/templates/{template['id']}",
            json={"title": "Renamed", "fields": BASIC_FIELDS[:1]},
            headers=auth(users["dist"]),
        )
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["title"] == "Renamed"
        assert len(data["fields"]) == 1

    def test_non_creator_forbidden(self, client, auth, users, template):
        res = client.put(f"/api/v1/templates/{template['id']}", json={"title": "X"}, headers=auth(users["alice"]))
        assert res.status_code == 403

    def test_unknown_template(self, client, auth, users):
        res = client.put("/api/v1/templates/999", json={"title": "X"}, headers=auth(users["dist"]))
        assert res.status_code == 404

    def test_schema_frozen_after_share(self, client, auth, users, template, shared):
        res = client.put(
            f"/api/v1/templates/{template['id']}",
            json={"fields": BASIC_FIELDS[:1]},
            headers=auth(users["dist"]),
        )
        assert res.status_code == 409
        assert res.get_json()["errors"]["reason"] == "SchemaFrozen"

    def test_metadata_still_editable_after_share(self, client, auth, users, template, shared):
        res = client.put(
            f"/api/v1/templates/{template['id']}",
            json={"title": "New title", "fields": BASIC_FIELDS},
            headers=auth(users["dist"]),
        )
        assert res.status_code == 200
        assert res.get_json()["data"]["title"] == "New title"

    def test_empty_body(self, client, auth, users, template):
        res = client.put(f"/api/v1/templates/{template['id']}", json={}, headers=auth(users["dist"]))
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════
# DELETE / CLONE
# ═════════════════════════════════════════════════════════════════════════

class TestDeleteAndClone:
    def test_delete_unshared(self, client, auth, users, template):
        res = client.delete(f"/api/v1/templates/{template['id']}", headers=auth(users["dist"]))
        assert res.status_code == 200
        assert client.get(f"/api/v1/templates/{template['id']}", headers=auth(users["dist"])).status_code == 404
        row = db.session.get(FormTemplate, template["id"])
        assert row.is_deleted is True

    def test_delete_refused_while_in_use(self, client, auth, users, template, shared):
        res = client.delete(f"/api/v1/templates/{template['id']}", headers=auth(users["dist"]))
        assert res.status_code == 409
        assert res.get_json()["errors"]["reason"] == "TemplateInUse"

    def test_delete_non_owner(self, client, auth, users, template):
        res = client.delete(f"/api/v1/templates/{template['id']}", headers=auth(users["alice"]))
        assert res.status_code == 403

    def test_clone(self, client, auth, users, template, shared):
        res = client.post(f"/api/v1/templates/{template['id']}/clone", headers=auth(users["alice"]))
        assert res.status_code == 201
        clone = res.get_json()["data"]
        assert clone["id"] != template["id"]
        assert clone["title"] == "Copy of Annual Return"
        assert clone["created_by"] == users["alice"].id
        assert clone["shared_with_users"] == []
        assert clone["schema_frozen"] is False
        assert clone["fields"] == template["fields"]

    def test_clone_requires_access(self, client, auth, users, template):
        res = client.post(f"/api/v1/templates/{template['id']}/clone", headers=auth(users["carol"]))
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════
# SHARING
# ═════════════════════════════════════════════════════════════════════════

class TestSharing:
    def test_share_creates_root_assignments(self, client, auth, users, template):
        alice = users["alice"]
        res = client.post(
            f"/api/v1/templates/{template['id']}/share",
            json={"userIds": [alice.id], "instructions": "Due Friday"},
            headers=auth(users["dist"]),
        )
        assert res.status_code == 201
        root = res.get_json()["data"]["assignments"][0]
        assert root["assigned_to"] == alice.id
        assert root["assigned_by"] == users["dist"].id
        assert root["status"] == "Pending"
        assert root["delegation_chain"] == []
        assert root["instructions"] == "Due Friday"
        notif = Notification.query.filter_by(recipient_id=alice.id, type="form_shared").one()
        assert notif.message == "Due Friday"
        assert db.session.get(FormTemplate, template["id"]).is_schema_frozen

    def test_share_again_is_a_noop(self, client, auth, users, template, shared):
        res = client.post(
            f"/api/v1/templates/{template['id']}/share",
            json={"userIds": [users["alice"].id]},
            headers=auth(users["dist"]),
        )
        assert res.status_code == 200
        assert res.get_json()["data"]["assignments"] == []
        assert FormAssignment.query.count() == 1

    def test_share_unknown_user(self, client, auth, users, template):
        res = client.post(
            f"/api/v1/templates/{template['id']}/share",
            json={"userIds": [users["alice"].id, 999]},
            headers=auth(users["dist"]),
        )
        assert res.status_code == 404
        assert FormAssignment.query.count() == 0

    def test_share_requires_user_ids(self, client, auth, users, template):
        res = client.post(f"/api/v1/templates/{template['id']}/share", json={}, headers=auth(users["dist"]))
        assert res.status_code == 400

    def test_only_owner_shares(self, client, auth, users, template):
        res = client.post(
            f"/api/v1/templates/{template['id']}/share",
            json={"userIds": [users["carol"].id]},
            headers=auth(users["alice"]),
        )
        assert res.status_code == 403

    def test_unshare_removes_lineage_and_data(self, client, auth, users, template, shared):
        client.post(
            "/api/v1/workflow/draft",
            json={"templateId": template["id"], "data": {"name": "A"}},
            headers=auth(users["alice"]),
        )
        client.post(
            "/api/v1/workflow/delegate",
            json={"parentAssignmentId": shared["id"], "assignedToId": users["bob"].id},
            headers=auth(users["alice"]),
        )
        res = client.delete(
            f"/api/v1/templates/{template['id']}/share/{users['alice'].id}",
            headers=auth(users["dist"]),
        )
        assert res.status_code == 200
        assert res.get_json()["data"] == {"deleted_assignments": 2, "deleted_submissions": 1}
        assert FormAssignment.query.count() == 0
        assert Submission.query.count() == 0
        assert db.session.get(FormTemplate, template["id"]).shared_user_ids == []

    def test_unshare_unknown_share(self, client, auth, users, template):
        res = client.delete(
            f"/api/v1/templates/{template['id']}/share/{users['carol'].id}",
            headers=auth(users["dist"]),
        )
        assert res.status_code == 404

    def test_reminders_reach_current_holders(self, client, auth, users, template, shared, delegated):
        res = client.post(f"/api/v1/templates/{template['id']}/reminders", json={}, headers=auth(users["dist"]))
        assert res.status_code == 200
        assert res.get_json()["data"]["user_ids"] == [users["bob"].id]
        assert Notification.query.filter_by(type="form_reminder").count() == 1

    def test_no_reminders_after_submission(self, client, auth, users, template, delegated):
        bob = users["bob"]
        client.post("/api/v1/workflow/approve", json={"assignmentId": delegated["id"]}, headers=auth(bob))
        client.post("/api/v1/workflow/submit-distributor", json={"assignmentId": delegated["id"]}, headers=auth(bob))
        res = client.post(f"/api/v1/templates/{template['id']}/reminders", json={}, headers=auth(users["dist"]))
        assert res.get_json()["data"]["user_ids"] == []
