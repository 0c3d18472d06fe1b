"""
Notification + audit trail tests.

Tests cover:
  - in-app notification inbox: list, unread count, mark read, read-all
  - notification failures never abort the surrounding change
  - audit rows for workflow transitions (before/after), admin listing
  - IS_AUDIT_LOGGING_ENABLED switch
"""

from formflow.models import db
from formflow.models.audit import AuditLog, write_audit
from formflow.models.form import FormTemplate
from formflow.models.notification import Notification
from formflow.models.system_config import SystemConfig
from formflow.services.notification import NotificationService


# ═════════════════════════════════════════════════════════════════════════
# NOTIFICATIONS
# ═════════════════════════════════════════════════════════════════════════

class TestNotificationInbox:
    def test_list_with_unread_count(self, client, auth, users, delegated):
        res = client.get("/api/v1/notifications", headers=auth(users["bob"]))
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["total"] == 1
        assert data["total_unread"] == 1
        assert data["items"][0]["type"] == "form_delegated"

    def test_mark_one_read(self, client, auth, users, delegated):
        bob = users["bob"]
        nid = Notification.query.filter_by(recipient_id=bob.id).one().id
        res = client.post(f"/api/v1/notifications/{nid}/read", headers=auth(bob))
        assert res.status_code == 200
        assert res.get_json()["data"]["is_read"] is True
        assert res.get_json()["data"]["read_at"] is not None

        res = client.get("/api/v1/notifications?unread_only=true", headers=auth(bob))
        assert res.get_json()["data"]["total"] == 0

    def test_cannot_read_someone_elses(self, client, auth, users, delegated):
        nid = Notification.query.filter_by(recipient_id=users["bob"].id).one().id
        res = client.post(f"/api/v1/notifications/{nid}/read", headers=auth(users["carol"]))
        assert res.status_code == 404

    def test_mark_all_read(self, client, auth, users, shared):
        alice = users["alice"]
        NotificationService.notify(recipient_id=alice.id, title="Extra")
        db.session.commit()
        res = client.post("/api/v1/notifications/read-all", headers=auth(alice))
        assert res.get_json()["data"]["updated"] == 2
        assert NotificationService.unread_count(alice.id) == 0

    def test_pagination(self, client, auth, users):
        carol = users["carol"]
        for i in range(5):
            NotificationService.notify(recipient_id=carol.id, title=f"N{i}")
        db.session.commit()
        res = client.get("/api/v1/notifications?limit=2&offset=1", headers=auth(carol))
        data = res.get_json()["data"]
        assert data["total"] == 5
        assert len(data["items"]) == 2


class TestNotificationFailureIsolation:
    def test_failed_insert_keeps_the_business_change(self, users, template):
        row = db.session.get(FormTemplate, template["id"])
        row.description = "changed"
        db.session.flush()

        assert NotificationService.notify(recipient_id=987654, title="Nobody") is None

        db.session.commit()
        db.session.expire_all()
        assert db.session.get(FormTemplate, template["id"]).description == "changed"
        assert Notification.query.filter_by(recipient_id=987654).count() == 0

    def test_no_recipient_is_a_noop(self):
        assert NotificationService.notify(recipient_id=None, title="x") is None

    def test_broadcast_collapses_duplicates(self, users):
        ids = [users["alice"].id, users["bob"].id, users["alice"].id]
        created = NotificationService.broadcast(recipient_ids=ids, title="Hello")
        db.session.commit()
        assert len(created) == 2


# ═════════════════════════════════════════════════════════════════════════
# AUDIT
# ═════════════════════════════════════════════════════════════════════════

class TestAuditTrail:
    def test_delegate_records_before_and_after(self, users, shared, delegated):
        parent_log = AuditLog.query.filter_by(
            action="workflow.delegate", resource_id=str(shared["id"]),
        ).one()
        assert parent_log.actor_user_id == users["alice"].id
        assert parent_log.diff["before"]["status"] == "Pending"
        assert parent_log.diff["after"]["status"] == "Edited"
        assert parent_log.diff["after"]["last_action"] == "Delegated"
        assert parent_log.diff["after"]["is_delegated"] is True
        assert parent_log.method == "POST"
        assert parent_log.path == "/api/v1/workflow/delegate"

        child_log = AuditLog.query.filter_by(
            action="workflow.delegate", resource_id=str(delegated["id"]),
        ).one()
        assert child_log.diff["before"] is None

    def test_rejected_transition_writes_nothing(self, client, auth, users, shared):
        count = AuditLog.query.count()
        client.post("/api/v1/workflow/approve", json={"assignmentId": shared["id"]}, headers=auth(users["alice"]))
        assert AuditLog.query.count() == count

    def test_logging_switched_off(self, client, auth, users, template):
        db.session.add(SystemConfig(key="IS_AUDIT_LOGGING_ENABLED", value=False))
        db.session.commit()
        before = AuditLog.query.count()
        client.post(
            f"/api/v1/templates/{template['id']}/share",
            json={"userIds": [users["alice"].id]},
            headers=auth(users["dist"]),
        )
        assert AuditLog.query.count() == before

    def test_write_audit_outside_request(self, users):
        log = write_audit(action="manual", resource="test", resource_id=1, actor_user_id=users["admin"].id)
        db.session.commit()
        assert log.id is not None
        assert log.path is None


class TestAuditAPI:
    def test_admin_lists_with_filters(self, client, auth, users, shared, delegated):
        res = client.get(
            "/api/v1/audit-logs?resource=form_assignment&action=workflow.",
            headers=auth(users["admin"]),
        )
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["total"] == 2
        assert {i["action"] for i in data["items"]} == {"workflow.delegate"}

        res = client.get(f"/api/v1/audit-logs?actor_id={users['dist'].id}", headers=auth(users["admin"]))
        actions = {i["action"] for i in res.get_json()["data"]["items"]}
        assert actions == {"template.create", "template.share"}

    def test_single_entry(self, client, auth, users, template):
        log_id = AuditLog.query.first().id
        res = client.get(f"/api/v1/audit-logs/{log_id}", headers=auth(users["admin"]))
        assert res.status_code == 200
        assert client.get("/api/v1/audit-logs/424242", headers=auth(users["admin"])).status_code == 404

    def test_non_admin_forbidden(self, client, auth, users):
        assert client.get("/api/v1/audit-logs", headers=auth(users["dist"])).status_code == 403
