import uuid

from app.models.approval import GLOBAL_SYSTEM_POLICY_ID
from app.schemas.approval import ApprovalPolicyCreate
from app.services.approval import share_approvals
from app.services.approval_policy import approval_policies


def _create_policy(db_session, **overrides):
    data = {"name": f"policy-{uuid.uuid4().hex[:8]}"}
    data.update(overrides)
    return approval_policies.create(db_session, ApprovalPolicyCreate(**data))


def _open_request(db_session, share, **policy_overrides):
    policy = _create_policy(db_session, **policy_overrides)
    return share_approvals.create_request(db_session, str(share.id), str(policy.id))


class TestRequestEndpoints:
    def test_pending_list(self, client, db_session, share):
        request = _open_request(db_session, share)
        resp = client.get("/approvals/pending")
        assert resp.status_code == 200
        data = resp.json()
        assert data["count"] == 1
        assert data["items"][0]["id"] == str(request.id)
        assert data["items"][0]["status"] == "pending"

    def test_versioned_prefix(self, client, db_session, share):
        _open_request(db_session, share)
        resp = client.get("/api/v1/approvals/requests", params={"status": "pending"})
        assert resp.status_code == 200
        assert resp.json()["count"] == 1

    def test_invalid_order_by(self, client):
        resp = client.get("/approvals/requests", params={"order_by": "nope"})
        assert resp.status_code == 400

    def test_get_missing(self, client):
        resp = client.get(f"/approvals/requests/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    def test_decision_approves(self, client, db_session, share, person_factory):
        approver = person_factory("Ann", "Approver")
        request = _open_request(db_session, share)
        resp = client.post(
            f"/approvals/requests/{request.id}/decision",
            json={
                "decision": "approved",
                "comment": "Fine",
                "approver_id": str(approver.id),
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "approved"
        assert data["current_approval_count"] == 1
        assert data["required_approval_count"] == 1

        history = client.get(f"/approvals/requests/{request.id}/history").json()
        assert [h["action"] for h in history] == ["requested", "approved"]
        decisions = client.get(f"/approvals/requests/{request.id}/decisions").json()
        assert decisions[0]["approver_id"] == str(approver.id)

    def test_decision_forbidden_for_unassigned_user(
        self, client, db_session, share, person_factory
    ):
        assigned = person_factory("Assigned")
        outsider = person_factory("Outsider")
        request = _open_request(db_session, share, user_filters=[str(assigned.id)])
        resp = client.post(
            f"/approvals/requests/{request.id}/decision",
            json={"decision": "approved", "approver_id": str(outsider.id)},
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "permission_denied"

        check = client.get(
            f"/approvals/requests/{request.id}/can-approve",
            params={"user_id": str(assigned.id)},
        )
        assert check.json() == {"can_approve": True}

    def test_decision_rejects_unknown_value(
        self, client, db_session, share, person
    ):
        request = _open_request(db_session, share)
        resp = client.post(
            f"/approvals/requests/{request.id}/decision",
            json={"decision": "maybe", "approver_id": str(person.id)},
        )
        assert resp.status_code == 422

    def test_decision_on_missing_request(self, client, person):
        resp = client.post(
            f"/approvals/requests/{uuid.uuid4()}/decision",
            json={"decision": "approved", "approver_id": str(person.id)},
        )
        assert resp.status_code == 404

    def test_statistics(self, client, db_session, share):
        _open_request(db_session, share)
        resp = client.get("/approvals/statistics")
        assert resp.status_code == 200
        assert resp.json()["pending_requests"] == 1


class TestPolicyEndpoints:
    def test_crud(self, client):
        resp = client.post(
            "/approvals/policies",
            json={"name": "Finance", "priority": 2, "file_type_filters": ["PDF"]},
        )
        assert resp.status_code == 201
        policy = resp.json()
        assert policy["file_type_filters"] == ["pdf"]
        assert policy["is_global_system_policy"] is False

        resp = client.patch(
            f"/approvals/policies/{policy['id']}", json={"priority": 7}
        )
        assert resp.json()["priority"] == 7

        resp = client.post(f"/approvals/policies/{policy['id']}/toggle")
        assert resp.json()["is_active"] is False

        listing = client.get("/approvals/policies").json()
        assert listing["count"] == 1

        resp = client.delete(f"/approvals/policies/{policy['id']}")
        assert resp.status_code == 204
        assert client.get(f"/approvals/policies/{policy['id']}").status_code == 404

    def test_duplicate_name(self, client):
        client.post("/approvals/policies", json={"name": "Finance"})
        resp = client.post("/approvals/policies", json={"name": "Finance"})
        assert resp.status_code == 400

    def test_global_policy_is_protected(self, client, db_session):
        approval_policies.ensure_global_system_policy(db_session)
        resp = client.delete(f"/approvals/policies/{GLOBAL_SYSTEM_POLICY_ID}")
        assert resp.status_code == 409
        resp = client.post(f"/approvals/policies/{GLOBAL_SYSTEM_POLICY_ID}/toggle")
        assert resp.status_code == 409

    def test_policy_test(self, client, db_session, share):
        policy = _create_policy(db_session, file_type_filters=["pdf"])
        resp = client.post(
            f"/approvals/policies/{policy.id}/test",
            json={"share_id": str(share.id)},
        )
        assert resp.status_code == 200
        assert resp.json()["matched"] is True


class TestSettingsEndpoints:
    def test_defaults(self, client):
        resp = client.get("/approvals/settings")
        assert resp.status_code == 200
        data = resp.json()
        assert data["is_global_approval_enabled"] is False
        assert data["default_expiration_days"] == 7

    def test_enable_and_disable(self, client, person):
        resp = client.post(
            "/approvals/settings/enable",
            json={"reason": "Audit", "user_id": str(person.id)},
        )
        assert resp.status_code == 200
        assert resp.json()["is_global_approval_enabled"] is True
        assert resp.json()["global_approval_reason"] == "Audit"

        resp = client.post(
            "/approvals/settings/disable", json={"user_id": str(person.id)}
        )
        assert resp.json()["is_global_approval_enabled"] is False
        assert resp.json()["global_approval_reason"] is None

    def test_enable_requires_reason(self, client, person):
        resp = client.post(
            "/approvals/settings/enable",
            json={"reason": "", "user_id": str(person.id)},
        )
        assert resp.status_code == 422

    def test_update_and_reset(self, client):
        resp = client.patch(
            "/approvals/settings", json={"force_approval_for_all": True}
        )
        assert resp.json()["force_approval_for_all"] is True
        resp = client.post("/approvals/settings/reset")
        assert resp.json()["force_approval_for_all"] is False

    def test_update_validates_ranges(self, client):
        resp = client.patch("/approvals/settings", json={"default_expiration_days": 0})
        assert resp.status_code == 422
