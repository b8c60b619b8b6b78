import uuid

from app.services.approval_settings import approval_settings
from app.services.bucket_permissions import bucket_permissions


def _grant_read(db_session, bucket, person):
    bucket_permissions.assign(db_session, bucket.id, "person", person.id, "read")


class TestDocumentShareEndpoints:
    def test_create_without_approval(self, client, db_session, document, bucket, person):
        _grant_read(db_session, bucket, person)
        resp = client.post(
            "/document-shares",
            json={
                "document_id": str(document.id),
                "created_by": str(person.id),
                "notification_emails": ["client@example.com"],
            },
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["approval_request_id"] is None
        assert data["share"]["approval_status"] == "not_required"
        assert data["share"]["is_active"] is True

        code = data["share"]["share_code"]
        by_code = client.get(f"/document-shares/by-code/{code}")
        assert by_code.status_code == 200
        assert by_code.json()["id"] == data["share"]["id"]

    def test_create_pending_approval(self, client, db_session, document, bucket, person):
        _grant_read(db_session, bucket, person)
        approval_settings.enable_global_approval(db_session, "Audit", str(person.id))
        client.patch("/approvals/settings", json={"force_approval_for_all": True})
        resp = client.post(
            "/api/v1/document-shares",
            json={
                "document_id": str(document.id),
                "created_by": str(person.id),
                "approval_reason": "External auditor",
                "approval_priority": "high",
            },
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["share"]["approval_status"] == "pending"
        assert data["share"]["is_active"] is False

        approval = client.get(f"/document-shares/{data['share']['id']}/approval")
        assert approval.status_code == 200
        assert approval.json()["id"] == data["approval_request_id"]
        assert approval.json()["priority"] == "high"
        assert approval.json()["request_reason"] == "External auditor"

    def test_create_denied(self, client, document, person):
        resp = client.post(
            "/document-shares",
            json={"document_id": str(document.id), "created_by": str(person.id)},
        )
        assert resp.status_code == 403

    def test_create_rejects_bad_email(self, client, document, person):
        resp = client.post(
            "/document-shares",
            json={
                "document_id": str(document.id),
                "created_by": str(person.id),
                "notification_emails": ["not-an-email"],
            },
        )
        assert resp.status_code == 422

    def test_direct_share_not_allowed(self, client, db_session, document, bucket, person):
        _grant_read(db_session, bucket, person)
        resp = client.post(
            "/document-shares",
            json={
                "document_id": str(document.id),
                "created_by": str(person.id),
                "is_direct_share": True,
            },
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "invalid_state"

    def test_list_get_and_deactivate(self, client, share):
        listing = client.get("/document-shares", params={"is_active": True})
        assert listing.status_code == 200
        assert listing.json()["count"] == 1

        resp = client.get(f"/document-shares/{share.id}")
        assert resp.json()["share_code"] == share.share_code

        resp = client.post(f"/document-shares/{share.id}/deactivate")
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

    def test_missing_share(self, client, share):
        assert client.get(f"/document-shares/{uuid.uuid4()}").status_code == 404
        assert client.get(f"/document-shares/{share.id}/approval").status_code == 404
