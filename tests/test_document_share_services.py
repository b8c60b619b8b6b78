import uuid

import pytest

from app.errors import InvalidStateError, NotFoundError, PermissionDeniedError
from app.models.approval import (
    GLOBAL_SYSTEM_POLICY_ID,
    ApprovalPriority,
    ApprovalStatus,
    OutboxEvent,
    ShareApprovalRequest,
)
from app.models.ecm import ApiKey, Document
from app.schemas.approval import ApprovalPolicyCreate, ApprovalSettingsUpdate
from app.schemas.document_share import DocumentShareCreate
from app.services.approval_policy import approval_policies
from app.services.approval_settings import approval_settings
from app.services.bucket_permissions import bucket_permissions
from app.services.document_share import (
    SHARE_CODE_ALPHABET,
    SHARE_CODE_LENGTH,
    document_shares,
)


def _payload(document, creator, **overrides):
    data = {"document_id": document.id, "created_by": creator.id}
    data.update(overrides)
    return DocumentShareCreate(**data)


@pytest.fixture()
def reader(db_session, bucket, person):
    bucket_permissions.assign(db_session, bucket.id, "person", person.id, "read")
    return person


def _enable(db_session, person, **flags):
    approval_settings.enable_global_approval(db_session, "Tighten sharing", str(person.id))
    if flags:
        approval_settings.update(db_session, ApprovalSettingsUpdate(**flags))


def _events(db_session, event_type):
    return (
        db_session.query(OutboxEvent)
        .filter(OutboxEvent.event_type == event_type)
        .all()
    )


class TestCreateWithoutApproval:
    def test_global_approval_disabled(self, db_session, document, reader):
        result = document_shares.create_share(db_session, _payload(document, reader))
        assert result.approval_request_id is None
        assert result.approval_policy_id is None
        assert result.share.approval_status == ApprovalStatus.not_required
        assert result.share.is_active is True
        assert result.share.requires_approval is False
        assert db_session.query(ShareApprovalRequest).count() == 0

    def test_disabled_ignores_matching_policies(self, db_session, document, reader):
        approval_policies.create(
            db_session, ApprovalPolicyCreate(name="Everything", priority=1)
        )
        approval_policies.ensure_global_system_policy(db_session)
        result = document_shares.create_share(db_session, _payload(document, reader))
        assert result.approval_request_id is None

    def test_notifies_recipients_immediately(
        self, db_session, document, reader, outbox_delay
    ):
        result = document_shares.create_share(
            db_session,
            _payload(
                document,
                reader,
                notification_emails=["client@example.com"],
                custom_message="Here you go",
            ),
        )
        events = _events(db_session, "share.created")
        assert len(events) == 1
        payload = events[0].payload
        assert payload["share_code"] == result.share.share_code
        assert payload["recipient_email"] == "client@example.com"
        assert "notification_emails" not in payload
        assert payload["custom_message"] == "Here you go"
        assert payload["share_url"].endswith(f"/document/{result.share.share_code}")
        outbox_delay.assert_called_once()

    def test_one_event_per_recipient(self, db_session, document, reader):
        document_shares.create_share(
            db_session,
            _payload(
                document,
                reader,
                notification_emails=["a@example.com", "b@example.com"],
            ),
        )
        recipients = sorted(
            event.payload["recipient_email"]
            for event in _events(db_session, "share.created")
        )
        assert recipients == ["a@example.com", "b@example.com"]

    def test_no_recipients_no_event(self, db_session, document, reader, outbox_delay):
        document_shares.create_share(db_session, _payload(document, reader))
        assert db_session.query(OutboxEvent).count() == 0
        outbox_delay.assert_not_called()

    def test_enabled_without_matching_rules(self, db_session, document, reader):
        _enable(db_session, reader)
        approval_policies.create(
            db_session,
            ApprovalPolicyCreate(name="Word only", file_type_filters=["docx"]),
        )
        result = document_shares.create_share(db_session, _payload(document, reader))
        assert result.approval_request_id is None
        assert result.share.approval_status == ApprovalStatus.not_required

    def test_share_code_shape(self, db_session, document, reader):
        first = document_shares.create_share(db_session, _payload(document, reader))
        second = document_shares.create_share(db_session, _payload(document, reader))
        for code in (first.share.share_code, second.share.share_code):
            assert len(code) == SHARE_CODE_LENGTH
            assert set(code) <= set(SHARE_CODE_ALPHABET)
        assert first.share.share_code != second.share.share_code


class TestCreateWithApproval:
    def test_force_all_uses_global_policy(self, db_session, document, reader):
        _enable(db_session, reader, force_approval_for_all=True)
        result = document_shares.create_share(
            db_session,
            _payload(
                document,
                reader,
                approval_reason="Board pack",
                approval_priority=ApprovalPriority.high,
            ),
        )
        assert result.approval_policy_id == GLOBAL_SYSTEM_POLICY_ID
        assert result.share.approval_status == ApprovalStatus.pending
        assert result.share.is_active is False
        request = db_session.get(ShareApprovalRequest, result.approval_request_id)
        assert request.request_reason == "Board pack"
        assert request.priority == ApprovalPriority.high

    def test_large_file_uses_global_policy(self, db_session, document, reader):
        _enable(db_session, reader, large_file_size_threshold_bytes=1024)
        result = document_shares.create_share(db_session, _payload(document, reader))
        assert result.approval_policy_id == GLOBAL_SYSTEM_POLICY_ID
        request = db_session.get(ShareApprovalRequest, result.approval_request_id)
        assert request.request_reason == "Required by approval settings"

    def test_matching_policy(self, db_session, document, reader, category):
        _enable(db_session, reader)
        policy = approval_policies.create(
            db_session,
            ApprovalPolicyCreate(
                name="Category review",
                category_filters=[str(category.id)],
                required_approval_count=2,
            ),
        )
        result = document_shares.create_share(db_session, _payload(document, reader))
        assert result.approval_policy_id == policy.id
        request = db_session.get(ShareApprovalRequest, result.approval_request_id)
        assert request.required_approval_count == 2
        assert request.request_reason == "Required by approval policy: Category review"

    def test_pending_share_holds_recipient_notice(self, db_session, document, reader):
        _enable(db_session, reader, force_approval_for_all=True)
        document_shares.create_share(
            db_session,
            _payload(document, reader, notification_emails=["client@example.com"]),
        )
        assert _events(db_session, "share.created") == []
        assert len(_events(db_session, "approval.request_created")) == 1


class TestDirectShare:
    def test_rejected_unless_bucket_and_category_allow(
        self, db_session, document, reader, bucket, category
    ):
        payload = _payload(document, reader, is_direct_share=True)
        with pytest.raises(InvalidStateError):
            document_shares.create_share(db_session, payload)

        bucket.allow_direct_access = True
        db_session.commit()
        with pytest.raises(InvalidStateError):
            document_shares.create_share(db_session, payload)
        assert db_session.query(ShareApprovalRequest).count() == 0

    def test_always_requires_approval(
        self, db_session, document, reader, bucket, category
    ):
        bucket.allow_direct_access = True
        category.allow_direct_access = True
        db_session.commit()
        # Direct shares are reviewed even with global approval switched off.
        result = document_shares.create_share(
            db_session, _payload(document, reader, is_direct_share=True)
        )
        assert result.approval_policy_id == GLOBAL_SYSTEM_POLICY_ID
        assert result.share.is_direct_share is True
        assert result.share.approval_status == ApprovalStatus.pending
        request = db_session.get(ShareApprovalRequest, result.approval_request_id)
        assert request.request_reason == "Direct share requires approval"


class TestAuthorization:
    def test_missing_document_or_creator(self, db_session, document, person):
        with pytest.raises(NotFoundError):
            document_shares.create_share(
                db_session,
                DocumentShareCreate(document_id=uuid.uuid4(), created_by=person.id),
            )
        with pytest.raises(NotFoundError):
            document_shares.create_share(
                db_session,
                DocumentShareCreate(document_id=document.id, created_by=uuid.uuid4()),
            )

    def test_user_without_grant_is_denied(self, db_session, document, person_factory):
        outsider = person_factory("Out", "Sider")
        with pytest.raises(PermissionDeniedError):
            document_shares.create_share(db_session, _payload(document, outsider))

    def test_owner_still_needs_bucket_grant(self, db_session, document, person):
        with pytest.raises(PermissionDeniedError):
            document_shares.create_share(db_session, _payload(document, person))

    def test_admin_is_allowed(self, db_session, document, person_factory, role_factory):
        admin = person_factory("Ada", "Admin")
        role_factory("Admin", ("Admin.Access",), members=[admin])
        result = document_shares.create_share(db_session, _payload(document, admin))
        assert result.share.created_by == admin.id

    def test_role_grant_is_allowed(
        self, db_session, document, bucket, person_factory, role_factory
    ):
        member = person_factory("Rae", "Member")
        role = role_factory("Editors", members=[member])
        bucket_permissions.assign(db_session, bucket.id, "role", role.id, "read_write")
        result = document_shares.create_share(db_session, _payload(document, member))
        assert result.share.created_by == member.id

    def test_api_key_with_provider_access(
        self, db_session, document, person, provider
    ):
        key = ApiKey(
            name="integration",
            owner_id=person.id,
            allowed_provider_ids=[str(provider.id)],
        )
        db_session.add(key)
        db_session.commit()
        result = document_shares.create_share(
            db_session, _payload(document, person, created_via_api_key_id=key.id)
        )
        assert result.share.created_via_api_key_id == key.id

    def test_api_key_without_provider_access(self, db_session, document, person):
        key = ApiKey(name="elsewhere", owner_id=person.id, allowed_provider_ids=[])
        db_session.add(key)
        db_session.commit()
        with pytest.raises(PermissionDeniedError):
            document_shares.create_share(
                db_session, _payload(document, person, created_via_api_key_id=key.id)
            )

    def test_bucketless_document_owner_only(
        self, db_session, person, provider, person_factory
    ):
        loose = Document(
            name="Loose file",
            file_name="notes.txt",
            file_size=10,
            storage_provider_id=provider.id,
            created_by=person.id,
        )
        db_session.add(loose)
        db_session.commit()
        assert document_shares.create_share(db_session, _payload(loose, person))
        with pytest.raises(PermissionDeniedError):
            document_shares.create_share(
                db_session, _payload(loose, person_factory("Other"))
            )

    def test_bucketless_document_inactive_api_key(self, db_session, person, provider):
        loose = Document(
            name="Loose file",
            file_name="notes.txt",
            file_size=10,
            storage_provider_id=provider.id,
            created_by=person.id,
        )
        key = ApiKey(name="retired", owner_id=person.id, is_active=False)
        db_session.add_all([loose, key])
        db_session.commit()
        with pytest.raises(PermissionDeniedError):
            document_shares.create_share(
                db_session, _payload(loose, person, created_via_api_key_id=key.id)
            )


class TestReadAndDeactivate:
    def test_get_and_get_by_code(self, db_session, document, reader):
        created = document_shares.create_share(db_session, _payload(document, reader))
        share = document_shares.get(db_session, str(created.share.id))
        assert document_shares.get_by_code(db_session, share.share_code).id == share.id
        with pytest.raises(NotFoundError):
            document_shares.get_by_code(db_session, "missing")
        with pytest.raises(NotFoundError):
            document_shares.get(db_session, str(uuid.uuid4()))

    def test_list_filters(self, db_session, document, reader):
        _enable(db_session, reader, force_approval_for_all=True)
        pending = document_shares.create_share(db_session, _payload(document, reader))
        approval_settings.disable_global_approval(db_session, str(reader.id))
        open_share = document_shares.create_share(db_session, _payload(document, reader))

        active = document_shares.list(
            db_session, None, None, None, True, "created_at", "asc", 50, 0
        )
        assert [s.id for s in active] == [open_share.share.id]
        waiting = document_shares.list(
            db_session, str(document.id), None, "pending", None, "created_at", "asc", 50, 0
        )
        assert [s.id for s in waiting] == [pending.share.id]

    def test_deactivate(self, db_session, document, reader):
        created = document_shares.create_share(db_session, _payload(document, reader))
        share = document_shares.deactivate(db_session, str(created.share.id))
        assert share.is_active is False
