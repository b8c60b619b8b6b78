import uuid
from unittest.mock import patch

from app.config import settings
from app.models.approval import OutboxEvent
from app.schemas.approval import ApprovalSettingsUpdate
from app.services.approval_notifications import (
    handle_decision_made,
    handle_request_created,
    handle_share_created,
)
from app.services.approval_settings import approval_settings
from app.services.event import EventType, enqueue_event


def _share_created_payload(**overrides):
    payload = {
        "share_id": uuid.uuid4(),
        "share_code": "abcDEF234567",
        "recipient_email": "a@example.com",
        "document_name": "Quarterly report",
        "creator_name": "Owner Person",
        "custom_message": None,
        "share_url": "http://localhost:8000/document/abcDEF234567",
    }
    payload.update(overrides)
    return payload


def _enqueue(db_session, event_type=EventType.share_created, payload=None):
    event = enqueue_event(db_session, event_type, payload or _share_created_payload())
    db_session.commit()
    db_session.refresh(event)
    return event


class TestEnqueue:
    def test_payload_is_json_safe(self, db_session):
        share_id = uuid.uuid4()
        event = _enqueue(db_session, payload=_share_created_payload(share_id=share_id))
        assert event.event_type == "share.created"
        assert event.payload["share_id"] == str(share_id)
        assert event.attempts == 0
        assert event.dispatched_at is None


class TestDrain:
    @patch("app.services.approval_notifications.email_service")
    def test_dispatches_pending_events(self, mock_email, db_session):
        from app.tasks.events import _drain

        event = _enqueue(db_session)
        assert _drain(db_session) == 1

        db_session.refresh(event)
        assert event.dispatched_at is not None
        assert event.attempts == 1
        assert event.last_error is None
        assert mock_email.send_share_notification.call_count == 1

    @patch("app.services.approval_notifications.email_service")
    def test_skips_dispatched_events(self, mock_email, db_session):
        from app.tasks.events import _drain

        _enqueue(db_session)
        _drain(db_session)
        assert _drain(db_session) == 0
        assert mock_email.send_share_notification.call_count == 1

    @patch("app.services.approval_notifications.email_service")
    def test_failure_is_recorded_for_retry(self, mock_email, db_session):
        from app.tasks.events import _drain

        mock_email.send_share_notification.side_effect = RuntimeError("smtp down")
        event = _enqueue(db_session)
        assert _drain(db_session) == 0

        db_session.refresh(event)
        assert event.dispatched_at is None
        assert event.attempts == 1
        assert event.last_error == "smtp down"

        mock_email.send_share_notification.side_effect = None
        assert _drain(db_session) == 1
        db_session.refresh(event)
        assert event.attempts == 2
        assert event.last_error is None

    @patch("app.services.approval_notifications.email_service")
    def test_gives_up_after_max_attempts(self, mock_email, db_session):
        from app.tasks.events import _drain

        event = _enqueue(db_session)
        event.attempts = settings.outbox_max_attempts
        db_session.commit()
        assert _drain(db_session) == 0
        mock_email.send_share_notification.assert_not_called()

    def test_unknown_event_type_is_marked_dispatched(self, db_session):
        from app.tasks.events import _drain

        event = OutboxEvent(event_type="share.archived", payload={})
        db_session.add(event)
        db_session.commit()
        assert _drain(db_session) == 1

    @patch("app.services.approval_notifications.email_service")
    def test_commits_each_event_before_claiming_the_next(self, mock_email, db_session):
        from app.tasks.events import _drain

        _enqueue(db_session, payload=_share_created_payload(recipient_email="a@example.com"))
        _enqueue(db_session, payload=_share_created_payload(recipient_email="b@example.com"))
        order = []
        mock_email.send_share_notification.side_effect = lambda **kwargs: order.append(
            kwargs["recipient_email"]
        )
        real_commit = db_session.commit

        def commit():
            order.append("commit")
            real_commit()

        with patch.object(db_session, "commit", side_effect=commit):
            assert _drain(db_session) == 2

        assert order[1] == "commit"
        assert order[3] == "commit"
        assert sorted([order[0], order[2]]) == ["a@example.com", "b@example.com"]

    @patch("app.services.approval_notifications.email_service")
    def test_failed_event_does_not_resend_others(self, mock_email, db_session):
        from app.tasks.events import _drain

        failing = _enqueue(
            db_session, payload=_share_created_payload(recipient_email="down@example.com")
        )
        ok = _enqueue(db_session, payload=_share_created_payload(recipient_email="b@example.com"))

        def send(**kwargs):
            if kwargs["recipient_email"] == "down@example.com":
                raise RuntimeError("mailbox unavailable")

        mock_email.send_share_notification.side_effect = send
        assert _drain(db_session) == 1
        assert _drain(db_session) == 0

        db_session.refresh(failing)
        db_session.refresh(ok)
        assert failing.attempts == 2
        assert failing.dispatched_at is None
        assert ok.dispatched_at is not None
        sent_to = [
            call.kwargs["recipient_email"]
            for call in mock_email.send_share_notification.call_args_list
        ]
        assert sent_to.count("b@example.com") == 1
        assert sent_to.count("down@example.com") == 2

    @patch("app.services.approval_notifications.email_service")
    def test_batch_size_caps_one_run(self, mock_email, db_session):
        from app.tasks.events import _drain

        _enqueue(db_session)
        _enqueue(db_session)
        assert _drain(db_session, batch_size=1) == 1
        remaining = (
            db_session.query(OutboxEvent)
            .filter(OutboxEvent.dispatched_at.is_(None))
            .count()
        )
        assert remaining == 1

    def test_claim_locks_a_single_row(self, db_session):
        from sqlalchemy.dialects import postgresql

        from app.tasks.events import _claim_query

        query = _claim_query(db_session, [uuid.uuid4()])
        sql = str(query.statement.compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE SKIP LOCKED" in sql
        assert "LIMIT" in sql
        assert "NOT IN" in sql

    def test_dispatch_outbox_closes_session(self):
        from app.tasks.events import dispatch_outbox

        with patch("app.db.SessionLocal") as session_factory, patch(
            "app.tasks.events._drain", side_effect=RuntimeError("boom")
        ):
            dispatch_outbox()
        session_factory.return_value.close.assert_called_once()


class TestHandlers:
    @patch("app.services.approval_notifications.email_service")
    def test_request_created_mails_assigned_approvers(
        self, mock_email, db_session, person_factory
    ):
        approver = person_factory("Ann", "Approver")
        sent = handle_request_created(
            db_session,
            {
                "request_id": str(uuid.uuid4()),
                "document_name": "Quarterly report",
                "requester_name": "Owner Person",
                "share_code": "abcDEF234567",
                "assigned_approvers": [str(approver.id), str(uuid.uuid4())],
                "policy_name": "Finance",
            },
        )
        assert sent == 1
        kwargs = mock_email.send_approval_request_notification.call_args.kwargs
        assert kwargs["approver_email"] == approver.email
        assert kwargs["policy_name"] == "Finance"
        assert kwargs["reason"] == "No reason provided"

    @patch("app.services.approval_notifications.email_service")
    def test_request_created_falls_back_to_permission_holders(
        self, mock_email, db_session, person_factory, role_factory
    ):
        approver = person_factory("Pat", "Processor")
        role_factory("Approvers", ("Approval.Process",), members=[approver])
        sent = handle_request_created(
            db_session, {"request_id": str(uuid.uuid4()), "assigned_approvers": []}
        )
        assert sent == 1
        kwargs = mock_email.send_approval_request_notification.call_args.kwargs
        assert kwargs["approver_email"] == approver.email

    @patch("app.services.approval_notifications.email_service")
    def test_notifications_can_be_switched_off(self, mock_email, db_session, person):
        approval_settings.update(
            db_session, ApprovalSettingsUpdate(enable_email_notifications=False)
        )
        payload = {
            "request_id": str(uuid.uuid4()),
            "assigned_approvers": [str(person.id)],
            "requester_email": person.email,
            "decision": "Approved",
        }
        assert handle_request_created(db_session, payload) == 0
        assert handle_decision_made(db_session, payload) == 0
        mock_email.send_approval_request_notification.assert_not_called()
        mock_email.send_approval_decision_notification.assert_not_called()

    @patch("app.services.approval_notifications.email_service")
    def test_decision_made_mails_requester(self, mock_email, db_session):
        sent = handle_decision_made(
            db_session,
            {
                "request_id": str(uuid.uuid4()),
                "requester_email": "owner@example.com",
                "requester_name": "Owner Person",
                "decision": "Rejected",
                "comment": None,
            },
        )
        assert sent == 1
        kwargs = mock_email.send_approval_decision_notification.call_args.kwargs
        assert kwargs["decision"] == "Rejected"
        assert kwargs["comment"] == "No additional comments"

    @patch("app.services.approval_notifications.email_service")
    def test_decision_made_without_email(self, mock_email, db_session):
        payload = {"request_id": str(uuid.uuid4()), "decision": "Approved"}
        assert handle_decision_made(db_session, payload) == 0
        mock_email.send_approval_decision_notification.assert_not_called()

    @patch("app.services.approval_notifications.email_service")
    def test_share_created_mails_recipient(self, mock_email, db_session):
        sent = handle_share_created(
            db_session, _share_created_payload(custom_message="Enjoy")
        )
        assert sent == 1
        kwargs = mock_email.send_share_notification.call_args.kwargs
        assert kwargs["recipient_email"] == "a@example.com"
        assert kwargs["custom_message"] == "Enjoy"

    @patch("app.services.approval_notifications.email_service")
    def test_share_created_without_recipient(self, mock_email, db_session):
        payload = _share_created_payload(recipient_email=None)
        assert handle_share_created(db_session, payload) == 0
        mock_email.send_share_notification.assert_not_called()
