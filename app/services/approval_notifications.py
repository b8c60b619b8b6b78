"""Outbox handlers that turn approval events into emails.

Handlers run in the dispatcher, after the originating transaction has
committed. Transport errors propagate so the dispatcher can retry the event.
"""

import logging

from sqlalchemy.orm import Session

from app.services.approval_settings import approval_settings
from app.services.directory import directory
from app.services.email import email_service
from app.services.event import EventType

logger = logging.getLogger(__name__)

APPROVER_PERMISSION_KEY = "Approval.Process"


def _approval_recipients(db: Session, assigned: list[str]):
    if assigned:
        people = [directory.get_person(db, person_id) for person_id in assigned]
        return [p for p in people if p is not None and p.is_active]
    return directory.people_with_permission(db, APPROVER_PERMISSION_KEY)


def _emails_enabled(db: Session) -> bool:
    return approval_settings.get_current(db).enable_email_notifications


def handle_request_created(db: Session, payload: dict) -> int:
    if not _emails_enabled(db):
        logger.info("Email notifications disabled, skipping request %s", payload["request_id"])
        return 0
    sent = 0
    for approver in _approval_recipients(db, payload.get("assigned_approvers") or []):
        if not approver.email:
            continue
        email_service.send_approval_request_notification(
            approver_email=approver.email,
            approver_name=approver.full_name,
            document_name=payload.get("document_name") or "",
            requester_name=payload.get("requester_name") or "Unknown User",
            reason=payload.get("reason") or "No reason provided",
            share_code=payload.get("share_code") or "",
            expires_at=payload.get("expires_at"),
            category_name=payload.get("category_name") or "Uncategorized",
            formatted_file_size=payload.get("file_size") or "0 B",
            policy_name=payload.get("policy_name") or "System Policy",
        )
        sent += 1
    logger.info(
        "Sent approval request emails for %s to %d approvers",
        payload["request_id"],
        sent,
    )
    return sent


def handle_decision_made(db: Session, payload: dict) -> int:
    if not _emails_enabled(db):
        return 0
    email = payload.get("requester_email")
    if not email:
        logger.warning("No requester email for approval request %s", payload["request_id"])
        return 0
    email_service.send_approval_decision_notification(
        requester_email=email,
        requester_name=payload.get("requester_name") or "",
        document_name=payload.get("document_name") or "",
        decision=payload["decision"],
        comment=payload.get("comment") or "No additional comments",
        share_code=payload.get("share_code") or "",
        share_url=payload.get("share_url") or "",
    )
    return 1


def handle_share_created(db: Session, payload: dict) -> int:
    recipient = payload.get("recipient_email")
    if not recipient:
        logger.warning("No recipient on share notification for %s", payload.get("share_id"))
        return 0
    email_service.send_share_notification(
        recipient_email=recipient,
        document_name=payload.get("document_name") or "",
        sharer_name=payload.get("creator_name") or "",
        share_url=payload["share_url"],
        custom_message=payload.get("custom_message"),
    )
    return 1


HANDLERS = {
    EventType.approval_request_created.value: handle_request_created,
    EventType.approval_decision_made.value: handle_decision_made,
    EventType.share_created.value: handle_share_created,
}


def handle_event(db: Session, event_type: str, payload: dict) -> None:
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.warning("No handler for outbox event type %s", event_type)
        return
    handler(db, payload)
