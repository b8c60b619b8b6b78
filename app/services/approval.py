import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from app import metrics
from app.config import settings
from app.errors import (
    ConcurrencyConflict,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.models.approval import (
    SYSTEM_ACTOR,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalAction,
    ApprovalDecision,
    ApprovalHistory,
    ApprovalPolicy,
    ApprovalPriority,
    ApprovalStatus,
    ShareApprovalRequest,
)
from app.models.ecm import Category, Document, DocumentShare
from app.schemas.approval import ApprovalStatistics
from app.services.approval_policy import approval_policies
from app.services.common import (
    after_commit,
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    transaction,
)
from app.services.directory import directory
from app.services.email import format_file_size
from app.services.event import EventType, dispatch_after_commit, enqueue_event
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

_DECISIONS = (ApprovalAction.approved, ApprovalAction.rejected)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_expired(request: ShareApprovalRequest, now: datetime | None = None) -> bool:
    return _as_utc(request.expires_at) <= (now or _utcnow())


def _validate_decision(decision) -> ApprovalAction:
    if not isinstance(decision, ApprovalAction):
        try:
            decision = ApprovalAction(str(decision).lower())
        except ValueError:
            raise ValidationError(f"Invalid decision: {decision}")
    if decision not in _DECISIONS:
        raise ValidationError(f"Invalid decision: {decision.value}")
    return decision


def _validate_priority(priority) -> ApprovalPriority:
    if isinstance(priority, ApprovalPriority):
        return priority
    try:
        return ApprovalPriority(priority)
    except ValueError:
        raise ValidationError(f"Invalid priority: {priority}")


def share_url(share: DocumentShare) -> str:
    return f"{settings.public_viewer_base_url.rstrip('/')}/document/{share.share_code}"


def _person_name(person) -> str:
    return person.full_name if person is not None else "Unknown User"


# ---------------------------------------------------------------------------
# Event payloads
# ---------------------------------------------------------------------------


def request_created_payload(
    db: Session,
    request: ShareApprovalRequest,
    share: DocumentShare,
    policy: ApprovalPolicy,
) -> dict:
    document = db.get(Document, share.document_id)
    category = (
        db.get(Category, document.category_id)
        if document is not None and document.category_id
        else None
    )
    requester = directory.get_person(db, request.requested_by)
    return {
        "request_id": request.id,
        "share_id": share.id,
        "document_id": share.document_id,
        "document_name": document.name if document else None,
        "requester_id": request.requested_by,
        "requester_name": _person_name(requester),
        "share_code": share.share_code,
        "reason": request.request_reason or "No reason provided",
        "expires_at": _as_utc(request.expires_at),
        "category_name": category.name if category else "Uncategorized",
        "file_size": format_file_size(document.file_size if document else 0),
        "policy_name": policy.name,
        "assigned_approvers": list(request.approver_ids),
    }


def decision_made_payload(
    db: Session, request: ShareApprovalRequest, share: DocumentShare | None
) -> dict:
    requester = directory.get_person(db, request.requested_by)
    document = db.get(Document, share.document_id) if share is not None else None
    return {
        "request_id": request.id,
        "share_id": request.document_share_id,
        "requester_id": request.requested_by,
        "requester_name": _person_name(requester),
        "requester_email": requester.email if requester else None,
        "document_name": document.name if document else None,
        "share_code": share.share_code if share else None,
        "decision": "Approved" if request.status == ApprovalStatus.approved else "Rejected",
        "comment": request.final_comment or "No additional comments",
        "share_url": share_url(share) if share else None,
    }


def share_created_payload(db: Session, share: DocumentShare) -> dict:
    document = db.get(Document, share.document_id)
    creator = directory.get_person(db, share.created_by)
    return {
        "share_id": share.id,
        "document_id": share.document_id,
        "share_code": share.share_code,
        "notification_emails": list(share.notification_emails or ()),
        "is_direct_share": bool(share.is_direct_share),
        "document_name": document.name if document else None,
        "creator_id": share.created_by,
        "creator_name": _person_name(creator),
        "custom_message": share.custom_message,
        "share_url": share_url(share),
    }


def enqueue_share_notifications(db: Session, share: DocumentShare) -> int:
    """Stage one share.created event per recipient, so a retry resends a single mail."""
    payload = share_created_payload(db, share)
    recipients = payload.pop("notification_emails")
    for recipient in recipients:
        enqueue_event(
            db, EventType.share_created, {**payload, "recipient_email": recipient}
        )
    return len(recipients)


# ---------------------------------------------------------------------------
# ShareApprovals
# ---------------------------------------------------------------------------


class ShareApprovals(ListResponseMixin):
    @staticmethod
    def create_request(
        db: Session,
        share_id: str,
        policy_id: str,
        reason: str | None = None,
        priority=ApprovalPriority.normal,
    ) -> ShareApprovalRequest:
        priority = _validate_priority(priority)
        with transaction(db):
            share = db.get(DocumentShare, coerce_uuid(share_id))
            if not share:
                raise NotFoundError("Document share not found")
            policy = db.get(ApprovalPolicy, coerce_uuid(policy_id))
            if not policy:
                raise NotFoundError("Approval policy not found")
            existing = (
                db.query(ShareApprovalRequest.id)
                .filter(ShareApprovalRequest.document_share_id == share.id)
                .first()
            )
            if existing:
                raise InvalidStateError("Document share already has an approval request")

            now = _utcnow()
            request = ShareApprovalRequest(
                document_share_id=share.id,
                approval_policy_id=policy.id,
                status=ApprovalStatus.pending,
                priority=priority,
                request_reason=reason,
                requested_by=share.created_by,
                required_approval_count=max(1, policy.required_approval_count or 1),
                current_approval_count=0,
                assigned_approvers=list(
                    approval_policies.get_assigned_approvers(db, policy)
                ),
                expires_at=now + timedelta(hours=policy.approval_timeout_hours),
            )
            db.add(request)
            db.flush()
            db.add(
                ApprovalHistory(
                    share_approval_request_id=request.id,
                    action=ApprovalAction.requested,
                    action_by=str(share.created_by),
                    action_at=now,
                    notes=reason or "Approval request created",
                )
            )
            share.requires_approval = True
            share.approval_status = ApprovalStatus.pending
            share.is_active = False
            enqueue_event(
                db,
                EventType.approval_request_created,
                request_created_payload(db, request, share, policy),
            )
            after_commit(db, dispatch_after_commit)
            after_commit(
                db,
                metrics.approval_requests_created_total.labels(priority.value).inc,
            )
        logger.info(
            "Approval request %s created for share %s under policy %s",
            request.id,
            share.id,
            policy.name,
        )
        return request

    @staticmethod
    def process_approval(
        db: Session,
        request_id: str,
        decision,
        comment: str | None = None,
        approver_id: str | None = None,
    ) -> ShareApprovalRequest:
        decision = _validate_decision(decision)
        if not approver_id:
            raise ValidationError("approver_id is required")
        approver_uuid = coerce_uuid(approver_id)
        try:
            with transaction(db):
                request = db.get(ShareApprovalRequest, coerce_uuid(request_id))
                if not request:
                    raise NotFoundError("Approval request not found")
                if request.status != ApprovalStatus.pending:
                    raise InvalidStateError(
                        f"Approval request {request.id} is not pending"
                    )
                now = _utcnow()
                if _is_expired(request, now):
                    # Not yet swept, but already past its deadline.
                    raise InvalidStateError(f"Approval request {request.id} has expired")

                db.add(
                    ApprovalDecision(
                        share_approval_request_id=request.id,
                        approver_id=approver_uuid,
                        decision=decision,
                        comment=comment,
                        decided_at=now,
                    )
                )
                db.add(
                    ApprovalHistory(
                        share_approval_request_id=request.id,
                        action=decision,
                        action_by=str(approver_uuid),
                        action_at=now,
                        notes=comment or f"Request {decision.value}",
                    )
                )

                if decision == ApprovalAction.approved:
                    if request.current_approval_count < request.required_approval_count:
                        request.current_approval_count += 1
                    if request.current_approval_count >= request.required_approval_count:
                        request.status = ApprovalStatus.approved
                        request.processed_at = now
                else:
                    # One rejection ends the request, no quorum needed.
                    request.status = ApprovalStatus.rejected
                    request.processed_at = now
                request.final_comment = comment

                share = db.get(DocumentShare, request.document_share_id)
                if share is not None:
                    share.approval_status = request.status
                    if request.status == ApprovalStatus.approved:
                        share.is_active = True
                    elif request.status in TERMINAL_APPROVAL_STATUSES:
                        share.is_active = False

                if request.status in TERMINAL_APPROVAL_STATUSES:
                    enqueue_event(
                        db,
                        EventType.approval_decision_made,
                        decision_made_payload(db, request, share),
                    )
                    # Recipients held back while pending get their link now.
                    if (
                        request.status == ApprovalStatus.approved
                        and share is not None
                        and share.notification_emails
                    ):
                        enqueue_share_notifications(db, share)
                    after_commit(db, dispatch_after_commit)
                after_commit(
                    db, metrics.approval_decisions_total.labels(decision.value).inc
                )
        except ConcurrencyConflict:
            metrics.approval_concurrency_conflicts_total.inc()
            logger.warning(
                "Concurrent modification while processing approval request %s",
                request_id,
            )
            raise
        logger.info(
            "Approval request %s %s by %s (%d/%d, status %s)",
            request.id,
            decision.value,
            approver_uuid,
            request.current_approval_count,
            request.required_approval_count,
            request.status.value,
        )
        return request

    @staticmethod
    def can_user_approve(db: Session, request_id: str, user_id: str) -> bool:
        try:
            request_uuid = coerce_uuid(request_id)
            user_uuid = coerce_uuid(user_id)
        except ValueError:
            return False
        if request_uuid is None or user_uuid is None:
            return False
        request = db.get(ShareApprovalRequest, request_uuid)
        if not request or request.status != ApprovalStatus.pending:
            return False
        if _is_expired(request):
            return False
        already_voted = (
            db.query(ApprovalDecision.id)
            .filter(ApprovalDecision.share_approval_request_id == request.id)
            .filter(ApprovalDecision.approver_id == user_uuid)
            .first()
        )
        if already_voted:
            return False
        approvers = request.approver_ids
        # Empty snapshot: any authorized approver may act.
        if not approvers:
            return True
        return str(user_uuid) in approvers

    @staticmethod
    def process_expired_requests(db: Session) -> int:
        now = _utcnow()
        with transaction(db):
            expired = (
                db.query(ShareApprovalRequest)
                .filter(ShareApprovalRequest.status == ApprovalStatus.pending)
                .filter(ShareApprovalRequest.expires_at <= now)
                .all()
            )
            for request in expired:
                request.status = ApprovalStatus.expired
                request.processed_at = now
                db.add(
                    ApprovalHistory(
                        share_approval_request_id=request.id,
                        action=ApprovalAction.expired,
                        action_by=SYSTEM_ACTOR,
                        action_at=now,
                        notes="Approval request expired",
                    )
                )
                share = db.get(DocumentShare, request.document_share_id)
                if share is not None:
                    share.approval_status = ApprovalStatus.expired
                    share.is_active = False
        count = len(expired)
        if count:
            metrics.approval_requests_expired_total.inc(count)
            logger.info("Expired %d approval requests", count)
        return count

    # -----------------------------------------------------------------------
    # Read side
    # -----------------------------------------------------------------------

    @staticmethod
    def get(db: Session, request_id: str) -> ShareApprovalRequest:
        request = db.get(ShareApprovalRequest, coerce_uuid(request_id))
        if not request:
            raise NotFoundError("Approval request not found")
        return request

    @staticmethod
    def get_for_share(db: Session, share_id: str) -> ShareApprovalRequest | None:
        return (
            db.query(ShareApprovalRequest)
            .filter(ShareApprovalRequest.document_share_id == coerce_uuid(share_id))
            .first()
        )

    @staticmethod
    def _filtered(
        db: Session,
        requester_id: str | None,
        status: str | None,
        requested_after: datetime | None,
        requested_before: datetime | None,
    ):
        query = db.query(ShareApprovalRequest)
        if requester_id is not None:
            query = query.filter(
                ShareApprovalRequest.requested_by == coerce_uuid(requester_id)
            )
        if status is not None:
            try:
                query = query.filter(
                    ShareApprovalRequest.status == ApprovalStatus(status)
                )
            except ValueError:
                raise ValidationError(f"Invalid status: {status}")
        if requested_after is not None:
            query = query.filter(ShareApprovalRequest.created_at >= requested_after)
        if requested_before is not None:
            query = query.filter(ShareApprovalRequest.created_at <= requested_before)
        return query

    @staticmethod
    def _ordered_page(query, order_by, order_dir, limit, offset):
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": ShareApprovalRequest.created_at,
                "expires_at": ShareApprovalRequest.expires_at,
                "priority": ShareApprovalRequest.priority,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def list_pending(
        db: Session,
        requester_id: str | None,
        requested_after: datetime | None,
        requested_before: datetime | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> list[ShareApprovalRequest]:
        query = ShareApprovals._filtered(
            db, requester_id, ApprovalStatus.pending.value, requested_after, requested_before
        )
        return ShareApprovals._ordered_page(query, order_by, order_dir, limit, offset)

    @staticmethod
    def list(
        db: Session,
        requester_id: str | None,
        status: str | None,
        requested_after: datetime | None,
        requested_before: datetime | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> list[ShareApprovalRequest]:
        query = ShareApprovals._filtered(
            db, requester_id, status, requested_after, requested_before
        )
        return ShareApprovals._ordered_page(query, order_by, order_dir, limit, offset)

    @staticmethod
    def list_for_requester(
        db: Session,
        requester_id: str,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ):
        return ShareApprovals.list(
            db, requester_id, status, None, None, "created_at", "desc", limit, offset
        )

    @staticmethod
    def history(db: Session, request_id: str):
        request = ShareApprovals.get(db, request_id)
        return (
            db.query(ApprovalHistory)
            .filter(ApprovalHistory.share_approval_request_id == request.id)
            .order_by(ApprovalHistory.action_at.asc())
            .all()
        )

    @staticmethod
    def decisions(db: Session, request_id: str):
        request = ShareApprovals.get(db, request_id)
        return (
            db.query(ApprovalDecision)
            .filter(ApprovalDecision.share_approval_request_id == request.id)
            .order_by(ApprovalDecision.decided_at.asc())
            .all()
        )

    @staticmethod
    def statistics(
        db: Session,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> ApprovalStatistics:
        to_date = _as_utc(to_date) or _utcnow()
        from_date = _as_utc(from_date) or to_date - timedelta(days=30)
        if from_date > to_date:
            raise ValidationError("from_date must not be after to_date")
        requests = (
            db.query(ShareApprovalRequest)
            .filter(ShareApprovalRequest.created_at >= from_date)
            .filter(ShareApprovalRequest.created_at <= to_date)
            .all()
        )
        counts = {status: 0 for status in ApprovalStatus}
        durations = []
        for request in requests:
            counts[request.status] += 1
            if request.processed_at is not None:
                elapsed = _as_utc(request.processed_at) - _as_utc(request.created_at)
                durations.append(elapsed.total_seconds() / 3600)
        return ApprovalStatistics(
            from_date=from_date,
            to_date=to_date,
            total_requests=len(requests),
            pending_requests=counts[ApprovalStatus.pending],
            approved_requests=counts[ApprovalStatus.approved],
            rejected_requests=counts[ApprovalStatus.rejected],
            expired_requests=counts[ApprovalStatus.expired],
            average_processing_hours=(
                round(sum(durations) / len(durations), 2) if durations else 0.0
            ),
        )


share_approvals = ShareApprovals()
