import logging
import secrets

from sqlalchemy.orm import Session

from app.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.models.approval import ApprovalPolicy, ApprovalStatus
from app.models.ecm import (
    ApiKey,
    Category,
    Document,
    DocumentShare,
    PermissionLevel,
    StorageBucket,
)
from app.schemas.document_share import (
    DocumentShareCreate,
    DocumentShareCreated,
    DocumentShareRead,
)
from app.services.approval import enqueue_share_notifications, share_approvals
from app.services.approval_policy import approval_policies
from app.services.approval_settings import approval_settings
from app.services.bucket_permissions import bucket_permissions
from app.services.common import (
    after_commit,
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    transaction,
)
from app.services.directory import directory
from app.services.event import dispatch_after_commit
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

# No 0/O or 1/l/I, so codes survive being read aloud or retyped.
SHARE_CODE_ALPHABET = "abcdefghijkmnopqrstuvwxyzABCDEFGHJKLMNPQRSTUVWXYZ23456789"
SHARE_CODE_LENGTH = 12


def generate_share_code(db: Session) -> str:
    while True:
        code = "".join(
            secrets.choice(SHARE_CODE_ALPHABET) for _ in range(SHARE_CODE_LENGTH)
        )
        taken = (
            db.query(DocumentShare.id).filter(DocumentShare.share_code == code).first()
        )
        if not taken:
            return code


def _authorize(db: Session, document: Document, payload: DocumentShareCreate) -> None:
    if payload.created_via_api_key_id is not None:
        if document.bucket_id is None:
            api_key = db.get(ApiKey, payload.created_via_api_key_id)
            if api_key is None or not api_key.is_active:
                raise PermissionDeniedError("API key not found or inactive.")
            return
        result = bucket_permissions.check_api_key(
            db, payload.created_via_api_key_id, document.bucket_id, PermissionLevel.read
        )
    elif document.bucket_id is None:
        if document.created_by == payload.created_by or bucket_permissions.is_admin(
            db, payload.created_by
        ):
            return
        raise PermissionDeniedError("Only the document owner can share this document.")
    else:
        result = bucket_permissions.check_user(
            db, payload.created_by, document.bucket_id, PermissionLevel.read
        )
    if not result.allowed:
        logger.warning(
            "Share of document %s denied for %s: %s",
            document.id,
            payload.created_via_api_key_id or payload.created_by,
            result.denied_reason,
        )
        raise PermissionDeniedError(
            result.denied_reason or "You do not have permission to share this document."
        )


def _check_direct_access(db: Session, document: Document) -> None:
    bucket = db.get(StorageBucket, document.bucket_id) if document.bucket_id else None
    category = db.get(Category, document.category_id) if document.category_id else None
    if not (
        bucket is not None
        and bucket.allow_direct_access
        and category is not None
        and category.allow_direct_access
    ):
        raise InvalidStateError(
            "Direct share not allowed. Both bucket and category must allow direct access."
        )


def _select_policy(
    db: Session, share: DocumentShare, document: Document
) -> tuple[ApprovalPolicy | None, str]:
    if share.is_direct_share:
        policy = approval_policies.ensure_global_system_policy(db)
        return policy, "Direct share requires approval"
    if not approval_settings.is_global_approval_enabled(db):
        return None, "Global approval system is disabled"
    if approval_settings.requires_approval(db, share, document):
        policy = approval_policies.ensure_global_system_policy(db)
        return policy, "Required by approval settings"
    policy = approval_policies.get_applicable_policy(db, share, document)
    if policy is not None:
        return policy, f"Required by approval policy: {policy.name}"
    return None, "No approval rules or policies matched this share"


# ---------------------------------------------------------------------------
# DocumentShares
# ---------------------------------------------------------------------------


class DocumentShares(ListResponseMixin):
    @staticmethod
    def create_share(db: Session, payload: DocumentShareCreate) -> DocumentShareCreated:
        document = db.get(Document, payload.document_id)
        if not document:
            raise NotFoundError("Document not found")
        if directory.get_person(db, payload.created_by) is None:
            raise NotFoundError("Share creator not found")
        _authorize(db, document, payload)
        if payload.is_direct_share:
            _check_direct_access(db, document)

        request = None
        with transaction(db):
            share = DocumentShare(
                document_id=document.id,
                share_code=generate_share_code(db),
                created_by=payload.created_by,
                created_via_api_key_id=payload.created_via_api_key_id,
                expires_at=payload.expires_at,
                is_active=True,
                requires_approval=False,
                approval_status=ApprovalStatus.not_required,
                is_direct_share=payload.is_direct_share,
                notification_emails=[str(e) for e in payload.notification_emails]
                if payload.notification_emails
                else None,
                allow_download=payload.allow_download,
                max_view_count=payload.max_view_count,
                custom_message=payload.custom_message,
            )
            db.add(share)
            db.flush()

            policy, reason = _select_policy(db, share, document)
            if policy is not None:
                request = share_approvals.create_request(
                    db,
                    share.id,
                    policy.id,
                    reason=payload.approval_reason or reason,
                    priority=payload.approval_priority,
                )
            elif share.notification_emails:
                enqueue_share_notifications(db, share)
                after_commit(db, dispatch_after_commit)
        db.refresh(share)
        logger.info(
            "Created share %s for document %s (%s: %s)",
            share.id,
            document.id,
            share.approval_status.value,
            reason,
        )
        return DocumentShareCreated(
            share=DocumentShareRead.model_validate(share),
            approval_request_id=request.id if request is not None else None,
            approval_policy_id=policy.id if policy is not None else None,
        )

    @staticmethod
    def get(db: Session, share_id: str) -> DocumentShare:
        share = db.get(DocumentShare, coerce_uuid(share_id))
        if not share:
            raise NotFoundError("Document share not found")
        return share

    @staticmethod
    def get_by_code(db: Session, share_code: str) -> DocumentShare:
        share = (
            db.query(DocumentShare)
            .filter(DocumentShare.share_code == share_code)
            .first()
        )
        if not share:
            raise NotFoundError("Document share not found")
        return share

    @staticmethod
    def list(
        db: Session,
        document_id: str | None,
        created_by: str | None,
        approval_status: str | None,
        is_active: bool | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> list[DocumentShare]:
        query = db.query(DocumentShare)
        if document_id:
            query = query.filter(DocumentShare.document_id == coerce_uuid(document_id))
        if created_by:
            query = query.filter(DocumentShare.created_by == coerce_uuid(created_by))
        if approval_status:
            try:
                query = query.filter(
                    DocumentShare.approval_status == ApprovalStatus(approval_status)
                )
            except ValueError:
                raise ValidationError(f"Invalid approval status: {approval_status}")
        if is_active is not None:
            query = query.filter(DocumentShare.is_active == is_active)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": DocumentShare.created_at,
                "expires_at": DocumentShare.expires_at,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def deactivate(db: Session, share_id: str) -> DocumentShare:
        with transaction(db):
            share = db.get(DocumentShare, coerce_uuid(share_id))
            if not share:
                raise NotFoundError("Document share not found")
            share.is_active = False
        db.refresh(share)
        logger.info("Deactivated share %s", share.id)
        return share


document_shares = DocumentShares()
