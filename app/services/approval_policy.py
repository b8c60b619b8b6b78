import logging
import uuid

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import InvalidStateError, NotFoundError, ValidationError
from app.models.approval import (
    GLOBAL_SYSTEM_POLICY_ID,
    GLOBAL_SYSTEM_POLICY_NAME,
    ApprovalPolicy,
    ApprovalStatus,
    ShareApprovalRequest,
)
from app.models.ecm import Document, DocumentShare
from app.schemas.approval import (
    ApprovalPolicyCreate,
    ApprovalPolicyUpdate,
    PolicyTestResult,
)
from app.services.approval_rules import (
    PolicyRules,
    explain,
    policy_matches,
    resolve_candidate,
)
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    transaction,
)
from app.services.directory import directory
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

_ID_FILTERS = ("category_filters", "provider_filters", "user_filters", "api_key_filters")
_FILTERS = _ID_FILTERS + ("file_type_filters",)
_FALLBACK_APPROVER_ROLES = ("Admin", "Manager")

GLOBAL_POLICY_DEFAULTS = {
    "description": "System fallback policy applied when no other policy matches.",
    "is_active": True,
    "priority": 999,
    "require_approval": True,
    "approval_timeout_hours": 72,
    "required_approval_count": 1,
}


def _normalize_filter(name: str, values) -> list[str] | None:
    """Dedupe a filter list, keeping order; empty lists are stored as NULL."""
    if values is None:
        return None
    seen: list[str] = []
    for raw in values:
        value = str(raw).strip()
        if name == "file_type_filters":
            value = value.lower().lstrip(".")
        elif value:
            try:
                value = str(uuid.UUID(value))
            except ValueError:
                raise ValidationError(f"Invalid id in {name}: {raw}")
        if value and value not in seen:
            seen.append(value)
    return seen or None


def _is_global(policy: ApprovalPolicy) -> bool:
    return policy.name == GLOBAL_SYSTEM_POLICY_NAME


def _ensure_active_if_global(db: Session, policy: ApprovalPolicy) -> ApprovalPolicy:
    if _is_global(policy) and not policy.is_active:
        with transaction(db):
            policy.is_active = True
        logger.warning("Reactivated Global System Policy %s on access", policy.id)
    return policy


# ---------------------------------------------------------------------------
# ApprovalPolicies
# ---------------------------------------------------------------------------


class ApprovalPolicies(ListResponseMixin):
    @staticmethod
    def create(db: Session, payload: ApprovalPolicyCreate) -> ApprovalPolicy:
        data = payload.model_dump()
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Policy name is required")
        if name == GLOBAL_SYSTEM_POLICY_NAME:
            raise InvalidStateError(f"'{GLOBAL_SYSTEM_POLICY_NAME}' is a reserved name")
        if db.query(ApprovalPolicy).filter(ApprovalPolicy.name == name).first():
            raise ValidationError(f"An approval policy named '{name}' already exists")
        data["name"] = name
        for key in _FILTERS:
            data[key] = _normalize_filter(key, data.get(key))
        policy = ApprovalPolicy(**data)
        with transaction(db):
            db.add(policy)
        db.refresh(policy)
        logger.info("Created approval policy %s (%s)", policy.id, policy.name)
        return policy

    @staticmethod
    def get(db: Session, policy_id: str) -> ApprovalPolicy:
        policy = db.get(ApprovalPolicy, coerce_uuid(policy_id))
        if not policy:
            raise NotFoundError("Approval policy not found")
        return _ensure_active_if_global(db, policy)

    @staticmethod
    def list(
        db: Session,
        is_active: bool | None,
        search: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> list[ApprovalPolicy]:
        query = db.query(ApprovalPolicy)
        if is_active is not None:
            query = query.filter(ApprovalPolicy.is_active == is_active)
        if search:
            query = query.filter(
                func.lower(ApprovalPolicy.name).contains(search.strip().lower())
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "priority": ApprovalPolicy.priority,
                "name": ApprovalPolicy.name,
                "created_at": ApprovalPolicy.created_at,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def update(
        db: Session, policy_id: str, payload: ApprovalPolicyUpdate
    ) -> ApprovalPolicy:
        policy = db.get(ApprovalPolicy, coerce_uuid(policy_id))
        if not policy:
            raise NotFoundError("Approval policy not found")
        data = payload.model_dump(exclude_unset=True)
        if _is_global(policy):
            if "name" in data and data["name"] != GLOBAL_SYSTEM_POLICY_NAME:
                raise InvalidStateError("Global System Policy cannot be renamed")
            if data.get("is_active") is False:
                raise InvalidStateError("Global System Policy cannot be deactivated")
            if data.get("require_approval") is False:
                raise InvalidStateError(
                    "Global System Policy must keep requiring approval"
                )
        elif "name" in data:
            name = (data["name"] or "").strip()
            if not name:
                raise ValidationError("Policy name is required")
            if name == GLOBAL_SYSTEM_POLICY_NAME:
                raise InvalidStateError(
                    f"'{GLOBAL_SYSTEM_POLICY_NAME}' is a reserved name"
                )
            clash = (
                db.query(ApprovalPolicy)
                .filter(ApprovalPolicy.name == name)
                .filter(ApprovalPolicy.id != policy.id)
                .first()
            )
            if clash:
                raise ValidationError(f"An approval policy named '{name}' already exists")
            data["name"] = name
        with transaction(db):
            for key, value in data.items():
                if key in _FILTERS:
                    # Filters are replaced only when supplied.
                    if value is None:
                        continue
                    value = _normalize_filter(key, value)
                elif value is None and key not in ("description", "file_size_limit_mb"):
                    continue
                setattr(policy, key, value)
        db.refresh(policy)
        logger.info("Updated approval policy %s", policy.id)
        return policy

    @staticmethod
    def delete(db: Session, policy_id: str) -> None:
        policy = db.get(ApprovalPolicy, coerce_uuid(policy_id))
        if not policy:
            raise NotFoundError("Approval policy not found")
        if _is_global(policy):
            logger.warning("Attempt to delete Global System Policy %s", policy.id)
            raise InvalidStateError(
                "Global System Policy cannot be deleted. "
                "This policy is required for system operation."
            )
        pending = (
            db.query(ShareApprovalRequest.id)
            .filter(ShareApprovalRequest.approval_policy_id == policy.id)
            .filter(ShareApprovalRequest.status == ApprovalStatus.pending)
            .first()
        )
        if pending:
            logger.warning("Cannot delete policy %s with pending requests", policy.id)
            raise InvalidStateError(
                "Cannot delete policy with pending approval requests. "
                "Please wait for all requests to be processed."
            )
        referenced = (
            db.query(ShareApprovalRequest.id)
            .filter(ShareApprovalRequest.approval_policy_id == policy.id)
            .first()
        )
        with transaction(db):
            if referenced:
                # Decided requests keep pointing at the policy for the audit trail.
                policy.is_active = False
            else:
                db.delete(policy)
        logger.info(
            "%s approval policy %s",
            "Deactivated" if referenced else "Deleted",
            policy_id,
        )

    @staticmethod
    def toggle_active(db: Session, policy_id: str) -> ApprovalPolicy:
        policy = db.get(ApprovalPolicy, coerce_uuid(policy_id))
        if not policy:
            raise NotFoundError("Approval policy not found")
        if _is_global(policy):
            logger.warning("Attempt to toggle Global System Policy %s", policy.id)
            raise InvalidStateError(
                "Global System Policy cannot be deactivated. "
                "This policy must remain active for system operation."
            )
        with transaction(db):
            policy.is_active = not policy.is_active
        db.refresh(policy)
        logger.info("Approval policy %s active=%s", policy.id, policy.is_active)
        return policy

    # -----------------------------------------------------------------------
    # Selection
    # -----------------------------------------------------------------------

    @staticmethod
    def get_global_system_policy(db: Session) -> ApprovalPolicy | None:
        policy = db.get(ApprovalPolicy, GLOBAL_SYSTEM_POLICY_ID)
        if policy is None or not _is_global(policy):
            policy = (
                db.query(ApprovalPolicy)
                .filter(ApprovalPolicy.name == GLOBAL_SYSTEM_POLICY_NAME)
                .first()
            )
        return policy

    @staticmethod
    def ensure_global_system_policy(db: Session) -> ApprovalPolicy:
        """Create the global fallback policy, or reactivate it. Idempotent."""
        policy = ApprovalPolicies.get_global_system_policy(db)
        if policy is not None:
            return _ensure_active_if_global(db, policy)
        policy = ApprovalPolicy(
            id=GLOBAL_SYSTEM_POLICY_ID,
            name=GLOBAL_SYSTEM_POLICY_NAME,
            **GLOBAL_POLICY_DEFAULTS,
        )
        with transaction(db):
            try:
                # Savepoint keeps an enclosing transaction usable if the insert loses.
                with db.begin_nested():
                    db.add(policy)
            except IntegrityError:
                logger.info("Global System Policy created concurrently, re-reading")
                policy = ApprovalPolicies.get_global_system_policy(db)
                if policy is None:
                    raise
                return _ensure_active_if_global(db, policy)
        logger.info("Created Global System Policy %s", policy.id)
        return policy

    @staticmethod
    def _active_policies(db: Session):
        return (
            db.query(ApprovalPolicy)
            .filter(ApprovalPolicy.is_active.is_(True))
            .order_by(ApprovalPolicy.priority.asc(), ApprovalPolicy.created_at.asc())
            .all()
        )

    @staticmethod
    def get_applicable_policy(
        db: Session, share: DocumentShare, document: Document | None = None
    ) -> ApprovalPolicy | None:
        for policy in ApprovalPolicies._active_policies(db):
            if _is_global(policy):
                continue
            if policy_matches(db, policy, share, document):
                logger.debug("Policy %s applies to share %s", policy.id, share.id)
                return policy
        fallback = ApprovalPolicies.get_global_system_policy(db)
        if fallback is not None and fallback.is_active:
            return fallback
        return None

    @staticmethod
    def get_applicable_policies(
        db: Session, share: DocumentShare, document: Document | None = None
    ):
        return [
            policy
            for policy in ApprovalPolicies._active_policies(db)
            if policy_matches(db, policy, share, document)
        ]

    @staticmethod
    def evaluate_approval_requirement(
        db: Session, share: DocumentShare, document: Document | None = None
    ) -> bool:
        return bool(ApprovalPolicies.get_applicable_policies(db, share, document))

    @staticmethod
    def get_assigned_approvers(db: Session, policy: ApprovalPolicy) -> tuple[str, ...]:
        """Ordered approver ids; an empty tuple means any authorized approver."""
        user_ids = PolicyRules.from_policy(policy).user_ids
        if user_ids:
            # Keep the order the policy lists them in.
            ordered = _normalize_filter("user_filters", policy.user_filters) or []
            return tuple(uid for uid in ordered if uid in user_ids)
        for role_name in _FALLBACK_APPROVER_ROLES:
            members = directory.role_members(db, role_name)
            if members:
                return tuple(str(person.id) for person in members)
        return ()

    @staticmethod
    def test_policy(db: Session, policy_id: str, share_id: str) -> PolicyTestResult:
        policy = db.get(ApprovalPolicy, coerce_uuid(policy_id))
        if not policy:
            raise NotFoundError("Approval policy not found")
        share = db.get(DocumentShare, coerce_uuid(share_id))
        if not share:
            raise NotFoundError("Document share not found")
        outcome = explain(PolicyRules.from_policy(policy), resolve_candidate(db, share))
        return PolicyTestResult(
            policy_id=policy.id,
            share_id=share.id,
            matched=outcome.matched,
            reason=outcome.reason,
        )


approval_policies = ApprovalPolicies()
