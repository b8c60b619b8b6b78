import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base

GLOBAL_SYSTEM_POLICY_NAME = "Global System Policy"
# Hex digits include letters so SQLite keeps the stored value as text.
GLOBAL_SYSTEM_POLICY_ID = uuid.UUID("c3e8a1f0-5d27-4b9e-8f46-2a7d0e9b4c18")
APPROVAL_SETTINGS_ID = uuid.UUID("6f1c2a4e-8b3d-4c59-a7e2-0d9f3b1e5c71")
SYSTEM_ACTOR = "SYSTEM"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ApprovalStatus(enum.Enum):
    not_required = "not_required"
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    expired = "expired"


TERMINAL_APPROVAL_STATUSES = frozenset(
    {ApprovalStatus.approved, ApprovalStatus.rejected, ApprovalStatus.expired}
)


class ApprovalAction(enum.Enum):
    requested = "requested"
    approved = "approved"
    rejected = "rejected"
    expired = "expired"


class ApprovalPriority(enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


# ---------------------------------------------------------------------------
# Approval — Policies
# ---------------------------------------------------------------------------


class ApprovalPolicy(Base):
    __tablename__ = "approval_policies"
    __table_args__ = (
        UniqueConstraint("name", name="uq_approval_policies_name"),
        Index("ix_approval_policies_priority", "priority"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    require_approval: Mapped[bool] = mapped_column(Boolean, default=True)
    approval_timeout_hours: Mapped[int] = mapped_column(
        Integer, nullable=False, default=72
    )
    required_approval_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )

    # Filter lists; an empty/null list means "no restriction".
    category_filters: Mapped[list | None] = mapped_column(JSON)
    provider_filters: Mapped[list | None] = mapped_column(JSON)
    user_filters: Mapped[list | None] = mapped_column(JSON)
    api_key_filters: Mapped[list | None] = mapped_column(JSON)
    file_type_filters: Mapped[list | None] = mapped_column(JSON)
    file_size_limit_mb: Mapped[int | None] = mapped_column(Integer)

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    requests = relationship("ShareApprovalRequest", back_populates="policy")

    @property
    def is_global_system_policy(self) -> bool:
        return self.name == GLOBAL_SYSTEM_POLICY_NAME


# ---------------------------------------------------------------------------
# Approval — Settings (singleton)
# ---------------------------------------------------------------------------


class ApprovalSettings(Base):
    __tablename__ = "approval_settings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=lambda: APPROVAL_SETTINGS_ID
    )
    is_global_approval_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    global_approval_enabled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    global_approval_enabled_by: Mapped[str | None] = mapped_column(String(128))
    global_approval_reason: Mapped[str | None] = mapped_column(String(500))
    default_expiration_days: Mapped[int] = mapped_column(Integer, default=7)
    default_required_approvals: Mapped[int] = mapped_column(Integer, default=1)
    force_approval_for_all: Mapped[bool] = mapped_column(Boolean, default=False)
    force_approval_for_large_files: Mapped[bool] = mapped_column(
        Boolean, default=True
    )
    large_file_size_threshold_bytes: Mapped[int] = mapped_column(
        BigInteger, default=100 * 1024 * 1024
    )
    enable_email_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}


# ---------------------------------------------------------------------------
# Approval — Share approval requests
# ---------------------------------------------------------------------------


class ShareApprovalRequest(Base):
    __tablename__ = "share_approval_requests"
    __table_args__ = (
        UniqueConstraint(
            "document_share_id", name="uq_share_approval_requests_document_share_id"
        ),
        Index("ix_share_approval_requests_status", "status"),
        Index("ix_share_approval_requests_expires_at", "expires_at"),
        Index("ix_share_approval_requests_requested_by", "requested_by"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    document_share_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("document_shares.id"), nullable=False
    )
    approval_policy_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("approval_policies.id"), nullable=False
    )
    status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus), default=ApprovalStatus.pending
    )
    priority: Mapped[ApprovalPriority] = mapped_column(
        Enum(ApprovalPriority), default=ApprovalPriority.normal
    )
    request_reason: Mapped[str | None] = mapped_column(String(1000))
    final_comment: Mapped[str | None] = mapped_column(String(1000))
    requested_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id"), nullable=False
    )
    required_approval_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )
    current_approval_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    # Ordered user ids; empty means any authorized approver may act.
    assigned_approvers: Mapped[list] = mapped_column(JSON, default=list)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    document_share = relationship("DocumentShare", back_populates="approval_request")
    policy = relationship("ApprovalPolicy", back_populates="requests")
    requester = relationship("Person", foreign_keys=[requested_by])
    decisions = relationship(
        "ApprovalDecision",
        back_populates="request",
        order_by="ApprovalDecision.decided_at",
    )
    history = relationship(
        "ApprovalHistory",
        back_populates="request",
        order_by="ApprovalHistory.action_at",
    )

    @property
    def approver_ids(self) -> tuple[str, ...]:
        return tuple(self.assigned_approvers or ())


# ---------------------------------------------------------------------------
# Approval — Decisions (append-only)
# ---------------------------------------------------------------------------


class ApprovalDecision(Base):
    __tablename__ = "approval_decisions"
    __table_args__ = (
        Index(
            "ix_approval_decisions_request_approver",
            "share_approval_request_id",
            "approver_id",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    share_approval_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("share_approval_requests.id"), nullable=False
    )
    approver_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id"), nullable=False
    )
    decision: Mapped[ApprovalAction] = mapped_column(
        Enum(ApprovalAction), nullable=False
    )
    comment: Mapped[str | None] = mapped_column(String(1000))
    decided_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    request = relationship("ShareApprovalRequest", back_populates="decisions")
    approver = relationship("Person", foreign_keys=[approver_id])


# ---------------------------------------------------------------------------
# Approval — History (append-only audit trail)
# ---------------------------------------------------------------------------


class ApprovalHistory(Base):
    __tablename__ = "approval_history"
    __table_args__ = (
        Index("ix_approval_history_request_id", "share_approval_request_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    share_approval_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("share_approval_requests.id"), nullable=False
    )
    action: Mapped[ApprovalAction] = mapped_column(Enum(ApprovalAction), nullable=False)
    # Person id, or SYSTEM_ACTOR for automated transitions.
    action_by: Mapped[str] = mapped_column(String(128), nullable=False)
    action_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    notes: Mapped[str | None] = mapped_column(String(1000))

    request = relationship("ShareApprovalRequest", back_populates="history")


# ---------------------------------------------------------------------------
# Events — Transactional outbox
# ---------------------------------------------------------------------------


class OutboxEvent(Base):
    __tablename__ = "outbox_events"
    __table_args__ = (Index("ix_outbox_events_dispatched_at", "dispatched_at"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    event_type: Mapped[str] = mapped_column(String(80), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text)
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
