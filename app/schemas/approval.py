from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.approval import ApprovalAction, ApprovalPriority, ApprovalStatus


# ---------------------------------------------------------------------------
# ApprovalPolicy
# ---------------------------------------------------------------------------


class ApprovalPolicyBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    is_active: bool = True
    priority: int = Field(default=1, ge=0)
    require_approval: bool = True
    approval_timeout_hours: int = Field(default=72, ge=1)
    required_approval_count: int = Field(default=1, ge=1)
    category_filters: list[str] | None = None
    provider_filters: list[str] | None = None
    user_filters: list[str] | None = None
    api_key_filters: list[str] | None = None
    file_type_filters: list[str] | None = None
    file_size_limit_mb: int | None = Field(default=None, ge=1)


class ApprovalPolicyCreate(ApprovalPolicyBase):
    created_by: UUID | None = None


class ApprovalPolicyUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    is_active: bool | None = None
    priority: int | None = Field(default=None, ge=0)
    require_approval: bool | None = None
    approval_timeout_hours: int | None = Field(default=None, ge=1)
    required_approval_count: int | None = Field(default=None, ge=1)
    category_filters: list[str] | None = None
    provider_filters: list[str] | None = None
    user_filters: list[str] | None = None
    api_key_filters: list[str] | None = None
    file_type_filters: list[str] | None = None
    file_size_limit_mb: int | None = Field(default=None, ge=1)


class ApprovalPolicyRead(ApprovalPolicyBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    is_global_system_policy: bool
    created_by: UUID | None = None
    created_at: datetime
    updated_at: datetime


class PolicyTestRequest(BaseModel):
    share_id: UUID


class PolicyTestResult(BaseModel):
    policy_id: UUID
    share_id: UUID
    matched: bool
    reason: str


# ---------------------------------------------------------------------------
# ApprovalSettings
# ---------------------------------------------------------------------------


class ApprovalSettingsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    is_global_approval_enabled: bool
    global_approval_enabled_at: datetime | None = None
    global_approval_enabled_by: str | None = None
    global_approval_reason: str | None = None
    default_expiration_days: int
    default_required_approvals: int
    force_approval_for_all: bool
    force_approval_for_large_files: bool
    large_file_size_threshold_bytes: int
    enable_email_notifications: bool
    version: int


class ApprovalSettingsUpdate(BaseModel):
    is_global_approval_enabled: bool | None = None
    global_approval_reason: str | None = Field(default=None, max_length=500)
    default_expiration_days: int | None = Field(default=None, ge=1, le=365)
    default_required_approvals: int | None = Field(default=None, ge=1, le=10)
    force_approval_for_all: bool | None = None
    force_approval_for_large_files: bool | None = None
    large_file_size_threshold_bytes: int | None = Field(default=None, ge=1)
    enable_email_notifications: bool | None = None
    updated_by: str | None = None


class EnableGlobalApprovalRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
    user_id: str


class DisableGlobalApprovalRequest(BaseModel):
    user_id: str


# ---------------------------------------------------------------------------
# ShareApprovalRequest
# ---------------------------------------------------------------------------


class ShareApprovalRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_share_id: UUID
    approval_policy_id: UUID
    status: ApprovalStatus
    priority: ApprovalPriority
    request_reason: str | None = None
    final_comment: str | None = None
    requested_by: UUID
    required_approval_count: int
    current_approval_count: int
    assigned_approvers: list[str] = []
    expires_at: datetime
    processed_at: datetime | None = None
    version: int
    created_at: datetime
    updated_at: datetime


class ApprovalDecisionRequest(BaseModel):
    decision: str = Field(pattern="^(approved|rejected)$")
    comment: str | None = Field(default=None, max_length=1000)
    approver_id: UUID


class ApprovalDecisionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    share_approval_request_id: UUID
    approver_id: UUID
    decision: ApprovalAction
    comment: str | None = None
    decided_at: datetime


class ApprovalHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    share_approval_request_id: UUID
    action: ApprovalAction
    action_by: str
    action_at: datetime
    notes: str | None = None


class ApprovalResult(BaseModel):
    request_id: UUID
    requires_approval: bool = True
    status: ApprovalStatus
    current_approval_count: int
    required_approval_count: int
    message: str


class ApprovalStatistics(BaseModel):
    from_date: datetime
    to_date: datetime
    total_requests: int
    pending_requests: int
    approved_requests: int
    rejected_requests: int
    expired_requests: int
    average_processing_hours: float
