from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.approval import ApprovalPriority, ApprovalStatus


class DocumentShareCreate(BaseModel):
    document_id: UUID
    created_by: UUID
    created_via_api_key_id: UUID | None = None
    expires_at: datetime | None = None
    is_direct_share: bool = False
    notification_emails: list[EmailStr] | None = None
    allow_download: bool = True
    max_view_count: int | None = Field(default=None, ge=1)
    custom_message: str | None = Field(default=None, max_length=2000)
    approval_reason: str | None = Field(default=None, max_length=1000)
    approval_priority: ApprovalPriority = ApprovalPriority.normal


class DocumentShareRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_id: UUID
    share_code: str
    created_by: UUID
    created_via_api_key_id: UUID | None = None
    expires_at: datetime | None = None
    is_active: bool
    requires_approval: bool
    approval_status: ApprovalStatus
    is_direct_share: bool
    notification_emails: list[str] | None = None
    allow_download: bool
    max_view_count: int | None = None
    view_count: int
    custom_message: str | None = None
    created_at: datetime
    updated_at: datetime


class DocumentShareCreated(BaseModel):
    share: DocumentShareRead
    approval_request_id: UUID | None = None
    approval_policy_id: UUID | None = None
