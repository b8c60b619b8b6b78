from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.db import SessionLocal
from app.errors import PermissionDeniedError
from app.models.approval import ApprovalStatus
from app.schemas.approval import (
    ApprovalDecisionRead,
    ApprovalDecisionRequest,
    ApprovalHistoryRead,
    ApprovalPolicyCreate,
    ApprovalPolicyRead,
    ApprovalPolicyUpdate,
    ApprovalResult,
    ApprovalSettingsRead,
    ApprovalSettingsUpdate,
    ApprovalStatistics,
    DisableGlobalApprovalRequest,
    EnableGlobalApprovalRequest,
    PolicyTestRequest,
    PolicyTestResult,
    ShareApprovalRequestRead,
)
from app.schemas.common import ListResponse
from app.services.approval import share_approvals
from app.services.approval_policy import approval_policies
from app.services.approval_settings import approval_settings

router = APIRouter(prefix="/approvals", tags=["approvals"])


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ------------------------------------------------------------------
# Requests
# ------------------------------------------------------------------


@router.get("/pending", response_model=ListResponse[ShareApprovalRequestRead])
def list_pending_requests(
    requester_id: str | None = None,
    requested_after: datetime | None = None,
    requested_before: datetime | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return share_approvals.list_response(
        db,
        requester_id,
        ApprovalStatus.pending.value,
        requested_after,
        requested_before,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.get("/requests", response_model=ListResponse[ShareApprovalRequestRead])
def list_requests(
    requester_id: str | None = None,
    status: str | None = None,
    requested_after: datetime | None = None,
    requested_before: datetime | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return share_approvals.list_response(
        db,
        requester_id,
        status,
        requested_after,
        requested_before,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.get("/statistics", response_model=ApprovalStatistics)
def get_statistics(
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    db: Session = Depends(get_db),
):
    return share_approvals.statistics(db, from_date, to_date)


@router.get("/requests/{request_id}", response_model=ShareApprovalRequestRead)
def get_request(request_id: str, db: Session = Depends(get_db)):
    return share_approvals.get(db, request_id)


@router.get(
    "/requests/{request_id}/history", response_model=list[ApprovalHistoryRead]
)
def get_request_history(request_id: str, db: Session = Depends(get_db)):
    return share_approvals.history(db, request_id)


@router.get(
    "/requests/{request_id}/decisions", response_model=list[ApprovalDecisionRead]
)
def get_request_decisions(request_id: str, db: Session = Depends(get_db)):
    return share_approvals.decisions(db, request_id)


@router.get("/requests/{request_id}/can-approve")
def can_approve(request_id: str, user_id: str, db: Session = Depends(get_db)):
    return {"can_approve": share_approvals.can_user_approve(db, request_id, user_id)}


@router.post("/requests/{request_id}/decision", response_model=ApprovalResult)
def decide_request(
    request_id: str, payload: ApprovalDecisionRequest, db: Session = Depends(get_db)
):
    share_approvals.get(db, request_id)
    if not share_approvals.can_user_approve(db, request_id, str(payload.approver_id)):
        raise PermissionDeniedError(
            "You are not allowed to decide on this approval request"
        )
    request = share_approvals.process_approval(
        db, request_id, payload.decision, payload.comment, payload.approver_id
    )
    return ApprovalResult(
        request_id=request.id,
        status=request.status,
        current_approval_count=request.current_approval_count,
        required_approval_count=request.required_approval_count,
        message=f"Approval request {request.status.value}",
    )


# ------------------------------------------------------------------
# Policies
# ------------------------------------------------------------------


@router.post(
    "/policies",
    response_model=ApprovalPolicyRead,
    status_code=status.HTTP_201_CREATED,
)
def create_policy(payload: ApprovalPolicyCreate, db: Session = Depends(get_db)):
    return approval_policies.create(db, payload)


@router.get("/policies", response_model=ListResponse[ApprovalPolicyRead])
def list_policies(
    is_active: bool | None = None,
    search: str | None = None,
    order_by: str = Query(default="priority"),
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return approval_policies.list_response(
        db, is_active, search, order_by, order_dir, limit, offset
    )


@router.get("/policies/{policy_id}", response_model=ApprovalPolicyRead)
def get_policy(policy_id: str, db: Session = Depends(get_db)):
    return approval_policies.get(db, policy_id)


@router.patch("/policies/{policy_id}", response_model=ApprovalPolicyRead)
def update_policy(
    policy_id: str, payload: ApprovalPolicyUpdate, db: Session = Depends(get_db)
):
    return approval_policies.update(db, policy_id, payload)


@router.delete("/policies/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_policy(policy_id: str, db: Session = Depends(get_db)):
    approval_policies.delete(db, policy_id)


@router.post("/policies/{policy_id}/toggle", response_model=ApprovalPolicyRead)
def toggle_policy(policy_id: str, db: Session = Depends(get_db)):
    return approval_policies.toggle_active(db, policy_id)


@router.post("/policies/{policy_id}/test", response_model=PolicyTestResult)
def test_policy(
    policy_id: str, payload: PolicyTestRequest, db: Session = Depends(get_db)
):
    return approval_policies.test_policy(db, policy_id, str(payload.share_id))


# ------------------------------------------------------------------
# Settings
# ------------------------------------------------------------------


@router.get("/settings", response_model=ApprovalSettingsRead)
def get_settings(db: Session = Depends(get_db)):
    return approval_settings.get_current(db)


@router.patch("/settings", response_model=ApprovalSettingsRead)
def update_settings(payload: ApprovalSettingsUpdate, db: Session = Depends(get_db)):
    return approval_settings.update(db, payload)


@router.post("/settings/enable", response_model=ApprovalSettingsRead)
def enable_global_approval(
    payload: EnableGlobalApprovalRequest, db: Session = Depends(get_db)
):
    return approval_settings.enable_global_approval(db, payload.reason, payload.user_id)


@router.post("/settings/disable", response_model=ApprovalSettingsRead)
def disable_global_approval(
    payload: DisableGlobalApprovalRequest, db: Session = Depends(get_db)
):
    return approval_settings.disable_global_approval(db, payload.user_id)


@router.post("/settings/reset", response_model=ApprovalSettingsRead)
def reset_settings(db: Session = Depends(get_db)):
    return approval_settings.reset_to_defaults(db)
