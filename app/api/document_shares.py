from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.approvals import get_db
from app.errors import NotFoundError
from app.schemas.approval import ShareApprovalRequestRead
from app.schemas.common import ListResponse
from app.schemas.document_share import (
    DocumentShareCreate,
    DocumentShareCreated,
    DocumentShareRead,
)
from app.services.approval import share_approvals
from app.services.document_share import document_shares

router = APIRouter(prefix="/document-shares", tags=["document-shares"])


@router.post(
    "",
    response_model=DocumentShareCreated,
    status_code=status.HTTP_201_CREATED,
)
def create_document_share(payload: DocumentShareCreate, db: Session = Depends(get_db)):
    return document_shares.create_share(db, payload)


@router.get("", response_model=ListResponse[DocumentShareRead])
def list_document_shares(
    document_id: str | None = None,
    created_by: str | None = None,
    approval_status: str | None = None,
    is_active: bool | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return document_shares.list_response(
        db,
        document_id,
        created_by,
        approval_status,
        is_active,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.get("/by-code/{share_code}", response_model=DocumentShareRead)
def get_document_share_by_code(share_code: str, db: Session = Depends(get_db)):
    return document_shares.get_by_code(db, share_code)


@router.get("/{share_id}", response_model=DocumentShareRead)
def get_document_share(share_id: str, db: Session = Depends(get_db)):
    return document_shares.get(db, share_id)


@router.get("/{share_id}/approval", response_model=ShareApprovalRequestRead)
def get_document_share_approval(share_id: str, db: Session = Depends(get_db)):
    document_shares.get(db, share_id)
    request = share_approvals.get_for_share(db, share_id)
    if request is None:
        raise NotFoundError("Document share has no approval request")
    return request


@router.post("/{share_id}/deactivate", response_model=DocumentShareRead)
def deactivate_document_share(share_id: str, db: Session = Depends(get_db)):
    return document_shares.deactivate(db, share_id)
