from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..models import DownloadRequestStatus, User
from ..security import get_current_user, is_admin, require_admin
from ..services.download_requests import DownloadRequestLedger, get_download_request_ledger
from ..utils.pagination import MAX_PAGE_SIZE, Pagination, build_pagination


class DownloadRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    file_id: int
    status: DownloadRequestStatus
    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    request_date: datetime
    approved_date: Optional[datetime] = None
    approved_by: Optional[int] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    post_title: Optional[str] = None
    post_slug: Optional[str] = None
    requester_name: Optional[str] = None
    approver_name: Optional[str] = None


class DownloadRequestCreate(BaseModel):
    file_id: int = Field(validation_alias=AliasChoices("fileId", "file_id"))
    notes: Optional[str] = Field(default=None, max_length=500, validation_alias=AliasChoices("notes", "request_reason"))


class DownloadRequestUpdate(BaseModel):
    status: DownloadRequestStatus
    notes: Optional[str] = Field(default=None, max_length=500, validation_alias=AliasChoices("notes", "admin_notes"))


class DownloadRequestEnvelope(BaseModel):
    message: Optional[str] = None
    request: DownloadRequestOut


class DownloadRequestPage(BaseModel):
    requests: List[DownloadRequestOut]
    pagination: Pagination


class DownloadRequestCheck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    requested: bool
    status: Optional[DownloadRequestStatus] = None
    request_id: Optional[int] = Field(default=None, alias="requestId")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class MessageOut(BaseModel):
    message: str


router = APIRouter(prefix="/download-requests", tags=["download-requests"])


@router.get("/check/{file_id}", response_model=DownloadRequestCheck)
def check_request(
    file_id: int,
    user: User = Depends(get_current_user),
    ledger: DownloadRequestLedger = Depends(get_download_request_ledger),
):
    latest = ledger.latest_for(user.id, file_id)
    if latest is None:
        return DownloadRequestCheck(requested=False)
    return DownloadRequestCheck(
        requested=True,
        status=latest.status,
        request_id=latest.id,
        created_at=latest.request_date,
    )


@router.post("", response_model=DownloadRequestEnvelope, status_code=status.HTTP_201_CREATED)
def create_request(
    payload: DownloadRequestCreate,
    user: User = Depends(get_current_user),
    ledger: DownloadRequestLedger = Depends(get_download_request_ledger),
):
    created = ledger.create(user, payload.file_id, notes=payload.notes)
    return DownloadRequestEnvelope(
        message="Download request created successfully",
        request=ledger.get_detail(created.id),
    )


@router.get("/my-requests", response_model=DownloadRequestPage)
def my_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    status_filter: Optional[DownloadRequestStatus] = Query(None, alias="status"),
    user: User = Depends(get_current_user),
    ledger: DownloadRequestLedger = Depends(get_download_request_ledger),
):
    rows, total = ledger.list_for_user(user.id, status_filter, page, limit)
    return DownloadRequestPage(requests=rows, pagination=build_pagination(page, limit, total))


@router.get("", response_model=DownloadRequestPage)
def list_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    status_filter: Optional[DownloadRequestStatus] = Query(None, alias="status"),
    _admin: User = Depends(require_admin),
    ledger: DownloadRequestLedger = Depends(get_download_request_ledger),
):
    rows, total = ledger.list_all(status_filter, page, limit)
    return DownloadRequestPage(requests=rows, pagination=build_pagination(page, limit, total))


@router.get("/{request_id}", response_model=DownloadRequestEnvelope, response_model_exclude={"message"})
def get_request(
    request_id: int,
    user: User = Depends(get_current_user),
    ledger: DownloadRequestLedger = Depends(get_download_request_ledger),
):
    detail = ledger.get_detail(request_id)
    if detail["user_id"] != user.id and not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return DownloadRequestEnvelope(request=detail)


@router.put("/{request_id}", response_model=DownloadRequestEnvelope)
def update_request(
    request_id: int,
    payload: DownloadRequestUpdate,
    admin: User = Depends(require_admin),
    ledger: DownloadRequestLedger = Depends(get_download_request_ledger),
):
    ledger.transition(request_id, payload.status, admin, admin_notes=payload.notes)
    return DownloadRequestEnvelope(
        message="Download request updated successfully",
        request=ledger.get_detail(request_id),
    )


@router.delete("/{request_id}", response_model=MessageOut)
def delete_request(
    request_id: int,
    _admin: User = Depends(require_admin),
    ledger: DownloadRequestLedger = Depends(get_download_request_ledger),
):
    ledger.delete(request_id)
    return MessageOut(message="Download request deleted successfully")
