import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy import func
from sqlalchemy.orm import aliased
from sqlmodel import select

from ..db import get_session
from ..models import Post, StoredFile, User
from ..security import authenticate_token, get_current_user_optional, is_admin, oauth2_optional_scheme, require_admin
from ..services.access import AccessOutcome, evaluate_access
from ..services.download_requests import DownloadRequestLedger
from ..services.storage import StorageService, get_storage_service
from ..utils.pagination import MAX_PAGE_SIZE, Pagination, build_pagination


logger = logging.getLogger(__name__)

Uploader = aliased(User)


class FileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    filename: str
    original_name: str
    file_size: int
    mime_type: str
    post_id: Optional[int] = None
    uploaded_by: Optional[int] = None
    download_count: int = 0
    created_at: datetime
    updated_at: datetime
    uploaded_by_name: Optional[str] = None
    post_title: Optional[str] = None
    post_slug: Optional[str] = None


class FileEnvelope(BaseModel):
    message: Optional[str] = None
    file: FileOut


class FilePage(BaseModel):
    files: List[FileOut]
    pagination: Pagination


class FileUpdate(BaseModel):
    post_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("postId", "post_id"))


class MessageOut(BaseModel):
    message: str


router = APIRouter(prefix="/files", tags=["files"])


def _file_statement():
    return (
        select(
            StoredFile,
            Uploader.username.label("uploaded_by_name"),
            Post.title.label("post_title"),
            Post.slug.label("post_slug"),
        )
        .join(Uploader, StoredFile.uploaded_by == Uploader.id, isouter=True)
        .join(Post, StoredFile.post_id == Post.id, isouter=True)
    )


def _to_file_out(row) -> FileOut:
    stored, uploaded_by_name, post_title, post_slug = row
    return FileOut(
        **stored.model_dump(),
        uploaded_by_name=uploaded_by_name,
        post_title=post_title,
        post_slug=post_slug,
    )


def _load_file_out(session, file_id: int) -> FileOut:
    row = session.exec(_file_statement().where(StoredFile.id == file_id)).first()
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return _to_file_out(row)


def _ensure_post(session, post_id: Optional[int]) -> None:
    if post_id is not None and session.get(Post, post_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")


def get_download_user(
    header_token: Optional[str] = Depends(oauth2_optional_scheme),
    token: Optional[str] = Query(None, description="JWT for direct browser downloads"),
    session=Depends(get_session),
) -> User:
    credential = header_token or token
    if not credential:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return authenticate_token(credential, session)


@router.post("/upload", response_model=FileEnvelope, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(..., description="File to upload"),
    post_id: Optional[int] = Form(None, alias="postId"),
    storage: StorageService = Depends(get_storage_service),
    user: User = Depends(require_admin),
):
    _ensure_post(storage.session, post_id)
    stored = await storage.save_upload(file, post_id=post_id, uploaded_by=user.id)
    return FileEnvelope(message="File uploaded successfully", file=_load_file_out(storage.session, stored.id))


@router.get("", response_model=FilePage)
def list_files(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    post_id: Optional[int] = Query(None, alias="postId"),
    session=Depends(get_session),
    _admin: User = Depends(require_admin),
):
    conditions = []
    if post_id is not None:
        conditions.append(StoredFile.post_id == post_id)

    stmt = (
        _file_statement()
        .where(*conditions)
        .order_by(StoredFile.created_at.desc(), StoredFile.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    files = [_to_file_out(row) for row in session.exec(stmt).all()]
    total = session.exec(select(func.count()).select_from(StoredFile).where(*conditions)).one()
    return FilePage(files=files, pagination=build_pagination(page, limit, total))


@router.get("/{file_id}", response_model=FileEnvelope, response_model_exclude={"message"})
def get_file(
    file_id: int,
    storage: StorageService = Depends(get_storage_service),
    maybe_user: Optional[User] = Depends(get_current_user_optional),
):
    stored = storage.get_file(file_id)
    # Only files attached to a published post are visible outside the admin
    if not is_admin(maybe_user) and not storage.is_published(stored):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return FileEnvelope(file=_load_file_out(storage.session, file_id))


@router.get("/{file_id}/download", name="download_file")
def download_file(
    file_id: int,
    user: User = Depends(get_download_user),
    storage: StorageService = Depends(get_storage_service),
):
    decision = evaluate_access(storage.session, user, file_id, storage)

    if decision.outcome is AccessOutcome.not_found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=decision.message)

    if decision.outcome is AccessOutcome.pending_exists:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={
                "detail": decision.message,
                "fileId": file_id,
                "needsRequest": False,
                "hasPendingRequest": True,
                "requestId": decision.request.id,
            },
        )

    if decision.outcome is AccessOutcome.request_required:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={
                "detail": decision.message,
                "fileId": file_id,
                "needsRequest": True,
                "hasPendingRequest": False,
            },
        )

    stored, path = decision.file, decision.path
    storage.increment_download_count(stored.id)
    logger.info("User %s downloading file %s", user.id, file_id)
    return storage.build_download_response(stored, path)


@router.put("/{file_id}", response_model=FileEnvelope)
def update_file(
    file_id: int,
    payload: FileUpdate,
    session=Depends(get_session),
    _admin: User = Depends(require_admin),
):
    stored = session.get(StoredFile, file_id)
    if not stored:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    _ensure_post(session, payload.post_id)

    stored.post_id = payload.post_id
    stored.updated_at = datetime.utcnow()
    session.add(stored)
    session.commit()
    return FileEnvelope(message="File updated successfully", file=_load_file_out(session, file_id))


@router.delete("/{file_id}", response_model=MessageOut)
def delete_file(
    file_id: int,
    storage: StorageService = Depends(get_storage_service),
    _admin: User = Depends(require_admin),
):
    stored = storage.get_file(file_id)
    path = storage.resolve_binary(stored)

    removed_requests = DownloadRequestLedger(storage.session).delete_for_file(file_id)
    storage.session.delete(stored)
    storage.session.commit()
    logger.info("Deleted file %s and %d download requests", file_id, removed_requests)

    storage.delete_binary(path, file_id)
    return MessageOut(message="File deleted successfully")
