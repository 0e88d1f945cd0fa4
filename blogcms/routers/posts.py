from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlmodel import select

from ..db import get_session
from ..models import Post, PostStatusEnum, StoredFile, User
from ..security import get_current_user_optional, is_admin


class PostFileOut(BaseModel):
    id: int
    original_name: str
    file_size: int
    mime_type: str
    download_count: int

    class Config:
        from_attributes = True


class PostFilesOut(BaseModel):
    post_id: int
    post_title: str
    post_slug: str
    files: List[PostFileOut]


router = APIRouter(prefix="/posts", tags=["posts"])


@router.get("/{slug}/files", response_model=PostFilesOut)
def list_post_files(
    slug: str,
    session=Depends(get_session),
    maybe_user: Optional[User] = Depends(get_current_user_optional),
):
    post = session.exec(select(Post).where(Post.slug == slug)).first()
    if not post or (post.status != PostStatusEnum.published and not is_admin(maybe_user)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")

    files = session.exec(
        select(StoredFile).where(StoredFile.post_id == post.id).order_by(StoredFile.created_at, StoredFile.id)
    ).all()
    return PostFilesOut(post_id=post.id, post_title=post.title, post_slug=post.slug, files=files)
