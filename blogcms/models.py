from datetime import datetime
from typing import Optional
from enum import Enum
from sqlalchemy import Column, Index, Integer, text
from sqlmodel import SQLModel, Field


class Timestamped(SQLModel):
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class RoleEnum(str, Enum):
    admin = "admin"
    user = "user"


class PostStatusEnum(str, Enum):
    draft = "draft"
    published = "published"
    archived = "archived"


class DownloadRequestStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class User(Timestamped, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True, max_length=100)
    email: str = Field(index=True, unique=True, max_length=255)
    hashed_password: str
    role: str = Field(default=RoleEnum.user.value, index=True)  # admin | user
    is_active: bool = Field(default=True)


class Post(Timestamped, table=True):
    __tablename__ = "posts"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(max_length=255)
    slug: str = Field(index=True, unique=True, max_length=255)
    excerpt: Optional[str] = Field(default=None, max_length=500, sa_column_kwargs={"nullable": True})
    status: PostStatusEnum = Field(default=PostStatusEnum.draft, index=True)
    author_id: Optional[int] = Field(default=None, foreign_key="users.id", sa_column_kwargs={"nullable": True})
    published_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})


class StoredFile(Timestamped, table=True):
    __tablename__ = "files"

    id: Optional[int] = Field(default=None, primary_key=True)
    filename: str = Field(index=True, unique=True, max_length=255, description="Name of the binary on disk")
    original_name: str = Field(max_length=512)
    # Legacy rows hold an absolute path, new rows only the bare filename
    file_path: str = Field(max_length=1024)
    file_size: int = Field(default=0)
    mime_type: str = Field(default="application/octet-stream", max_length=255)
    driver: str = Field(default="local", max_length=32)
    post_id: Optional[int] = Field(default=None, foreign_key="posts.id", index=True, sa_column_kwargs={"nullable": True})
    uploaded_by: Optional[int] = Field(default=None, foreign_key="users.id", sa_column_kwargs={"nullable": True})
    download_count: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, default=0, server_default=text("0")),
    )


class DownloadRequest(SQLModel, table=True):
    __tablename__ = "download_requests"
    __table_args__ = (
        # At most one pending request per user and file
        Index(
            "uq_download_requests_one_pending",
            "user_id",
            "file_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    file_id: int = Field(foreign_key="files.id", index=True)
    status: DownloadRequestStatus = Field(default=DownloadRequestStatus.pending, index=True)
    notes: Optional[str] = Field(default=None, max_length=500, sa_column_kwargs={"nullable": True})
    admin_notes: Optional[str] = Field(default=None, max_length=500, sa_column_kwargs={"nullable": True})
    request_date: datetime = Field(default_factory=datetime.utcnow, nullable=False, index=True)
    approved_date: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    approved_by: Optional[int] = Field(default=None, foreign_key="users.id", sa_column_kwargs={"nullable": True})
