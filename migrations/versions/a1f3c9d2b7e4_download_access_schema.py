"""
Create users, posts, files and download_requests tables

Revision ID: a1f3c9d2b7e4
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1f3c9d2b7e4"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


download_request_status = sa.Enum("pending", "approved", "rejected", name="downloadrequeststatus")
post_status = sa.Enum("draft", "published", "archived", name="poststatusenum")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_username"), "users", ["username"], unique=True)
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    op.create_index(op.f("ix_users_role"), "users", ["role"], unique=False)

    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("excerpt", sa.String(length=500), nullable=True),
        sa.Column("status", post_status, nullable=False),
        sa.Column("author_id", sa.Integer(), nullable=True),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_posts_slug"), "posts", ["slug"], unique=True)
    op.create_index(op.f("ix_posts_status"), "posts", ["status"], unique=False)

    op.create_table(
        "files",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("original_name", sa.String(length=512), nullable=False),
        sa.Column("file_path", sa.String(length=1024), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(length=255), nullable=False),
        sa.Column("driver", sa.String(length=32), nullable=False, server_default="local"),
        sa.Column("post_id", sa.Integer(), nullable=True),
        sa.Column("uploaded_by", sa.Integer(), nullable=True),
        sa.Column("download_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ),
        sa.ForeignKeyConstraint(["uploaded_by"], ["users.id"], ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_files_filename"), "files", ["filename"], unique=True)
    op.create_index(op.f("ix_files_post_id"), "files", ["post_id"], unique=False)

    op.create_table(
        "download_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("file_id", sa.Integer(), nullable=False),
        sa.Column("status", download_request_status, nullable=False),
        sa.Column("notes", sa.String(length=500), nullable=True),
        sa.Column("admin_notes", sa.String(length=500), nullable=True),
        sa.Column("request_date", sa.DateTime(), nullable=False),
        sa.Column("approved_date", sa.DateTime(), nullable=True),
        sa.Column("approved_by", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ),
        sa.ForeignKeyConstraint(["file_id"], ["files.id"], ),
        sa.ForeignKeyConstraint(["approved_by"], ["users.id"], ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_download_requests_user_id"), "download_requests", ["user_id"], unique=False)
    op.create_index(op.f("ix_download_requests_file_id"), "download_requests", ["file_id"], unique=False)
    op.create_index(op.f("ix_download_requests_status"), "download_requests", ["status"], unique=False)
    op.create_index(op.f("ix_download_requests_request_date"), "download_requests", ["request_date"], unique=False)
    op.create_index(
        "uq_download_requests_one_pending",
        "download_requests",
        ["user_id", "file_id"],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index("uq_download_requests_one_pending", table_name="download_requests")
    op.drop_index(op.f("ix_download_requests_request_date"), table_name="download_requests")
    op.drop_index(op.f("ix_download_requests_status"), table_name="download_requests")
    op.drop_index(op.f("ix_download_requests_file_id"), table_name="download_requests")
    op.drop_index(op.f("ix_download_requests_user_id"), table_name="download_requests")
    op.drop_table("download_requests")
    op.drop_index(op.f("ix_files_post_id"), table_name="files")
    op.drop_index(op.f("ix_files_filename"), table_name="files")
    op.drop_table("files")
    op.drop_index(op.f("ix_posts_status"), table_name="posts")
    op.drop_index(op.f("ix_posts_slug"), table_name="posts")
    op.drop_table("posts")
    op.drop_index(op.f("ix_users_role"), table_name="users")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_index(op.f("ix_users_username"), table_name="users")
    op.drop_table("users")
    download_request_status.drop(op.get_bind(), checkfirst=True)
    post_status.drop(op.get_bind(), checkfirst=True)
