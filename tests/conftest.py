import os
import shutil
import tempfile
from uuid import uuid4

import pytest

# Configure the test database and upload directory before the app is imported
_TMP_DIR = tempfile.mkdtemp(prefix="blogcms-tests-")
TEST_DB_PATH = os.path.join(_TMP_DIR, "test.db")
UPLOAD_DIR = os.path.join(_TMP_DIR, "uploads")
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["APP_ENV"] = "test"
os.environ["DEBUG"] = "false"
os.environ["FILE_STORAGE_DRIVER"] = "local"
os.environ["FILE_STORAGE_LOCAL_PATH"] = UPLOAD_DIR
os.environ["MAX_FILE_SIZE"] = str(64 * 1024)
os.environ["DEFAULT_ADMIN_EMAIL"] = "admin@test.com"
os.environ["DEFAULT_ADMIN_PASSWORD"] = "admin123"

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

import blogcms.db as db  # noqa: E402
from blogcms.main import app  # noqa: E402
from blogcms.models import Post, PostStatusEnum  # noqa: E402
from blogcms.seed import ensure_default_admin  # noqa: E402


@pytest.fixture(scope="session")
def client():
    assert TEST_DB_PATH in str(db.engine.url), f"Engine points to {db.engine.url}"
    db.init_db()
    ensure_default_admin()

    client = TestClient(app)
    yield client
    client.close()
    shutil.rmtree(_TMP_DIR, ignore_errors=True)


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_token(client: TestClient):
    res = client.post(
        "/auth/token",
        data={"username": "admin@test.com", "password": "admin123"},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert res.status_code == 200, res.text
    return res.json()["access_token"]


@pytest.fixture()
def make_user(client: TestClient):
    """Register a fresh reader account and return ``(token, user_id)``."""

    def _make(prefix: str = "reader"):
        suffix = uuid4().hex[:8]
        res = client.post(
            "/auth/register",
            json={"email": f"{prefix}-{suffix}@test.com", "password": "reader123", "username": f"{prefix}-{suffix}"},
        )
        assert res.status_code == 201, res.text
        body = res.json()
        return body["access_token"], body["user"]["id"]

    return _make


@pytest.fixture()
def make_post(client: TestClient):
    def _make(status: PostStatusEnum = PostStatusEnum.published) -> int:
        with Session(db.engine) as session:
            slug = f"post-{uuid4().hex[:8]}"
            post = Post(title=f"Post {slug}", slug=slug, status=status)
            session.add(post)
            session.commit()
            session.refresh(post)
            return post.id

    return _make


@pytest.fixture()
def upload_file(client: TestClient, admin_token: str, make_post):
    """Upload a file as admin, attached to a new published post unless told otherwise."""

    def _upload(
        content: bytes = b"demo-content",
        filename: str = "guide.pdf",
        mime_type: str = "application/pdf",
        post_id=...,
    ) -> dict:
        if post_id is ...:
            post_id = make_post()
        data = {} if post_id is None else {"postId": str(post_id)}
        res = client.post(
            "/files/upload",
            data=data,
            files={"file": (filename, content, mime_type)},
            headers=auth_headers(admin_token),
        )
        assert res.status_code == 201, res.text
        return res.json()["file"]

    return _upload
