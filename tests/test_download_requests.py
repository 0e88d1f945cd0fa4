from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

import blogcms.db as db
from blogcms.models import DownloadRequest, DownloadRequestStatus, Post, PostStatusEnum, StoredFile
from blogcms.services.download_requests import DUPLICATE_PENDING_MESSAGE, DownloadRequestLedger


def _headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _create_request(client: TestClient, token: str, file_id: int, **extra):
    return client.post("/download-requests", json={"fileId": file_id, **extra}, headers=_headers(token))


def _decide(client: TestClient, admin_token: str, request_id: int, status: str, **extra):
    return client.put(f"/download-requests/{request_id}", json={"status": status, **extra}, headers=_headers(admin_token))


def _pending_rows(user_id: int, file_id: int):
    with Session(db.engine) as session:
        return session.exec(
            select(DownloadRequest).where(
                DownloadRequest.user_id == user_id,
                DownloadRequest.file_id == file_id,
                DownloadRequest.status == DownloadRequestStatus.pending,
            )
        ).all()


def test_request_then_pending_then_approved_flow(client: TestClient, admin_token: str, make_user, upload_file):
    token, user_id = make_user()
    body = upload_file(content=b"gated-bytes", filename="whitepaper.pdf")
    file_id = body["id"]

    first = client.get(f"/files/{file_id}/download", headers=_headers(token))
    assert first.status_code == 403
    assert first.json()["needsRequest"] is True
    assert first.json()["hasPendingRequest"] is False

    created = _create_request(client, token, file_id, notes="For my thesis")
    assert created.status_code == 201, created.text
    request = created.json()["request"]
    assert request["status"] == "pending"
    assert request["user_id"] == user_id
    assert request["notes"] == "For my thesis"
    assert request["file_name"] == "whitepaper.pdf"
    assert request["approved_by"] is None
    assert request["approved_date"] is None

    second = client.get(f"/files/{file_id}/download", headers=_headers(token))
    assert second.status_code == 403
    assert second.json()["hasPendingRequest"] is True
    assert second.json()["needsRequest"] is False
    assert second.json()["requestId"] == request["id"]

    approved = _decide(client, admin_token, request["id"], "approved")
    assert approved.status_code == 200, approved.text
    decided = approved.json()["request"]
    assert decided["status"] == "approved"
    assert decided["approver_name"] == "admin"
    assert decided["approved_date"] is not None

    download = client.get(f"/files/{file_id}/download", headers=_headers(token))
    assert download.status_code == 200
    assert download.content == b"gated-bytes"
    assert download.headers["content-disposition"] == 'attachment; filename="whitepaper.pdf"'
    with Session(db.engine) as session:
        assert session.get(StoredFile, file_id).download_count == 1

    # Approval keeps granting access on later downloads
    assert client.get(f"/files/{file_id}/download", headers=_headers(token)).status_code == 200


def test_duplicate_pending_request_is_rejected(client: TestClient, make_user, upload_file):
    token, user_id = make_user()
    file_id = upload_file()["id"]

    assert _create_request(client, token, file_id).status_code == 201
    duplicate = _create_request(client, token, file_id)
    assert duplicate.status_code == 400
    assert "already have a pending request" in duplicate.json()["detail"]
    assert len(_pending_rows(user_id, file_id)) == 1


def test_storage_layer_allows_only_one_pending_row(client: TestClient, make_user, upload_file):
    _, user_id = make_user()
    file_id = upload_file()["id"]

    with Session(db.engine) as session:
        session.add(DownloadRequest(user_id=user_id, file_id=file_id))
        session.commit()
        session.add(DownloadRequest(user_id=user_id, file_id=file_id))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

        # Decided rows are not limited
        session.add(DownloadRequest(user_id=user_id, file_id=file_id, status=DownloadRequestStatus.rejected))
        session.add(DownloadRequest(user_id=user_id, file_id=file_id, status=DownloadRequestStatus.rejected))
        session.commit()

    assert len(_pending_rows(user_id, file_id)) == 1


def test_rejection_allows_a_new_request(client: TestClient, admin_token: str, make_user, upload_file):
    token, user_id = make_user()
    file_id = upload_file()["id"]

    request_id = _create_request(client, token, file_id).json()["request"]["id"]
    rejected = _decide(client, admin_token, request_id, "rejected", notes="Not for public release")
    assert rejected.status_code == 200
    assert rejected.json()["request"]["admin_notes"] == "Not for public release"

    res = client.get(f"/files/{file_id}/download", headers=_headers(token))
    assert res.status_code == 403
    assert res.json()["needsRequest"] is True

    retry = _create_request(client, token, file_id)
    assert retry.status_code == 201
    assert retry.json()["request"]["id"] != request_id

    with Session(db.engine) as session:
        rows = session.exec(select(DownloadRequest).where(DownloadRequest.user_id == user_id)).all()
        assert sorted(row.status.value for row in rows) == ["pending", "rejected"]


def test_admin_bypasses_gating(client: TestClient, admin_token: str, upload_file):
    file_id = upload_file()["id"]
    res = client.get(f"/files/{file_id}/download", headers=_headers(admin_token))
    assert res.status_code == 200


def test_download_unknown_file_is_404_for_readers(client: TestClient, make_user):
    token, _ = make_user()
    assert client.get("/files/987654/download", headers=_headers(token)).status_code == 404


def test_approval_is_per_user(client: TestClient, admin_token: str, make_user, upload_file):
    owner_token, _ = make_user()
    other_token, _ = make_user()
    file_id = upload_file()["id"]

    request_id = _create_request(client, owner_token, file_id).json()["request"]["id"]
    _decide(client, admin_token, request_id, "approved")

    assert client.get(f"/files/{file_id}/download", headers=_headers(owner_token)).status_code == 200
    other = client.get(f"/files/{file_id}/download", headers=_headers(other_token))
    assert other.status_code == 403
    assert other.json()["needsRequest"] is True


def test_create_request_validation(client: TestClient, make_user):
    token, _ = make_user()
    assert _create_request(client, token, 999999).status_code == 404
    assert client.post("/download-requests", json={"fileId": "abc"}, headers=_headers(token)).status_code == 400
    assert client.post("/download-requests", json={}, headers=_headers(token)).status_code == 400
    too_long = client.post("/download-requests", json={"fileId": 1, "notes": "x" * 501}, headers=_headers(token))
    assert too_long.status_code == 400
    assert client.post("/download-requests", json={"fileId": 1}).status_code == 401


def test_request_reason_alias(client: TestClient, make_user, upload_file):
    token, _ = make_user()
    file_id = upload_file()["id"]
    res = client.post(
        "/download-requests",
        json={"file_id": file_id, "request_reason": "Research"},
        headers=_headers(token),
    )
    assert res.status_code == 201
    assert res.json()["request"]["notes"] == "Research"


def test_check_endpoint_reports_latest_request(client: TestClient, admin_token: str, make_user, upload_file):
    token, _ = make_user()
    file_id = upload_file()["id"]

    empty = client.get(f"/download-requests/check/{file_id}", headers=_headers(token))
    assert empty.status_code == 200
    assert empty.json() == {"requested": False, "status": None, "requestId": None, "createdAt": None}

    request_id = _create_request(client, token, file_id).json()["request"]["id"]
    pending = client.get(f"/download-requests/check/{file_id}", headers=_headers(token)).json()
    assert pending["requested"] is True
    assert pending["status"] == "pending"
    assert pending["requestId"] == request_id
    assert pending["createdAt"]

    _decide(client, admin_token, request_id, "approved")
    approved = client.get(f"/download-requests/check/{file_id}", headers=_headers(token)).json()
    assert approved["status"] == "approved"


def test_my_requests_pagination_and_filter(client: TestClient, admin_token: str, make_user, upload_file):
    token, user_id = make_user()
    file_ids = [upload_file()["id"] for _ in range(3)]
    request_ids = [_create_request(client, token, file_id).json()["request"]["id"] for file_id in file_ids]
    _decide(client, admin_token, request_ids[0], "approved")

    res = client.get("/download-requests/my-requests?limit=2", headers=_headers(token))
    assert res.status_code == 200
    body = res.json()
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}
    assert [r["id"] for r in body["requests"]] == [request_ids[2], request_ids[1]]
    assert all(r["user_id"] == user_id for r in body["requests"])

    approved = client.get("/download-requests/my-requests?status=approved", headers=_headers(token)).json()
    assert [r["id"] for r in approved["requests"]] == [request_ids[0]]
    assert approved["pagination"]["limit"] == 10

    assert client.get("/download-requests/my-requests?status=bogus", headers=_headers(token)).status_code == 400
    assert client.get("/download-requests/my-requests?page=0", headers=_headers(token)).status_code == 400


def test_admin_list_requires_admin_and_joins_names(client: TestClient, admin_token: str, make_user, upload_file):
    token, user_id = make_user()
    file_id = upload_file(filename="joined.pdf")["id"]
    request_id = _create_request(client, token, file_id).json()["request"]["id"]

    assert client.get("/download-requests", headers=_headers(token)).status_code == 403

    res = client.get("/download-requests?status=pending&limit=100", headers=_headers(admin_token))
    assert res.status_code == 200
    body = res.json()
    assert body["pagination"]["limit"] == 100
    assert all(r["status"] == "pending" for r in body["requests"])
    listed = next(r for r in body["requests"] if r["id"] == request_id)
    assert listed["file_name"] == "joined.pdf"
    assert listed["requester_name"].startswith("reader-")
    assert listed["post_title"]
    assert listed["post_slug"]

    default_limit = client.get("/download-requests", headers=_headers(admin_token)).json()
    assert default_limit["pagination"]["limit"] == 20


def test_get_request_is_limited_to_owner_and_admin(client: TestClient, admin_token: str, make_user, upload_file):
    owner_token, _ = make_user()
    other_token, _ = make_user()
    file_id = upload_file()["id"]
    request_id = _create_request(client, owner_token, file_id).json()["request"]["id"]

    own = client.get(f"/download-requests/{request_id}", headers=_headers(owner_token))
    assert own.status_code == 200
    assert own.json()["request"]["id"] == request_id

    assert client.get(f"/download-requests/{request_id}", headers=_headers(other_token)).status_code == 403
    assert client.get(f"/download-requests/{request_id}", headers=_headers(admin_token)).status_code == 200
    assert client.get("/download-requests/999999", headers=_headers(admin_token)).status_code == 404
    assert client.get("/download-requests/not-a-number", headers=_headers(admin_token)).status_code == 400


def test_update_request_rules(client: TestClient, admin_token: str, make_user, upload_file):
    token, _ = make_user()
    file_id = upload_file()["id"]
    request_id = _create_request(client, token, file_id).json()["request"]["id"]

    assert _decide(client, token, request_id, "approved").status_code == 403
    assert _decide(client, admin_token, request_id, "bogus").status_code == 400
    assert _decide(client, admin_token, request_id, "pending").status_code == 400
    assert _decide(client, admin_token, 999999, "approved").status_code == 404

    first = _decide(client, admin_token, request_id, "approved", notes="Granted")
    assert first.json()["request"]["admin_notes"] == "Granted"

    # A later decision overwrites the earlier one and keeps the note when none is sent
    second = _decide(client, admin_token, request_id, "rejected")
    assert second.status_code == 200
    decided = second.json()["request"]
    assert decided["status"] == "rejected"
    assert decided["admin_notes"] == "Granted"
    assert decided["approved_by"] is not None

    res = client.get(f"/files/{file_id}/download", headers=_headers(token))
    assert res.status_code == 403
    assert res.json()["needsRequest"] is True


def test_decision_fields_are_set_together(client: TestClient, admin_token: str, make_user, upload_file):
    token, _ = make_user()
    file_id = upload_file()["id"]
    request_id = _create_request(client, token, file_id).json()["request"]["id"]

    with Session(db.engine) as session:
        row = session.get(DownloadRequest, request_id)
        assert row.approved_by is None and row.approved_date is None

    before = datetime.utcnow()
    _decide(client, admin_token, request_id, "approved")
    with Session(db.engine) as session:
        row = session.get(DownloadRequest, request_id)
        assert row.status == DownloadRequestStatus.approved
        assert row.approved_by is not None
        assert row.approved_date >= before


def test_delete_request(client: TestClient, admin_token: str, make_user, upload_file):
    token, _ = make_user()
    file_id = upload_file()["id"]
    request_id = _create_request(client, token, file_id).json()["request"]["id"]

    assert client.delete(f"/download-requests/{request_id}", headers=_headers(token)).status_code == 403

    res = client.delete(f"/download-requests/{request_id}", headers=_headers(admin_token))
    assert res.status_code == 200
    assert res.json() == {"message": "Download request deleted successfully"}
    assert client.delete(f"/download-requests/{request_id}", headers=_headers(admin_token)).status_code == 404

    # With the history gone the reader starts over
    again = client.get(f"/files/{file_id}/download", headers=_headers(token))
    assert again.json()["needsRequest"] is True


def test_concurrent_duplicate_hits_the_unique_index(client: TestClient, make_user, upload_file, monkeypatch):
    token, user_id = make_user()
    file_id = upload_file()["id"]
    assert _create_request(client, token, file_id).status_code == 201

    # Another request slipped in between the pre-check and the insert
    monkeypatch.setattr(DownloadRequestLedger, "pending_for", lambda self, user_id, file_id: None)
    res = _create_request(client, token, file_id)
    assert res.status_code == 400
    assert res.json()["detail"] == DUPLICATE_PENDING_MESSAGE
    assert len(_pending_rows(user_id, file_id)) == 1


@pytest.mark.parametrize("post_state", ["unattached", "draft"])
def test_hidden_files_cannot_be_requested_or_downloaded(
    client: TestClient, admin_token: str, make_user, make_post, upload_file, post_state
):
    token, user_id = make_user()
    post_id = None if post_state == "unattached" else make_post(PostStatusEnum.draft)
    file_id = upload_file(post_id=post_id)["id"]

    assert _create_request(client, token, file_id).status_code == 404
    assert client.get(f"/files/{file_id}", headers=_headers(token)).status_code == 404
    assert client.get(f"/files/{file_id}/download", headers=_headers(token)).status_code == 404

    # Even an approval granted earlier does not open a hidden file
    with Session(db.engine) as session:
        session.add(DownloadRequest(user_id=user_id, file_id=file_id, status=DownloadRequestStatus.approved))
        session.commit()
    assert client.get(f"/files/{file_id}/download", headers=_headers(token)).status_code == 404

    assert client.get(f"/files/{file_id}/download", headers=_headers(admin_token)).status_code == 200


def test_unpublishing_a_post_closes_its_files(client: TestClient, admin_token: str, make_user, make_post, upload_file):
    token, _ = make_user()
    post_id = make_post()
    file_id = upload_file(post_id=post_id)["id"]
    request_id = _create_request(client, token, file_id).json()["request"]["id"]
    _decide(client, admin_token, request_id, "approved")
    assert client.get(f"/files/{file_id}/download", headers=_headers(token)).status_code == 200

    with Session(db.engine) as session:
        post = session.get(Post, post_id)
        post.status = PostStatusEnum.draft
        session.add(post)
        session.commit()
    assert client.get(f"/files/{file_id}/download", headers=_headers(token)).status_code == 404
