"""Download request ledger.

Every mutation of a ``DownloadRequest`` goes through :class:`DownloadRequestLedger`.
The lifecycle is ``pending -> approved`` or ``pending -> rejected`` and the
fields that describe a decision (status, approver, approval date) are always
written together by :func:`transition_status` and :meth:`DownloadRequestLedger.transition`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends, HTTPException, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased
from sqlmodel import Session, select

from ..db import get_session
from ..models import DownloadRequest, DownloadRequestStatus, Post, StoredFile, User
from ..security import is_admin
from .storage import StorageService


logger = logging.getLogger(__name__)

DUPLICATE_PENDING_MESSAGE = "You already have a pending request for this file"

TERMINAL_STATUSES = frozenset({DownloadRequestStatus.approved, DownloadRequestStatus.rejected})

Requester = aliased(User)
Approver = aliased(User)


class InvalidTransition(ValueError):
    pass


def transition_status(current: DownloadRequestStatus, requested: DownloadRequestStatus) -> DownloadRequestStatus:
    """Return the status a request moves to when ``requested`` is applied to ``current``.

    Only approved and rejected are valid targets. A request that was already
    decided may be decided again, the newer decision wins.
    """
    current = DownloadRequestStatus(current)
    requested = DownloadRequestStatus(requested)
    if requested not in TERMINAL_STATUSES:
        raise InvalidTransition(f"Cannot move a download request to '{requested.value}'")
    return requested


def _detail_statement():
    return (
        select(
            DownloadRequest,
            StoredFile.original_name.label("file_name"),
            StoredFile.file_size.label("file_size"),
            StoredFile.mime_type.label("mime_type"),
            Post.title.label("post_title"),
            Post.slug.label("post_slug"),
            Requester.username.label("requester_name"),
            Approver.username.label("approver_name"),
        )
        .join(StoredFile, DownloadRequest.file_id == StoredFile.id, isouter=True)
        .join(Post, StoredFile.post_id == Post.id, isouter=True)
        .join(Requester, DownloadRequest.user_id == Requester.id, isouter=True)
        .join(Approver, DownloadRequest.approved_by == Approver.id, isouter=True)
    )


def _row_to_dict(row) -> Dict[str, Any]:
    request, file_name, file_size, mime_type, post_title, post_slug, requester_name, approver_name = row
    data = request.model_dump()
    data.update(
        file_name=file_name,
        file_size=file_size,
        mime_type=mime_type,
        post_title=post_title,
        post_slug=post_slug,
        requester_name=requester_name,
        approver_name=approver_name,
    )
    return data


class DownloadRequestLedger:
    def __init__(self, session: Session):
        self.session = session

    def get(self, request_id: int) -> DownloadRequest:
        request = self.session.get(DownloadRequest, request_id)
        if not request:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Download request not found")
        return request

    def get_detail(self, request_id: int) -> Dict[str, Any]:
        row = self.session.exec(_detail_statement().where(DownloadRequest.id == request_id)).first()
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Download request not found")
        return _row_to_dict(row)

    def pending_for(self, user_id: int, file_id: int) -> Optional[DownloadRequest]:
        stmt = select(DownloadRequest).where(
            DownloadRequest.user_id == user_id,
            DownloadRequest.file_id == file_id,
            DownloadRequest.status == DownloadRequestStatus.pending,
        )
        return self.session.exec(stmt).first()

    def latest_for(self, user_id: int, file_id: int) -> Optional[DownloadRequest]:
        stmt = (
            select(DownloadRequest)
            .where(DownloadRequest.user_id == user_id, DownloadRequest.file_id == file_id)
            .order_by(DownloadRequest.request_date.desc(), DownloadRequest.id.desc())
        )
        return self.session.exec(stmt).first()

    def find_by_status(self, user_id: int, file_id: int) -> Dict[DownloadRequestStatus, DownloadRequest]:
        """Most recent request per status for one ``(user, file)`` pair."""
        stmt = (
            select(DownloadRequest)
            .where(DownloadRequest.user_id == user_id, DownloadRequest.file_id == file_id)
            .order_by(DownloadRequest.request_date.desc(), DownloadRequest.id.desc())
        )
        latest: Dict[DownloadRequestStatus, DownloadRequest] = {}
        for request in self.session.exec(stmt):
            latest.setdefault(DownloadRequestStatus(request.status), request)
        return latest

    def create(self, user: User, file_id: int, notes: Optional[str] = None) -> DownloadRequest:
        stored = self.session.get(StoredFile, file_id)
        if stored is None or (not is_admin(user) and not StorageService(self.session).is_published(stored)):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

        if self.pending_for(user.id, file_id) is not None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_PENDING_MESSAGE)

        request = DownloadRequest(
            user_id=user.id,
            file_id=file_id,
            status=DownloadRequestStatus.pending,
            notes=notes or None,
        )
        self.session.add(request)
        try:
            self.session.commit()
        except IntegrityError:
            # A concurrent create won the partial unique index
            self.session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_PENDING_MESSAGE)
        self.session.refresh(request)
        logger.info("User %s requested download of file %s (request %s)", user.id, file_id, request.id)
        return request

    def transition(
        self,
        request_id: int,
        new_status: DownloadRequestStatus,
        approver: User,
        admin_notes: Optional[str] = None,
    ) -> DownloadRequest:
        request = self.get(request_id)
        try:
            next_status = transition_status(request.status, new_status)
        except InvalidTransition as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

        previous = request.status
        request.status = next_status
        request.approved_by = approver.id
        request.approved_date = datetime.utcnow()
        if admin_notes is not None:
            request.admin_notes = admin_notes

        self.session.add(request)
        self.session.commit()
        self.session.refresh(request)
        logger.info(
            "Download request %s moved from %s to %s by user %s",
            request.id,
            DownloadRequestStatus(previous).value,
            next_status.value,
            approver.id,
        )
        return request

    def _list(self, status_filter: Optional[DownloadRequestStatus], page: int, limit: int, user_id: Optional[int] = None) -> Tuple[List[Dict[str, Any]], int]:
        conditions = []
        if user_id is not None:
            conditions.append(DownloadRequest.user_id == user_id)
        if status_filter is not None:
            conditions.append(DownloadRequest.status == status_filter)

        stmt = (
            _detail_statement()
            .where(*conditions)
            .order_by(DownloadRequest.request_date.desc(), DownloadRequest.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        rows = [_row_to_dict(row) for row in self.session.exec(stmt).all()]
        total = self.session.exec(select(func.count()).select_from(DownloadRequest).where(*conditions)).one()
        return rows, total

    def list_for_user(
        self, user_id: int, status_filter: Optional[DownloadRequestStatus], page: int, limit: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        return self._list(status_filter, page, limit, user_id=user_id)

    def list_all(
        self, status_filter: Optional[DownloadRequestStatus], page: int, limit: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        return self._list(status_filter, page, limit)

    def delete(self, request_id: int) -> None:
        request = self.get(request_id)
        self.session.delete(request)
        self.session.commit()
        logger.info("Deleted download request %s", request_id)

    def delete_for_file(self, file_id: int) -> int:
        requests = self.session.exec(select(DownloadRequest).where(DownloadRequest.file_id == file_id)).all()
        for request in requests:
            self.session.delete(request)
        self.session.flush()
        return len(requests)


def get_download_request_ledger(session: Session = Depends(get_session)) -> DownloadRequestLedger:
    return DownloadRequestLedger(session=session)
