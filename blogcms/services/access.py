from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from sqlmodel import Session

from ..models import DownloadRequest, DownloadRequestStatus, StoredFile, User
from ..security import is_admin
from .download_requests import DownloadRequestLedger
from .storage import StorageService


class AccessOutcome(str, Enum):
    allowed = "allowed"
    not_found = "not_found"
    pending_exists = "pending_exists"
    request_required = "request_required"


@dataclass
class AccessDecision:
    outcome: AccessOutcome
    message: str
    file: Optional[StoredFile] = None
    path: Optional[Path] = None
    request: Optional[DownloadRequest] = None

    @property
    def allowed(self) -> bool:
        return self.outcome is AccessOutcome.allowed


def evaluate_access(session: Session, user: User, file_id: int, storage: StorageService) -> AccessDecision:
    """Decide whether ``user`` may download ``file_id`` right now.

    Reads the registry, the binary store and the ledger; writes nothing.
    Checks run in order and the first match wins:

    1. unknown file id -> ``not_found``
    2. binary missing on disk -> ``not_found``
    3. admin -> ``allowed``
    4. file not attached to a published post -> ``not_found``
    5. an approved request -> ``allowed``; a pending one -> ``pending_exists``;
       otherwise ``request_required`` (a rejection does not block a new request)
    """
    stored = session.get(StoredFile, file_id)
    if stored is None:
        return AccessDecision(AccessOutcome.not_found, "File not found")

    path = storage.resolve_binary(stored)
    if path is None:
        return AccessDecision(AccessOutcome.not_found, "File not found on server", file=stored)

    if is_admin(user):
        return AccessDecision(AccessOutcome.allowed, "Download allowed", file=stored, path=path)

    if not storage.is_published(stored):
        return AccessDecision(AccessOutcome.not_found, "File not found")

    by_status = DownloadRequestLedger(session).find_by_status(user.id, stored.id)
    approved = by_status.get(DownloadRequestStatus.approved)
    if approved is not None:
        return AccessDecision(AccessOutcome.allowed, "Download allowed", file=stored, path=path, request=approved)

    pending = by_status.get(DownloadRequestStatus.pending)
    if pending is not None:
        return AccessDecision(
            AccessOutcome.pending_exists,
            "Your download request for this file is still pending approval",
            file=stored,
            path=path,
            request=pending,
        )

    return AccessDecision(
        AccessOutcome.request_required,
        "You need to request access to download this file",
        file=stored,
        path=path,
        request=by_status.get(DownloadRequestStatus.rejected),
    )
