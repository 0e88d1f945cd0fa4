import logging
import re
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import quote
from uuid import uuid4

from fastapi import Depends, HTTPException, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ..config import settings
from ..models import Post, PostStatusEnum, StoredFile
from ..db import get_session


logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_ALLOWED_FILENAME = re.compile(r"[^A-Za-z0-9_.-]+")
_CHUNK_SIZE = 1024 * 1024


class StorageService:
    """Binary store for uploaded files plus the registry rows that describe them."""

    def __init__(self, session: Session):
        self.session = session
        self.config = settings.file_storage

    def _sanitize_filename(self, filename: Optional[str]) -> str:
        if not filename:
            return "file"
        name = Path(filename).name
        parts = name.split(".")
        if len(parts) > 1:
            ext = parts[-1].lower()
            stem = ".".join(parts[:-1])
        else:
            ext = ""
            stem = parts[0]
        safe_stem = _ALLOWED_FILENAME.sub("-", stem).strip("-") or "file"
        safe_stem = safe_stem[:80]
        safe_ext = _ALLOWED_FILENAME.sub("", ext).lower()
        return f"{safe_stem}.{safe_ext}" if safe_ext else safe_stem

    def _build_stored_filename(self, filename: str) -> str:
        return f"{uuid4().hex}-{filename}"

    def resolve_base(self, driver: Optional[str] = None) -> Path:
        driver = driver or self.config.driver
        base = self.config.local_path if driver == "local" else self.config.docker_volume_path
        path = Path(base)
        if not path.is_absolute():
            path = (_PROJECT_ROOT / path).resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _check_mime_type(self, content_type: Optional[str]) -> str:
        media_type = (content_type or "").split(";")[0].strip().lower()
        if media_type not in self.config.allowed_mime_types:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid file type. Only images, documents, and archives are allowed.",
            )
        return media_type

    async def save_upload(self, upload: UploadFile, post_id: Optional[int], uploaded_by: Optional[int]) -> StoredFile:
        mime_type = self._check_mime_type(upload.content_type)
        stored_filename = self._build_stored_filename(self._sanitize_filename(upload.filename))
        driver = self.config.driver
        destination = self.resolve_base(driver) / stored_filename
        size_bytes = 0

        try:
            with destination.open("wb") as buffer:
                while True:
                    chunk = await upload.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    size_bytes += len(chunk)
                    if size_bytes > self.config.max_file_size:
                        raise HTTPException(
                            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                            detail=f"File exceeds the maximum size of {self.config.max_file_size} bytes",
                        )
                    buffer.write(chunk)
        except BaseException:
            destination.unlink(missing_ok=True)
            raise
        finally:
            await upload.close()

        # The binary is on disk before the registry row exists; undo it if the row fails
        stored = StoredFile(
            filename=stored_filename,
            original_name=upload.filename or stored_filename,
            file_path=stored_filename,
            file_size=size_bytes,
            mime_type=mime_type,
            driver=driver,
            post_id=post_id,
            uploaded_by=uploaded_by,
        )
        try:
            self.session.add(stored)
            self.session.commit()
        except Exception:
            self.session.rollback()
            destination.unlink(missing_ok=True)
            raise
        self.session.refresh(stored)
        logger.info("Stored upload %s as %s (%d bytes)", stored.original_name, stored.filename, size_bytes)
        return stored

    def resolve_binary(self, stored: StoredFile) -> Optional[Path]:
        """Return the on-disk location of ``stored`` or ``None`` when missing.

        The registered ``file_path`` is tried first. Legacy rows stored an
        absolute path that may no longer exist, so the bare ``filename`` inside
        the uploads directory is the fallback.
        """
        base = self.resolve_base(stored.driver)
        registered = Path(stored.file_path)
        candidates = [registered if registered.is_absolute() else base / registered]
        fallback = base / Path(stored.filename).name
        if fallback not in candidates:
            candidates.append(fallback)
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None

    def is_published(self, stored: StoredFile) -> bool:
        """True when ``stored`` hangs off a published post. Unattached files are admin-only."""
        if stored.post_id is None:
            return False
        post = self.session.get(Post, stored.post_id)
        return post is not None and post.status == PostStatusEnum.published

    def get_file(self, file_id: int) -> StoredFile:
        stored = self.session.get(StoredFile, file_id)
        if not stored:
            raise HTTPException(status_code=404, detail="File not found")
        return stored

    def delete_binary(self, path: Optional[Path], file_id: Optional[int] = None) -> None:
        if path is None:
            logger.warning("Binary for file %s already missing from storage", file_id)
            return
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove binary %s for file %s", path, file_id, exc_info=True)

    def increment_download_count(self, file_id: int) -> None:
        # Counter is informational, a failed update never blocks the download
        try:
            self.session.exec(
                update(StoredFile)
                .where(StoredFile.id == file_id)
                .values(download_count=StoredFile.download_count + 1)
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning("Could not increment download counter for file %s", file_id, exc_info=True)

    def iter_binary(self, path: Path, file_id: Optional[int] = None) -> Iterator[bytes]:
        try:
            with path.open("rb") as handle:
                while True:
                    chunk = handle.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
        except OSError:
            # Headers are already sent, the connection is simply dropped
            logger.exception("Streaming failed for file %s (%s)", file_id, path)
            raise

    def build_download_response(self, stored: StoredFile, path: Path) -> StreamingResponse:
        response = StreamingResponse(
            self.iter_binary(path, stored.id),
            media_type=stored.mime_type or "application/octet-stream",
        )
        response.headers["Content-Length"] = str(stored.file_size)
        response.headers["Content-Disposition"] = content_disposition(stored.original_name or stored.filename)
        return response


def content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "download"
    if ascii_name == filename:
        return f'attachment; filename="{filename}"'
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


def get_storage_service(session: Session = Depends(get_session)) -> StorageService:
    return StorageService(session=session)
