from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from .config import settings
from .db import engine
from .models import Post, PostStatusEnum, RoleEnum, User
from .security import get_password_hash, verify_password


logger = logging.getLogger(__name__)

DEFAULT_ADMIN_USERNAME = "admin"

DEMO_READER_EMAIL = "reader@blogcms.dev"
DEMO_READER_USERNAME = "reader"
DEMO_READER_PASSWORD = "reader123"

DEMO_POST_SLUG = "welcome-to-the-blog"


def ensure_default_admin(session: Optional[Session] = None) -> User:
    """Create the configured admin account, or repair it if it drifted."""
    owns_session = session is None
    session = session or Session(engine)
    email = settings.default_admin_email.strip().lower()
    password = settings.default_admin_password
    try:
        existing = session.exec(select(User).where(User.email == email)).first()
        if existing:
            updated = False
            if not verify_password(password, existing.hashed_password):
                existing.hashed_password = get_password_hash(password)
                updated = True
            if existing.role != RoleEnum.admin.value:
                existing.role = RoleEnum.admin.value
                updated = True
            if not existing.is_active:
                existing.is_active = True
                updated = True
            if updated:
                existing.updated_at = datetime.utcnow()
                session.add(existing)
                session.commit()
                session.refresh(existing)
                logger.info("Repaired default admin account %s", email)
            return existing
        user = User(
            username=DEFAULT_ADMIN_USERNAME,
            email=email,
            hashed_password=get_password_hash(password),
            role=RoleEnum.admin.value,
            is_active=True,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        logger.info("Created default admin account %s", email)
        return user
    finally:
        if owns_session:
            session.close()


def _ensure_demo_reader(session: Session) -> User:
    existing = session.exec(select(User).where(User.email == DEMO_READER_EMAIL)).first()
    if existing:
        return existing
    user = User(
        username=DEMO_READER_USERNAME,
        email=DEMO_READER_EMAIL,
        hashed_password=get_password_hash(DEMO_READER_PASSWORD),
        role=RoleEnum.user.value,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def _ensure_demo_post(session: Session, author: User) -> Post:
    existing = session.exec(select(Post).where(Post.slug == DEMO_POST_SLUG)).first()
    if existing:
        return existing
    post = Post(
        title="Welcome to the blog",
        slug=DEMO_POST_SLUG,
        excerpt="Attached files can be downloaded once an admin approves your request.",
        status=PostStatusEnum.published,
        author_id=author.id,
        published_at=datetime.utcnow(),
    )
    session.add(post)
    session.commit()
    session.refresh(post)
    return post


def ensure_demo_data() -> None:
    """Admin, a reader account and one published post for local environments."""
    with Session(engine) as session:
        admin = ensure_default_admin(session)
        _ensure_demo_reader(session)
        _ensure_demo_post(session, admin)
