from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from .config import settings
from .db import get_session
from .models import RoleEnum, User


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")
oauth2_optional_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(subject: str, expires_minutes: Optional[int] = None, extra: Optional[Dict[str, Any]] = None) -> str:
    effective_minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    to_encode: Dict[str, Any] = {"sub": subject}
    if extra:
        to_encode.update(extra)
    if effective_minutes is not None and effective_minutes > 0:
        expire = datetime.now(timezone.utc) + timedelta(minutes=effective_minutes)
        to_encode["exp"] = int(expire.timestamp())
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_user_token(user: User) -> str:
    return create_access_token(str(user.id), extra={"role": user.role, "username": user.username})


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers={"WWW-Authenticate": "Bearer"}
    )


def authenticate_token(token: str, session) -> User:
    """Resolve a bearer token to an active user.

    The user row is read on every call so a role change or deactivation takes
    effect on the very next request.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except JWTError:
        raise _unauthorized("Invalid token")

    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise _unauthorized("Invalid token")

    user = session.get(User, user_id)
    if not user or not user.is_active:
        raise _unauthorized("User not found")
    return user


def get_current_user(token: str = Depends(oauth2_scheme), session=Depends(get_session)) -> User:
    return authenticate_token(token, session)


def get_current_user_optional(
    token: Optional[str] = Depends(oauth2_optional_scheme), session=Depends(get_session)
) -> Optional[User]:
    if not token:
        return None
    try:
        return authenticate_token(token, session)
    except HTTPException:
        # Public routes treat a bad token as anonymous
        return None


def is_admin(user: Optional[User]) -> bool:
    return user is not None and user.role == RoleEnum.admin.value


def require_roles(*roles: str):
    def _inner(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            detail = "Admin access required" if roles == ("admin",) else "Insufficient permissions"
            raise HTTPException(status_code=403, detail=detail)
        return user

    return _inner


require_admin = require_roles(RoleEnum.admin.value)
