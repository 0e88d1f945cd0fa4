import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, Field
from sqlmodel import or_, select

from ..db import get_session
from ..models import RoleEnum, User
from ..security import (
    verify_password,
    get_password_hash,
    create_user_token,
    get_current_user,
    require_admin,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class UserOut(BaseModel):
    id: int
    username: str
    email: str
    role: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginResponse(TokenResponse):
    user: UserOut


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=6)


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=6, max_length=128)
    username: Optional[str] = Field(default=None, min_length=3, max_length=100)


class AdminRegisterRequest(RegisterRequest):
    username: str = Field(min_length=3, max_length=100)
    role: Literal["admin", "user"] = "user"


class UserCreatedResponse(BaseModel):
    message: str
    user: UserOut


def _find_by_login(session, login: str) -> Optional[User]:
    normalized = login.strip().lower()
    return session.exec(select(User).where(or_(User.email == normalized, User.username == login.strip()))).first()


def _create_user(session, email: str, password: str, username: Optional[str], role: str) -> User:
    normalized_email = email.strip().lower()
    final_username = (username or normalized_email.split("@")[0]).strip()
    existing = session.exec(
        select(User).where(or_(User.email == normalized_email, User.username == final_username))
    ).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email or username already exists")

    user = User(
        username=final_username,
        email=normalized_email,
        hashed_password=get_password_hash(password),
        role=role,
        is_active=True,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Created %s account %s", role, user.username)
    return user


@router.post("/token", response_model=TokenResponse)
def login_for_token(form_data: OAuth2PasswordRequestForm = Depends(), session=Depends(get_session)):
    user = _find_by_login(session, form_data.username)
    if not user or not user.is_active or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return TokenResponse(access_token=create_user_token(user))


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, session=Depends(get_session)):
    user = _find_by_login(session, payload.email)
    if not user or not user.is_active or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return LoginResponse(access_token=create_user_token(user), user=user)


@router.post("/register", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, session=Depends(get_session)):
    user = _create_user(session, payload.email, payload.password, payload.username, RoleEnum.user.value)
    return LoginResponse(access_token=create_user_token(user), user=user)


@router.post("/admin-register", response_model=UserCreatedResponse, status_code=status.HTTP_201_CREATED)
def admin_register(
    payload: AdminRegisterRequest,
    session=Depends(get_session),
    _admin: User = Depends(require_admin),
):
    user = _create_user(session, payload.email, payload.password, payload.username, payload.role)
    return UserCreatedResponse(message="User created successfully", user=user)


@router.get("/profile", response_model=UserOut)
def profile(user: User = Depends(get_current_user)):
    return user
