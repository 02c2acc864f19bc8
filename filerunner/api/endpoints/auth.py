# filerunner/api/endpoints/auth.py
from typing import Optional

from fastapi import APIRouter, Depends, status
from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from filerunner.core.config import settings
from filerunner.core.deps import AuthUser, get_client_meta, get_current_user
from filerunner.core.errors import BadRequest, Conflict, Forbidden, InvalidCredentials, NotFound
from filerunner.core.security import UserRole, hash_password, hash_token, verify_password
from filerunner.db.session import get_db
from filerunner.models.users import User
from filerunner.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    RevocationResponse,
    TokenAuthResponse,
    TokenPair,
)
from filerunner.schemas.user import UserRead
from filerunner.services.sessions import (
    ALL,
    ClientMeta,
    RevokeReason,
    SessionTokens,
    issue_session,
    revoke,
    rotate,
)

router = APIRouter(tags=["auth"])


def _auth_response(tokens: SessionTokens, user: User) -> TokenAuthResponse:
    return TokenAuthResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
        user=UserRead.model_validate(user),
    )


# === 註冊（開放） ===
@router.post("/register", response_model=TokenAuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    client_meta: ClientMeta = Depends(get_client_meta),
    db: AsyncSession = Depends(get_db),
):
    if not settings.ALLOW_SIGNUP:
        raise Forbidden("Signup is disabled")

    # 檢查 email 是否已存在
    result = await db.execute(select(User.id).where(User.email == payload.email))
    if result.scalar_one_or_none() is not None:
        raise Conflict("Email already exists")

    user = User(
        email=payload.email,
        password_hash=hash_password(payload.password),
        role=UserRole.USER,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        # 併發註冊同一個 email
        await db.rollback()
        raise Conflict("Email already exists")

    tokens = await issue_session(db, user, client_meta)
    logger.bind(user_id=str(user.id)).info("User registered")
    return _auth_response(tokens, user)


# === 登入 ===
@router.post("/login", response_model=TokenAuthResponse)
async def login(
    payload: LoginRequest,
    client_meta: ClientMeta = Depends(get_client_meta),
    db: AsyncSession = Depends(get_db),
):
    """使用者登入，開新的 token family，簽發 Access / Refresh。"""
    result = await db.execute(select(User).where(User.email == payload.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(payload.password, user.password_hash):
        # 統一訊息避免帳號探測
        raise InvalidCredentials()

    tokens = await issue_session(db, user, client_meta)
    return _auth_response(tokens, user)


# === Refresh Token 輪替 ===
@router.post("/refresh", response_model=TokenPair)
async def refresh_token(
    payload: RefreshRequest,
    client_meta: ClientMeta = Depends(get_client_meta),
    db: AsyncSession = Depends(get_db),
):
    tokens = await rotate(db, payload.refresh_token, client_meta)
    return TokenPair(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
    )


# === 單次登出 ===
@router.post("/logout", response_model=MessageResponse)
async def logout(
    payload: Optional[LogoutRequest] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """撤銷帶上來的 refresh token（只限自己的）；access token 等自然過期。"""
    if payload and payload.refresh_token:
        await revoke(db, current_user.id, hash_token(payload.refresh_token), RevokeReason.LOGOUT)
    return MessageResponse(message="Logged out successfully")


# === 登出全部 ===
@router.post("/logout-all", response_model=RevocationResponse)
async def logout_all(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await revoke(db, current_user.id, ALL, RevokeReason.LOGOUT_ALL)
    return RevocationResponse(message="Logged out from all devices", revoked_count=count)


# === 目前登入者 ===
@router.get("/me", response_model=UserRead)
async def read_me(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await db.get(User, current_user.id)
    if user is None:
        raise NotFound("User not found")
    return user


# === 修改密碼（同時撤銷所有 session） ===
@router.put("/change-password", response_model=RevocationResponse)
async def change_password(
    payload: ChangePasswordRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await db.get(User, current_user.id)
    if user is None:
        raise NotFound("User not found")
    if not verify_password(payload.current_password, user.password_hash):
        raise BadRequest("Current password is incorrect")

    user.password_hash = hash_password(payload.new_password)
    user.must_change_password = False
    # revoke() 會一起 commit 密碼變更
    count = await revoke(db, user.id, ALL, RevokeReason.PASSWORD_CHANGE)
    return RevocationResponse(message="Password changed successfully", revoked_count=count)
