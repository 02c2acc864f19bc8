# filerunner/core/deps.py
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger

from filerunner.core.config import settings
from filerunner.core.errors import Forbidden, MalformedTokenClaims, TokenError, Unauthorized
from filerunner.core.security import UserRole, verify_access, verify_legacy
from filerunner.services.sessions import ClientMeta


# 不自動回 403：缺 token 時由下方依賴自己決定拒絕或放行
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthUser:
    """已驗證的身分；由依賴回傳，明確傳進 handler 與授權判斷。"""

    id: UUID
    email: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def resolve_identity(token: str) -> AuthUser:
    """
    固定順序解碼：
      1️⃣ 新版 access token（token_type=access）
      2️⃣ 舊版單一 token（無 token_type），可由 ACCEPT_LEGACY_TOKENS 關閉
    兩者皆失敗 → TokenError
    """
    try:
        claims = verify_access(token)
    except MalformedTokenClaims:
        # 已確定是 access token，只是內容不合法：不再嘗試 legacy
        raise
    except TokenError:
        if not settings.ACCEPT_LEGACY_TOKENS:
            raise
        claims = verify_legacy(token)
    return AuthUser(id=claims.sub, email=claims.email, role=claims.role)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthUser:
    """必須登入：缺少或無效的 Bearer token → 401"""
    if credentials is None or not credentials.credentials:
        raise Unauthorized("missing bearer token")
    try:
        return resolve_identity(credentials.credentials)
    except MalformedTokenClaims:
        raise
    except TokenError as e:
        raise Unauthorized(f"bearer token rejected: {e.detail}") from e


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[AuthUser]:
    """
    不強制登入：
      - 有帶且有效 -> 回傳 AuthUser
      - 沒帶 / 無效 -> 回傳 None（交給 handler 改走 API key）
    """
    if credentials is None or not credentials.credentials:
        return None
    try:
        return resolve_identity(credentials.credentials)
    except TokenError as e:
        logger.debug("Optional bearer token ignored: {}", e.detail)
        return None


async def require_admin(current_user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if not current_user.is_admin:
        raise Forbidden("Admin access required")
    return current_user


async def get_header_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    return x_api_key or None


def get_client_meta(request: Request) -> ClientMeta:
    return ClientMeta(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
