# filerunner/services/sessions.py
"""
Refresh token 的 session 管理：簽發、輪替（rotation）、撤銷。

- DB 只存 refresh token 的 SHA-256，不存原字串；access token 完全不落地。
- 同一次登入輪替出來的 token 共用 family_id；
  已撤銷的 token 再次出現 → 視為被盜用，整個 family 撤銷（reuse detection）。
- 撤銷只會從 NULL → 有值（單調），所有撤銷都是條件式 UPDATE，重複呼叫無副作用。
"""
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional, Union
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from filerunner.core.config import settings
from filerunner.core.errors import (
    RefreshTokenExpired,
    TokenError,
    TokenNotFound,
    TokenReuseDetected,
)
from filerunner.core.security import (
    hash_token,
    issue_access,
    issue_refresh,
    new_token_id,
    verify_refresh,
)
from filerunner.models.base import utcnow
from filerunner.models.refresh_tokens import RefreshToken
from filerunner.models.users import User


class RevokeReason(str, Enum):
    ROTATION = "rotation"
    LOGOUT = "logout"
    LOGOUT_ALL = "logout_all"
    PASSWORD_CHANGE = "password_change"
    SECURITY_REUSE_DETECTED = "security_reuse_detected"


class _AllSessions:
    def __repr__(self) -> str:
        return "ALL"


# revoke(..., target=ALL) → 撤銷使用者全部 session
ALL = _AllSessions()


@dataclass(frozen=True)
class ClientMeta:
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class SessionTokens:
    access_token: str
    refresh_token: str
    expires_in: int


# === Session Store ===
class SessionStore:
    """refresh_tokens 表的存取層；不 commit，由呼叫端決定交易邊界。"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert(self, row: RefreshToken) -> RefreshToken:
        self.db.add(row)
        await self.db.flush()
        return row

    async def find_by_hash(self, token_hash: str) -> Optional[RefreshToken]:
        result = await self.db.execute(select(RefreshToken).where(RefreshToken.token_hash == token_hash))
        return result.scalar_one_or_none()

    async def _revoke_where(self, reason: RevokeReason, *criteria) -> int:
        stmt = (
            update(RefreshToken)
            .where(*criteria, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=utcnow(), revoked_reason=reason.value)
        )
        result = await self.db.execute(stmt)
        return result.rowcount or 0

    async def revoke_one(self, token_id: UUID, reason: RevokeReason) -> bool:
        """只有在尚未撤銷時才會成功；回傳 False 代表已被別人撤銷（含併發輪替）。"""
        return await self._revoke_where(reason, RefreshToken.id == token_id) == 1

    async def revoke_family(self, family_id: UUID, reason: RevokeReason) -> int:
        return await self._revoke_where(reason, RefreshToken.family_id == family_id)

    async def revoke_all_for_user(self, user_id: UUID, reason: RevokeReason) -> int:
        return await self._revoke_where(reason, RefreshToken.user_id == user_id)


# === Token Issuer ===
async def _mint(
    store: SessionStore,
    user: User,
    family_id: UUID,
    client_meta: Optional[ClientMeta],
) -> SessionTokens:
    jti = new_token_id()
    refresh_ttl = timedelta(seconds=settings.refresh_ttl_seconds)

    access_token = issue_access(user.id, user.email, user.role)
    refresh_token = issue_refresh(user.id, jti, family_id, ttl=refresh_ttl)

    meta = client_meta or ClientMeta()
    await store.insert(RefreshToken(
        id=jti,
        user_id=user.id,
        token_hash=hash_token(refresh_token),
        family_id=family_id,
        expires_at=utcnow() + refresh_ttl,
        user_agent=meta.user_agent[:512] if meta.user_agent else None,
        ip_address=meta.ip_address,
    ))
    return SessionTokens(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=settings.access_ttl_seconds,
    )


async def issue_session(
    db: AsyncSession,
    user: User,
    client_meta: Optional[ClientMeta] = None,
) -> SessionTokens:
    """登入 / 註冊：開一個新的 family，發出 access + refresh。"""
    tokens = await _mint(SessionStore(db), user, new_token_id(), client_meta)
    await db.commit()
    return tokens


async def _handle_reuse(db: AsyncSession, store: SessionStore, row: RefreshToken) -> TokenReuseDetected:
    # 先寫入整個 family 的撤銷並 commit，再讓呼叫端丟錯
    revoked = await store.revoke_family(row.family_id, RevokeReason.SECURITY_REUSE_DETECTED)
    await db.commit()
    logger.bind(user_id=str(row.user_id), family_id=str(row.family_id), revoked=revoked).warning(
        "Refresh token reuse detected; token family revoked"
    )
    return TokenReuseDetected(f"family {row.family_id} revoked ({revoked} live tokens)")


async def rotate(
    db: AsyncSession,
    presented_refresh_token: str,
    client_meta: Optional[ClientMeta] = None,
) -> SessionTokens:
    """
    Refresh 輪替：
      1️⃣ 驗證簽章 / exp / token_type
      2️⃣ 以 hash 查 DB，查無 → TokenNotFound
      3️⃣ 已撤銷 → reuse detection（整個 family 撤銷）→ TokenReuseDetected
      4️⃣ DB 紀錄已過期 → RefreshTokenExpired
      5️⃣ 條件式撤銷舊 token，同 family 發新 token
    """
    claims = verify_refresh(presented_refresh_token)
    store = SessionStore(db)

    row = await store.find_by_hash(hash_token(presented_refresh_token))
    if row is None:
        raise TokenNotFound("refresh token not on record")
    if row.user_id != claims.sub or row.family_id != claims.family_id:
        raise TokenError("refresh token claims do not match session record")

    if row.is_revoked:
        raise await _handle_reuse(db, store, row)

    if row.expires_at <= utcnow():
        raise RefreshTokenExpired(f"session {row.id} expired at {row.expires_at.isoformat()}")

    user = await db.get(User, row.user_id)
    if user is None:
        raise TokenNotFound("session owner no longer exists")

    # 🔒 「未撤銷才撤銷」：兩個併發請求只有一個能成功輪替，另一個走 reuse 分支
    if not await store.revoke_one(row.id, RevokeReason.ROTATION):
        raise await _handle_reuse(db, store, row)

    tokens = await _mint(store, user, row.family_id, client_meta)
    await db.commit()
    return tokens


async def revoke(
    db: AsyncSession,
    user_id: UUID,
    target: Union[str, _AllSessions],
    reason: RevokeReason,
) -> int:
    """
    撤銷單一 session（target = token hash）或使用者全部 session（target = ALL）。
    單一撤銷只作用在屬於該使用者的紀錄。回傳實際撤銷數量。
    """
    store = SessionStore(db)
    if target is ALL:
        count = await store.revoke_all_for_user(user_id, reason)
    else:
        row = await store.find_by_hash(target)
        if row is None or row.user_id != user_id:
            count = 0
        else:
            count = int(await store.revoke_one(row.id, reason))
    await db.commit()
    if count:
        logger.bind(user_id=str(user_id), reason=reason.value, revoked=count).info("Refresh tokens revoked")
    return count
