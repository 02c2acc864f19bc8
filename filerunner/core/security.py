# filerunner/core/security.py
import hashlib
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from jose import jwt, JWTError
from passlib.context import CryptContext
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from filerunner.core.config import settings
from filerunner.core.errors import MalformedTokenClaims, TokenError


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    LEGACY = "legacy"


# === Claims ===
class AccessTokenClaims(BaseModel):
    sub: UUID
    email: str
    role: UserRole
    token_type: TokenKind
    iat: int
    exp: int


class RefreshTokenClaims(BaseModel):
    sub: UUID
    jti: UUID
    family_id: UUID
    token_type: TokenKind
    iat: int
    exp: int


class LegacyClaims(BaseModel):
    sub: UUID
    email: str
    role: UserRole
    token_type: Optional[TokenKind] = None
    iat: int
    exp: int


# === Password Hashing ===
# bcrypt 只看前 72 個 byte；以 UTF-8 編碼後再截，多位元組字元不會被算錯長度
BCRYPT_MAX_BYTES = 72

_hasher = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__ident="2b")

def _bcrypt_input(plain: str) -> bytes:
    return plain.encode("utf-8")[:BCRYPT_MAX_BYTES]

def hash_password(plain: str) -> str:
    return _hasher.hash(_bcrypt_input(plain))

def verify_password(plain: str, password_hash: str) -> bool:
    return _hasher.verify(_bcrypt_input(plain), password_hash)


# === Opaque identifiers ===
def new_token_id() -> UUID:
    """jti / family_id 共用：uuid4，碰撞機率可忽略"""
    return uuid4()

def generate_api_key() -> str:
    return str(uuid4())

def hash_token(token: str) -> str:
    """refresh token 只存 SHA-256（hex），DB 永不保存原始字串"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# === JWT Helpers ===
def _now_utc() -> datetime:
    return datetime.now(timezone.utc)

def _secret(secret: Optional[str]) -> str:
    return secret or settings.SECRET_KEY

def _encode(claims: Dict[str, Any], secret: Optional[str]) -> str:
    try:
        return jwt.encode(claims, _secret(secret), algorithm=settings.JWT_ALGORITHM)
    except JWTError as e:
        raise TokenError(f"Failed to sign token: {e}") from e

def _decode(token: str, secret: Optional[str]) -> Dict[str, Any]:
    try:
        return jwt.decode(token, _secret(secret), algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        raise TokenError(str(e)) from e

def _timestamps(ttl: timedelta) -> Dict[str, int]:
    now = _now_utc()
    return {"iat": int(now.timestamp()), "exp": int((now + ttl).timestamp())}


# === Issue Tokens ===
def issue_access(
    user_id: UUID,
    email: str,
    role: UserRole,
    ttl: Optional[timedelta] = None,
    secret: Optional[str] = None,
) -> str:
    """簽發 Access Token（token_type=access，不落 DB）"""
    claims = {
        "sub": str(user_id),
        "email": email,
        "role": UserRole(role).value,
        "token_type": TokenKind.ACCESS.value,
        **_timestamps(ttl or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)),
    }
    return _encode(claims, secret)

def issue_refresh(
    user_id: UUID,
    jti: UUID,
    family_id: UUID,
    ttl: Optional[timedelta] = None,
    secret: Optional[str] = None,
) -> str:
    """簽發 Refresh Token（token_type=refresh），jti 對應 refresh_tokens.id"""
    claims = {
        "sub": str(user_id),
        "jti": str(jti),
        "family_id": str(family_id),
        "token_type": TokenKind.REFRESH.value,
        **_timestamps(ttl or timedelta(seconds=settings.refresh_ttl_seconds)),
    }
    return _encode(claims, secret)


# === Verify / Decode ===
def _expect_kind(payload: Dict[str, Any], kind: TokenKind) -> None:
    # token_type 為必填欄位：缺少或不符一律拒絕
    if payload.get("token_type") != kind.value:
        raise TokenError(f"Invalid token type (need {kind.value} token)")

def verify_access(token: str, secret: Optional[str] = None) -> AccessTokenClaims:
    payload = _decode(token, secret)
    _expect_kind(payload, TokenKind.ACCESS)
    try:
        return AccessTokenClaims.model_validate(payload)
    except PydanticValidationError as e:
        raise MalformedTokenClaims(f"Malformed access token claims: {e.error_count()} error(s)") from e

def verify_refresh(token: str, secret: Optional[str] = None) -> RefreshTokenClaims:
    payload = _decode(token, secret)
    _expect_kind(payload, TokenKind.REFRESH)
    try:
        return RefreshTokenClaims.model_validate(payload)
    except PydanticValidationError as e:
        raise MalformedTokenClaims(f"Malformed refresh token claims: {e.error_count()} error(s)") from e


# ---------------------------------------------------------------------------
# Legacy：雙 token 上線前發出的單一 token（沒有 token_type 或為 "legacy"）。
# 所有客戶端換版後，整段連同 ACCEPT_LEGACY_TOKENS 一起刪除即可。
# ---------------------------------------------------------------------------
def verify_legacy(token: str, secret: Optional[str] = None) -> LegacyClaims:
    payload = _decode(token, secret)
    kind = payload.get("token_type")
    if kind is not None and kind != TokenKind.LEGACY.value:
        raise TokenError("Not a legacy token")
    try:
        return LegacyClaims.model_validate(payload)
    except PydanticValidationError as e:
        raise MalformedTokenClaims(f"Malformed legacy token claims: {e.error_count()} error(s)") from e
