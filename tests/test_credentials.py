# tests/test_credentials.py
import time
import uuid
from datetime import timedelta

import pytest
from jose import jwt

from filerunner.core.config import settings
from filerunner.core.errors import MalformedTokenClaims, TokenError
from filerunner.core.security import (
    BCRYPT_MAX_BYTES,
    TokenKind,
    UserRole,
    hash_password,
    hash_token,
    issue_access,
    issue_refresh,
    verify_access,
    verify_legacy,
    verify_password,
    verify_refresh,
)


def _forge(claims: dict, secret: str = None) -> str:
    return jwt.encode(claims, secret or settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _legacy_claims(**overrides) -> dict:
    now = int(time.time())
    claims = {
        "sub": str(uuid.uuid4()),
        "email": "legacy@example.com",
        "role": "user",
        "iat": now,
        "exp": now + 600,
    }
    claims.update(overrides)
    return claims


def test_access_round_trip_carries_identity():
    uid = uuid.uuid4()
    token = issue_access(uid, "a@example.com", UserRole.ADMIN)
    claims = verify_access(token)
    assert claims.sub == uid
    assert claims.email == "a@example.com"
    assert claims.role is UserRole.ADMIN
    assert claims.token_type is TokenKind.ACCESS
    assert claims.exp > claims.iat


def test_refresh_token_is_not_an_access_token():
    token = issue_refresh(uuid.uuid4(), uuid.uuid4(), uuid.uuid4())
    with pytest.raises(TokenError):
        verify_access(token)


def test_access_token_is_not_a_refresh_token():
    token = issue_access(uuid.uuid4(), "a@example.com", UserRole.USER)
    with pytest.raises(TokenError):
        verify_refresh(token)


def test_refresh_claims_keep_jti_and_family():
    uid, jti, fam = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    claims = verify_refresh(issue_refresh(uid, jti, fam))
    assert (claims.sub, claims.jti, claims.family_id) == (uid, jti, fam)


def test_expired_access_is_rejected():
    token = issue_access(uuid.uuid4(), "a@example.com", UserRole.USER, ttl=timedelta(seconds=-5))
    with pytest.raises(TokenError):
        verify_access(token)


def test_wrong_secret_is_rejected():
    token = issue_access(uuid.uuid4(), "a@example.com", UserRole.USER, secret="x" * 40)
    with pytest.raises(TokenError):
        verify_access(token)


def test_garbage_is_rejected():
    with pytest.raises(TokenError):
        verify_access("not.a.jwt")


def test_unknown_role_is_rejected():
    token = _forge({**_legacy_claims(role="superuser"), "token_type": "access"})
    with pytest.raises(MalformedTokenClaims):
        verify_access(token)


def test_missing_token_type_is_not_access():
    with pytest.raises(TokenError):
        verify_access(_forge(_legacy_claims()))


def test_legacy_token_without_type_is_accepted_by_legacy_decoder():
    claims = verify_legacy(_forge(_legacy_claims(role="admin")))
    assert claims.role is UserRole.ADMIN
    assert claims.token_type is None


def test_legacy_decoder_rejects_typed_tokens():
    token = issue_refresh(uuid.uuid4(), uuid.uuid4(), uuid.uuid4())
    with pytest.raises(TokenError):
        verify_legacy(token)


def test_hash_token_is_stable_sha256_hex():
    h = hash_token("abc")
    assert h == hash_token("abc")
    assert len(h) == 64
    assert h != hash_token("abd")


def test_password_hash_verifies():
    hashed = hash_password("Secret123!")
    assert hashed != "Secret123!"
    assert verify_password("Secret123!", hashed)
    assert not verify_password("wrong", hashed)


def test_legacy_unknown_role_is_malformed():
    with pytest.raises(MalformedTokenClaims):
        verify_legacy(_forge(_legacy_claims(role="root")))


def test_refresh_missing_family_is_malformed():
    now = int(time.time())
    token = _forge({"sub": str(uuid.uuid4()), "jti": str(uuid.uuid4()), "token_type": "refresh", "iat": now, "exp": now + 60})
    with pytest.raises(MalformedTokenClaims):
        verify_refresh(token)


def test_expired_token_is_not_malformed():
    token = issue_access(uuid.uuid4(), "a@example.com", UserRole.USER, ttl=timedelta(seconds=-5))
    with pytest.raises(TokenError) as exc:
        verify_access(token)
    assert not isinstance(exc.value, MalformedTokenClaims)


def test_refresh_ttl_follows_settings(monkeypatch):
    monkeypatch.setattr(settings, "REFRESH_TOKEN_EXPIRE_DAYS", 2)
    claims = verify_refresh(issue_refresh(uuid.uuid4(), uuid.uuid4(), uuid.uuid4()))
    assert claims.exp - claims.iat == settings.refresh_ttl_seconds == 2 * 24 * 60 * 60


def test_password_beyond_bcrypt_limit_is_truncated_by_bytes():
    # 中文字 UTF-8 三個 byte：24 個字剛好 72 bytes，之後的內容不影響結果
    base = "密" * (BCRYPT_MAX_BYTES // 3)
    hashed = hash_password(base + "tail-one")
    assert verify_password(base + "tail-two", hashed)
    assert not verify_password("密" * 23, hashed)
