# tests/test_sessions.py
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select, update

from conftest import API, bearer, register, unique_email
from filerunner.core.security import hash_token, verify_refresh
from filerunner.db.session import AsyncSessionLocal
from filerunner.models.base import utcnow
from filerunner.models.refresh_tokens import RefreshToken
from filerunner.services.sessions import RevokeReason, SessionStore, rotate
from filerunner.core.errors import RefreshTokenExpired, TokenReuseDetected

pytestmark = pytest.mark.anyio


async def _family_rows(db, family_id):
    db.expire_all()
    result = await db.execute(
        select(RefreshToken).where(RefreshToken.family_id == family_id).order_by(RefreshToken.created_at)
    )
    return result.scalars().all()


async def _row(db, token: str) -> RefreshToken:
    db.expire_all()
    result = await db.execute(select(RefreshToken).where(RefreshToken.token_hash == hash_token(token)))
    return result.scalar_one()


async def _login(client: AsyncClient, email: str, password: str) -> dict:
    r = await client.post(f"{API}/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()


async def _refresh(client: AsyncClient, refresh_token: str):
    return await client.post(f"{API}/auth/refresh", json={"refresh_token": refresh_token})


async def test_login_stores_only_the_hash(client: AsyncClient, db):
    _, _, body = await register(client)
    row = await _row(db, body["refresh_token"])
    assert row.token_hash == hash_token(body["refresh_token"])
    assert row.token_hash != body["refresh_token"]
    assert row.revoked_at is None
    assert row.user_agent is not None


async def test_rotation_revokes_one_and_adds_one_in_same_family(client: AsyncClient, db):
    _, _, body = await register(client)
    family = verify_refresh(body["refresh_token"]).family_id
    assert len(await _family_rows(db, family)) == 1

    r = await _refresh(client, body["refresh_token"])
    assert r.status_code == 200, r.text
    pair = r.json()
    assert pair["token_type"] == "Bearer"
    assert pair["refresh_token"] != body["refresh_token"]
    assert verify_refresh(pair["refresh_token"]).family_id == family

    rows = await _family_rows(db, family)
    assert len(rows) == 2
    old, new = await _row(db, body["refresh_token"]), await _row(db, pair["refresh_token"])
    assert old.revoked_reason == RevokeReason.ROTATION.value
    assert old.revoked_at is not None
    assert new.revoked_at is None

    # 新 access token 可以正常使用
    me = await client.get(f"{API}/auth/me", headers=bearer(pair["access_token"]))
    assert me.status_code == 200, me.text


async def test_reused_refresh_token_revokes_whole_family(client: AsyncClient, db):
    _, _, body = await register(client)
    first = body["refresh_token"]

    r = await _refresh(client, first)
    assert r.status_code == 200, r.text
    second = r.json()["refresh_token"]

    # 重放已輪替掉的 token
    replay = await _refresh(client, first)
    assert replay.status_code == 401
    assert "error" in replay.json()

    sibling = await _row(db, second)
    assert sibling.revoked_reason == RevokeReason.SECURITY_REUSE_DETECTED.value

    # 原本合法的下一代 token 也不能再用
    r = await _refresh(client, second)
    assert r.status_code == 401


async def test_reuse_does_not_touch_other_families(client: AsyncClient, db):
    email, password, body = await register(client)
    other = await _login(client, email, password)

    r = await _refresh(client, body["refresh_token"])
    assert r.status_code == 200
    assert (await _refresh(client, body["refresh_token"])).status_code == 401

    row = await _row(db, other["refresh_token"])
    assert row.revoked_at is None
    assert (await _refresh(client, other["refresh_token"])).status_code == 200


async def test_unknown_refresh_token_is_rejected(client: AsyncClient):
    from filerunner.core.security import issue_refresh, new_token_id
    _, _, body = await register(client)
    sub = verify_refresh(body["refresh_token"]).sub
    forged = issue_refresh(sub, new_token_id(), new_token_id())
    r = await _refresh(client, forged)
    assert r.status_code == 401


async def test_access_token_cannot_refresh(client: AsyncClient):
    _, _, body = await register(client)
    r = await _refresh(client, body["access_token"])
    assert r.status_code == 401


async def test_second_rotation_of_same_token_is_reuse(db, client: AsyncClient):
    _, _, body = await register(client)
    token = body["refresh_token"]

    await rotate(db, token)
    with pytest.raises(TokenReuseDetected):
        await rotate(db, token)


async def test_conditional_revoke_only_succeeds_once(client: AsyncClient, db):
    _, _, body = await register(client)
    row = await _row(db, body["refresh_token"])
    store = SessionStore(db)
    assert await store.revoke_one(row.id, RevokeReason.LOGOUT) is True
    assert await store.revoke_one(row.id, RevokeReason.LOGOUT) is False
    await db.commit()

    row = await _row(db, body["refresh_token"])
    assert row.revoked_reason == RevokeReason.LOGOUT.value


async def test_expired_session_row_is_not_rotated(client: AsyncClient, db):
    # JWT 還沒過期，但 DB 紀錄已過期
    _, _, body = await register(client)
    token = body["refresh_token"]
    family = verify_refresh(token).family_id
    await db.execute(
        update(RefreshToken)
        .where(RefreshToken.token_hash == hash_token(token))
        .values(expires_at=utcnow() - timedelta(minutes=1))
    )
    await db.commit()

    with pytest.raises(RefreshTokenExpired):
        await rotate(db, token)

    rows = await _family_rows(db, family)
    assert len(rows) == 1
    assert rows[0].revoked_at is None

    r = await _refresh(client, token)
    assert r.status_code == 401
    assert r.json() == {"error": "Refresh token expired"}


async def test_stored_expiry_matches_refresh_ttl(client: AsyncClient, db, monkeypatch):
    from filerunner.core.config import settings
    monkeypatch.setattr(settings, "REFRESH_TOKEN_EXPIRE_DAYS", 2)
    _, _, body = await register(client)
    row = await _row(db, body["refresh_token"])
    claims = verify_refresh(body["refresh_token"])
    assert claims.exp - claims.iat == settings.refresh_ttl_seconds
    stored = (row.expires_at - row.created_at).total_seconds()
    assert abs(stored - settings.refresh_ttl_seconds) < 60


async def test_concurrent_rotation_loser_revokes_family(client: AsyncClient, db, monkeypatch):
    """
    兩個請求同時輪替同一個 token：
    在 db 這邊查到紀錄之後、條件式撤銷之前，另一個 session 先完成輪替。
    """
    _, _, body = await register(client)
    token = body["refresh_token"]
    family = verify_refresh(token).family_id

    real_revoke_one = SessionStore.revoke_one
    winner = {}

    async def racing_revoke_one(self, token_id, reason):
        if self.db is db and "tokens" not in winner:
            other = AsyncSessionLocal()
            try:
                winner["tokens"] = await rotate(other, token)
            finally:
                await other.close()
        return await real_revoke_one(self, token_id, reason)

    monkeypatch.setattr(SessionStore, "revoke_one", racing_revoke_one)

    with pytest.raises(TokenReuseDetected):
        await rotate(db, token)

    # 先完成的那一方拿到了新 token，但整個 family 都已撤銷
    assert "tokens" in winner
    rows = await _family_rows(db, family)
    assert len(rows) == 2
    assert all(r.revoked_at is not None for r in rows)
    new_row = await _row(db, winner["tokens"].refresh_token)
    assert new_row.revoked_reason == RevokeReason.SECURITY_REUSE_DETECTED.value

    monkeypatch.undo()
    r = await _refresh(client, winner["tokens"].refresh_token)
    assert r.status_code == 401


async def test_logout_revokes_only_presented_token(client: AsyncClient, db):
    email, password, body = await register(client)
    other = await _login(client, email, password)

    r = await client.post(
        f"{API}/auth/logout",
        json={"refresh_token": body["refresh_token"]},
        headers=bearer(body["access_token"]),
    )
    assert r.status_code == 200, r.text
    assert r.json()["message"] == "Logged out successfully"

    assert (await _row(db, body["refresh_token"])).revoked_reason == RevokeReason.LOGOUT.value
    assert (await _row(db, other["refresh_token"])).revoked_at is None


async def test_logout_cannot_revoke_someone_elses_token(client: AsyncClient, db):
    _, _, alice = await register(client)
    _, _, bob = await register(client)

    r = await client.post(
        f"{API}/auth/logout",
        json={"refresh_token": bob["refresh_token"]},
        headers=bearer(alice["access_token"]),
    )
    assert r.status_code == 200
    assert (await _row(db, bob["refresh_token"])).revoked_at is None


async def test_logout_without_body_is_ok(client: AsyncClient):
    _, _, body = await register(client)
    r = await client.post(f"{API}/auth/logout", headers=bearer(body["access_token"]))
    assert r.status_code == 200, r.text


async def test_logout_all_revokes_every_session(client: AsyncClient):
    email, password, body = await register(client)
    s2 = await _login(client, email, password)
    s3 = await _login(client, email, password)

    r = await client.post(f"{API}/auth/logout-all", headers=bearer(body["access_token"]))
    assert r.status_code == 200, r.text
    assert r.json()["revoked_count"] == 3

    for tok in (body["refresh_token"], s2["refresh_token"], s3["refresh_token"]):
        assert (await _refresh(client, tok)).status_code == 401

    # 再呼叫一次不會重複撤銷
    r = await client.post(f"{API}/auth/logout-all", headers=bearer(body["access_token"]))
    assert r.json()["revoked_count"] == 0


async def test_change_password_revokes_all_sessions(client: AsyncClient, db):
    email, password, body = await register(client)
    s2 = await _login(client, email, password)

    r = await client.put(
        f"{API}/auth/change-password",
        json={"current_password": password, "new_password": "NewSecret456!"},
        headers=bearer(body["access_token"]),
    )
    assert r.status_code == 200, r.text
    assert r.json()["revoked_count"] == 2

    for tok in (body["refresh_token"], s2["refresh_token"]):
        row = await _row(db, tok)
        assert row.revoked_reason == RevokeReason.PASSWORD_CHANGE.value
        assert (await _refresh(client, tok)).status_code == 401

    bad = await client.post(f"{API}/auth/login", json={"email": email, "password": password})
    assert bad.status_code == 401
    await _login(client, email, "NewSecret456!")


async def test_change_password_wrong_current(client: AsyncClient):
    _, _, body = await register(client)
    r = await client.put(
        f"{API}/auth/change-password",
        json={"current_password": "nope-nope", "new_password": "NewSecret456!"},
        headers=bearer(body["access_token"]),
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Current password is incorrect"


async def test_register_duplicate_email_conflicts(client: AsyncClient):
    email = unique_email()
    await register(client, email=email)
    r = await client.post(f"{API}/auth/register", json={"email": email, "password": "Secret123!"})
    assert r.status_code == 409
