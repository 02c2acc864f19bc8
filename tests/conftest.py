# tests/conftest.py
import asyncio
import os
import shutil
import tempfile
import uuid

import pytest
from httpx import AsyncClient, ASGITransport

# ---- 測試期環境變數（先於 app 載入）----
_STORAGE_DIR = tempfile.mkdtemp(prefix="filerunner-test-")
os.environ.setdefault("ENV", "test")
os.environ.setdefault("STORAGE_PATH", _STORAGE_DIR)
os.environ.setdefault("SECRET_KEY", "test-secret-key-which-is-long-enough-0123456789")

from filerunner.main import app  # noqa: E402
from filerunner.db.session import AsyncSessionLocal, engine  # noqa: E402
from filerunner.models.registry import Base  # noqa: E402

API = "/api"


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    """測試前自動 create_all，測試後 drop_all（用 asyncio.run 避免事件圈衝突）。"""
    async def init_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)

    async def drop_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    asyncio.run(init_models())
    yield
    asyncio.run(drop_models())
    shutil.rmtree(_STORAGE_DIR, ignore_errors=True)


@pytest.fixture(scope="session")
def anyio_backend():
    """讓 pytest 使用 asyncio event loop。"""
    return "asyncio"


@pytest.fixture
async def client():
    """使用 ASGITransport 直接掛載 app，不需啟動伺服器。"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
async def db():
    """直接操作 DB（檢查 refresh_tokens 狀態等）。"""
    session = AsyncSessionLocal()
    try:
        yield session
    finally:
        await session.close()


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:10]}@example.com"


async def register(client: AsyncClient, email: str = None, password: str = "Secret123!"):
    """註冊並回傳 (email, password, body)"""
    email = email or unique_email()
    r = await client.post(f"{API}/auth/register", json={"email": email, "password": password})
    assert r.status_code == 201, r.text
    return email, password, r.json()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def create_project(client: AsyncClient, access: str, name: str = "demo", is_public: bool = False) -> dict:
    r = await client.post(
        f"{API}/projects", json={"name": name, "is_public": is_public}, headers=bearer(access)
    )
    assert r.status_code == 201, r.text
    return r.json()


async def upload(client: AsyncClient, api_key: str, name: str = "hello.txt",
                 content: bytes = b"hello world", folder_path: str = None):
    data = {"folder_path": folder_path} if folder_path is not None else {}
    return await client.post(
        f"{API}/upload",
        files={"file": (name, content, "text/plain")},
        data=data,
        headers={"X-API-Key": api_key},
    )
