# filerunner/services/bootstrap.py
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from filerunner.core.config import settings
from filerunner.core.security import UserRole, hash_password
from filerunner.db.session import AsyncSessionLocal
from filerunner.models.users import User


async def ensure_admin_user(db: AsyncSession, email: str, password: str) -> Optional[User]:
    """
    首次啟動建立 admin：
      - 已有任何 admin → 不動作，回傳 None
      - email 已存在的一般使用者 → 升級為 admin（密碼不變）
      - 否則新建 admin，並要求第一次登入後改密碼
    """
    result = await db.execute(select(User.id).where(User.role == UserRole.ADMIN).limit(1))
    if result.scalar_one_or_none() is not None:
        logger.info("Admin user already exists")
        return None

    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is not None:
        user.role = UserRole.ADMIN
        logger.info("Existing user elevated to admin: {}", email)
    else:
        user = User(
            email=email,
            password_hash=hash_password(password),
            role=UserRole.ADMIN,
            must_change_password=True,
        )
        db.add(user)
        logger.info("Admin user created: {}", email)

    await db.commit()
    await db.refresh(user)
    return user


async def run_bootstrap() -> None:
    """建立 storage 目錄 + 一次性 DB session 建立 admin。"""
    Path(settings.STORAGE_PATH).mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory ready: {}", settings.STORAGE_PATH)

    session = AsyncSessionLocal()
    try:
        await ensure_admin_user(session, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


@asynccontextmanager
async def lifespan_bootstrap(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan：啟動時做初始化。
    需接受 app 參數（FastAPI 會注入），否則會出現 TypeError。
    """
    await run_bootstrap()
    logger.info("Bootstrap finished")
    yield
    logger.info("Application shutdown")
