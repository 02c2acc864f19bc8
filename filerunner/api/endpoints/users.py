# filerunner/api/endpoints/users.py
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from filerunner.db.session import get_db
from filerunner.models.users import User
from filerunner.schemas.user import UserRead
from filerunner.core.deps import AuthUser, require_admin  # 僅 admin 可用

router = APIRouter(tags=["users"])

# === 取得使用者列表（admin） ===
@router.get("/", response_model=List[UserRead])
async def list_users(
    db: AsyncSession = Depends(get_db),
    _: AuthUser = Depends(require_admin),  # 用 "_" 表示僅驗證不使用變數
):
    result = await db.execute(select(User).order_by(User.created_at))
    return result.scalars().all()
