# filerunner/schemas/user.py
from datetime import datetime
from uuid import UUID
from pydantic import BaseModel

from filerunner.core.security import UserRole


class UserRead(BaseModel):
    id: UUID
    email: str
    role: UserRole
    created_at: datetime
    must_change_password: bool

    class Config:
        # Pydantic v2：允許從 ORM 物件轉模型
        from_attributes = True
