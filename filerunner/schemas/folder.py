# filerunner/schemas/folder.py
from datetime import datetime
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field


class FolderCreate(BaseModel):
    project_id: UUID
    path: str = Field(min_length=1, max_length=500)
    # 未指定時沿用專案的 is_public
    is_public: Optional[bool] = None


class FolderVisibilityUpdate(BaseModel):
    is_public: bool


class FolderPurgeRequest(BaseModel):
    folder_path: str = Field(min_length=1, max_length=500)


class FolderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    path: str
    is_public: bool
    created_at: datetime


class FolderWithStats(FolderRead):
    file_count: int = 0
    total_size: int = 0
