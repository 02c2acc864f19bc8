# filerunner/schemas/project.py
from datetime import datetime
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    is_public: Optional[bool] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    is_public: Optional[bool] = None


class ProjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    name: str
    api_key: str
    is_public: bool
    created_at: datetime


class ProjectWithStats(ProjectRead):
    file_count: int = 0
    total_size: int = 0
