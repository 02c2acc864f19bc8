# filerunner/schemas/file.py
from datetime import datetime
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel


class FileMetadata(BaseModel):
    id: UUID
    project_id: UUID
    folder_id: Optional[UUID] = None
    folder_path: Optional[str] = None
    original_name: str
    size: int
    mime_type: str
    upload_date: datetime
    download_url: str


class UploadResponse(BaseModel):
    file_id: UUID
    original_name: str
    size: int
    mime_type: str
    download_url: str
    folder_path: Optional[str] = None


class BulkDeleteRequest(BaseModel):
    file_ids: List[UUID]


class DeleteResult(BaseModel):
    message: str
    deleted_count: int
