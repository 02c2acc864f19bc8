# filerunner/api/endpoints/files.py
import mimetypes
import re
import uuid
from pathlib import PurePath
from typing import Optional
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from filerunner.api.endpoints.projects import download_url
from filerunner.core.config import settings
from filerunner.core.deps import AuthUser, get_current_user_optional, get_header_api_key
from filerunner.core.errors import BadRequest, NotFound, StorageError, Unauthorized
from filerunner.core.policy import (
    authorize_download,
    authorize_upload,
    authorized_bulk_subset,
    can_delete_file,
    pick_api_key,
    validate_folder_path,
)
from filerunner.db.session import get_db
from filerunner.models.files import File as FileRecord
from filerunner.models.folders import Folder
from filerunner.models.projects import Project
from filerunner.schemas.auth import MessageResponse
from filerunner.schemas.file import BulkDeleteRequest, DeleteResult, UploadResponse
from filerunner.services.projects import find_folder, get_project_by_api_key
from filerunner.services.storage import LocalBlobStore, get_blob_store

router = APIRouter()

_EXTENSION_CHARS = re.compile(r"^[A-Za-z0-9]{1,16}$")


def _stored_name(file_id: UUID, original_name: str) -> str:
    """實體檔名只用 uuid + 副檔名；副檔名不合格就直接丟掉"""
    ext = PurePath(original_name).suffix.lstrip(".")
    if ext and _EXTENSION_CHARS.match(ext):
        return f"{file_id}.{ext}"
    return str(file_id)


def _content_disposition(original_name: str, attachment: bool) -> str:
    kind = "attachment" if attachment else "inline"
    fallback = original_name.encode("ascii", "ignore").decode("ascii").replace('"', "").replace("\\", "")
    fallback = fallback or "download"
    return f"{kind}; filename=\"{fallback}\"; filename*=UTF-8''{quote(original_name)}"


async def _get_or_create_folder(db: AsyncSession, project_id: UUID, path: str, is_public: bool) -> Folder:
    """新資料夾沿用專案的 is_public；已存在就原樣回傳"""
    folder = await find_folder(db, project_id, path)
    if folder is not None:
        return folder
    folder = Folder(project_id=project_id, path=path, is_public=is_public)
    db.add(folder)
    try:
        await db.flush()
    except IntegrityError:
        # 同時有人建立同一路徑（rollback 之後 ORM 物件都會過期，只用傳進來的值）
        await db.rollback()
        folder = await find_folder(db, project_id, path)
        if folder is None:
            raise
    return folder


# === 上傳（只接受 X-API-Key） ===
@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    folder_path: Optional[str] = Form(None),
    api_key: Optional[str] = Depends(get_header_api_key),
    db: AsyncSession = Depends(get_db),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    """
    順序很重要：
      1️⃣ 驗 API key / 路徑 / 大小
      2️⃣ blob 寫入並 fsync
      3️⃣ 才寫 DB 並 commit；DB 失敗就把剛寫的 blob 刪掉
    """
    if not api_key:
        raise Unauthorized("missing api key")
    project = authorize_upload(await get_project_by_api_key(db, api_key))
    project_id = project.id

    folder_path = folder_path or None
    if folder_path is not None:
        validate_folder_path(folder_path)

    if not file.filename:
        raise BadRequest("No filename provided")
    original_name = PurePath(file.filename.replace("\\", "/")).name[:500]
    if not original_name:
        raise BadRequest("No filename provided")

    # 最多多讀 1 byte，就能判斷是否超過上限
    data = await file.read(settings.MAX_FILE_SIZE + 1)
    if len(data) > settings.MAX_FILE_SIZE:
        raise BadRequest(f"File size exceeds maximum of {settings.MAX_FILE_SIZE} bytes")

    folder_id = None
    if folder_path:
        folder = await _get_or_create_folder(db, project_id, folder_path, project.is_public)
        folder_id = folder.id

    file_id = uuid.uuid4()
    stored_name = _stored_name(file_id, original_name)
    physical_path = await blobs.write(project_id, folder_path, stored_name, data)

    mime_type = mimetypes.guess_type(original_name)[0] or "application/octet-stream"
    record = FileRecord(
        id=file_id,
        project_id=project_id,
        folder_id=folder_id,
        original_name=original_name,
        stored_name=stored_name,
        file_path=physical_path,
        size=len(data),
        mime_type=mime_type,
    )
    db.add(record)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        try:
            await blobs.delete(physical_path)
        except StorageError as e:
            logger.warning("Failed to clean up blob after DB error {}: {}", physical_path, e)
        raise

    logger.bind(project_id=str(project_id), file_id=str(file_id)).info(
        "File uploaded ({} bytes)", len(data)
    )
    return UploadResponse(
        file_id=file_id,
        original_name=original_name,
        size=len(data),
        mime_type=mime_type,
        download_url=download_url(file_id),
        folder_path=folder_path,
    )


# === 下載（公開 or API key） ===
@router.get("/files/{file_id}")
async def download_file(
    file_id: UUID,
    api_key: Optional[str] = Query(None),
    download: bool = Query(False),
    header_key: Optional[str] = Depends(get_header_api_key),
    db: AsyncSession = Depends(get_db),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    record = await db.get(FileRecord, file_id)
    if record is None:
        raise NotFound("File not found")
    project = await db.get(Project, record.project_id)
    if project is None:
        raise NotFound("File not found")
    folder = await db.get(Folder, record.folder_id) if record.folder_id else None

    authorize_download(project, folder, pick_api_key(header_key, api_key))

    data = await blobs.read(record.file_path)
    return Response(
        content=data,
        media_type=record.mime_type,
        headers={"Content-Disposition": _content_disposition(record.original_name, download)},
    )


# === 單檔刪除（session 擁有者 or API key） ===
@router.delete("/files/{file_id}", response_model=MessageResponse)
async def delete_file(
    file_id: UUID,
    current_user: Optional[AuthUser] = Depends(get_current_user_optional),
    api_key: Optional[str] = Depends(get_header_api_key),
    db: AsyncSession = Depends(get_db),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    if current_user is None and not api_key:
        raise Unauthorized("file delete requires a session or an api key")

    result = await db.execute(
        select(FileRecord, Project)
        .join(Project, Project.id == FileRecord.project_id)
        .where(FileRecord.id == file_id)
    )
    row = result.first()
    if row is None:
        raise NotFound("File not found")
    record, project = row

    if not can_delete_file(current_user, api_key, project):
        if current_user is not None:
            # 別人的檔案當作不存在
            raise NotFound("File not found")
        raise Unauthorized("api key does not match the file's project")

    physical_path = record.file_path
    await db.delete(record)
    await db.commit()

    try:
        await blobs.delete(physical_path)
    except StorageError as e:
        logger.warning("Failed to delete blob {}: {}", physical_path, e)

    logger.bind(project_id=str(project.id), file_id=str(file_id)).info("File deleted")
    return MessageResponse(message="File deleted successfully")


# === 批次刪除 ===
@router.post("/files/bulk-delete", response_model=DeleteResult)
async def bulk_delete_files(
    payload: BulkDeleteRequest,
    current_user: Optional[AuthUser] = Depends(get_current_user_optional),
    api_key: Optional[str] = Depends(get_header_api_key),
    db: AsyncSession = Depends(get_db),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    """
    使用者模式：只刪自己的檔案，其他的略過。
    API key 模式：有任何一個檔案不屬於該專案 → 400，整批都不刪。
    """
    file_ids = list(dict.fromkeys(payload.file_ids))
    if not file_ids:
        return DeleteResult(message="No files to delete", deleted_count=0)

    key_project = None
    if current_user is None:
        if not api_key:
            raise Unauthorized("bulk delete requires a session or an api key")
        key_project = await get_project_by_api_key(db, api_key)

    result = await db.execute(
        select(FileRecord, Project)
        .join(Project, Project.id == FileRecord.project_id)
        .where(FileRecord.id.in_(file_ids))
    )
    rows = [(f, p) for f, p in result.all()]
    authorized = authorized_bulk_subset(current_user, key_project, rows)
    if not authorized:
        raise NotFound("No files found or you don't have permission to delete them")

    physical_paths = [f.file_path for f in authorized]
    await db.execute(delete(FileRecord).where(FileRecord.id.in_([f.id for f in authorized])))
    await db.commit()

    for physical_path in physical_paths:
        try:
            await blobs.delete(physical_path)
        except StorageError as e:
            logger.warning("Failed to delete blob {}: {}", physical_path, e)

    logger.info("Bulk delete removed {} file(s)", len(authorized))
    return DeleteResult(
        message=f"Successfully deleted {len(authorized)} file(s)",
        deleted_count=len(authorized),
    )
