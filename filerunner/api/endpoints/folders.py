# filerunner/api/endpoints/folders.py
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from filerunner.core.deps import AuthUser, get_current_user, get_header_api_key
from filerunner.core.errors import StorageError, Unauthorized
from filerunner.core.policy import validate_folder_path
from filerunner.db.session import get_db
from filerunner.models.files import File as FileRecord
from filerunner.models.folders import Folder
from filerunner.schemas.file import DeleteResult
from filerunner.schemas.folder import (
    FolderCreate,
    FolderPurgeRequest,
    FolderRead,
    FolderVisibilityUpdate,
    FolderWithStats,
)
from filerunner.services.projects import (
    find_folder,
    get_owned_folder,
    get_owned_project,
    get_project_by_api_key,
)
from filerunner.services.storage import LocalBlobStore, get_blob_store

router = APIRouter()


# === 建立資料夾（已存在則更新可見度） ===
@router.post("", response_model=FolderRead, status_code=status.HTTP_201_CREATED)
async def create_folder(
    payload: FolderCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    path = validate_folder_path(payload.path)
    project = await get_owned_project(db, payload.project_id, current_user)
    project_id = project.id
    is_public = project.is_public if payload.is_public is None else payload.is_public

    folder = await find_folder(db, project_id, path)
    if folder is None:
        folder = Folder(project_id=project_id, path=path, is_public=is_public)
        db.add(folder)
        try:
            await db.commit()
        except IntegrityError:
            # 併發建立同一路徑：改拿已存在的那筆
            await db.rollback()
            folder = await find_folder(db, project_id, path)
            if folder is None:
                raise
            folder.is_public = is_public
            await db.commit()
    else:
        folder.is_public = is_public
        await db.commit()

    await db.refresh(folder)
    return folder


@router.get("", response_model=List[FolderWithStats])
async def list_folders(
    project_id: UUID = Query(...),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = await get_owned_project(db, project_id, current_user)
    stmt = (
        select(
            Folder,
            func.count(FileRecord.id),
            func.coalesce(func.sum(FileRecord.size), 0),
        )
        .outerjoin(FileRecord, FileRecord.folder_id == Folder.id)
        .where(Folder.project_id == project.id)
        .group_by(Folder.id)
        .order_by(Folder.path)
    )
    rows = (await db.execute(stmt)).all()
    return [
        FolderWithStats(
            **FolderRead.model_validate(folder).model_dump(),
            file_count=int(count or 0),
            total_size=int(total or 0),
        )
        for folder, count, total in rows
    ]


@router.put("/{folder_id}/visibility", response_model=FolderRead)
async def update_folder_visibility(
    folder_id: UUID,
    payload: FolderVisibilityUpdate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    folder = await get_owned_folder(db, folder_id, current_user)
    folder.is_public = payload.is_public
    await db.commit()
    await db.refresh(folder)
    return folder


# === 用 API key 清空並刪除資料夾 ===
@router.post("/delete", response_model=DeleteResult)
async def purge_folder(
    payload: FolderPurgeRequest,
    api_key: Optional[str] = Depends(get_header_api_key),
    db: AsyncSession = Depends(get_db),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    """
    刪掉資料夾本身與底下所有檔案。
    先刪 DB 紀錄並 commit，再清實體檔案；清檔失敗只記 log。
    """
    path = validate_folder_path(payload.folder_path)

    project = await get_project_by_api_key(db, api_key)
    if project is None:
        raise Unauthorized("api key does not match any project")

    folder = await find_folder(db, project.id, path)
    if folder is None:
        # 不存在就當作已經清空
        return DeleteResult(message="Folder files deleted successfully", deleted_count=0)

    result = await db.execute(select(FileRecord).where(FileRecord.folder_id == folder.id))
    files = result.scalars().all()
    physical_paths = [f.file_path for f in files]

    await db.execute(delete(FileRecord).where(FileRecord.folder_id == folder.id))
    await db.delete(folder)
    await db.commit()

    for physical_path in physical_paths:
        try:
            await blobs.delete(physical_path)
        except StorageError as e:
            logger.warning("Failed to delete blob {}: {}", physical_path, e)
    try:
        # 子資料夾是獨立的紀錄，只移除已經空掉的目錄
        await blobs.prune_dir(str(blobs.folder_dir(project.id, path)))
    except StorageError as e:
        logger.warning("Failed to remove folder directory {}: {}", path, e)

    logger.bind(project_id=str(project.id), folder=path).info("Folder purged ({} files)", len(files))
    return DeleteResult(
        message="Folder files deleted successfully",
        deleted_count=len(files),
    )
