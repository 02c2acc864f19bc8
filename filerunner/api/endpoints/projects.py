# filerunner/api/endpoints/projects.py
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from filerunner.core.config import settings
from filerunner.core.deps import AuthUser, get_current_user
from filerunner.core.errors import StorageError
from filerunner.core.security import generate_api_key
from filerunner.db.session import get_db
from filerunner.models.files import File as FileRecord
from filerunner.models.folders import Folder
from filerunner.models.projects import Project
from filerunner.schemas.auth import MessageResponse
from filerunner.schemas.file import FileMetadata
from filerunner.schemas.project import ProjectCreate, ProjectRead, ProjectUpdate, ProjectWithStats
from filerunner.services.projects import get_owned_project
from filerunner.services.storage import LocalBlobStore, get_blob_store

router = APIRouter()


def download_url(file_id: UUID) -> str:
    return f"{settings.API_PREFIX}/files/{file_id}"


async def _project_stats(db: AsyncSession, project_id: UUID):
    result = await db.execute(
        select(func.count(FileRecord.id), func.coalesce(func.sum(FileRecord.size), 0))
        .where(FileRecord.project_id == project_id)
    )
    count, total = result.one()
    return int(count or 0), int(total or 0)


# === 建立專案 ===
@router.post("", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: ProjectCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = Project(
        user_id=current_user.id,
        name=payload.name,
        is_public=bool(payload.is_public),
    )
    db.add(project)
    await db.commit()
    await db.refresh(project)
    logger.bind(user_id=str(current_user.id), project_id=str(project.id)).info("Project created")
    return project


# === 專案列表（含檔案數 / 總大小） ===
@router.get("", response_model=List[ProjectWithStats])
async def list_projects(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    stmt = (
        select(
            Project,
            func.count(FileRecord.id),
            func.coalesce(func.sum(FileRecord.size), 0),
        )
        .outerjoin(FileRecord, FileRecord.project_id == Project.id)
        .where(Project.user_id == current_user.id)
        .group_by(Project.id)
        .order_by(Project.created_at.desc())
    )
    rows = (await db.execute(stmt)).all()
    return [
        ProjectWithStats(
            **ProjectRead.model_validate(project).model_dump(),
            file_count=int(count or 0),
            total_size=int(total or 0),
        )
        for project, count, total in rows
    ]


@router.get("/{project_id}", response_model=ProjectWithStats)
async def get_project(
    project_id: UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = await get_owned_project(db, project_id, current_user)
    count, total = await _project_stats(db, project.id)
    return ProjectWithStats(
        **ProjectRead.model_validate(project).model_dump(),
        file_count=count,
        total_size=total,
    )


@router.put("/{project_id}", response_model=ProjectRead)
async def update_project(
    project_id: UUID,
    payload: ProjectUpdate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = await get_owned_project(db, project_id, current_user)
    if payload.name is not None:
        project.name = payload.name
    if payload.is_public is not None:
        project.is_public = payload.is_public
    await db.commit()
    await db.refresh(project)
    return project


# === 刪除專案（含底下所有資料夾 / 檔案） ===
@router.delete("/{project_id}", response_model=MessageResponse)
async def delete_project(
    project_id: UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    """先刪 DB 紀錄再清實體檔案：DB 不會留下指向不存在 blob 的紀錄。"""
    project = await get_owned_project(db, project_id, current_user)

    await db.execute(delete(FileRecord).where(FileRecord.project_id == project.id))
    await db.execute(delete(Folder).where(Folder.project_id == project.id))
    await db.delete(project)
    await db.commit()

    try:
        await blobs.delete_tree(str(blobs.folder_dir(project.id)))
    except StorageError as e:
        # 只會留下孤兒檔案，不影響回應
        logger.warning("Failed to remove project storage {}: {}", project.id, e)

    logger.bind(user_id=str(current_user.id), project_id=str(project.id)).info("Project deleted")
    return MessageResponse(message="Project deleted successfully")


# === 重新產生 API key（舊 key 立即失效） ===
@router.post("/{project_id}/regenerate-key", response_model=ProjectRead)
async def regenerate_api_key(
    project_id: UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = await get_owned_project(db, project_id, current_user)
    project.api_key = generate_api_key()
    await db.commit()
    await db.refresh(project)
    logger.bind(project_id=str(project.id)).info("Project API key regenerated")
    return project


# === 專案內檔案列表 ===
@router.get("/{project_id}/files", response_model=List[FileMetadata])
async def list_project_files(
    project_id: UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = await get_owned_project(db, project_id, current_user)
    stmt = (
        select(FileRecord, Folder.path)
        .outerjoin(Folder, Folder.id == FileRecord.folder_id)
        .where(FileRecord.project_id == project.id)
        .order_by(FileRecord.upload_date.desc())
    )
    rows = (await db.execute(stmt)).all()
    return [
        FileMetadata(
            id=f.id,
            project_id=f.project_id,
            folder_id=f.folder_id,
            folder_path=folder_path,
            original_name=f.original_name,
            size=f.size,
            mime_type=f.mime_type,
            upload_date=f.upload_date,
            download_url=download_url(f.id),
        )
        for f, folder_path in rows
    ]
