# filerunner/services/projects.py
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from filerunner.core.deps import AuthUser
from filerunner.core.errors import NotFound
from filerunner.core.policy import ensure_owner
from filerunner.models.folders import Folder
from filerunner.models.projects import Project


async def get_project_by_api_key(db: AsyncSession, api_key: Optional[str]) -> Optional[Project]:
    if not api_key:
        return None
    result = await db.execute(select(Project).where(Project.api_key == api_key))
    return result.scalar_one_or_none()


async def get_owned_project(db: AsyncSession, project_id: UUID, identity: AuthUser) -> Project:
    project = await db.get(Project, project_id)
    if project is None:
        raise NotFound("Project not found")
    ensure_owner(identity, project.user_id, "Project")
    return project


async def get_owned_folder(db: AsyncSession, folder_id: UUID, identity: AuthUser) -> Folder:
    result = await db.execute(
        select(Folder, Project.user_id)
        .join(Project, Project.id == Folder.project_id)
        .where(Folder.id == folder_id)
    )
    row = result.first()
    if row is None:
        raise NotFound("Folder not found")
    folder, owner_id = row
    ensure_owner(identity, owner_id, "Folder")
    return folder


async def find_folder(db: AsyncSession, project_id: UUID, path: str) -> Optional[Folder]:
    result = await db.execute(
        select(Folder).where(Folder.project_id == project_id, Folder.path == path)
    )
    return result.scalar_one_or_none()
