# filerunner/core/policy.py
"""
授權判斷（純函式，不碰 DB / 檔案系統）。

兩種憑證互相獨立：
  - 使用者 session（AuthUser）：專案 / 資料夾管理、檔案刪除
  - 專案 API key：上傳、私有檔案下載、檔案刪除
下載沒有 session 路徑，只看可見度 + API key，方便把網址直接分享出去。
"""
import hmac
import re
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from filerunner.core.deps import AuthUser
from filerunner.core.errors import BadRequest, NotFound, Unauthorized
from filerunner.models.files import File
from filerunner.models.folders import Folder
from filerunner.models.projects import Project

_FOLDER_PATH_CHARS = re.compile(r"[A-Za-z0-9_./-]+")


# === 資料夾路徑 ===
def validate_folder_path(path: str) -> str:
    """
    任何以路徑操作檔案系統 / DB 之前的檢查；不合法就拒絕，不做「清理後繼續」。
    通過時原樣回傳。
    """
    if not path:
        raise BadRequest("Invalid folder path: path is empty")
    if (
        "\0" in path
        or ".." in path
        or path.startswith("/")
        or path.startswith("\\")
        or "//" in path
        or "\\\\" in path
    ):
        raise BadRequest("Invalid folder path: path traversal not allowed")
    # fullmatch：結尾的換行也算非法字元
    if not _FOLDER_PATH_CHARS.fullmatch(path):
        raise BadRequest("Invalid folder path: contains invalid characters")
    for segment in path.split("/"):
        if not segment:
            raise BadRequest("Invalid folder path: empty path segment")
        if segment.startswith("."):
            raise BadRequest("Invalid folder path: hidden folders not allowed")
    return path


# === 擁有者 ===
def owns(identity: Optional[AuthUser], owner_id: UUID) -> bool:
    return identity is not None and identity.id == owner_id


def ensure_owner(identity: Optional[AuthUser], owner_id: UUID, resource: str = "Project") -> None:
    # 不是自己的資源一律當作不存在，避免洩漏他人資源 id
    if not owns(identity, owner_id):
        raise NotFound(f"{resource} not found")


# === API key ===
def api_key_matches(project: Project, presented: Optional[str]) -> bool:
    if not presented:
        return False
    return hmac.compare_digest(project.api_key.encode("utf-8"), presented.encode("utf-8"))


def pick_api_key(header_key: Optional[str], query_key: Optional[str]) -> Optional[str]:
    """header 優先，其次 query string（?api_key=）"""
    return header_key or query_key or None


def authorize_upload(project: Optional[Project]) -> Project:
    """上傳只接受 X-API-Key：查不到對應專案 → 401"""
    if project is None:
        raise Unauthorized("api key does not match any project")
    return project


# === 下載 ===
def is_publicly_visible(project: Project, folder: Optional[Folder]) -> bool:
    # 最具體的設定優先：有資料夾看資料夾，否則看專案
    if folder is not None:
        return folder.is_public
    return project.is_public


def can_download(project: Project, folder: Optional[Folder], presented_key: Optional[str]) -> bool:
    return is_publicly_visible(project, folder) or api_key_matches(project, presented_key)


def authorize_download(project: Project, folder: Optional[Folder], presented_key: Optional[str]) -> None:
    if not can_download(project, folder, presented_key):
        raise Unauthorized("private file requires a matching api key")


# === 刪除 ===
def can_delete_file(identity: Optional[AuthUser], presented_key: Optional[str], project: Project) -> bool:
    """有登入身分就只看擁有者；沒有才改用 API key。"""
    if identity is not None:
        return owns(identity, project.user_id)
    return api_key_matches(project, presented_key)


def authorized_bulk_subset(
    identity: Optional[AuthUser],
    key_project: Optional[Project],
    files: Sequence[Tuple[File, Project]],
) -> List[File]:
    """
    批次刪除的授權子集合：
      - 使用者模式：只留下自己專案的檔案，其餘默默排除（允許部分授權）
      - API key 模式：全部檔案都必須屬於該 key 的專案，否則整批拒絕（BadRequest）
    使用者身分優先於同時帶上的 API key。
    """
    if identity is not None:
        return [f for f, project in files if project.user_id == identity.id]

    if key_project is None:
        raise Unauthorized("bulk delete requires a session or a matching api key")

    foreign = [f.id for f, _ in files if f.project_id != key_project.id]
    if foreign:
        raise BadRequest("All files must belong to the project identified by the API key")
    return [f for f, _ in files]
