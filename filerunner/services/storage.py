# filerunner/services/storage.py
"""
本機檔案系統 blob store。

實體路徑：<STORAGE_PATH>/<project_id>/<folder_path...>/<stored_name>
所有路徑都會被限制在 STORAGE_PATH 之下；I/O 丟到 worker thread，不阻塞 event loop。
"""
import os
import shutil
from pathlib import Path
from typing import Optional
from uuid import UUID

import anyio

from filerunner.core.config import settings
from filerunner.core.errors import StorageError


class LocalBlobStore:
    def __init__(self, base_path: str):
        self.base_path = Path(base_path).resolve()

    def _confine(self, path: Path) -> Path:
        resolved = path.resolve()
        if resolved != self.base_path and self.base_path not in resolved.parents:
            raise StorageError(f"path escapes storage root: {path}")
        return resolved

    def folder_dir(self, project_id: UUID, folder_path: Optional[str] = None) -> Path:
        path = self.base_path / str(project_id)
        if folder_path:
            for segment in folder_path.split("/"):
                path = path / segment
        return self._confine(path)

    async def write(self, project_id: UUID, folder_path: Optional[str], stored_name: str, data: bytes) -> str:
        """寫入並 fsync 後才回傳；呼叫端拿到路徑才可以寫 DB。"""
        target = self._confine(self.folder_dir(project_id, folder_path) / stored_name)
        await anyio.to_thread.run_sync(_write_durably, target, data)
        return str(target)

    async def read(self, physical_path: str) -> bytes:
        target = self._confine(Path(physical_path))
        try:
            return await anyio.to_thread.run_sync(target.read_bytes)
        except OSError as e:
            raise StorageError(f"Failed to read {target}: {e}") from e

    async def delete(self, physical_path: str) -> None:
        target = self._confine(Path(physical_path))
        try:
            await anyio.to_thread.run_sync(lambda: target.unlink(missing_ok=True))
        except OSError as e:
            raise StorageError(f"Failed to delete {target}: {e}") from e

    async def delete_tree(self, physical_path: str) -> None:
        target = self._confine(Path(physical_path))
        if target == self.base_path:
            raise StorageError("refusing to delete storage root")
        try:
            await anyio.to_thread.run_sync(_remove_tree, target)
        except OSError as e:
            raise StorageError(f"Failed to remove directory {target}: {e}") from e

    async def prune_dir(self, physical_path: str) -> None:
        """目錄已經空了才移除；還有內容（例如子資料夾）就保留。"""
        target = self._confine(Path(physical_path))
        if target == self.base_path:
            return
        try:
            await anyio.to_thread.run_sync(_remove_if_empty, target)
        except OSError as e:
            raise StorageError(f"Failed to remove directory {target}: {e}") from e


def _write_durably(target: Path, data: bytes) -> None:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
    except OSError as e:
        raise StorageError(f"Failed to write {target}: {e}") from e


def _remove_tree(target: Path) -> None:
    if target.exists():
        shutil.rmtree(target)


def _remove_if_empty(target: Path) -> None:
    if target.is_dir() and not any(target.iterdir()):
        target.rmdir()


def get_blob_store() -> LocalBlobStore:
    """FastAPI 依賴；測試可用 dependency_overrides 換掉"""
    return LocalBlobStore(settings.STORAGE_PATH)
