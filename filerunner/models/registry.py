# filerunner/models/registry.py
# 匯入所有模型，讓 Base.metadata 完整（Alembic / 測試 create_all 用）
from filerunner.models.base import Base
from filerunner.models.users import User
from filerunner.models.refresh_tokens import RefreshToken
from filerunner.models.projects import Project
from filerunner.models.folders import Folder
from filerunner.models.files import File

__all__ = ["Base", "User", "RefreshToken", "Project", "Folder", "File"]
