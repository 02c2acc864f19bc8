# filerunner/api/router.py
from fastapi import APIRouter

# 匯入所有已定義的 endpoint 模組
from filerunner.api.endpoints import auth, files, folders, health, projects, users

# === API 主路由 ===
api_router = APIRouter()

# 系統健康檢查
api_router.include_router(health.router, prefix="/health", tags=["health"])

# 認證 / 登入 / Refresh Token
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])

# 使用者管理（admin）
api_router.include_router(users.router, prefix="/users", tags=["users"])

# 專案（session 管理）
api_router.include_router(projects.router, prefix="/projects", tags=["projects"])

# 資料夾
api_router.include_router(folders.router, prefix="/folders", tags=["folders"])

# 檔案：/upload 與 /files/... 直接掛在 API prefix 下
api_router.include_router(files.router, tags=["files"])
