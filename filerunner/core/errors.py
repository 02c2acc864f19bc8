# filerunner/core/errors.py
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException


# === 錯誤分類 ===
class AppError(Exception):
    """
    所有業務錯誤的基底類別。
      - status_code：對外 HTTP 狀態
      - public_message：回給 client 的訊息（不含內部細節）
      - detail：只寫進 log
    """

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(detail or self.public_message)

    @property
    def message(self) -> str:
        return self.public_message


class _SpecificMessageError(AppError):
    # 驗證 / 找不到 類錯誤可以直接把訊息回給 client
    @property
    def message(self) -> str:
        return self.detail or self.public_message


class Unauthorized(AppError):
    status_code = 401
    public_message = "Authentication failed"


class InvalidCredentials(AppError):
    status_code = 401
    public_message = "Invalid credentials"


class TokenError(AppError):
    status_code = 401
    public_message = "Invalid token"


class MalformedTokenClaims(TokenError):
    """簽章正確但 claims 不合格式（缺欄位、未知 role）：直接回 Invalid token。"""


class TokenNotFound(AppError):
    status_code = 401
    public_message = "Invalid token"


class RefreshTokenExpired(AppError):
    status_code = 401
    public_message = "Refresh token expired"


class TokenReuseDetected(AppError):
    """已輪替掉的 refresh token 又被拿來用：視為 token 外洩，整個 family 已撤銷。"""

    status_code = 401
    public_message = "Token reuse detected; please log in again"


class Forbidden(_SpecificMessageError):
    status_code = 403
    public_message = "Forbidden"


class ValidationError(_SpecificMessageError):
    status_code = 400
    public_message = "Validation error"


class BadRequest(_SpecificMessageError):
    status_code = 400
    public_message = "Bad request"


class NotFound(_SpecificMessageError):
    status_code = 404
    public_message = "Not found"


class Conflict(_SpecificMessageError):
    status_code = 409
    public_message = "Conflict"


class StorageError(AppError):
    status_code = 500
    public_message = "Storage error"


def error_body(message: str) -> dict:
    return {"error": message}


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("{} on {} {}: {}", type(exc).__name__, request.method, request.url.path, exc.detail)
        elif exc.detail:
            logger.debug("{} on {}: {}", type(exc).__name__, request.url.path, exc.detail)
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message), headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):
        # 統一輸出格式
        return JSONResponse(status_code=exc.status_code, content=error_body(str(exc.detail)))

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        # 客製化，但保持資訊節制
        messages = [
            f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
            for err in exc.errors()
        ]
        err = ValidationError()
        return JSONResponse(
            status_code=err.status_code,
            content={**error_body(err.message), "errors": messages},
        )

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):
        # DB / 內部錯誤不外洩細節
        logger.opt(exception=exc).error("Unhandled error on {} {}", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_body("Internal server error"))

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        # 小強化：避免洩露伺服器細節
        resp = await call_next(request)
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        return resp
