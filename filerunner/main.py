# filerunner/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from filerunner.core.config import settings
from filerunner.core.logging import setup_logging
from filerunner.core.errors import register_error_handlers
from filerunner.api.router import api_router
from filerunner.db.session import engine
from filerunner.services.bootstrap import lifespan_bootstrap  # lifespan（admin / storage 初始化）

# Monitoring
import sentry_sdk
from prometheus_fastapi_instrumentator import Instrumentator

logger = setup_logging()


def _validate_secrets() -> None:
    """
    部署前安全檢查：在 prod/staging/preview 等環境時，不允許使用短或空的金鑰 / 預設 admin 密碼。
    """
    env = (settings.ENV or "").lower()
    if env in {"prod", "production", "staging", "preview"}:
        missing_or_weak = []
        if not settings.SECRET_KEY or len(settings.SECRET_KEY) < 32:
            missing_or_weak.append("SECRET_KEY")
        if settings.ADMIN_PASSWORD == "admin":
            missing_or_weak.append("ADMIN_PASSWORD")
        if missing_or_weak:
            raise RuntimeError(
                f"Insecure config for {', '.join(missing_or_weak)} in ENV={settings.ENV}. "
                "Please set strong values via environment variables."
            )


def create_app() -> FastAPI:
    # 基本安全檢查
    _validate_secrets()

    app = FastAPI(
        title=settings.APP_NAME,
        debug=settings.DEBUG,
        lifespan=lifespan_bootstrap,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---- Sentry 初始化（SENTRY_DSN 未設定就略過）----
    if settings.SENTRY_DSN:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            environment=settings.SENTRY_ENV or settings.ENV,
        )

    # ---- Prometheus /metrics ----
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    # 統一錯誤處理
    register_error_handlers(app)

    # === API 路由（/api/...）===
    app.include_router(api_router, prefix=settings.API_PREFIX)

    # 健康檢查（root & ops）
    @app.get("/", summary="Root")
    async def root():
        return {"app": settings.APP_NAME, "env": settings.ENV}

    @app.get("/healthz", tags=["ops"])
    async def healthz():
        return {"ok": True}

    @app.get("/readyz", tags=["ops"])
    async def readyz():
        # DB 探針：連不上就交給統一錯誤處理回 500
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"ready": True}

    logger.bind(env=settings.ENV).info("Application initialized")
    return app


# Uvicorn 進入點
app = create_app()
