# alembic/env.py
from logging.config import fileConfig
from typing import Any, Dict

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import URL, make_url

from filerunner.core.config import settings
from filerunner.models.registry import Base

# async driver → 對應的同步 driver（migration 一律走同步連線）
SYNC_DRIVERS = {
    "postgresql+asyncpg": "postgresql+psycopg2",
    "sqlite+aiosqlite": "sqlite",
}

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)


def migration_url() -> URL:
    """`alembic -x dburl=...` 優先，否則用 settings.DATABASE_URL。"""
    raw = context.get_x_argument(as_dictionary=True).get("dburl") or settings.DATABASE_URL
    url = make_url(raw)
    return url.set(drivername=SYNC_DRIVERS.get(url.drivername, url.drivername))


def _context_options(url: URL) -> Dict[str, Any]:
    return {
        "target_metadata": Base.metadata,
        "compare_type": True,
        # SQLite 不支援大部分 ALTER TABLE，改用 batch 模式重建表
        "render_as_batch": url.get_backend_name() == "sqlite",
    }


def migrate_offline(url: URL) -> None:
    # 只輸出 SQL，不連線
    context.configure(url=url, literal_binds=True, **_context_options(url))
    with context.begin_transaction():
        context.run_migrations()


def migrate_online(url: URL) -> None:
    engine = create_engine(url, poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **_context_options(url))
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


_url = migration_url()
if context.is_offline_mode():
    migrate_offline(_url)
else:
    migrate_online(_url)
