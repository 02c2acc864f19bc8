# filerunner/models/base.py
from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    # DB 一律存 naive UTC（與 SQLite / timestamp without time zone 相容）
    return datetime.now(timezone.utc).replace(tzinfo=None)
