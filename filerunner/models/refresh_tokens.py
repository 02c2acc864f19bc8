# filerunner/models/refresh_tokens.py
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import String, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from filerunner.models.base import Base, utcnow


class RefreshToken(Base):
    """
    已簽發的 refresh token（session 紀錄）。
    只會 insert 與寫入 revoked_*；不刪除，保留稽核軌跡。
    """
    __tablename__ = "refresh_tokens"

    # 等於 JWT 的 jti
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    # SHA-256(hex)；原始 token 不落地
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    # 同一次登入輪替出來的所有 token 共用 family_id（重放偵測用）
    family_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)

    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # rotation / logout / logout_all / password_change / security_reuse_detected
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    revoked_reason: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None
