from datetime import datetime
from sqlalchemy import String, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from models.base import UTCDateTime
from core.database import Base


class RefreshToken(Base):
    """
    유저별 리프레시 토큰(= 로그인 세션) 목록

    User : RefreshToken = 1 : N (최대 MAX_REFRESH_TOKENS개)
    - 토큰 원문은 저장하지 않고 sha256 해시만 저장
    - id 순서 = 발급 순서 → 한도를 넘으면 id가 가장 작은 것부터 삭제
    """
    __tablename__ = "refresh_tokens"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    token_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )
