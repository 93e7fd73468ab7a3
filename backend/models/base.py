from datetime import datetime, timezone
from sqlalchemy import DateTime, func
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import Mapped, mapped_column
from core.database import Base


class UTCDateTime(TypeDecorator):
    """
    항상 timezone-aware(UTC) datetime으로 읽고 쓰는 컬럼 타입

    PostgreSQL의 timestamptz는 aware 값을 돌려주지만,
    SQLite 등은 naive 값을 돌려준다 → 읽을 때 UTC로 붙여서 비교 에러를 막는다.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class TimestampMixin:
    """
    모든 모델에 공통 적용할 생성/수정 시간

    사용법:
        class User(TimestampMixin, Base):
            __tablename__ = "users"
            ...

    실무 포인트:
    - server_default=func.now(): DB 서버 시간 기준 (앱 서버 시간 X)
    - onupdate=func.now(): UPDATE 쿼리 시 자동으로 갱신
    - UTCDateTime: UTC 기준 저장 → 클라이언트에서 로컬 변환
    """

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
