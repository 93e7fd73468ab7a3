import uuid
from datetime import datetime
from sqlalchemy import String, Boolean, Integer, true
from sqlalchemy.orm import Mapped, mapped_column
from models.base import TimestampMixin, UTCDateTime
from core.database import Base
from service.lockout_policy import is_locked


class User(TimestampMixin, Base):
    """
    사용자 모델

    - id: UUID v4 (예측 불가)
    - nickname: 로그인 식별자 (소문자, 3~30자, [a-z0-9_])
    - email: 선택 항목, 비밀번호 재설정에만 사용
    - hashed_password: 평문 비밀번호를 절대 저장하지 않음
    - is_active: 소프트 삭제(soft delete) 패턴: 실제 삭제 대신 비활성화
    - login_attempts / lock_until: 계정 잠금 정책의 상태
      (잠금 여부는 컬럼으로 저장하지 않고 lock_until과 현재 시각으로 계산)
    - token_version: access 토큰에 함께 서명됨 → 올리면 기존 access 토큰 전부 무효
    """
    __tablename__ = "users"

    # PK: UUID v4
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    # 로그인 시 빈번하게 조회 → 인덱스 필수
    nickname: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        index=True,
        nullable=False,
    )

    # NULL은 unique 비교에서 제외되므로 이메일 없는 유저는 여러 명 가능
    email: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=True,
    )

    # bcrypt 해시는 보통 60자, 여유있게 255로 설정
    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # 역할: user / admin
    role: Mapped[str] = mapped_column(
        String(20),
        default="user",
        server_default="user",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        server_default=true(),
    )

    # === 계정 잠금 ===
    login_attempts: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default="0",
        nullable=False,
    )

    lock_until: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    last_login: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    # === 비밀번호 재설정 (sha256 해시만 저장) ===
    password_reset_token: Mapped[str | None] = mapped_column(
        String(64),
        index=True,
        nullable=True,
    )

    password_reset_expires: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    token_version: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default="0",
        nullable=False,
    )

    def is_locked_at(self, now: datetime) -> bool:
        return is_locked(self.lock_until, now)
