"""
유저 저장소

상태를 바꾸는 함수는 모두 "조건부 UPDATE/DELETE 한 문장"으로 작성한다.
(ORM 객체를 읽어서 파이썬에서 고친 뒤 저장하면 동시 요청끼리 서로의 변경을 덮어쓴다)
→ 변경 후 최신 값이 필요하면 호출 측에서 commit 뒤 db.refresh(user)

commit은 서비스 계층이 한 번에 한다 (여러 문장을 하나의 트랜잭션으로 묶기 위해).
"""
from datetime import datetime, timedelta
from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from models.users import User
from models.refresh_token import RefreshToken
from service.lockout_policy import failure_update_values


# ===== 조회 =====

async def find_by_id(db: AsyncSession, user_id: str) -> User | None:
    """id로 유저 조회"""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalars().first()


async def find_by_nickname(db: AsyncSession, nickname: str) -> User | None:
    """닉네임으로 유저 조회"""
    result = await db.execute(select(User).where(User.nickname == nickname.lower()))
    return result.scalars().first()


async def find_by_email(db: AsyncSession, email: str) -> User | None:
    """이메일로 유저 조회"""
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalars().first()


async def find_by_reset_token(db: AsyncSession, token_hash: str, now: datetime) -> User | None:
    """만료되지 않은 비밀번호 재설정 토큰 해시로 유저 조회"""
    result = await db.execute(
        select(User).where(
            User.password_reset_token == token_hash,
            User.password_reset_expires > now,
        )
    )
    return result.scalars().first()


# ===== 생성 =====

async def create(db: AsyncSession, user: User) -> User:
    """유저 INSERT (flush까지만, commit은 호출 측. unique 위반 시 IntegrityError 그대로 전파)"""
    db.add(user)
    await db.flush()
    return user


# ===== 로그인 상태 =====

async def record_failed_login(
    db: AsyncSession, user_id: str, now: datetime, *, max_attempts: int, lockout_duration: timedelta
) -> None:
    """로그인 실패 1회 반영 (카운트 증가 + 필요 시 잠금): 원자적"""
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(failure_update_values(
            User.login_attempts, User.lock_until, now,
            max_attempts=max_attempts, lockout_duration=lockout_duration,
        ))
        .execution_options(synchronize_session=False)
    )


async def record_successful_login(db: AsyncSession, user_id: str, now: datetime) -> None:
    """로그인 성공 반영 (카운트/잠금 초기화 + 마지막 로그인 시각)"""
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(login_attempts=0, lock_until=None, last_login=now)
        .execution_options(synchronize_session=False)
    )


async def bump_token_version(db: AsyncSession, user_id: str) -> None:
    """이전에 발급된 access 토큰 전부 무효화"""
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(token_version=User.token_version + 1)
        .execution_options(synchronize_session=False)
    )


# ===== 리프레시 토큰 =====

async def add_refresh_token(
    db: AsyncSession, user_id: str, token_hash: str, now: datetime, expires_at: datetime, *, max_tokens: int
) -> None:
    """
    리프레시 토큰 추가

    1. 만료된 토큰 정리
    2. 새 토큰 INSERT
    3. 최신 max_tokens개만 남기고 오래된 것부터 삭제
    """
    await db.execute(
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.expires_at <= now)
        .execution_options(synchronize_session=False)
    )

    db.add(RefreshToken(user_id=user_id, token_hash=token_hash, created_at=now, expires_at=expires_at))
    await db.flush()

    newest = (
        select(RefreshToken.id)
        .where(RefreshToken.user_id == user_id)
        .order_by(RefreshToken.id.desc())
        .limit(max_tokens)
    )
    await db.execute(
        delete(RefreshToken).where(
            RefreshToken.user_id == user_id,
            RefreshToken.id.not_in(newest.scalar_subquery()),
        ).execution_options(synchronize_session=False)
    )


async def consume_refresh_token(db: AsyncSession, user_id: str, token_hash: str, now: datetime) -> bool:
    """
    리프레시 토큰 1회 사용 (삭제): 원자적

    Returns:
        True: 살아있는 토큰이었고 이번 요청이 소비함
        False: 목록에 없음 (이미 사용됐거나, 밀려났거나, 위조) → 탈취 의심
    """
    result = await db.execute(
        delete(RefreshToken).where(
            RefreshToken.user_id == user_id,
            RefreshToken.token_hash == token_hash,
            RefreshToken.expires_at > now,
        ).execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def remove_refresh_token(db: AsyncSession, user_id: str, token_hash: str) -> None:
    """로그아웃: 없으면 아무 일도 하지 않음"""
    await db.execute(
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.token_hash == token_hash)
        .execution_options(synchronize_session=False)
    )


async def revoke_all_refresh_tokens(db: AsyncSession, user_id: str) -> None:
    """유저의 모든 세션 종료"""
    await db.execute(
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .execution_options(synchronize_session=False)
    )


# ===== 비밀번호 재설정 =====

async def set_password_reset(db: AsyncSession, user_id: str, token_hash: str, expires_at: datetime) -> None:
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(password_reset_token=token_hash, password_reset_expires=expires_at)
        .execution_options(synchronize_session=False)
    )


async def apply_password_reset(
    db: AsyncSession, user_id: str, token_hash: str, new_hashed_password: str, now: datetime
) -> bool:
    """
    재설정 토큰이 여전히 유효할 때만 비밀번호 교체 (1회용): 원자적

    같은 토큰으로 동시에 두 번 요청해도 한 번만 성공한다.
    """
    result = await db.execute(
        update(User)
        .where(
            User.id == user_id,
            User.password_reset_token == token_hash,
            User.password_reset_expires > now,
        )
        .values(
            hashed_password=new_hashed_password,
            password_reset_token=None,
            password_reset_expires=None,
            token_version=User.token_version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


# ===== 관리자용 =====

def _filtered(stmt, role: str | None, is_active: bool | None):
    if role is not None:
        stmt = stmt.where(User.role == role)
    if is_active is not None:
        stmt = stmt.where(User.is_active == is_active)
    return stmt


async def find_page(
    db: AsyncSession, *, offset: int, limit: int, role: str | None = None, is_active: bool | None = None
) -> list[User]:
    """유저 목록 조회 (최신 가입순)"""
    result = await db.execute(
        _filtered(select(User), role, is_active)
        .order_by(User.created_at.desc(), User.id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def count(db: AsyncSession, *, role: str | None = None, is_active: bool | None = None) -> int:
    result = await db.execute(_filtered(select(func.count()).select_from(User), role, is_active))
    return result.scalar_one()


async def count_grouped_by(db: AsyncSession, column) -> dict:
    """컬럼 값별 유저 수 (예: role → {"user": 10, "admin": 1})"""
    result = await db.execute(select(column, func.count()).group_by(column))
    return {value: total for value, total in result.all()}


async def update_fields(db: AsyncSession, user_id: str, values: dict) -> bool:
    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def delete_user(db: AsyncSession, user_id: str) -> bool:
    """유저와 세션 삭제"""
    await revoke_all_refresh_tokens(db, user_id)
    result = await db.execute(
        delete(User)
        .where(User.id == user_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0
