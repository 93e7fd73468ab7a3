import bcrypt
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from fastapi import BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.exc import IntegrityError

from core.clock import Clock
from core.config import settings
from core.exceptions import ConflictError, UnauthorizedError, ValidationError
from core.logger import get_logger, mask_email
from core.security import create_access_token, create_refresh_token, decode_refresh_token
from models.users import User
from repository import user_repo
from schemas.auth import CheckUserResult, RegisterRequest
from service.captcha_service import CaptchaVerifier
from service.email_service import Mailer, send_password_reset_email

logger = get_logger("auth")

FORGOT_PASSWORD_MESSAGE = "해당 이메일로 가입된 계정이 있다면 비밀번호 재설정 메일이 발송되었습니다."

# bcrypt는 앞 72바이트만 사용한다
_BCRYPT_MAX_BYTES = 72


# ===== 비밀번호 해싱 =====

def get_password_hash(password: str) -> str:
    """비밀번호 평문을 bcrypt로 해싱 (매번 새 salt)"""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    hashed_password = bcrypt.hashpw(password.encode('utf-8')[:_BCRYPT_MAX_BYTES], salt)
    return hashed_password.decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """입력받은 평문과 DB의 해시가 일치하는지 검증 (상수 시간 비교)"""
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8')[:_BCRYPT_MAX_BYTES],
            hashed_password.encode('utf-8')
        )
    except ValueError:
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # 없는 닉네임으로 로그인해도 해시 검증 1회만큼 시간이 걸리게 하기 위한 값
    return get_password_hash(secrets.token_urlsafe(16))


def hash_token(token: str) -> str:
    """리프레시/재설정 토큰은 원문 대신 sha256 해시만 저장"""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def prepare_new_user(nickname: str, password: str, email: str | None) -> User:
    """저장 전 준비: 비밀번호는 여기서 명시적으로 해싱한다"""
    return User(
        nickname=nickname.lower(),
        email=email.lower() if email else None,
        hashed_password=get_password_hash(password),
    )


# ===== 세션 발급 =====

@dataclass(frozen=True)
class AuthResult:
    access_token: str
    refresh_token: str
    user: User


async def _issue_session(db: AsyncSession, user: User, now: datetime) -> tuple[str, str]:
    """access + refresh 토큰 쌍 발급, refresh는 유저의 세션 목록에 추가 (commit은 호출 측)"""
    access_token = create_access_token(user.id, user.role, user.token_version, now)
    refresh_token = create_refresh_token(user.id, now)
    await user_repo.add_refresh_token(
        db,
        user.id,
        hash_token(refresh_token),
        now,
        now + timedelta(days=settings.jwt_refresh_expire_days),
        max_tokens=settings.max_refresh_tokens,
    )
    return access_token, refresh_token


def _invalid_credentials() -> UnauthorizedError:
    # 닉네임이 없는 경우와 비밀번호가 틀린 경우를 구분하지 않는다 (계정 존재 여부 노출 방지)
    return UnauthorizedError("닉네임 또는 비밀번호가 올바르지 않습니다.", code="INVALID_CREDENTIALS")


# ===== 인증 흐름 =====

async def check_user(db: AsyncSession, nickname: str) -> CheckUserResult:
    """닉네임 존재 여부 → 다음 단계(login/register) 안내. 부수효과 없음"""
    user = await user_repo.find_by_nickname(db, nickname)

    if not user:
        return CheckUserResult(exists=False, action="register", message="가입되지 않은 닉네임입니다. 회원가입을 진행해주세요.")
    return CheckUserResult(exists=True, action="login", message="비밀번호를 입력해주세요.")


async def login(db: AsyncSession, nickname: str, password: str, *, clock: Clock) -> AuthResult:
    """
    로그인 비즈니스 로직

    1. 닉네임으로 유저 조회 (없으면 더미 해시 검증 후 401)
    2. 잠금 / 비활성 확인
    3. 비밀번호 검증: 실패 시 실패 횟수 반영 후 401
    4. 성공 시 잠금 상태 초기화 + 토큰 쌍 발급
    """
    user = await user_repo.find_by_nickname(db, nickname)
    if not user:
        verify_password(password, _dummy_hash())
        raise _invalid_credentials()

    now = clock.now()

    if user.is_locked_at(now):
        logger.warning("잠긴 계정 로그인 시도", extra={"extra_data": {"user_id": user.id}})
        raise UnauthorizedError(
            "로그인 실패가 반복되어 계정이 일시적으로 잠겼습니다. 잠시 후 다시 시도해주세요.",
            code="ACCOUNT_LOCKED",
        )

    if not user.is_active:
        raise UnauthorizedError("비활성화된 계정입니다.", code="ACCOUNT_DEACTIVATED")

    if not verify_password(password, user.hashed_password):
        await user_repo.record_failed_login(
            db, user.id, now,
            max_attempts=settings.max_login_attempts,
            lockout_duration=timedelta(minutes=settings.lockout_minutes),
        )
        await db.commit()
        await db.refresh(user)
        logger.warning(
            "로그인 실패",
            extra={"extra_data": {"user_id": user.id, "attempts": user.login_attempts}},
        )
        raise _invalid_credentials()

    await user_repo.record_successful_login(db, user.id, now)
    access_token, refresh_token = await _issue_session(db, user, now)
    await db.commit()
    await db.refresh(user)

    logger.info("로그인 성공", extra={"extra_data": {"user_id": user.id}})
    return AuthResult(access_token=access_token, refresh_token=refresh_token, user=user)


async def register(
    db: AsyncSession, data: RegisterRequest, *, clock: Clock, captcha: CaptchaVerifier
) -> AuthResult:
    """회원가입 후 바로 로그인 상태로 만든다"""
    await captcha.validate(data.captcha_token)

    # 1. 닉네임 중복 확인
    if await user_repo.find_by_nickname(db, data.nickname):
        raise ConflictError("이미 사용 중인 닉네임입니다.", code="NICKNAME_TAKEN")

    # 2. 이메일 중복 확인 (입력한 경우만)
    if data.email and await user_repo.find_by_email(db, data.email):
        raise ConflictError("이미 사용 중인 이메일입니다.", code="EMAIL_TAKEN")

    # 3. 저장: 위 확인과 저장 사이에 같은 닉네임이 먼저 들어온 경우는 unique 제약이 잡는다
    user = prepare_new_user(data.nickname, data.password, data.email)
    try:
        user = await user_repo.create(db, user)
    except IntegrityError:
        await db.rollback()
        raise ConflictError("이미 사용 중인 닉네임 또는 이메일입니다.", code="DUPLICATE_KEY")

    now = clock.now()
    access_token, refresh_token = await _issue_session(db, user, now)
    await db.commit()
    # created_at 등 DB 기본값 반영
    await db.refresh(user)

    logger.info("회원가입 완료", extra={"extra_data": {"user_id": user.id}})
    return AuthResult(access_token=access_token, refresh_token=refresh_token, user=user)


async def refresh_session(db: AsyncSession, refresh_token: str | None, *, clock: Clock) -> AuthResult:
    """
    리프레시 토큰 회전 (rotation)

    - 사용된 refresh 토큰은 즉시 삭제되고 새 토큰으로 교체된다
    - 목록에 없는 토큰이 들어오면 (이미 회전된 토큰의 재사용 = 탈취 의심)
      해당 유저의 모든 세션을 종료하고 기존 access 토큰도 무효화한다
    """
    if not refresh_token:
        logger.warning("리프레시 토큰 없이 갱신 시도")
        raise UnauthorizedError("리프레시 토큰이 없습니다.", code="NO_TOKEN")

    now = clock.now()
    claims = decode_refresh_token(refresh_token, now)

    user = await user_repo.find_by_id(db, claims.user_id)
    if not user:
        logger.warning("존재하지 않는 유저의 리프레시 토큰", extra={"extra_data": {"user_id": claims.user_id}})
        raise UnauthorizedError("유효하지 않은 리프레시 토큰입니다.", code="INVALID_REFRESH_TOKEN")

    if not user.is_active:
        raise UnauthorizedError("비활성화된 계정입니다.", code="ACCOUNT_DEACTIVATED")

    consumed = await user_repo.consume_refresh_token(db, user.id, hash_token(refresh_token), now)
    if not consumed:
        await user_repo.revoke_all_refresh_tokens(db, user.id)
        await user_repo.bump_token_version(db, user.id)
        await db.commit()
        logger.warning(
            "리프레시 토큰 재사용 감지: 모든 세션 종료",
            extra={"extra_data": {"user_id": user.id}},
        )
        raise UnauthorizedError("유효하지 않은 리프레시 토큰입니다.", code="INVALID_REFRESH_TOKEN")

    access_token, new_refresh_token = await _issue_session(db, user, now)
    await db.commit()

    logger.info("토큰 갱신", extra={"extra_data": {"user_id": user.id}})
    return AuthResult(access_token=access_token, refresh_token=new_refresh_token, user=user)


async def logout(db: AsyncSession, user: User, refresh_token: str | None) -> None:
    """현재 세션의 refresh 토큰만 제거: 이미 없어도 성공"""
    if refresh_token:
        await user_repo.remove_refresh_token(db, user.id, hash_token(refresh_token))
        await db.commit()
    logger.info("로그아웃", extra={"extra_data": {"user_id": user.id}})


def forgot_password(
    email: str,
    *,
    clock: Clock,
    mailer: Mailer,
    session_factory: async_sessionmaker[AsyncSession],
    background_tasks: BackgroundTasks,
) -> str:
    """
    비밀번호 재설정 요청

    이메일 존재 여부와 관계없이 항상 같은 메시지를 돌려준다 (계정 존재 여부 노출 방지).
    조회/토큰 저장/메일 발송은 모두 응답 이후 백그라운드에서 실행한다.
    → 요청 처리 중에는 DB에 접근하지 않으므로 응답 시간으로도 구분되지 않음
    """
    background_tasks.add_task(issue_password_reset, session_factory, mailer, email, clock.now())
    return FORGOT_PASSWORD_MESSAGE


async def issue_password_reset(
    session_factory: async_sessionmaker[AsyncSession], mailer: Mailer, email: str, now: datetime
) -> None:
    """재설정 토큰 발급 + 메일 발송 (백그라운드 태스크, 요청 세션과 별도의 세션 사용)"""
    async with session_factory() as db:
        user = await user_repo.find_by_email(db, email)
        if not user:
            logger.warning(
                "존재하지 않는 이메일로 비밀번호 재설정 요청",
                extra={"extra_data": {"email": mask_email(email)}},
            )
            return

        reset_token = secrets.token_hex(32)
        expires_at = now + timedelta(minutes=settings.password_reset_expire_minutes)
        await user_repo.set_password_reset(db, user.id, hash_token(reset_token), expires_at)
        await db.commit()
        nickname, address = user.nickname, user.email

    logger.info("비밀번호 재설정 요청", extra={"extra_data": {"user_id": user.id}})
    await send_password_reset_email(mailer, nickname, address, reset_token)


async def reset_password(db: AsyncSession, token: str, new_password: str, *, clock: Clock) -> None:
    """
    비밀번호 재설정 적용

    성공 시 재설정 토큰 삭제 + 모든 refresh 토큰 삭제 + 기존 access 토큰 무효화
    → 모든 기기에서 다시 로그인해야 한다
    """
    now = clock.now()
    token_hash = hash_token(token)

    user = await user_repo.find_by_reset_token(db, token_hash, now)
    if not user:
        raise ValidationError("유효하지 않거나 만료된 재설정 토큰입니다.", code="INVALID_OR_EXPIRED_TOKEN")

    applied = await user_repo.apply_password_reset(
        db, user.id, token_hash, get_password_hash(new_password), now
    )
    if not applied:
        # 같은 토큰으로 들어온 다른 요청이 먼저 사용함
        await db.rollback()
        raise ValidationError("유효하지 않거나 만료된 재설정 토큰입니다.", code="INVALID_OR_EXPIRED_TOKEN")

    await user_repo.revoke_all_refresh_tokens(db, user.id)
    await db.commit()

    logger.info("비밀번호 재설정 완료", extra={"extra_data": {"user_id": user.id}})
