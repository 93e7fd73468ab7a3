import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import Clock, get_clock
from core.config import settings
from core.database import get_db
from core.exceptions import ForbiddenError, UnauthorizedError
from models.users import User
from repository import user_repo

# HTTPBearer: Authorization 헤더에서 "Bearer <token>" 자동 추출
# auto_error=False: 헤더가 없으면 accessToken 쿠키로 대체하기 때문에 자동 에러를 끕니다.
security_schema = HTTPBearer(auto_error=False)

ACCESS_TOKEN_COOKIE = "accessToken"


@dataclass(frozen=True)
class AccessClaims:
    user_id: str
    token_version: int


@dataclass(frozen=True)
class RefreshClaims:
    user_id: str


# ===== 토큰 발급 =====

def _encode(payload: dict, secret: str, now: datetime, ttl: timedelta) -> str:
    payload = {
        **payload,
        "jti": uuid.uuid4().hex,   # 같은 초에 발급돼도 토큰이 달라지도록
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, role: str, token_version: int, now: datetime) -> str:
    return _encode(
        {"sub": user_id, "role": role, "ver": token_version, "type": "access"},
        settings.jwt_secret,
        now,
        timedelta(minutes=settings.jwt_access_expire_minutes),
    )


def create_refresh_token(user_id: str, now: datetime) -> str:
    return _encode(
        {"sub": user_id, "type": "refresh"},
        settings.jwt_refresh_secret,
        now,
        timedelta(days=settings.jwt_refresh_expire_days),
    )


# ===== 토큰 검증 =====

def _decode(token: str, secret: str, expected_type: str, now: datetime) -> dict:
    """
    서명 + issuer/audience + 만료 + 토큰 종류를 검증

    만료는 라이브러리 시계 대신 주입된 now로 직접 비교한다.
    Raises:
        UnauthorizedError(TOKEN_EXPIRED | INVALID_TOKEN)
    """
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"verify_exp": False},
        )
    except JWTError:
        raise UnauthorizedError("유효하지 않은 토큰입니다.", code="INVALID_TOKEN")

    exp = payload.get("exp")
    if not isinstance(exp, int) or now.timestamp() >= exp:
        raise UnauthorizedError("토큰이 만료되었습니다.", code="TOKEN_EXPIRED")

    # refresh 토큰을 access 토큰처럼 쓰는 것(또는 그 반대)을 차단
    if payload.get("type") != expected_type or not payload.get("sub"):
        raise UnauthorizedError("유효하지 않은 토큰 종류입니다.", code="INVALID_TOKEN")

    return payload


def decode_access_token(token: str, now: datetime) -> AccessClaims:
    payload = _decode(token, settings.jwt_secret, "access", now)
    return AccessClaims(
        user_id=payload["sub"],
        token_version=payload.get("ver", 0),
    )


def decode_refresh_token(token: str, now: datetime) -> RefreshClaims:
    payload = _decode(token, settings.jwt_refresh_secret, "refresh", now)
    return RefreshClaims(user_id=payload["sub"])


# ===== 인증 게이트 (FastAPI Depends) =====

def _extract_token(request: Request, credentials: HTTPAuthorizationCredentials | None) -> str | None:
    # 1. Authorization 헤더 우선
    if credentials and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    # 2. 쿠키 (SSR 등 대체 경로)
    return request.cookies.get(ACCESS_TOKEN_COOKIE)


async def _authenticate(request: Request, credentials, db: AsyncSession, clock: Clock) -> User:
    token = _extract_token(request, credentials)
    if not token:
        raise UnauthorizedError("인증 토큰이 제공되지 않았습니다.", code="NO_TOKEN")

    now = clock.now()
    claims = decode_access_token(token, now)

    user = await user_repo.find_by_id(db, claims.user_id)
    if not user:
        raise UnauthorizedError("사용자를 찾을 수 없습니다.", code="INVALID_TOKEN")

    # 비밀번호 재설정 / 토큰 탈취 감지 이후 발급 이전 토큰은 거부
    if claims.token_version != user.token_version:
        raise UnauthorizedError("더 이상 유효하지 않은 토큰입니다.", code="INVALID_TOKEN")

    if not user.is_active:
        raise UnauthorizedError("비활성화된 계정입니다.", code="ACCOUNT_DEACTIVATED")

    if user.is_locked_at(now):
        raise UnauthorizedError("계정이 일시적으로 잠겼습니다. 잠시 후 다시 시도해주세요.", code="ACCOUNT_LOCKED")

    return user


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security_schema),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> User:
    """access 토큰을 검증하고 DB에서 활성 상태의 User 객체를 반환합니다."""
    user = await _authenticate(request, credentials, db, clock)
    request.state.user = user
    return user


async def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security_schema),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> User | None:
    """토큰이 없거나 잘못돼도 에러 없이 익명(None)으로 통과시킵니다."""
    try:
        user = await _authenticate(request, credentials, db, clock)
    except UnauthorizedError:
        return None
    request.state.user = user
    return user


def require_role(*roles: str) -> Callable:
    """지정한 역할 중 하나를 가진 사용자만 통과시키는 의존성을 만듭니다."""

    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise ForbiddenError(f"접근 권한이 없습니다. 필요한 역할: {', '.join(roles)}")
        return current_user

    return checker


get_current_admin_user = require_role("admin")


def _path_user_id(request: Request) -> str:
    return request.path_params["user_id"]


def require_owner_or_admin(get_owner_id: Callable[[Request], str] = _path_user_id) -> Callable:
    """
    리소스 소유자 본인 또는 관리자만 통과

    Args:
        get_owner_id: 요청에서 리소스 소유자 id를 꺼내는 함수 (기본: 경로의 user_id)
    """

    async def checker(request: Request, current_user: User = Depends(get_current_user)) -> User:
        if current_user.role == "admin":
            return current_user
        if str(current_user.id) != str(get_owner_id(request)):
            raise ForbiddenError("본인의 리소스만 접근할 수 있습니다.")
        return current_user

    return checker
