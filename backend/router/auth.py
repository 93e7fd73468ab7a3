from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.clock import Clock, get_clock
from core.config import settings
from core.database import get_db, get_session_factory
from core.dependencies import get_captcha_verifier, get_mailer
from core.security import get_current_user
from models.users import User
from schemas.auth import (
    AccessTokenData,
    AuthData,
    CheckUserRequest,
    CheckUserResult,
    ForgotPasswordRequest,
    LoginRequest,
    PublicProfile,
    RegisterRequest,
    ResetPasswordRequest,
    to_public_profile,
)
from schemas.common import ApiResponse
from service import auth_service
from service.captcha_service import CaptchaVerifier
from service.email_service import Mailer
from service.rate_limit_service import auth_limiter, password_reset_limiter

router = APIRouter()

REFRESH_TOKEN_COOKIE = "refreshToken"


# ===== refresh 토큰 쿠키 =====
# HttpOnly: JS에서 읽을 수 없음 / Secure: production에서만 (로컬 http 개발 허용)
# SameSite: production은 strict, 개발은 lax

def _cookie_options() -> dict:
    return {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "strict" if settings.is_production else "lax",
        "path": "/",
    }


def _set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        REFRESH_TOKEN_COOKIE,
        refresh_token,
        max_age=settings.jwt_refresh_expire_days * 24 * 60 * 60,
        **_cookie_options(),
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(REFRESH_TOKEN_COOKIE, **_cookie_options())


def _auth_payload(result: auth_service.AuthResult) -> AuthData:
    return AuthData(access_token=result.access_token, user=to_public_profile(result.user))


# ===== 엔드포인트 =====

@router.post(
    "/check",
    response_model=ApiResponse[CheckUserResult],
    response_model_exclude_none=True,
    dependencies=[Depends(auth_limiter)],
)
async def check_user(data: CheckUserRequest, db: AsyncSession = Depends(get_db)):
    """닉네임이 가입되어 있는지 확인하고 다음 단계(login/register)를 알려줍니다."""
    result = await auth_service.check_user(db, data.nickname)
    return ApiResponse(data=result)


@router.post(
    "/login",
    response_model=ApiResponse[AuthData],
    response_model_exclude_none=True,
    dependencies=[Depends(auth_limiter)],
)
async def login(
    data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """닉네임/비밀번호를 확인하고 access 토큰(본문)과 refresh 토큰(쿠키)을 발급합니다."""
    result = await auth_service.login(db, data.nickname, data.password, clock=clock)
    _set_refresh_cookie(response, result.refresh_token)
    return ApiResponse(data=_auth_payload(result), message="로그인 성공")


@router.post(
    "/register",
    response_model=ApiResponse[AuthData],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_limiter)],
)
async def register(
    data: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    captcha: CaptchaVerifier = Depends(get_captcha_verifier),
):
    """새로운 사용자를 등록하고 바로 로그인 상태로 만듭니다."""
    result = await auth_service.register(db, data, clock=clock, captcha=captcha)
    _set_refresh_cookie(response, result.refresh_token)
    return ApiResponse(data=_auth_payload(result), message="회원가입 성공")


@router.post("/refresh", response_model=ApiResponse[AccessTokenData], response_model_exclude_none=True)
async def refresh(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """쿠키의 refresh 토큰을 새 토큰 쌍으로 교체합니다 (사용한 토큰은 폐기)."""
    result = await auth_service.refresh_session(db, request.cookies.get(REFRESH_TOKEN_COOKIE), clock=clock)
    _set_refresh_cookie(response, result.refresh_token)
    return ApiResponse(data=AccessTokenData(access_token=result.access_token))


@router.post("/logout", response_model=ApiResponse[None], response_model_exclude_none=True)
async def logout(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """현재 세션의 refresh 토큰을 폐기하고 쿠키를 지웁니다."""
    await auth_service.logout(db, current_user, request.cookies.get(REFRESH_TOKEN_COOKIE))
    _clear_refresh_cookie(response)
    return ApiResponse(message="로그아웃 되었습니다.")


@router.post(
    "/forgot-password",
    response_model=ApiResponse[None],
    response_model_exclude_none=True,
    dependencies=[Depends(password_reset_limiter)],
)
async def forgot_password(
    data: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
    mailer: Mailer = Depends(get_mailer),
):
    """비밀번호 재설정 메일을 요청합니다. 이메일 존재 여부와 관계없이 같은 응답을 돌려줍니다."""
    message = auth_service.forgot_password(
        data.email,
        clock=clock,
        mailer=mailer,
        session_factory=session_factory,
        background_tasks=background_tasks,
    )
    return ApiResponse(message=message)


@router.post(
    "/reset-password",
    response_model=ApiResponse[None],
    response_model_exclude_none=True,
    dependencies=[Depends(password_reset_limiter)],
)
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """재설정 토큰으로 새 비밀번호를 설정합니다. 모든 기기에서 로그아웃됩니다."""
    await auth_service.reset_password(db, data.token, data.new_password, clock=clock)
    return ApiResponse(message="비밀번호가 재설정되었습니다. 새 비밀번호로 다시 로그인해주세요.")


@router.get("/me", response_model=ApiResponse[PublicProfile], response_model_exclude_none=True)
async def get_me(current_user: User = Depends(get_current_user)):
    """현재 로그인한 사용자의 공개 프로필을 반환합니다."""
    return ApiResponse(data=to_public_profile(current_user))
