from datetime import datetime
from typing import Annotated, Literal
from pydantic import BeforeValidator, EmailStr, Field
from schemas.common import CamelModel


def _normalize(value):
    # 앞뒤 공백 제거 + 소문자 (검증 전에 적용)
    if isinstance(value, str):
        return value.strip().lower()
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return _normalize(value)


Nickname = Annotated[str, BeforeValidator(_normalize)]
Email = Annotated[EmailStr, BeforeValidator(_normalize)]
OptionalEmail = Annotated[EmailStr | None, BeforeValidator(_blank_to_none)]


class CheckUserRequest(CamelModel):
    """닉네임 존재 여부 확인 (이메일로는 조회하지 않음)"""
    nickname: Nickname = Field(..., min_length=1, description="닉네임")


class LoginRequest(CamelModel):
    nickname: Nickname = Field(..., min_length=1, description="닉네임")
    password: str = Field(..., min_length=1, description="비밀번호")


class RegisterRequest(CamelModel):
    """회원가입 요청 시 받을 데이터"""
    nickname: Nickname = Field(
        ..., min_length=3, max_length=30, pattern=r"^[a-z0-9_]+$",
        description="닉네임 (소문자, 숫자, _ 만 허용)",
    )
    password: str = Field(..., min_length=8, max_length=100, description="비밀번호 (8~100자)")
    email: OptionalEmail = Field(None, description="이메일 (선택, 비밀번호 재설정용)")
    captcha_token: str | None = None


class ForgotPasswordRequest(CamelModel):
    email: Email


class ResetPasswordRequest(CamelModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=100)


class PublicProfile(CamelModel):
    """클라이언트에 돌려줄 유저 정보 (비밀번호/토큰/잠금 상태 제외!)"""
    id: str
    nickname: str
    email: str | None = None
    role: str
    is_active: bool
    last_login: datetime | None = None
    created_at: datetime | None = None


def to_public_profile(user) -> PublicProfile:
    """
    User → PublicProfile

    직렬화 시 민감 필드를 "숨기는" 방식이 아니라, 노출할 필드만 골라 담는다.
    응답 경계에서는 항상 이 함수를 거친다.
    """
    return PublicProfile(
        id=user.id,
        nickname=user.nickname,
        email=user.email,
        role=user.role,
        is_active=user.is_active,
        last_login=user.last_login,
        created_at=user.created_at,
    )


class CheckUserResult(CamelModel):
    exists: bool
    action: Literal["register", "login"]
    message: str


class AuthData(CamelModel):
    """로그인/회원가입 성공 시: refresh 토큰은 본문이 아니라 HttpOnly 쿠키로만 전달"""
    access_token: str
    user: PublicProfile


class AccessTokenData(CamelModel):
    access_token: str
