from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path

class Settings(BaseSettings):
    # 실행 환경: development / production
    environment: str = "development"

    # JWT 설정: access / refresh 서명 키는 반드시 분리
    jwt_secret: str = "dev-access-secret-change-in-production"
    jwt_refresh_secret: str = "dev-refresh-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "fullstack-app"
    jwt_audience: str = "fullstack-app-client"
    jwt_access_expire_minutes: int = 15
    jwt_refresh_expire_days: int = 7

    # 비밀번호 해싱 비용 (테스트에서는 4로 낮춤)
    bcrypt_rounds: int = 12

    # 계정 잠금 정책
    max_login_attempts: int = 5
    lockout_minutes: int = 15

    # 비밀번호 재설정 토큰 유효시간
    password_reset_expire_minutes: int = 60

    # 유저당 동시에 유지할 수 있는 리프레시 토큰(세션) 수
    max_refresh_tokens: int = 5

    # Redis (rate limit 카운터 저장소)
    redis_url: str = "redis://redis:6379"

    # Rate limit: 고정 윈도우
    rate_limit_enabled: bool = True
    auth_rate_limit_max: int = 10
    auth_rate_limit_window_seconds: int = 15 * 60
    password_reset_rate_limit_max: int = 5
    password_reset_rate_limit_window_seconds: int = 60 * 60

    # Captcha (false면 개발 모드: 항상 통과)
    captcha_enabled: bool = False
    recaptcha_secret: str = ""
    recaptcha_verify_url: str = "https://www.google.com/recaptcha/api/siteverify"

    # Email (false면 개발 모드: 발송 대신 로그)
    email_enabled: bool = False
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = "no-reply@localhost"

    # 비밀번호 재설정 링크의 기준 주소
    frontend_url: str = "http://localhost:5173"

    model_config = SettingsConfigDict(
        # config.py -> core -> backend -> 프로젝트 루트 아래의 .env 찾기
        env_file=Path(__file__).parent.parent.parent / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,     # 환경변수 대소문자 무시
    )

    # Database
    database_url: str
    database_echo: bool = False

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


# 싱글톤 인스턴스: 앱 어디서든 import해서 사용
settings = Settings()
