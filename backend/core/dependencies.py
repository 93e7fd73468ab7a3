import redis.asyncio as airedis
import httpx
from core.config import settings
from core.logger import get_logger
from service.captcha_service import CaptchaVerifier
from service.email_service import Mailer

logger = get_logger("dependencies")

# 전역 클라이언트: lifespan에서 초기화/정리
_redis_client: airedis.Redis | None = None
_http_client: httpx.AsyncClient | None = None

# === FastAPI Depends()용 함수 ===

async def get_redis() -> airedis.Redis:
    if _redis_client is None:
        raise RuntimeError("Redis가 초기화되지 않았습니다. 서버 시작을 확인하세요.")
    return _redis_client


def get_captcha_verifier() -> CaptchaVerifier:
    return CaptchaVerifier(
        enabled=settings.captcha_enabled,
        secret=settings.recaptcha_secret,
        verify_url=settings.recaptcha_verify_url,
        client=_http_client,
    )


def get_mailer() -> Mailer:
    return Mailer(
        enabled=settings.email_enabled,
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        from_email=settings.email_from,
    )


# === 수명주기 관리 (main.py의 lifespan에서 호출) ===

async def init_connections():
    global _redis_client, _http_client

    _redis_client = airedis.from_url(
        settings.redis_url,
        decode_responses=True,  # bytes → str 자동 변환
    )
    # captcha 등 외부 API 호출용
    _http_client = httpx.AsyncClient(timeout=10.0)

    # 연결 확인
    await _redis_client.ping()
    logger.info("Redis 연결 성공")


async def close_connections():
    global _redis_client, _http_client

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
    if _http_client:
        await _http_client.aclose()
        _http_client = None

    logger.info("모든 연결 종료")
