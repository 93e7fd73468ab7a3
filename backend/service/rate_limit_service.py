import time
from fastapi import Depends, Request
from redis.asyncio import Redis
from core.config import settings
from core.dependencies import get_redis
from core.exceptions import TooManyRequestsError
from core.logger import get_logger

logger = get_logger("rate_limit")


def _make_key(name: str, identifier: str, window_seconds: int) -> str:
    window = int(time.time()) // window_seconds
    return f"ratelimit:{name}:{identifier}:{window}"


async def check_rate_limit(redis: Redis, key: str, limit: int, window_seconds: int) -> int:
    """
    고정 윈도우 카운트 증가 + 한도 확인
    Returns:
        현재 윈도우의 요청 수 (증가 후)
    Raises:
        429 Too Many Requests: 한도 초과 시
    """
    # INCR: 키가 없으면 1로 생성, 있으면 +1
    # 원자적(atomic) 연산이라 동시 요청에도 안전
    current = await redis.incr(key)

    # 윈도우 첫 요청이면 TTL 설정
    if current == 1:
        await redis.expire(key, window_seconds)

    if current > limit:
        logger.warning(
            "rate limit 초과",
            extra={"extra_data": {"type": "RATE_LIMIT_EXCEEDED", "key": key}},
        )
        raise TooManyRequestsError()
    return current


class RateLimiter:
    """
    라우트에 붙이는 rate limit 의존성 (yield 의존성)

    사용법:
        @router.post("/login", dependencies=[Depends(auth_limiter)])

    skip_successful_requests=True 이면 요청 전에 카운트를 올려두고
    핸들러가 예외 없이 끝났을 때 다시 내린다 → 실패한 요청만 남는다.
    (핸들러에서 예외가 나면 yield 지점에서 그대로 전파되어 아래 코드는 실행되지 않음)
    """

    def __init__(self, name: str, limit: int, window_seconds: int, *, skip_successful_requests: bool = False):
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.skip_successful_requests = skip_successful_requests

    async def __call__(self, request: Request, redis: Redis = Depends(get_redis)):
        if not settings.rate_limit_enabled:
            yield
            return

        client_ip = request.client.host if request.client else "unknown"
        key = _make_key(self.name, client_ip, self.window_seconds)
        await check_rate_limit(redis, key, self.limit, self.window_seconds)

        yield

        if self.skip_successful_requests:
            await redis.decr(key)


# 로그인/회원가입/닉네임 확인: 브루트포스 방지 (실패한 요청만 카운트)
auth_limiter = RateLimiter(
    "auth",
    settings.auth_rate_limit_max,
    settings.auth_rate_limit_window_seconds,
    skip_successful_requests=True,
)

# 비밀번호 재설정 요청/적용: 성공 여부와 관계없이 모두 카운트
password_reset_limiter = RateLimiter(
    "password_reset", settings.password_reset_rate_limit_max, settings.password_reset_rate_limit_window_seconds
)
