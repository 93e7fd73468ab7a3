import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from core.logger import get_logger, generate_request_id, request_id_var

logger = get_logger("http")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    모든 HTTP 요청에 추적 ID를 붙이고 결과를 로그로 남기는 미들웨어

    1. 요청마다 고유 request_id 부여 (ContextVar → 같은 요청의 모든 로그에 포함)
    2. 응답 시간 측정
    3. JSON 로그 출력
    4. X-Request-ID 응답 헤더
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        req_id = generate_request_id()
        token = request_id_var.set(req_id)
        start = time.perf_counter()

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start) * 1000

            logger.info(
                f"{request.method} {request.url.path} {response.status_code} {duration_ms:.0f}ms",
                extra={"extra_data": {
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round(duration_ms, 1),
                    "ip": request.client.host if request.client else None,
                }}
            )

            response.headers["X-Request-ID"] = req_id
            return response
        finally:
            request_id_var.reset(token)
