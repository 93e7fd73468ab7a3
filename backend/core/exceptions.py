import traceback
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import settings
from core.logger import get_logger

logger = get_logger("errors")


class AppError(Exception):
    """
    운영상 예상 가능한 에러의 공통 부모

    - status_code: HTTP 상태 코드
    - code: 클라이언트가 분기할 수 있는 고정 문자열 (예: ACCOUNT_LOCKED)
    - message: 사람이 읽는 메시지

    프로그래밍 오류(KeyError 등)와 구분하기 위해 서비스 계층은 이 계열만 던진다.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "INTERNAL_ERROR"
    default_message = "서버 내부 오류가 발생했습니다."

    def __init__(self, message: str | None = None, code: str | None = None, errors: list | None = None):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.errors = errors
        super().__init__(self.message)


class BadRequestError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "BAD_REQUEST"
    default_message = "잘못된 요청입니다."


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = "UNAUTHORIZED"
    default_message = "인증이 필요합니다."


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "FORBIDDEN"
    default_message = "접근 권한이 없습니다."


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"
    default_message = "리소스를 찾을 수 없습니다."


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "CONFLICT"
    default_message = "이미 존재하는 데이터입니다."


class ValidationError(AppError):
    status_code = 422
    default_code = "VALIDATION_ERROR"
    default_message = "입력값 검증에 실패했습니다."


class TooManyRequestsError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_code = "RATE_LIMIT_EXCEEDED"
    default_message = "요청이 너무 많습니다. 잠시 후 다시 시도해주세요."


def _error_body(code: str, message: str, errors: list | None = None, exc: Exception | None = None) -> dict:
    error = {"code": code, "message": message}
    if errors:
        error["errors"] = errors
    # 스택 트레이스는 production이 아닐 때만 노출
    if exc is not None and not settings.is_production:
        error["name"] = type(exc).__name__
        error["stack"] = "".join(traceback.format_exception(exc))
    return {"success": False, "error": error}


def _request_context(request: Request) -> dict:
    return {
        "method": request.method,
        "path": request.url.path,
        "ip": request.client.host if request.client else None,
    }


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    logger.info(
        f"{exc.code}: {exc.message}",
        extra={"extra_data": {**_request_context(request), "code": exc.code, "status": exc.status_code}},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.code, exc.message, exc.errors),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=_error_body("VALIDATION_ERROR", "입력값 검증에 실패했습니다.", errors),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # 없는 경로(404), 허용되지 않은 메서드(405) 등 프레임워크가 던지는 에러도 같은 형태로
    code = "NOT_FOUND" if exc.status_code == status.HTTP_404_NOT_FOUND else "HTTP_ERROR"
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    # 저장소의 unique 제약 위반 → 409
    logger.warning(
        "unique 제약 위반",
        extra={"extra_data": _request_context(request)},
    )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=_error_body("DUPLICATE_KEY", "이미 존재하는 데이터입니다."),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"처리되지 않은 예외: {type(exc).__name__}",
        exc_info=exc,
        extra={"extra_data": _request_context(request)},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("INTERNAL_ERROR", AppError.default_message, exc=exc),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """HTTP 경계에서 에러를 응답으로 바꾸는 유일한 지점"""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
