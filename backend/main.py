from fastapi import FastAPI
from contextlib import asynccontextmanager
from core.dependencies import init_connections, close_connections
from core.database import engine
from core.exceptions import register_exception_handlers
from core.middleware import RequestLoggingMiddleware
from router import auth, user

@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_connections()
        yield
    finally:
        await close_connections()
        # DB 연결 풀 정리
        await engine.dispose()

app = FastAPI(
    title="Auth Server",
    description="닉네임 기반 JWT 인증 / 세션 관리 API",
    version="0.1.0",
    lifespan=lifespan
)

# 미들웨어 등록 (모든 요청에 request_id + 접근 로그)
app.add_middleware(RequestLoggingMiddleware)

# 에러 → {"success": false, "error": {...}} 응답 변환
register_exception_handlers(app)

app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
app.include_router(user.router, prefix="/api/users", tags=["Users"])

@app.get("/health")
async def health():
    return {"status": "ok"}
