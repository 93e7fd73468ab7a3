"""
pytest 공통 설정

- DB: 테스트마다 새 SQLite 파일 (aiosqlite + NullPool)
- Redis: fakeredis (테스트마다 새 서버)
- 시계: FrozenClock: advance()로 잠금/만료 시간을 앞당겨 확인
- 메일: RecordingMailer: 보낸 메일을 리스트에 저장
"""
import asyncio
import os
import re
import sys
import tempfile
from datetime import datetime, timedelta, timezone

# 설정 모듈이 import 되기 전에 테스트용 환경변수 지정
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "auth_unused.db")
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "true"
os.environ["CAPTCHA_ENABLED"] = "false"
os.environ["EMAIL_ENABLED"] = "false"

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import fakeredis.aioredis
import pytest
from fastapi import Depends, FastAPI
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool
from starlette.testclient import TestClient

from core.clock import Clock, get_clock
from core.database import Base, get_db, get_session_factory
from core.dependencies import get_mailer, get_redis
from core.exceptions import register_exception_handlers
from core.security import get_optional_user
from models.users import User
from models.refresh_token import RefreshToken
from router import auth, user
from schemas.common import ApiResponse
from service.email_service import EmailTemplate


class FrozenClock(Clock):
    """now()가 항상 같은 값을 돌려주는 시계: advance()로만 움직인다"""

    def __init__(self, start: datetime):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class RecordingMailer:
    """실제로 보내지 않고 (수신자, 템플릿)만 기록"""

    def __init__(self):
        self.sent: list[tuple[str, EmailTemplate]] = []

    async def send(self, to: str, template: EmailTemplate) -> None:
        self.sent.append((to, template))

    def last_reset_token(self) -> str:
        _, template = self.sent[-1]
        return re.search(r"token=([0-9a-f]+)", template.text).group(1)


# ===== 테스트 전용 앱 (미들웨어 없이) =====
test_app = FastAPI()
register_exception_handlers(test_app)
test_app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
test_app.include_router(user.router, prefix="/api/users", tags=["Users"])


@test_app.get("/api/test/optional")
async def optional_auth(current_user: User | None = Depends(get_optional_user)):
    """선택적 인증 확인용: 로그인 여부와 관계없이 200"""
    return ApiResponse(data={"nickname": current_user.nickname if current_user else None})


# ===== fixtures =====

@pytest.fixture
def db_engine(tmp_path):
    """테스트 전용 SQLite 파일 DB (NullPool: 매 요청마다 새 커넥션)"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)

    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create_tables())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def db_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def run_db(db_factory):
    """테스트 코드에서 DB를 직접 조회/수정할 때 사용: run_db(lambda db: ...)"""

    def run(fn):
        async def _run():
            async with db_factory() as session:
                return await fn(session)
        return asyncio.run(_run())

    return run


@pytest.fixture
def clock():
    return FrozenClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(db_factory, clock, mailer):
    """동기식 테스트 클라이언트"""
    redis_server = fakeredis.FakeServer()

    async def override_get_db():
        async with db_factory() as session:
            try:
                yield session
            finally:
                await session.close()

    async def override_get_redis():
        return fakeredis.aioredis.FakeRedis(server=redis_server, decode_responses=True)

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_session_factory] = lambda: db_factory
    test_app.dependency_overrides[get_redis] = override_get_redis
    test_app.dependency_overrides[get_clock] = lambda: clock
    test_app.dependency_overrides[get_mailer] = lambda: mailer

    with TestClient(test_app) as c:
        yield c

    test_app.dependency_overrides.clear()


@pytest.fixture
def register(client):
    """회원가입 헬퍼: 201을 확인하고 응답을 돌려준다"""

    def _register(nickname: str, password: str = "Strong1234!", email: str | None = None):
        body = {"nickname": nickname, "password": password}
        if email:
            body["email"] = email
        response = client.post("/api/auth/register", json=body)
        assert response.status_code == 201, response.text
        return response

    return _register


@pytest.fixture
def make_admin(run_db):
    """DB에서 직접 역할을 admin으로 변경"""

    def _make_admin(user_id: str) -> None:
        async def promote(db):
            await db.execute(update(User).where(User.id == user_id).values(role="admin"))
            await db.commit()
        run_db(promote)

    return _make_admin


@pytest.fixture
def session_count(run_db):
    """유저의 refresh 토큰 (= 로그인 세션) 개수"""

    def _count(user_id: str) -> int:
        async def count(db):
            result = await db.execute(
                select(func.count()).select_from(RefreshToken).where(RefreshToken.user_id == user_id)
            )
            return result.scalar_one()
        return run_db(count)

    return _count


def bearer(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}


def use_refresh_cookie(client: TestClient, refresh_token: str) -> None:
    """쿠키 저장소를 비우고 지정한 refresh 토큰만 보내도록 설정"""
    client.cookies.clear()
    client.cookies.set("refreshToken", refresh_token)
