from collections.abc import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from core.config import settings

# 1. Async 엔진 생성
#    - echo: 실행되는 SQL을 콘솔에 출력 (개발용, DATABASE_ECHO로 제어)
#    - pool_size: 커넥션 풀에 유지할 연결 수
#    - max_overflow: pool_size 초과 시 추가 허용 연결 수
engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=5,
    max_overflow=10
)


# 2. 세션 팩토리
#    - expire_on_commit=False: commit 후에도 객체 속성에 접근 가능
#      (True면 commit 후 속성 접근 시 LazyLoad → async에서 에러 발생)
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


# 3. Base 클래스: 모든 모델이 상속받는 부모
class Base(DeclarativeBase):
    pass


# 4. DB 세션 DI (Dependency Injection)
#    전역 세션을 쓰지 않고, 요청마다 세션을 주입받아 서비스에 명시적으로 넘긴다
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


# 5. 요청 세션과 별도로 세션이 필요한 작업용 (백그라운드 태스크 등)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session
