from typing import Generic, TypeVar
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """파이썬에서는 snake_case, JSON에서는 camelCase (accessToken, isActive ...)"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,   # 파이썬 코드에서는 snake_case 이름으로도 생성 가능
        from_attributes=True,    # SQLAlchemy 모델 객체를 Pydantic 모델로 자동 변환
    )


class ApiResponse(CamelModel, Generic[T]):
    """
    성공 응답 공통 형태

    {"success": true, "data": {...}, "message": "..."}
    실패 응답은 core.exceptions의 핸들러가 {"success": false, "error": {...}}로 만든다.
    """
    success: bool = True
    data: T | None = None
    message: str | None = None
