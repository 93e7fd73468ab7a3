from typing import Literal
from pydantic import Field
from schemas.common import CamelModel
from schemas.auth import PublicProfile


class UserUpdate(CamelModel):
    """관리자용 수정: 보낸 필드만 반영"""
    role: Literal["user", "admin"] | None = None
    is_active: bool | None = None


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool


class UserPage(CamelModel):
    users: list[PublicProfile]
    pagination: Pagination


class UserStats(CamelModel):
    total: int
    by_role: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)
