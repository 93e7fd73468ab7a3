from typing import Literal
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.security import get_current_admin_user, require_owner_or_admin
from models.users import User
from schemas.auth import PublicProfile, to_public_profile
from schemas.common import ApiResponse
from schemas.user import UserPage, UserStats, UserUpdate
from service import user_service

router = APIRouter()


@router.get("", response_model=ApiResponse[UserPage], response_model_exclude_none=True)
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: Literal["user", "admin"] | None = None,
    is_active: bool | None = Query(None, alias="isActive"),
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """전체 유저 목록을 조회합니다. (관리자 전용)"""
    result = await user_service.list_users(db, page, limit, role=role, is_active=is_active)
    return ApiResponse(data=result)


@router.get("/stats", response_model=ApiResponse[UserStats], response_model_exclude_none=True)
async def user_stats(
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """역할별 / 활성 상태별 유저 수를 집계합니다. (관리자 전용)"""
    return ApiResponse(data=await user_service.get_user_stats(db))


@router.get("/{user_id}", response_model=ApiResponse[PublicProfile], response_model_exclude_none=True)
async def get_user(
    user_id: str,
    current_user: User = Depends(require_owner_or_admin()),
    db: AsyncSession = Depends(get_db),
):
    """유저 한 명을 조회합니다. 본인 또는 관리자만 가능합니다."""
    user = await user_service.get_user(db, user_id)
    return ApiResponse(data=to_public_profile(user))


@router.patch("/{user_id}", response_model=ApiResponse[PublicProfile], response_model_exclude_none=True)
async def update_user(
    user_id: str,
    data: UserUpdate,
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """역할이나 활성 상태를 변경합니다. 비활성화하면 모든 세션이 종료됩니다."""
    user = await user_service.update_user(db, user_id, data)
    return ApiResponse(data=to_public_profile(user), message="유저 정보가 변경되었습니다.")


@router.delete("/{user_id}", response_model=ApiResponse[None], response_model_exclude_none=True)
async def delete_user(
    user_id: str,
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """유저를 삭제합니다. (관리자 전용)"""
    await user_service.delete_user(db, user_id)
    return ApiResponse(message="유저가 삭제되었습니다.")
