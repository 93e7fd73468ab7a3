import math
from sqlalchemy.ext.asyncio import AsyncSession
from core.exceptions import NotFoundError
from core.logger import get_logger
from models.users import User
from repository import user_repo
from schemas.auth import to_public_profile
from schemas.user import Pagination, UserPage, UserStats, UserUpdate

logger = get_logger("users")


async def list_users(
    db: AsyncSession, page: int, limit: int, role: str | None = None, is_active: bool | None = None
) -> UserPage:
    """유저 목록 (페이지네이션 + 역할/활성 필터)"""
    users = await user_repo.find_page(
        db, offset=(page - 1) * limit, limit=limit, role=role, is_active=is_active
    )
    total = await user_repo.count(db, role=role, is_active=is_active)
    pages = math.ceil(total / limit)

    return UserPage(
        users=[to_public_profile(u) for u in users],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            pages=pages,
            has_next=page < pages,
            has_prev=page > 1,
        ),
    )


async def get_user_stats(db: AsyncSession) -> UserStats:
    by_role = await user_repo.count_grouped_by(db, User.role)
    by_status = await user_repo.count_grouped_by(db, User.is_active)

    return UserStats(
        total=sum(by_role.values()),
        by_role=by_role,
        by_status={
            "active": by_status.get(True, 0),
            "inactive": by_status.get(False, 0),
        },
    )


async def get_user(db: AsyncSession, user_id: str) -> User:
    """유저 단건 조회: 없으면 404"""
    user = await user_repo.find_by_id(db, user_id)
    if not user:
        raise NotFoundError("사용자를 찾을 수 없습니다.")
    return user


async def update_user(db: AsyncSession, user_id: str, data: UserUpdate) -> User:
    """
    역할/활성 상태 변경 (관리자)

    비활성화하면 해당 유저의 모든 세션도 함께 종료한다.
    """
    values = data.model_dump(exclude_unset=True, exclude_none=True)
    user = await get_user(db, user_id)

    if values:
        await user_repo.update_fields(db, user_id, values)
        if values.get("is_active") is False:
            await user_repo.revoke_all_refresh_tokens(db, user_id)
        await db.commit()
        await db.refresh(user)
        logger.info("유저 정보 변경", extra={"extra_data": {"user_id": user_id, "fields": sorted(values)}})

    return user


async def delete_user(db: AsyncSession, user_id: str) -> None:
    """유저 삭제: 없으면 404"""
    deleted = await user_repo.delete_user(db, user_id)
    if not deleted:
        await db.rollback()
        raise NotFoundError("사용자를 찾을 수 없습니다.")
    await db.commit()
    logger.info("유저 삭제", extra={"extra_data": {"user_id": user_id}})
