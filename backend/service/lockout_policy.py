"""
계정 잠금 정책

상태는 (login_attempts, lock_until) 두 값뿐이다.
- 실패: 잠금이 만료됐으면 attempts=1 + 잠금 해제,
        아니면 attempts+1, 한도 도달 & 아직 잠기지 않았으면 lock_until = now + 잠금시간
- 성공: attempts=0, 잠금 해제
- 잠김 여부: lock_until이 있고 미래인지 (저장하지 않고 항상 계산)

실패 전이는 UPDATE 한 문장으로 표현한다 (동시 로그인 실패가 서로의 카운트를 덮어쓰지 않도록).
"""
from datetime import datetime, timedelta
from sqlalchemy import and_, case, literal, null


def is_locked(lock_until: datetime | None, now: datetime) -> bool:
    return lock_until is not None and lock_until > now


def failure_update_values(
    attempts_col, lock_until_col, now: datetime, *, max_attempts: int, lockout_duration: timedelta
) -> dict:
    """
    로그인 실패 1회의 전이를 SQL CASE 식으로 반환

    UPDATE의 SET 절은 모두 "변경 전" 값을 읽으므로 두 CASE가 같은 스냅샷을 본다.
    Returns:
        {attempts_col: <expr>, lock_until_col: <expr>}: update().values()에 그대로 전달
    """
    expired = and_(lock_until_col.is_not(None), lock_until_col <= now)
    reaches_limit = and_(lock_until_col.is_(None), attempts_col + 1 >= max_attempts)

    return {
        attempts_col: case((expired, 1), else_=attempts_col + 1),
        lock_until_col: case(
            (expired, null()),
            (reaches_limit, literal(now + lockout_duration, type_=lock_until_col.type)),
            else_=lock_until_col,
        ),
    }
