from datetime import datetime, timezone


class Clock:
    """
    현재 시각 공급자

    만료/잠금 비교는 모두 이 객체를 통해 시각을 얻는다.
    테스트에서는 get_clock을 override해서 시간을 고정하거나 앞으로 돌린다.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


system_clock = Clock()


# FastAPI Depends()용
def get_clock() -> Clock:
    return system_clock
