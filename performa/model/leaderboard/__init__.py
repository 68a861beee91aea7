import os
from typing import Optional, Callable, AsyncContextManager
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

Gated = Callable[[], AsyncContextManager[None]]

BACKEND = os.getenv("LEADERBOARD_BACKEND", "pg").lower()  # 'pg' | 'redis'

if BACKEND == "redis":
    from ._redis import LeaderboardStore as _LeaderboardStore
else:
    from ._postgres import LeaderboardStore as _LeaderboardStore

MAX_LIMIT = 50


def clamp_limit(limit: int) -> int:
    return max(1, min(MAX_LIMIT, int(limit)))


def new_store(*, db: Optional[AsyncSession] = None,
              r: Optional[redis.Redis] = None,
              gated: Gated = None):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError(
                "LeaderboardStore(redis) requires r=redis.Redis"
            )
        return _LeaderboardStore(r=r)
    if db is None:
        raise RuntimeError("LeaderboardStore(pg) requires db=AsyncSession")
    if gated is None:
        raise RuntimeError("LeaderboardStore(pg) requires gated=Gated")
    return _LeaderboardStore(db=db, gated=gated)


LeaderboardStore = _LeaderboardStore
__all__ = ["LeaderboardStore", "new_store", "clamp_limit", "BACKEND"]
