from __future__ import annotations
from typing import Any, Dict, List, Callable, AsyncContextManager

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import FanEngagementProfile
from ...helpers import to_iso
from ...vault.engagement import STREAK_WEIGHT


class LeaderboardStore:
    """Ranks straight off fan_engagement_profiles; nothing to maintain."""

    def __init__(
        self, *, db: AsyncSession,
        gated: Callable[[], AsyncContextManager[None]]
    ) -> None:
        self.db = db
        self.gated = gated

    async def record(self, entry: Dict[str, Any]) -> None:
        # the profile row is the source of truth
        return None

    async def top(self, limit: int) -> List[Dict[str, Any]]:
        p = FanEngagementProfile
        score = p.points + p.weekly_signal + p.streak * STREAK_WEIGHT
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(
                    select(
                        p.user_id, p.display_name, p.points, p.streak,
                        p.weekly_signal, p.updated_at, score.label("score"),
                    )
                    .order_by(score.desc(), p.updated_at.desc())
                    .limit(int(limit))
                )).mappings().all()
        return [{
            "user_id": r["user_id"],
            "display_name": r["display_name"] or "Fan",
            "points": int(r["points"] or 0),
            "streak": int(r["streak"] or 0),
            "weekly_signal": int(r["weekly_signal"] or 0),
            "score": int(r["score"] or 0),
            "updated_at": to_iso(r["updated_at"]),
        } for r in rows]
