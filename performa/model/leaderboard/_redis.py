from __future__ import annotations
from typing import Any, Dict, List
import math
import redis.asyncio as redis

from ...helpers import to_iso


# ---- keys
SCORES = "leaderboard:scores"
def k_entry(user_id: str) -> str: return f"leaderboard:entry:{user_id}"


# updated_at (epoch seconds) / TIE_SCALE stays below 1 until year 2286
TIE_SCALE = 1e10


def rank_score(score: int, updated_at: float) -> float:
    """Sorted-set score: integer score, ties broken by the later update."""
    return float(score) + float(updated_at) / TIE_SCALE


class LeaderboardStore:
    def __init__(self, r: redis.Redis) -> None:
        self.r = r

    async def record(self, entry: Dict[str, Any]) -> None:
        # mapping values must be strings for decode_responses=True
        uid = entry["user_id"]
        pipe = self.r.pipeline(transaction=True)
        pipe.hset(k_entry(uid), mapping={
            "display_name": entry.get("display_name") or "Fan",
            "points": str(int(entry["points"])),
            "streak": str(int(entry["streak"])),
            "weekly_signal": str(int(entry["weekly_signal"])),
            "updated_at": str(float(entry["updated_at"])),
        })
        pipe.zadd(SCORES, {uid: rank_score(entry["score"],
                                           entry["updated_at"])})
        await pipe.execute()

    async def top(self, limit: int) -> List[Dict[str, Any]]:
        ranked = await self.r.zrevrange(SCORES, 0, max(0, limit - 1),
                                        withscores=True)
        pipe = self.r.pipeline()
        for uid, _ in ranked:
            pipe.hgetall(k_entry(uid))
        rows = await pipe.execute()

        out = []
        for (uid, score), h in zip(ranked, rows):
            if not h:
                # house-keeping: score without entry hash
                await self.r.zrem(SCORES, uid)
                continue
            out.append({
                "user_id": uid,
                "display_name": h.get("display_name", "Fan"),
                "points": int(h.get("points", "0")),
                "streak": int(h.get("streak", "0")),
                "weekly_signal": int(h.get("weekly_signal", "0")),
                "score": math.floor(score),
                "updated_at": to_iso(float(h.get("updated_at", "0"))),
            })
        return out
