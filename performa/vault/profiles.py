"""Fan profiles, favorites, vault badges and persisted engagement."""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import AuthUser
from ..errors import VaultError
from ..helpers import now_ts, to_iso
from ..infra.sql import Gated
from ..model.db import FanBadge, FanEngagementProfile, FanFavorite, FanProfile
from . import engagement as E

log = logging.getLogger(__name__)

FAVORITE_TYPES = ("gallery", "watch", "listen")
DEFAULT_BADGE_ID = "visionary"


def profile_dict(p: FanProfile) -> Dict[str, Any]:
    return {
        "id": p.id,
        "email": p.email,
        "name": p.name,
        "bio": p.bio,
        "profile_badge_id": p.profile_badge_id,
        "created_at": to_iso(p.created_at),
    }


def favorite_dict(f: FanFavorite) -> Dict[str, Any]:
    return {"type": f.type, "id": f.item_id, "title": f.title,
            "href": f.href, "image": f.image, "saved_at": to_iso(f.saved_at)}


async def _ensure(db: AsyncSession, user: AuthUser) -> FanProfile:
    profile = await db.get(FanProfile, user.id)
    if profile is None:
        profile = FanProfile(
            id=user.id,
            email=user.email,
            name=user.name or "Fan",
            bio="",
            profile_badge_id=str(user.metadata.get("profileBadgeId")
                                 or DEFAULT_BADGE_ID),
            created_at=now_ts(),
        )
        db.add(profile)
        await db.flush()
    return profile


async def ensure_profile(db: AsyncSession, gated: Gated,
                         user: AuthUser) -> dict:
    async with gated():
        async with db.begin():
            profile = await _ensure(db, user)
    return profile_dict(profile)


async def update_profile(db: AsyncSession, gated: Gated, user: AuthUser,
                         patch: Mapping[str, Any]) -> dict:
    async with gated():
        async with db.begin():
            profile = await _ensure(db, user)
            name = str(patch.get("name") or "").strip()
            if name:
                profile.name = name
            if isinstance(patch.get("bio"), str):
                profile.bio = patch["bio"]
            if isinstance(patch.get("profile_badge_id"), str):
                profile.profile_badge_id = (patch["profile_badge_id"]
                                            or DEFAULT_BADGE_ID)
            eng = await db.get(FanEngagementProfile, user.id)
            if eng is not None and name:
                eng.display_name = name
    return profile_dict(profile)


async def vault_snapshot(db: AsyncSession, gated: Gated,
                         user: AuthUser) -> dict:
    async with gated():
        async with db.begin():
            profile = await _ensure(db, user)
            favorites = (await db.execute(
                select(FanFavorite)
                .where(FanFavorite.user_id == user.id)
                .order_by(FanFavorite.saved_at.desc())
            )).scalars().all()
    return {"profile": profile_dict(profile),
            "favorites": [favorite_dict(f) for f in favorites]}


# ----------------------------
# Favorites
# ----------------------------
async def toggle_favorite(db: AsyncSession, gated: Gated, user: AuthUser,
                          item: Mapping[str, Any]) -> bool:
    """Returns True when the item is now a favorite."""
    ftype = item.get("type")
    item_id = str(item.get("id") or "").strip()
    if ftype not in FAVORITE_TYPES:
        raise VaultError(f"invalid favorite type: {ftype}")
    if not item_id:
        raise VaultError("Favorite id is required.")

    async with gated():
        async with db.begin():
            await _ensure(db, user)
            existing = await db.get(FanFavorite, (user.id, ftype, item_id))
            if existing is not None:
                await db.delete(existing)
                return False
            db.add(FanFavorite(
                user_id=user.id,
                type=ftype,
                item_id=item_id,
                title=str(item.get("title") or ""),
                href=str(item.get("href") or ""),
                image=item.get("image") or None,
                saved_at=now_ts(),
            ))
    return True


async def list_favorites(db: AsyncSession, gated: Gated, user_id: str,
                         ftype: Optional[str] = None) -> List[dict]:
    stmt = (select(FanFavorite)
            .where(FanFavorite.user_id == user_id)
            .order_by(FanFavorite.saved_at.desc()))
    if ftype:
        stmt = stmt.where(FanFavorite.type == ftype)
    async with gated():
        async with db.begin():
            rows = (await db.execute(stmt)).scalars().all()
    return [favorite_dict(f) for f in rows]


# ----------------------------
# Vault badges
# ----------------------------
async def upsert_badges(db: AsyncSession, gated: Gated, user_id: str,
                        badges: List[Mapping[str, Any]]) -> None:
    ts = now_ts()
    async with gated():
        async with db.begin():
            for b in badges:
                bid = str(b.get("id") or "").strip()
                if not bid:
                    continue
                row = await db.get(FanBadge, (user_id, bid))
                if row is None:
                    row = FanBadge(user_id=user_id, badge_id=bid)
                    db.add(row)
                row.label = str(b.get("label") or bid)
                row.tier = b.get("tier") or None
                row.tip = b.get("tip") or None
                row.updated_at = ts


async def list_badges(db: AsyncSession, gated: Gated,
                      user_id: str) -> List[dict]:
    async with gated():
        async with db.begin():
            rows = (await db.execute(
                select(FanBadge)
                .where(FanBadge.user_id == user_id)
                .order_by(FanBadge.updated_at.desc())
            )).scalars().all()
    return [{"id": r.badge_id, "label": r.label, "tier": r.tier,
             "tip": r.tip} for r in rows]


# ----------------------------
# Engagement
# ----------------------------
def _state_of(row: FanEngagementProfile) -> E.EngagementState:
    return E.EngagementState.from_mapping({
        "points": row.points,
        "streak": row.streak,
        "last_seen_date": row.last_seen_date,
        "daily_claim_date": row.daily_claim_date,
        "week_key": row.week_key,
        "weekly_signal": row.weekly_signal,
        "visited_paths": row.visited_paths,
        "reactions": row.reactions,
        "missions": row.missions,
    })


def _store_state(row: FanEngagementProfile, state: E.EngagementState) -> None:
    row.points = state.points
    row.streak = state.streak
    row.last_seen_date = state.last_seen_date or None
    row.daily_claim_date = state.daily_claim_date or None
    row.week_key = state.week_key
    row.weekly_signal = state.weekly_signal
    row.visited_paths = list(state.visited_paths)
    row.reactions = dict(state.reactions)
    row.missions = dict(state.missions)
    row.updated_at = now_ts()


def engagement_view(state: E.EngagementState, awarded: int = 0) -> dict:
    return {
        "state": state.to_dict(),
        "score": state.score,
        "badges": state.badges(),
        "missions_completed": state.missions_completed,
        "next_reward_at": state.next_reward_at,
        "awarded": awarded,
    }


def apply_action(state: E.EngagementState, action: str,
                 payload: Mapping[str, Any],
                 today: date) -> tuple[E.EngagementState, int]:
    """Run one engagement action. Returns the new state and the mission
    points it awarded."""
    if action == "sync":
        local = E.EngagementState.from_mapping(payload.get("state") or {})
        state = E.merge(local, state)
    state.roll_week(today)
    awarded = 0
    if action == "visit":
        awarded = state.register_visit(str(payload.get("path") or ""), today)
    elif action == "react":
        state.react(str(payload.get("kind") or ""))
    elif action == "daily":
        state.claim_daily(today)
    elif action == "share":
        state.share()
    elif action == "mission":
        awarded = state.complete_mission(str(payload.get("key") or ""))
    elif action != "sync":
        raise VaultError(f"unknown engagement action: {action}")
    return state, awarded


async def engage(db: AsyncSession, gated: Gated, board, user: AuthUser,
                 action: Optional[str], payload: Mapping[str, Any],
                 today: date) -> dict:
    """Load (or create) the fan's engagement row, apply action, persist,
    and push the new score to the leaderboard. action None only reads."""
    async with gated():
        async with db.begin():
            profile = await _ensure(db, user)
            row = await db.get(FanEngagementProfile, user.id)
            if row is None:
                row = FanEngagementProfile(user_id=user.id)
                db.add(row)
                state = E.EngagementState.fresh(today)
            else:
                state = _state_of(row)
            awarded = 0
            if action is not None:
                state, awarded = apply_action(state, action, payload,
                                              today)
            row.display_name = profile.name or "Fan"
            _store_state(row, state)
            updated_at = row.updated_at
            display_name = row.display_name

    await board.record({
        "user_id": user.id,
        "display_name": display_name,
        "points": state.points,
        "streak": state.streak,
        "weekly_signal": state.weekly_signal,
        "score": state.score,
        "updated_at": updated_at,
    })
    if awarded:
        log.info("mission points awarded: %d", awarded,
                 extra={"user_id": user.id})
    return engagement_view(state, awarded)
