import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import AuthUser
from ..deps import current_user, gated, get_db, leaderboard, optional_user
from ..helpers import utc_today
from ..infra.timings import timeit
from ..model.leaderboard import clamp_limit
from ..vault import feed, moderation, profiles

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vault", tags=["vault"])


class FavoriteBody(BaseModel):
    type: str
    id: str
    title: str = ""
    href: str = ""
    image: Optional[str] = None


class EngageBody(BaseModel):
    action: str
    path: Optional[str] = None
    kind: Optional[str] = None
    key: Optional[str] = None
    state: Optional[Dict[str, Any]] = None


class PostBody(BaseModel):
    body: str = ""
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    poll: Optional[Dict[str, Any]] = None


class PostEditBody(BaseModel):
    body: str = ""
    media_url: Optional[str] = None
    media_type: Optional[str] = None


class VoteBody(BaseModel):
    option_ids: List[int]


class CommentBody(BaseModel):
    body: str


class ReportBody(BaseModel):
    target_type: str
    target_id: int
    reason_code: str
    details: str = ""


# ----------------------------
# Profile, favorites, badges
# ----------------------------
@router.get("/me")
async def vault_me(user: AuthUser = Depends(current_user),
                   db: AsyncSession = Depends(get_db)):
    return await profiles.vault_snapshot(db, gated, user)


@router.patch("/profile")
async def vault_profile_update(payload: dict,
                               user: AuthUser = Depends(current_user),
                               db: AsyncSession = Depends(get_db)):
    return await profiles.update_profile(db, gated, user, payload)


@router.get("/favorites")
async def favorites_list(type: Optional[str] = None,
                         user: AuthUser = Depends(current_user),
                         db: AsyncSession = Depends(get_db)):
    items = await profiles.list_favorites(db, gated, user.id, type)
    return {"items": items}


@router.post("/favorites/toggle")
async def favorites_toggle(body: FavoriteBody,
                           user: AuthUser = Depends(current_user),
                           db: AsyncSession = Depends(get_db)):
    saved = await profiles.toggle_favorite(db, gated, user, body.model_dump())
    return {"ok": True, "saved": saved}


@router.get("/badges")
async def badges_list(user: AuthUser = Depends(current_user),
                      db: AsyncSession = Depends(get_db)):
    return {"items": await profiles.list_badges(db, gated, user.id)}


@router.put("/badges")
async def badges_upsert(badges: List[Dict[str, Any]],
                        user: AuthUser = Depends(current_user),
                        db: AsyncSession = Depends(get_db)):
    await profiles.upsert_badges(db, gated, user.id, badges)
    return {"items": await profiles.list_badges(db, gated, user.id)}


# ----------------------------
# Engagement & leaderboard
# ----------------------------
@router.get("/engagement")
async def engagement_get(user: AuthUser = Depends(current_user),
                         db: AsyncSession = Depends(get_db),
                         board=Depends(leaderboard)):
    return await profiles.engage(db, gated, board, user, None, {},
                                 utc_today())


@router.post("/engagement")
async def engagement_post(body: EngageBody,
                          user: AuthUser = Depends(current_user),
                          db: AsyncSession = Depends(get_db),
                          board=Depends(leaderboard)):
    async with timeit(f"vault.engage.{body.action}"):
        return await profiles.engage(
            db, gated, board, user, body.action,
            body.model_dump(exclude_none=True), utc_today(),
        )


@router.get("/leaderboard")
async def leaderboard_top(limit: int = 10, board=Depends(leaderboard)):
    limit = clamp_limit(limit)
    return {"items": await board.top(limit), "limit": limit}


# ----------------------------
# Feed
# ----------------------------
@router.get("/feed")
async def feed_list(limit: int = feed.DEFAULT_LIMIT,
                    user: Optional[AuthUser] = Depends(optional_user),
                    db: AsyncSession = Depends(get_db)):
    viewer_id = user.id if user else None
    async with timeit("vault.feed.list"):
        items = await feed.list_feed(db, gated, viewer_id, limit)
    return {"items": items, "limit": feed.clamp_limit(limit)}


@router.post("/feed/posts")
async def feed_post(body: PostBody,
                    user: AuthUser = Depends(current_user),
                    db: AsyncSession = Depends(get_db)):
    await profiles.ensure_profile(db, gated, user)
    post = await feed.create_post(db, gated, user.id, body.body,
                                  body.media_url, body.media_type,
                                  body.poll)
    return {"ok": True, **post}


@router.patch("/feed/posts/{post_id}")
async def feed_edit(post_id: int, body: PostEditBody,
                    user: AuthUser = Depends(current_user),
                    db: AsyncSession = Depends(get_db)):
    post = await feed.update_post(db, gated, user.id, post_id, body.body,
                                  body.media_url, body.media_type)
    return {"ok": True, **post}


@router.delete("/feed/posts/{post_id}")
async def feed_delete(post_id: int,
                      user: AuthUser = Depends(current_user),
                      db: AsyncSession = Depends(get_db)):
    await feed.delete_post(db, gated, user.id, post_id)
    return {"ok": True}


@router.post("/feed/posts/{post_id}/vote")
async def feed_vote(post_id: int, body: VoteBody,
                    user: AuthUser = Depends(current_user),
                    db: AsyncSession = Depends(get_db)):
    result = await feed.vote_poll(db, gated, user.id, post_id,
                                  body.option_ids)
    return {"ok": True, **result}


@router.post("/feed/posts/{post_id}/comments")
async def feed_comment(post_id: int, body: CommentBody,
                       user: AuthUser = Depends(current_user),
                       db: AsyncSession = Depends(get_db)):
    await profiles.ensure_profile(db, gated, user)
    comment = await feed.create_comment(db, gated, user.id, post_id,
                                        body.body)
    return {"ok": True, **comment}


@router.post("/feed/posts/{post_id}/like")
async def feed_like(post_id: int,
                    user: AuthUser = Depends(current_user),
                    db: AsyncSession = Depends(get_db)):
    liked = await feed.toggle_like(db, gated, user.id, post_id)
    return {"ok": True, "liked": liked}


@router.post("/feed/posts/{post_id}/share")
async def feed_share(post_id: int,
                     _: AuthUser = Depends(current_user),
                     db: AsyncSession = Depends(get_db)):
    count = await feed.share_post(db, gated, post_id)
    return {"ok": True, "share_count": count}


@router.post("/feed/reports")
async def feed_report(body: ReportBody,
                      user: AuthUser = Depends(current_user),
                      db: AsyncSession = Depends(get_db)):
    report = await moderation.report_target(
        db, gated, user.id, body.target_type, body.target_id,
        body.reason_code, body.details,
    )
    return {"ok": True, "report": report}
