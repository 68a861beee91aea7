"""
Fan feed: posts, comments, likes, shares and Crowd Beacon polls.

Trivia posts carry a metadata line:

    [[TRIVIA]]{"campaignId": ..., "questionId": ..., ...}
    <prompt text>

and a poll whose options follow the question's option order, so a vote's
option position is the answer index.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import VaultError
from ..helpers import now_ts, parse_ts, to_iso
from ..infra.sql import Gated
from ..model.db import (
    FanProfile, FeedComment, FeedLike, FeedPoll, FeedPollOption, FeedPollVote,
    FeedPost, FeedReport, TriviaQuestion,
)
from .moderation import moderation_enabled

log = logging.getLogger(__name__)

TRIVIA_PREFIX = "[[TRIVIA]]"
MEDIA_TYPES = ("image", "video", "link")
DEFAULT_LIMIT = 30
MAX_LIMIT = 100
POLL_MIN_OPTIONS = 2
POLL_MAX_OPTIONS = 6


def clamp_limit(limit: int) -> int:
    return max(1, min(MAX_LIMIT, int(limit)))


def encode_trivia_body(meta: Dict[str, Any], prompt: str) -> str:
    return f"{TRIVIA_PREFIX}{json.dumps(meta, separators=(',', ':'))}\n{prompt}"


def parse_trivia_body(body: str) -> tuple[Optional[dict], str]:
    """(meta, text) for a trivia post; (None, body) for anything else."""
    if not body.startswith(TRIVIA_PREFIX):
        return None, body
    head, _, rest = body[len(TRIVIA_PREFIX):].partition("\n")
    try:
        meta = json.loads(head)
    except ValueError:
        return None, body
    if not isinstance(meta, dict):
        return None, body
    return meta, rest


def _visible(status: str, author_id: str, viewer_id: Optional[str]) -> bool:
    # flagged items wait for review; only their author still sees them
    if status == "rejected":
        return False
    if status == "flagged":
        return author_id == viewer_id
    return True


def _visible_clause(model, viewer_id: Optional[str]):
    if viewer_id is None:
        return model.moderation_status == "approved"
    return or_(model.moderation_status == "approved",
               and_(model.moderation_status == "flagged",
                    model.user_id == viewer_id))


# ----------------------------
# Polls
# ----------------------------
def normalize_poll(raw: Optional[Mapping[str, Any]],
                   now: Optional[float] = None) -> Optional[Dict[str, Any]]:
    """Validated poll draft, or None when no poll was given.

    Options are labels or {"label", "image_url"} mappings; blank labels
    are dropped before the 2..6 count is checked.
    """
    if raw is None:
        return None
    question = str(raw.get("question") or "").strip()
    if not question:
        raise VaultError("Add a poll question.")

    options = []
    for item in raw.get("options") or []:
        if isinstance(item, Mapping):
            label = str(item.get("label") or "").strip()
            image = str(item.get("image_url") or item.get("imageUrl")
                        or "").strip()
        else:
            label, image = str(item or "").strip(), ""
        if label:
            options.append({"label": label, "image_url": image or None})
    if not POLL_MIN_OPTIONS <= len(options) <= POLL_MAX_OPTIONS:
        raise VaultError(f"Polls need between {POLL_MIN_OPTIONS} and "
                         f"{POLL_MAX_OPTIONS} options.")

    expires_raw = raw.get("expires_at", raw.get("expiresAt"))
    expires_at = parse_ts(expires_raw)
    if expires_raw not in (None, "") and expires_at is None:
        raise VaultError("invalid poll expiry")
    now = now_ts() if now is None else now
    if expires_at is not None and expires_at <= now:
        raise VaultError("Poll expiry must be in the future.")

    allow_multiple = raw.get("allow_multiple", raw.get("allowMultiple"))
    return {"question": question, "allow_multiple": allow_multiple is True,
            "expires_at": expires_at, "options": options}


async def add_poll(db: AsyncSession, post_id: int,
                   poll: Mapping[str, Any]) -> None:
    """Attach a normalized poll to a flushed post, inside the caller's tx."""
    db.add(FeedPoll(post_id=post_id, question=poll["question"],
                    allow_multiple=bool(poll["allow_multiple"]),
                    expires_at=poll["expires_at"]))
    await db.flush()
    for position, opt in enumerate(poll["options"]):
        db.add(FeedPollOption(post_id=post_id, position=position,
                              label=opt["label"],
                              image_url=opt.get("image_url")))
    await db.flush()


def _poll_dict(poll: FeedPoll, options: Iterable[FeedPollOption],
               votes: Iterable[tuple], viewer_id: Optional[str],
               now: float) -> Dict[str, Any]:
    counts: Dict[int, int] = {}
    mine = set()
    voters = set()
    for option_id, user_id in votes:
        counts[option_id] = counts.get(option_id, 0) + 1
        voters.add(user_id)
        if user_id == viewer_id:
            mine.add(option_id)
    return {
        "question": poll.question,
        "allow_multiple": bool(poll.allow_multiple),
        "expires_at": to_iso(poll.expires_at) if poll.expires_at else None,
        "closed": poll.expires_at is not None and now >= poll.expires_at,
        "total_votes": sum(counts.values()),
        "voter_count": len(voters),
        "options": [{
            "id": o.id,
            "label": o.label,
            "image_url": o.image_url,
            "vote_count": counts.get(o.id, 0),
            "viewer_voted": o.id in mine,
        } for o in options],
    }


async def vote_poll(db: AsyncSession, gated: Gated, user_id: str,
                    post_id: int, option_ids: Iterable[Any],
                    now: Optional[float] = None) -> dict:
    """Replace the viewer's votes on a poll.

    Trivia polls also report whether the pick matched the right answer.
    """
    picked: List[int] = []
    for raw in option_ids or []:
        try:
            oid = int(raw)
        except (TypeError, ValueError):
            raise VaultError("Unknown poll option.")
        if oid not in picked:
            picked.append(oid)
    if not picked:
        raise VaultError("Pick at least one option.")
    now = now_ts() if now is None else float(now)

    async with gated():
        async with db.begin():
            post = await db.get(FeedPost, post_id)
            if post is None or not _visible(post.moderation_status,
                                            post.user_id, user_id):
                raise VaultError("Post not found.", 404)
            poll = await db.get(FeedPoll, post_id)
            if poll is None:
                raise VaultError("This post has no poll.")
            if poll.expires_at is not None and now >= poll.expires_at:
                raise VaultError("This poll has closed.", 409)
            if not poll.allow_multiple and len(picked) > 1:
                raise VaultError("This poll allows a single choice.")

            options = {o.id: o for o in (await db.execute(
                select(FeedPollOption).where(FeedPollOption.post_id == post_id)
            )).scalars().all()}
            if any(oid not in options for oid in picked):
                raise VaultError("Unknown poll option.")

            await db.execute(delete(FeedPollVote).where(
                FeedPollVote.post_id == post_id,
                FeedPollVote.user_id == user_id,
            ))
            for oid in picked:
                db.add(FeedPollVote(post_id=post_id, option_id=oid,
                                    user_id=user_id, created_at=now))

            correct = None
            meta, _ = parse_trivia_body(post.body or "")
            if meta and meta.get("questionId"):
                question = await db.get(TriviaQuestion, str(meta["questionId"]))
                if question is not None:
                    correct = [options[oid].position for oid in picked] == [
                        question.correct_option_index]

    log.info("poll vote on post %s", post_id, extra={"user_id": user_id})
    return {"post_id": post_id, "option_ids": picked, "correct": correct}


# ----------------------------
# Posts
# ----------------------------
async def list_feed(db: AsyncSession, gated: Gated, viewer_id: Optional[str],
                    limit: int = DEFAULT_LIMIT,
                    now: Optional[float] = None) -> List[dict]:
    now = now_ts() if now is None else float(now)
    async with gated():
        async with db.begin():
            posts = (await db.execute(
                select(FeedPost)
                .where(_visible_clause(FeedPost, viewer_id))
                .order_by(FeedPost.created_at.desc(), FeedPost.id.desc())
                .limit(clamp_limit(limit))
            )).scalars().all()
            if not posts:
                return []
            post_ids = [p.id for p in posts]
            comments = (await db.execute(
                select(FeedComment)
                .where(FeedComment.post_id.in_(post_ids),
                       _visible_clause(FeedComment, viewer_id))
                .order_by(FeedComment.created_at.asc(), FeedComment.id.asc())
            )).scalars().all()
            likes = (await db.execute(
                select(FeedLike.post_id, FeedLike.user_id)
                .where(FeedLike.post_id.in_(post_ids))
            )).all()
            polls = {p.post_id: p for p in (await db.execute(
                select(FeedPoll).where(FeedPoll.post_id.in_(post_ids))
            )).scalars().all()}
            options = (await db.execute(
                select(FeedPollOption)
                .where(FeedPollOption.post_id.in_(list(polls)))
                .order_by(FeedPollOption.position.asc())
            )).scalars().all() if polls else []
            votes = (await db.execute(
                select(FeedPollVote.post_id, FeedPollVote.option_id,
                       FeedPollVote.user_id)
                .where(FeedPollVote.post_id.in_(list(polls)))
            )).all() if polls else []
            user_ids = {p.user_id for p in posts} | {c.user_id for c in comments}
            names = dict((await db.execute(
                select(FanProfile.id, FanProfile.name)
                .where(FanProfile.id.in_(user_ids))
            )).all())

    like_count: Dict[int, int] = {}
    liked = set()
    for post_id, user_id in likes:
        like_count[post_id] = like_count.get(post_id, 0) + 1
        if user_id == viewer_id:
            liked.add(post_id)

    options_by_post: Dict[int, List[FeedPollOption]] = {}
    for o in options:
        options_by_post.setdefault(o.post_id, []).append(o)
    votes_by_post: Dict[int, List[tuple]] = {}
    for post_id, option_id, user_id in votes:
        votes_by_post.setdefault(post_id, []).append((option_id, user_id))

    by_post: Dict[int, List[dict]] = {}
    for c in comments:
        by_post.setdefault(c.post_id, []).append({
            "id": c.id,
            "post_id": c.post_id,
            "user_id": c.user_id,
            "author_name": names.get(c.user_id) or "Fan",
            "body": c.body or "",
            "moderation_status": c.moderation_status,
            "created_at": to_iso(c.created_at),
        })

    out = []
    for p in posts:
        trivia, body = parse_trivia_body(p.body or "")
        poll = polls.get(p.id)
        out.append({
            "id": p.id,
            "user_id": p.user_id,
            "author_name": names.get(p.user_id) or "Fan",
            "body": body,
            "trivia": trivia,
            "poll": _poll_dict(poll, options_by_post.get(p.id, []),
                               votes_by_post.get(p.id, []), viewer_id, now)
            if poll is not None else None,
            "media_url": p.media_url,
            "media_type": p.media_type,
            "share_count": p.share_count or 0,
            "like_count": like_count.get(p.id, 0),
            "viewer_has_liked": p.id in liked,
            "moderation_status": p.moderation_status,
            "comments": by_post.get(p.id, []),
            "created_at": to_iso(p.created_at),
            "updated_at": to_iso(p.updated_at or p.created_at),
        })
    return out


def _clean_post(body: Optional[str], media_url: Optional[str],
                media_type: Optional[str], has_poll: bool) -> tuple:
    body = (body or "").strip()
    media_url = (media_url or "").strip()
    if not body and not media_url and not has_poll:
        raise VaultError("Add text or a media link to publish.")
    if media_type is not None and media_type not in MEDIA_TYPES:
        raise VaultError(f"invalid media type: {media_type}")
    if body.startswith(TRIVIA_PREFIX):
        raise VaultError("Trivia posts are published by the scheduler.")
    return body, media_url or None, media_type or ("link" if media_url else None)


async def create_post(db: AsyncSession, gated: Gated, user_id: str,
                      body: str = "", media_url: Optional[str] = None,
                      media_type: Optional[str] = None,
                      poll: Optional[Mapping[str, Any]] = None) -> dict:
    draft = normalize_poll(poll)
    body, media_url, media_type = _clean_post(body, media_url, media_type,
                                              draft is not None)

    ts = now_ts()
    async with gated():
        async with db.begin():
            status = "flagged" if await moderation_enabled(db) else "approved"
            post = FeedPost(
                user_id=user_id,
                body=body,
                media_url=media_url,
                media_type=media_type,
                share_count=0,
                moderation_status=status,
                created_at=ts,
                updated_at=ts,
            )
            db.add(post)
            await db.flush()
            if draft is not None:
                await add_poll(db, post.id, draft)
    return {"id": post.id, "moderation_status": post.moderation_status}


async def _own_post(db: AsyncSession, user_id: str, post_id: int) -> FeedPost:
    post = await db.get(FeedPost, post_id)
    if post is None or post.moderation_status == "rejected":
        raise VaultError("Post not found.", 404)
    if post.user_id != user_id:
        raise VaultError("You can only change your own posts.", 403)
    return post


async def update_post(db: AsyncSession, gated: Gated, user_id: str,
                      post_id: int, body: str = "",
                      media_url: Optional[str] = None,
                      media_type: Optional[str] = None) -> dict:
    """Author edit of text and media; polls keep their options and votes."""
    async with gated():
        async with db.begin():
            post = await _own_post(db, user_id, post_id)
            has_poll = await db.get(FeedPoll, post_id) is not None
            text, url, kind = _clean_post(body, media_url, media_type,
                                          has_poll)
            meta, _ = parse_trivia_body(post.body or "")
            post.body = encode_trivia_body(meta, text) if meta else text
            post.media_url = url
            post.media_type = kind
            if await moderation_enabled(db):
                post.moderation_status = "flagged"
            post.updated_at = now_ts()
    return {"id": post.id, "moderation_status": post.moderation_status}


async def delete_post(db: AsyncSession, gated: Gated, user_id: str,
                      post_id: int) -> None:
    async with gated():
        async with db.begin():
            post = await _own_post(db, user_id, post_id)
            comment_ids = (await db.execute(
                select(FeedComment.id).where(FeedComment.post_id == post_id)
            )).scalars().all()
            await db.execute(delete(FeedReport).where(or_(
                and_(FeedReport.target_type == "post",
                     FeedReport.target_id == post_id),
                and_(FeedReport.target_type == "comment",
                     FeedReport.target_id.in_(comment_ids)),
            )))
            await db.delete(post)
    log.info("post %s deleted by author", post_id, extra={"user_id": user_id})


async def create_comment(db: AsyncSession, gated: Gated, user_id: str,
                         post_id: int, body: str) -> dict:
    body = (body or "").strip()
    if not body:
        raise VaultError("Comment cannot be empty.")
    async with gated():
        async with db.begin():
            post = await db.get(FeedPost, post_id)
            if post is None or post.moderation_status == "rejected":
                raise VaultError("Post not found.", 404)
            status = "flagged" if await moderation_enabled(db) else "approved"
            comment = FeedComment(post_id=post_id, user_id=user_id, body=body,
                                  moderation_status=status,
                                  created_at=now_ts())
            db.add(comment)
            await db.flush()
    return {"id": comment.id, "moderation_status": comment.moderation_status}


async def toggle_like(db: AsyncSession, gated: Gated, user_id: str,
                      post_id: int) -> bool:
    """Returns True when the viewer now likes the post."""
    async with gated():
        async with db.begin():
            if await db.get(FeedPost, post_id) is None:
                raise VaultError("Post not found.", 404)
            existing = await db.get(FeedLike, (post_id, user_id))
            if existing is not None:
                await db.delete(existing)
                return False
            db.add(FeedLike(post_id=post_id, user_id=user_id))
    return True


async def share_post(db: AsyncSession, gated: Gated, post_id: int) -> int:
    async with gated():
        async with db.begin():
            post = await db.get(FeedPost, post_id)
            if post is None:
                raise VaultError("Post not found.", 404)
            post.share_count = FeedPost.share_count + 1
            await db.flush()
            await db.refresh(post, ["share_count"])
    return post.share_count

